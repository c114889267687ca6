"""
AsyncOpenAI construction for the chat pipeline.

SDK-level retries are off. The single-agent streamer retries transient
failures itself; agent calls are never retried.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx

from openai import AsyncOpenAI

if TYPE_CHECKING:
    from core.constants import Settings

CONNECT_TIMEOUT = 10.0
DEFAULT_READ_TIMEOUT = 120.0  # longest silence tolerated between two stream frames
WRITE_TIMEOUT = 30.0
POOL_TIMEOUT = 30.0

# A turn fans out to several agents at once across many rooms
MAX_CONNECTIONS = 100
MAX_KEEPALIVE_CONNECTIONS = 20


def create_http_client(read_timeout: float | None = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=CONNECT_TIMEOUT,
            read=DEFAULT_READ_TIMEOUT if read_timeout is None else read_timeout,
            write=WRITE_TIMEOUT,
            pool=POOL_TIMEOUT,
        ),
        limits=httpx.Limits(max_connections=MAX_CONNECTIONS, max_keepalive_connections=MAX_KEEPALIVE_CONNECTIONS),
    )


def create_openai_client(
    api_key: str,
    base_url: str | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> AsyncOpenAI:
    options: dict[str, Any] = {"api_key": api_key, "http_client": http_client, "max_retries": 0}
    if base_url:
        options["base_url"] = base_url
    return AsyncOpenAI(**options)


def provider_credentials(settings: Settings) -> tuple[str, str | None]:
    """API key and base URL for ``settings.api_provider``.

    Azure deployments are addressed through their endpoint; plain OpenAI uses
    the SDK default.
    """
    if settings.api_provider == "azure":
        return settings.azure_openai_api_key or "", settings.azure_endpoint_str
    return settings.openai_api_key or "", None


def create_openai_client_from_settings(settings: Settings) -> AsyncOpenAI:
    api_key, base_url = provider_credentials(settings)
    return create_openai_client(
        api_key,
        base_url=base_url,
        http_client=create_http_client(read_timeout=settings.http_read_timeout),
    )
