"""
Integrations Module - External System Integrations
===================================================

Provides the transports the pipeline talks through: the LLM completion API
and the PostgreSQL LISTEN/NOTIFY bus that fans push events out to peer
processes.

Modules:
    completion_client: Streaming and buffered chat completions over AsyncOpenAI
    event_bus: Cross-process relay of push events on NOTIFY channels

Key Components:

Completion Client (completion_client.py):
    Wraps ``AsyncOpenAI`` chat completions:
    - Normalizes streamed chunks into text and usage frames
    - Requests a usage frame at the end of every stream
    - ``TRANSIENT_LLM_EXCEPTIONS`` names what callers may retry

Event Bus (event_bus.py):
    One dedicated asyncpg connection listens on the bus channels:
    - Envelopes carry the origin process id so a process skips its own events
    - Oversized payloads are shrunk, then sent without data, and marked truncated
    - Notifications are queued and handed to handlers one at a time

Example:
    Streaming a reply::

        from integrations.completion_client import StreamingCompletionClient

        client = StreamingCompletionClient(openai_client)
        async for frame in client.stream(system_prompt, "안녕하세요"):
            if frame.text:
                print(frame.text, end="")

See Also:
    :mod:`api.services.event_publisher`: Local delivery plus bus publishing
    :mod:`utils.client_factory`: AsyncOpenAI construction from settings
"""
