"""
Utils Module - Infrastructure Utilities and Support Functions
==============================================================

Provides infrastructure utilities for logging, database access, retries,
metrics and small text helpers.

Modules:
    logger: JSON structured logging with rotation and content redaction
    db_utils: asyncpg pool creation, transactions, advisory locks and health
    retry: Exponential backoff helpers for transient failures
    metrics: Prometheus counters, gauges and histograms
    client_factory: AsyncOpenAI and httpx client construction from settings
    json_utils: Lenient parsing of model JSON output
    token_utils: Token estimation for Korean and mixed text
    pii: Masking of phone numbers, emails and card numbers

Key Components:

Logging (logger.py):
    Structured JSON logging with multiple handlers:
    - Console handler: Human-readable format to stderr
    - Conversation handler: JSON Lines format to logs/conversations.jsonl
    - Error handler: JSON Lines format to logs/errors.jsonl

    Request and turn identifiers are injected from the request context.
    Message content is masked unless content logging is enabled.

Database (db_utils.py):
    Raw SQL over asyncpg with pool timeouts mapped to
    ``ConnectionPoolExhausted`` and a graceful close that waits for checked
    out connections.

Example:
    Logging a pipeline event::

        from utils.logger import logger

        logger.info("Turn started", chatroom_id=str(chatroom_id))

See Also:
    :mod:`core.constants`: Configuration values for logging and pools
"""
