"""
Models Module - Data Models and Type Definitions
=================================================

Provides Pydantic models for rows, agent results, push events and errors.
All models use Pydantic v2 for validation and JSON serialization.

Modules:
    chat_models: Chatroom, chatbot, message, progress and billing rows
    agent_models: Typed results of the four agents
    progress_models: The per-room progress JSON document
    event_models: Push events, bus envelopes and websocket frames
    error_models: Error codes, error events and HTTP error responses

Key Components:

Row Models (chat_models.py):
    Built from asyncpg records with ``from_record``. JSON columns arrive as
    text or as dicts; both decode to dicts, anything malformed to ``{}``.

Agent Results (agent_models.py):
    ``AgentResult`` is a discriminated union on ``agent`` so the orchestrator
    can match on the concrete type. ``to_event`` gives the camelCase push
    payload for each result.

Progress Document (progress_models.py):
    Tolerant parser for ``progress_data``: unknown keys survive a round trip
    and a malformed document reads as empty.

See Also:
    :mod:`core.progress`: Merge rules applied to the progress document
    :mod:`api.services.event_publisher`: Sends the push events
"""
