"""
Core Application Layer - Agents, Prompts and Configuration
==========================================================

Provides the pipeline's domain logic for Dorandoran's Korean chat tutor: the
LLM agents, the prompt texts and how they are composed, and the progress
document merge rules.

Modules:
    agents: Conversation, intimacy, vocabulary and summarizer agents
    prompts: Guideline texts, analysis prompts and greeting texts
    prompt_composer: Builds the system and intimacy prompts for a room
    progress: Pure merge rules for the per-room progress document
    constants: Configuration values and Pydantic settings validation

Key Components:

Agents (agents/):
    Each agent makes one completion call and returns a typed result from
    :mod:`models.agent_models`. The conversation agent streams; the others
    parse a JSON answer and fall back to a safe default when it is malformed.

Prompt Composition (prompt_composer.py):
    Deterministic assembly of the bot system prompt, persona and capability
    directives, room context, concept and intimacy guidelines. The result is
    capped at ``llm_max_prompt_chars``.

Configuration (constants.py):
    Centralized configuration using Pydantic Settings for validation:
    - OpenAI or Azure OpenAI credentials and model parameters
    - Per-1k-token prices used for billing
    - Database pool, websocket and shutdown limits
    - Pipeline mode (multi_agent or single_agent) and event bus toggle

See Also:
    :mod:`api.services`: Services that load data and run the agents
    :mod:`integrations.completion_client`: Streaming completion transport
"""
