"""
Shared instrumentation for the pipeline agents.
"""

from __future__ import annotations

import time

from typing import Any, Literal

from utils.logger import logger
from utils.metrics import agent_call_duration_seconds, agent_calls_total

AgentName = Literal["conversation", "intimacy", "vocabulary", "summarizer"]

# "default" means the agent absorbed a failure and returned its safe default
AgentOutcome = Literal["success", "default", "error"]


class AgentCall:
    """Times one agent invocation and records it once.

    Example:
        call = AgentCall("vocabulary", chatroom_id)
        ...
        call.finish("success", words=1)
    """

    def __init__(self, agent: AgentName, chatroom_id: str | None = None):
        self.agent = agent
        self.chatroom_id = chatroom_id
        self.started = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started) * 1000

    def finish(self, outcome: AgentOutcome, **details: Any) -> None:
        duration_ms = self.elapsed_ms
        agent_calls_total.labels(agent=self.agent, outcome=outcome).inc()
        agent_call_duration_seconds.labels(agent=self.agent).observe(duration_ms / 1000)
        logger.log_agent_call(self.agent, self.chatroom_id, duration_ms, outcome, **details)
