"""
Push channel front door used by the pipeline.

``send`` delivers an event to this process's websocket subscribers and
publishes it on the bus so peer processes can deliver it to theirs. Pushing to
a room nobody is watching is a no-op locally, so generation keeps running to
completion after a client disconnects.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from api.websocket.manager import ChatroomConnectionManager
from core.constants import BUS_CHANNEL_AI_RESPONSE_COMPLETE, BUS_CHANNEL_EVENTS
from integrations.event_bus import PostgresEventBus
from models.error_models import ErrorCode, ErrorEvent
from models.event_models import AIResponseCompleteNotification, BusEnvelope
from utils.logger import logger
from utils.metrics import push_events_total

CompletionListener = Callable[[AIResponseCompleteNotification], Awaitable[None]]


class EventPublisher:
    """Typed push events keyed by chatroom, fanned out locally and across processes."""

    def __init__(self, manager: ChatroomConnectionManager, bus: PostgresEventBus | None = None):
        self.manager = manager
        self.bus = bus
        self._completion_listeners: list[CompletionListener] = []

    def attach_bus(self, bus: PostgresEventBus) -> None:
        """Subscribe to peer envelopes; call before the bus starts."""
        self.bus = bus
        bus.subscribe(BUS_CHANNEL_EVENTS, self.relay)
        bus.subscribe(BUS_CHANNEL_AI_RESPONSE_COMPLETE, self.relay_ai_response_complete)

    async def send(self, chatroom_id: str, event_type: str, payload: dict[str, Any]) -> None:
        """Deliver locally, then publish to peers.

        Delivery failures are logged and never raised into the pipeline.
        """
        try:
            await self.manager.send(chatroom_id, event_type, payload)
            push_events_total.labels(event_type=event_type, route="local").inc()
        except Exception as e:
            logger.warning(f"Local delivery of {event_type} failed: {e}", chatroom_id=chatroom_id)

        if self.bus is not None and self.bus.is_running:
            published = await self.bus.publish(BUS_CHANNEL_EVENTS, chatroom_id, event_type, payload)
            if published:
                push_events_total.labels(event_type=event_type, route="bus").inc()

    async def send_error(
        self,
        chatroom_id: str,
        event_type: str,
        code: ErrorCode,
        message: str,
        agent: str | None = None,
        recoverable: bool = True,
    ) -> None:
        event = ErrorEvent(code=code, message=message, agent=agent, recoverable=recoverable)
        await self.send(chatroom_id, event_type, event.to_payload())

    async def relay(self, envelope: BusEnvelope) -> None:
        """Deliver a peer's event to local subscribers only."""
        await self.manager.send(envelope.chatroom_id, envelope.type, envelope.data)
        push_events_total.labels(event_type=envelope.type, route="relay").inc()

    def on_ai_response_complete(self, listener: CompletionListener) -> None:
        self._completion_listeners.append(listener)

    async def _notify_completion_listeners(self, notification: AIResponseCompleteNotification) -> None:
        for listener in self._completion_listeners:
            try:
                await listener(notification)
            except Exception as e:  # noqa: PERF203
                logger.error(f"AI response completion listener failed: {e}", exc_info=True)

    async def publish_ai_response_complete(
        self,
        chatroom_id: str,
        message_id: str,
        content: str,
        total_tokens: int,
    ) -> None:
        """Announce a persisted single-agent reply to this and peer processes."""
        notification = AIResponseCompleteNotification(
            chatroom_id=chatroom_id,
            message_id=message_id,
            content=content,
            total_tokens=total_tokens,
        )
        await self._notify_completion_listeners(notification)
        if self.bus is not None and self.bus.is_running:
            await self.bus.publish(
                BUS_CHANNEL_AI_RESPONSE_COMPLETE,
                chatroom_id,
                BUS_CHANNEL_AI_RESPONSE_COMPLETE,
                notification.to_dict(),
            )

    async def relay_ai_response_complete(self, envelope: BusEnvelope) -> None:
        try:
            notification = AIResponseCompleteNotification.model_validate(envelope.data)
        except ValidationError:
            logger.warning("Dropping AI response completion relayed without its data", chatroom_id=envelope.chatroom_id)
            return
        await self._notify_completion_listeners(notification)
