from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from uuid import UUID

import asyncpg

from fastapi import FastAPI
from openai import AsyncOpenAI
from prometheus_client import make_asgi_app

from api.middleware.exception_handlers import register_exception_handlers
from api.middleware.request_context import RequestContextMiddleware
from api.routes import chat, health
from api.services.billing_service import BillingService
from api.services.chat_service import ChatService
from api.services.chatroom_service import ChatroomService
from api.services.event_publisher import EventPublisher
from api.services.greeting_service import GreetingService
from api.services.message_service import MessageService
from api.services.orchestrator_service import OrchestratorService
from api.services.progress_service import ProgressService
from api.services.prompt_service import PromptService
from api.websocket.manager import ChatroomConnectionManager
from api.websocket.task_manager import TaskSupervisor
from core.agents import ConversationAgent, IntimacyAgent, SummarizerAgent, VocabularyAgent
from core.constants import EVENT_AI_ERROR, Settings, get_settings
from integrations.completion_client import ModelConfig, StreamingCompletionClient
from integrations.event_bus import PostgresEventBus
from models.chat_models import Message
from models.error_models import ErrorCode
from utils.client_factory import create_openai_client_from_settings
from utils.db_utils import check_pool_health, create_database_pool, graceful_pool_close
from utils.logger import configure_uvicorn_logging, logger

# Configure uvicorn logging at module level to ensure workers use it
configure_uvicorn_logging()


def build_pipeline(
    app: FastAPI,
    pool: asyncpg.Pool,
    openai_client: AsyncOpenAI,
    settings: Settings,
    ws_manager: ChatroomConnectionManager,
) -> None:
    """Construct services and agents and attach them to ``app.state``."""
    model_config = ModelConfig(
        model=settings.llm_model,
        max_output_tokens=settings.llm_max_output_tokens,
        temperature=settings.llm_temperature,
    )
    completion_client = StreamingCompletionClient(openai_client, model_config)

    chatroom_service = ChatroomService(pool)
    message_service = MessageService(pool)
    progress_service = ProgressService(pool)
    billing_service = BillingService(pool)
    prompt_service = PromptService(chatroom_service, progress_service, max_chars=settings.llm_max_prompt_chars)
    publisher = EventPublisher(ws_manager)
    supervisor = TaskSupervisor()

    app.state.ws_manager = ws_manager
    app.state.supervisor = supervisor
    app.state.publisher = publisher
    app.state.chatroom_service = chatroom_service
    app.state.message_service = message_service
    app.state.progress_service = progress_service
    app.state.orchestrator = OrchestratorService(
        publisher=publisher,
        message_service=message_service,
        progress_service=progress_service,
        conversation_agent=ConversationAgent(
            completion_client, prompt_service, max_content_chars=settings.llm_max_prompt_chars
        ),
        intimacy_agent=IntimacyAgent(completion_client, prompt_service),
        vocabulary_agent=VocabularyAgent(completion_client),
        summarizer_agent=SummarizerAgent(completion_client, message_service),
        supervisor=supervisor,
        summary_window=settings.summary_window_size,
    )
    app.state.chat_service = ChatService(
        client=completion_client,
        prompt_service=prompt_service,
        chatroom_service=chatroom_service,
        message_service=message_service,
        billing_service=billing_service,
        publisher=publisher,
    )
    app.state.greeting_service = GreetingService(chatroom_service, message_service, progress_service, publisher)


def dispatch_user_message(app: FastAPI, chatroom_id: UUID, user_id: UUID | None, message: Message) -> None:
    """Entry point after a user message was persisted: start its turn and return.

    ``pipeline_mode`` selects the multi-agent orchestrator or the single-agent
    streamer; both run under the task supervisor.
    """
    if get_settings().pipeline_mode == "single_agent":
        publisher: EventPublisher = app.state.publisher
        room = str(chatroom_id)

        async def notify_failure(exc: BaseException) -> None:
            await publisher.send_error(
                room, EVENT_AI_ERROR, ErrorCode.INTERNAL_UNEXPECTED, f"Turn processing failed: {type(exc).__name__}"
            )

        app.state.supervisor.submit(
            app.state.chat_service.stream_ai_response(message),
            name=f"stream:{room}:{message.sequence_number}",
            on_error=notify_failure,
        )
        return

    app.state.orchestrator.dispatch(chatroom_id, user_id, message)


def dispatch_greeting(
    app: FastAPI,
    chatroom_id: UUID,
    user_id: UUID | None,
    intimacy_level: int | None = None,
) -> None:
    """Entry point after a chatroom was created: send the bot's greeting and return.

    Called by the room-creation flow, which lives outside this service. The
    greeting runs under the task supervisor so shutdown drains it.
    """
    greeting_service: GreetingService = app.state.greeting_service
    app.state.supervisor.submit(
        greeting_service.send_greeting(chatroom_id, user_id, intimacy_level),
        name=f"greeting:{chatroom_id}",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown with graceful handling."""
    settings = get_settings()

    # Create database pool with production configuration
    pool = await create_database_pool(
        dsn=settings.database_url,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        command_timeout=settings.db_command_timeout,
        connection_timeout=settings.db_connection_timeout,
        statement_cache_size=settings.db_statement_cache_size,
        max_inactive_connection_lifetime=settings.db_max_inactive_connection_lifetime,
    )
    app.state.db_pool = pool

    # Verify database connectivity
    health_status = await check_pool_health(pool)
    if not health_status["healthy"]:
        logger.error("Database health check failed during startup")
        raise RuntimeError("Database connection failed")
    logger.info(f"Database pool healthy: {health_status}")

    openai_client = create_openai_client_from_settings(settings)
    logger.info(f"OpenAI client configured (provider: {settings.api_provider}, model: {settings.llm_model})")

    ws_manager = ChatroomConnectionManager(
        idle_timeout_seconds=settings.ws_idle_timeout,
        max_connections=settings.ws_max_connections,
        max_connections_per_chatroom=settings.ws_max_connections_per_chatroom,
    )
    build_pipeline(app, pool, openai_client, settings, ws_manager)
    await ws_manager.start_idle_checker()

    app.state.event_bus = None
    if settings.event_bus_enabled:
        event_bus = PostgresEventBus(settings.database_url, connect_timeout=settings.db_connection_timeout)
        app.state.publisher.attach_bus(event_bus)
        await event_bus.start()
        app.state.event_bus = event_bus

    try:
        yield
    finally:
        logger.info("Initiating graceful shutdown sequence")

        # Phase 1: Let in-flight turns finish so their replies are persisted
        cancelled = await app.state.supervisor.drain(timeout=settings.shutdown_timeout)
        if cancelled:
            logger.warning(f"{cancelled} pipeline tasks cancelled during shutdown")

        # Phase 2: Close push subscriptions
        await ws_manager.graceful_shutdown(timeout=settings.shutdown_connection_drain_timeout)

        # Phase 3: Stop the cross-process relay
        if app.state.event_bus is not None:
            await app.state.event_bus.stop()

        # Phase 4: Release the HTTP client, then the database pool
        await openai_client.close()
        await graceful_pool_close(pool, timeout=settings.shutdown_timeout)


app = FastAPI(
    title="Dorandoran Chat Pipeline",
    description="Real-time multi-agent AI response pipeline for the Dorandoran Korean chat tutor.",
    version="1.0.0",
    lifespan=lifespan,
)

# Register global exception handlers for consistent error responses
register_exception_handlers(app)

# Request context middleware (adds request ID tracking)
app.add_middleware(RequestContextMiddleware)

app.include_router(health.router, prefix="/api", tags=["Health"])
app.include_router(chat.router, prefix="/ws", tags=["WebSocket"])
app.mount("/metrics", make_asgi_app())


if __name__ == "__main__":
    import uvicorn

    run_settings = get_settings()
    uvicorn.run(
        "api.main:app",
        host=run_settings.api_host,
        port=run_settings.api_port,
        reload=run_settings.is_development,
        reload_dirs=["src"],
        log_config=None,
    )
