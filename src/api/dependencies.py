from __future__ import annotations

from typing import Annotated

import asyncpg

from fastapi import Depends, Request

from api.websocket.manager import ChatroomConnectionManager
from api.websocket.task_manager import TaskSupervisor


async def get_db(request: Request) -> asyncpg.Pool:
    """Get database connection pool from application state."""
    return request.app.state.db_pool


def get_ws_manager(request: Request) -> ChatroomConnectionManager:
    return request.app.state.ws_manager


def get_supervisor(request: Request) -> TaskSupervisor:
    return request.app.state.supervisor


# Type aliases for cleaner route signatures
DB = Annotated[asyncpg.Pool, Depends(get_db)]
WSManager = Annotated[ChatroomConnectionManager, Depends(get_ws_manager)]
Supervisor = Annotated[TaskSupervisor, Depends(get_supervisor)]
