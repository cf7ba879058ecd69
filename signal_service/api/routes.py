"""REST API routes."""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

logger = logging.getLogger(__name__)

router = APIRouter()


# Response models
class SupervisorStatus(BaseModel):
    """Processor fleet summary."""

    processors: int
    keys: list[str]
    refreshing: bool
    refresh_count: int
    last_refresh: Optional[str] = None


class SystemStatus(BaseModel):
    """System status response."""

    status: str
    version: str
    connection: str
    reconnect_attempts: int
    timeframes: list[int]
    supervisor: SupervisorStatus


@router.get("/status", response_model=SystemStatus)
async def get_status(request: Request):
    """Get system status."""
    connection = getattr(request.app.state, "connection_manager", None)
    supervisor = getattr(request.app.state, "supervisor", None)

    if connection is None or supervisor is None:
        raise HTTPException(status_code=503, detail="Service not started")

    return SystemStatus(
        status="running" if connection.is_connected() else "degraded",
        version="0.1.0",
        connection=connection.state.value,
        reconnect_attempts=connection.attempts,
        timeframes=supervisor.timeframes,
        supervisor=SupervisorStatus(**supervisor.status()),
    )
