"""
Health check endpoint.
"""

import time
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from deeptutor.api.dependencies import get_transport
from deeptutor.gateway.transports import DirectTransport

router = APIRouter(tags=["health"])

# Track startup time for uptime
_start_time: Optional[float] = None


def set_start_time(t: float):
    """Set application start time."""
    global _start_time
    _start_time = t


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    provider: str
    backend_configured: bool
    uptime_seconds: float


@router.get("/health", response_model=HealthResponse)
async def health_check(transport: DirectTransport = Depends(get_transport)):
    """
    Service health check.
    Reports whether a backend credential is configured; without one every
    generation request fails.
    """
    uptime_seconds = 0.0
    if _start_time:
        uptime_seconds = round(time.time() - _start_time, 2)

    return HealthResponse(
        status="healthy" if transport.is_configured else "degraded",
        provider=transport.provider.value,
        backend_configured=transport.is_configured,
        uptime_seconds=uptime_seconds,
    )
