"""
Health check endpoints.

Canonical probes:
- GET /health  liveness, 200 whenever the process answers
- GET /ready   readiness, 200 once dependencies are initialized, 503 otherwise

Legacy aliases kept for platforms configured against older paths:
/health/live and /health/ready (and / when no UI is mounted).
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from shipwright import __version__
from shipwright.config import LIVENESS_PATH, READINESS_PATH

router = APIRouter()
logger = logging.getLogger(__name__)


class LivenessResponse(BaseModel):
    """Response model for the liveness probe."""

    status: str = Field(..., description="Always 'alive' when the process answers")
    version: str = Field(..., description="Shipwright runtime version")
    live_since: str | None = Field(None, description="When the server started answering")
    in_flight: int = Field(0, description="Requests currently being handled")
    shutting_down: bool = Field(False, description="Whether shutdown has begun")
    timestamp: str = Field(..., description="Check timestamp")

    model_config = {"extra": "forbid"}


class ReadinessResponse(BaseModel):
    """Response model for the readiness probe."""

    status: str = Field(..., description="'ready' or 'not_ready'")
    ready: bool
    ready_since: str | None = None
    reason: str | None = Field(None, description="Why the service is not ready")
    dependencies: dict[str, str] = Field(default_factory=dict, description="Dependency statuses")
    timestamp: str

    model_config = {"extra": "forbid"}


@router.get(LIVENESS_PATH, response_model=LivenessResponse)
@router.get("/health/live", response_model=LivenessResponse, include_in_schema=False)
async def liveness(request: Request) -> LivenessResponse:
    """
    Liveness check for container orchestration.

    Succeeds as soon as the server is bound, before dependencies finish
    initializing, and keeps succeeding while the process drains.
    """
    state = request.app.state.health
    return LivenessResponse(version=__version__, **state.liveness())


@router.get(READINESS_PATH, response_model=ReadinessResponse)
@router.get("/health/ready", response_model=ReadinessResponse, include_in_schema=False)
async def readiness(request: Request) -> JSONResponse:
    """
    Readiness check for routers and load balancers.

    Returns 200 only once every registered dependency has initialized,
    and 503 before that or after shutdown has begun.
    """
    state = request.app.state.health
    body = ReadinessResponse(**state.readiness())
    status_code = 200 if body.ready else 503
    return JSONResponse(status_code=status_code, content=body.model_dump())
