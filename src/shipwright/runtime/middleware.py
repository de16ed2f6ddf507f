"""
Request tracking middleware.

Counts in-flight requests so shutdown can report what it is draining, and
logs non-probe requests with timing information.
"""

import logging
import time
from typing import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from shipwright.config import LEGACY_LIVENESS_PATHS, LEGACY_READINESS_PATHS, LIVENESS_PATH, READINESS_PATH
from shipwright.runtime.state import HealthState

logger = logging.getLogger(__name__)

PROBE_PATHS = frozenset({LIVENESS_PATH, READINESS_PATH, *LEGACY_LIVENESS_PATHS, *LEGACY_READINESS_PATHS})


class InFlightMiddleware(BaseHTTPMiddleware):
    """
    Track in-flight requests on a HealthState.

    Probe requests are counted but not logged, so frequent polling does
    not flood the log.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        state: HealthState,
        logger_instance: logging.Logger | None = None,
    ) -> None:
        super().__init__(app)
        self._state = state
        self._logger = logger_instance or logger

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        path = request.url.path
        quiet = path in PROBE_PATHS
        start_time = time.time()

        self._state.request_started()
        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self._logger.error(
                "Request failed",
                extra={
                    "event": "request_failed",
                    "method": request.method,
                    "path": path,
                    "error": str(e),
                    "duration_ms": round(duration_ms, 2),
                },
                exc_info=True,
            )
            raise
        finally:
            self._state.request_finished()

        if not quiet:
            duration_ms = (time.time() - start_time) * 1000
            self._logger.info(
                "Request completed",
                extra={
                    "event": "request_completed",
                    "method": request.method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 2),
                },
            )
        return response
