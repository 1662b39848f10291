"""Request-context middleware shared by every service app.

Each request gets an ``X-Request-ID`` (propagated from the caller when
present), is timed, and is logged on start and completion. Log records
emitted while the request is in flight carry the same request id.

Usage:
    from libs.common.middleware import add_observability_middleware

    app = FastAPI()
    add_observability_middleware(app, service_name="store")
"""
import time
from typing import Callable

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from libs.common.logging import (
    clear_request_context,
    configure_logging,
    get_logger,
    set_request_context,
)

logger = get_logger(__name__)

QUIET_PATHS = frozenset({"/health"})


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind request context, time the request and log its outcome."""

    def __init__(self, app: ASGIApp, service_name: str = "api") -> None:
        super().__init__(app)
        self.service_name = service_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = set_request_context(
            request_id=request.headers.get("X-Request-ID"),
            path=request.url.path,
            method=request.method,
        )
        quiet = request.url.path in QUIET_PATHS
        start_time = time.perf_counter()

        if not quiet:
            logger.info(
                "Request started",
                extra={"extra_fields": {"service": self.service_name}},
            )

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.exception(
                "Request failed with unhandled exception",
                extra={
                    "extra_fields": {
                        "service": self.service_name,
                        "error": str(e),
                        "duration_ms": round(duration_ms, 2),
                    }
                },
            )
            clear_request_context()
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        if not quiet:
            log = logger.warning if response.status_code >= 400 else logger.info
            log(
                "Request completed %s %s -> %d",
                request.method,
                request.url.path,
                response.status_code,
                extra={
                    "extra_fields": {
                        "service": self.service_name,
                        "status_code": response.status_code,
                        "duration_ms": round(duration_ms, 2),
                    }
                },
            )
        clear_request_context()

        response.headers["X-Request-ID"] = request_id
        return response


def add_observability_middleware(app: FastAPI, service_name: str = "api") -> None:
    """Configure logging and install the request-context middleware on ``app``."""
    configure_logging()
    app.add_middleware(RequestContextMiddleware, service_name=service_name)
