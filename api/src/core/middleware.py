"""Request middleware for context management and logging."""

import time
from collections.abc import Awaitable, Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from src.core.context import (
    clear_context,
    set_correlation_id,
    set_request_id,
    set_trace_id,
)
from src.core.hashing import hash_identifier


logger = structlog.get_logger(__name__)


def get_client_ip(request: Request) -> str | None:
    """Get the client IP address, honouring reverse proxy headers."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        # First IP in the chain is the original client
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip

    if request.client:
        return request.client.host

    return None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Sets up the logging context for each request.

    Generates or propagates the request ID, extracts trace and correlation
    IDs, logs request start/finish with timing and clears the context when
    the request completes. Client IPs are logged only as salted hashes.
    """

    REQUEST_ID_HEADER = "X-Request-ID"
    TRACE_ID_HEADER = "X-Trace-ID"
    CORRELATION_ID_HEADER = "X-Correlation-ID"
    TRACEPARENT_HEADER = "traceparent"

    def __init__(
        self,
        app: ASGIApp,
        hash_salt: str,
        log_requests: bool = True,
        exclude_paths: list[str] | None = None,
    ) -> None:
        super().__init__(app)
        self.hash_salt = hash_salt
        self.log_requests = log_requests
        self.exclude_paths = exclude_paths or ["/health"]

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """Process the request and set up context."""
        start_time = time.perf_counter()

        request_id = set_request_id(request.headers.get(self.REQUEST_ID_HEADER))
        trace_id = request.headers.get(self.TRACE_ID_HEADER) or self._extract_traceparent(
            request.headers.get(self.TRACEPARENT_HEADER)
        )
        if trace_id:
            set_trace_id(trace_id)
        correlation_id = request.headers.get(self.CORRELATION_ID_HEADER)
        if correlation_id:
            set_correlation_id(correlation_id)

        request.state.request_id = request_id

        should_log = self.log_requests and not any(
            request.url.path.startswith(excluded) for excluded in self.exclude_paths
        )
        if should_log:
            logger.info(
                "request_started",
                method=request.method,
                path=request.url.path,
                query=str(request.query_params) if request.query_params else None,
                client_ip_hash=hash_identifier(get_client_ip(request), self.hash_salt),
            )

        try:
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start_time) * 1000

            if should_log:
                log_method = (
                    logger.warning if response.status_code >= 400 else logger.info
                )
                log_method(
                    "request_completed",
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_ms=round(duration_ms, 2),
                )

            response.headers[self.REQUEST_ID_HEADER] = request_id
            return response

        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.exception(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round(duration_ms, 2),
            )
            raise

        finally:
            clear_context()

    def _extract_traceparent(self, traceparent: str | None) -> str | None:
        """Extract the trace ID from a W3C traceparent header.

        Format: {version}-{trace-id}-{parent-id}-{trace-flags}
        """
        if not traceparent:
            return None
        parts = traceparent.split("-")
        if len(parts) >= 2:
            return parts[1]
        return None
