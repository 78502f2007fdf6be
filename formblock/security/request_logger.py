from __future__ import annotations

import time
from typing import Iterable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from formblock.core.logging import log_debug, log_error, log_info


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    client = request.client
    return client.host if client else "unknown"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with its status code and duration."""

    def __init__(
        self,
        app,
        *,
        exempt_paths: Iterable[str] | None = None,
    ) -> None:
        super().__init__(app)
        self.exempt_paths = tuple(exempt_paths or ())

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if any(path.startswith(prefix) for prefix in self.exempt_paths):
            return await call_next(request)

        ip_address = client_ip(request)
        start_time = time.monotonic()
        log_debug("Incoming request", method=request.method, path=path, client_ip=ip_address)

        try:
            response = await call_next(request)
        except Exception as exc:
            log_error(
                "Request raised unhandled exception",
                method=request.method,
                path=path,
                duration_ms=round((time.monotonic() - start_time) * 1000, 2),
                client_ip=ip_address,
                error=str(exc),
            )
            raise

        log_function = log_error if response.status_code >= 500 else log_info
        message = (
            "Request completed with server error"
            if response.status_code >= 500
            else "Request completed"
        )
        log_function(
            message,
            method=request.method,
            path=path,
            status_code=response.status_code,
            duration_ms=round((time.monotonic() - start_time) * 1000, 2),
            client_ip=ip_address,
        )
        return response
