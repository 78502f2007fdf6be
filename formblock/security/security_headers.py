"""Security headers middleware.

Baseline hardening headers are added to every response. Pages that embed a
form block additionally receive a Content-Security-Policy that only allows
scripts, frames and connections from the site itself, the configured vendor
instance host and the submission proxy endpoint.
"""
from __future__ import annotations

import re
from typing import Awaitable, Callable, Iterable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from formblock.core.logging import log_warning

_HOST_PATTERN = re.compile(r"^[a-zA-Z0-9.-]+(?::\d+)?$")

InstanceHostLoader = Callable[[], Awaitable[str]]


def mark_embeds_form(request: Request) -> None:
    """Flag the current request so its response receives the form CSP."""

    request.state.embeds_form = True


def _is_valid_host(host: str) -> bool:
    return bool(host) and bool(_HOST_PATTERN.match(host))


def _is_valid_source(source: str) -> bool:
    if not source:
        return False
    return not any(char in source for char in (" ", ";", "'", '"', "\n", "\r", "\t"))


def build_content_security_policy(instance_host: str, proxy_endpoint: str) -> str:
    """Return the CSP for a page that embeds a form.

    The instance host is allowed over both schemes. An invalid host is left
    out entirely rather than risking header injection.
    """

    vendor_sources: list[str] = []
    if _is_valid_host(instance_host):
        vendor_sources = [f"https://{instance_host}", f"http://{instance_host}"]
    script_sources = ["'self'", "'unsafe-inline'", *vendor_sources]
    frame_sources = ["'self'", *vendor_sources]
    connect_sources = ["'self'", *vendor_sources]
    if _is_valid_source(proxy_endpoint):
        connect_sources.append(proxy_endpoint)

    directives = [
        "script-src " + " ".join(script_sources),
        "frame-src " + " ".join(frame_sources),
        "connect-src " + " ".join(connect_sources),
    ]
    return "; ".join(directives)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to HTTP responses.

    Headers added:
    - Content-Security-Policy: only when the response embeds a form block
    - X-Frame-Options: prevent clickjacking of admin responses
    - X-Content-Type-Options: prevent MIME-sniffing
    - Referrer-Policy: keep the origin available to the submission endpoint
    - Permissions-Policy: disable sensitive browser features
    """

    def __init__(
        self,
        app,
        *,
        exempt_paths: Iterable[str] | None = None,
        get_instance_host: InstanceHostLoader | None = None,
        proxy_endpoint: str = "/api/forms/submit",
    ) -> None:
        super().__init__(app)
        self.exempt_paths = tuple(exempt_paths or ())
        self._get_instance_host = get_instance_host
        self._proxy_endpoint = proxy_endpoint

    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)

        path = request.url.path
        if any(path.startswith(prefix) for prefix in self.exempt_paths):
            return response

        if getattr(request.state, "embeds_form", False):
            instance_host = ""
            if self._get_instance_host:
                try:
                    instance_host = await self._get_instance_host()
                except Exception as exc:  # pragma: no cover - CSP falls back to self-only
                    log_warning("Unable to load instance host for CSP", path=path, error=str(exc))
            response.headers["Content-Security-Policy"] = build_content_security_policy(
                instance_host, self._proxy_endpoint
            )
        else:
            response.headers["X-Frame-Options"] = "DENY"

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        permissions = [
            "geolocation=()",
            "microphone=()",
            "camera=()",
            "payment=()",
            "usb=()",
        ]
        response.headers["Permissions-Policy"] = ", ".join(permissions)
        return response
