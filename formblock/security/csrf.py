from __future__ import annotations

import secrets
from typing import Iterable
from urllib.parse import urlparse

from fastapi import Request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from formblock.core.config import get_settings
from formblock.core.logging import log_warning
from formblock.security.session import SessionManager, session_manager

SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}
TOKEN_FIELD_NAMES = ("nonce", "_csrf")
TOKEN_HEADER_NAMES = ("X-CSRF-Token", "X-CSRFToken", "CSRF-Token")


def normalise_origin(value: str | None) -> str | None:
    if not value:
        return None
    parsed = urlparse(value.strip())
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme.lower()}://{parsed.netloc.lower()}"


def site_origin() -> str | None:
    """Return the origin of the configured site URL, which page nonces are bound to."""

    return normalise_origin(get_settings().site_url)


def request_origin(request: Request) -> str | None:
    """Return the browser origin of ``request``.

    ``Origin`` is preferred; ``Referer`` is used when browsers omit it for
    same-origin form posts, and the configured site URL is the last resort.
    """

    origin = normalise_origin(request.headers.get("origin"))
    if origin:
        return origin
    origin = normalise_origin(request.headers.get("referer"))
    if origin:
        return origin
    return site_origin()


def header_token(request: Request) -> str | None:
    for name in TOKEN_HEADER_NAMES:
        value = request.headers.get(name)
        if value:
            return value
    return None


class FormTokenManager:
    """Mint and verify anti-forgery tokens bound to a visitor session and origin."""

    def __init__(self, *, secret_key: str | None = None, max_age: int | None = None) -> None:
        settings = get_settings()
        self._serializer = URLSafeTimedSerializer(
            secret_key or settings.secret_key,
            salt="form-block-submit",
        )
        self._max_age = max_age if max_age is not None else settings.csrf_token_ttl

    def issue(self, session_id: str, origin: str | None) -> str:
        return self._serializer.dumps({"sid": session_id, "origin": origin or ""})

    def verify(self, token: str | None, session_id: str | None, origin: str | None) -> bool:
        if not token or not session_id:
            return False
        try:
            payload = self._serializer.loads(token, max_age=self._max_age)
        except SignatureExpired:
            return False
        except BadSignature:
            return False
        if not isinstance(payload, dict):
            return False
        token_sid = str(payload.get("sid") or "")
        token_origin = str(payload.get("origin") or "")
        same_session = secrets.compare_digest(token_sid, session_id)
        same_origin = secrets.compare_digest(token_origin, origin or "")
        return same_session and same_origin


form_token_manager = FormTokenManager()


class CSRFMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        *,
        manager: SessionManager | None = None,
        tokens: FormTokenManager | None = None,
        exempt_paths: Iterable[str] | None = None,
    ) -> None:
        super().__init__(app)
        self._session_manager = manager or session_manager
        self._tokens = tokens or form_token_manager
        self._exempt_paths = tuple(exempt_paths or ())
        self._settings = get_settings()

    async def dispatch(self, request: Request, call_next):
        if not self._settings.enable_csrf:
            return await call_next(request)

        # Admin clients authenticate with an explicit key header that browsers
        # never attach on their own.
        if request.headers.get("x-admin-key"):
            return await call_next(request)

        if request.method.upper() in SAFE_METHODS:
            return await call_next(request)

        path = request.url.path
        if any(path.startswith(prefix) for prefix in self._exempt_paths):
            return await call_next(request)

        token = header_token(request)
        if not token:
            content_type = request.headers.get("content-type", "").lower()
            should_check_form = content_type.startswith(
                "application/x-www-form-urlencoded"
            ) or content_type.startswith("multipart/form-data")
            if should_check_form:
                # Populate the cached body so downstream handlers still receive the payload.
                await request.body()
                form = await request.form()
                for name in TOKEN_FIELD_NAMES:
                    value = form.get(name)
                    if isinstance(value, str) and value:
                        token = value
                        break

        session = self._session_manager.read_session(request)
        if not session:
            log_warning("CSRF validation failed - no session", path=path, method=request.method)
            return JSONResponse(status_code=403, content={"detail": "CSRF validation failed"})

        if not token:
            log_warning("CSRF validation failed - missing token", path=path, method=request.method)
            return JSONResponse(status_code=403, content={"detail": "CSRF token missing"})

        if not self._tokens.verify(token, session.session_id, request_origin(request)):
            log_warning("CSRF validation failed - token mismatch", path=path, method=request.method)
            return JSONResponse(status_code=403, content={"detail": "CSRF token mismatch"})

        return await call_next(request)
