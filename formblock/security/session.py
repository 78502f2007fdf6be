from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import timedelta

from fastapi import Request, Response
from itsdangerous import BadSignature, Signer

from formblock.core.config import get_settings


@dataclass
class VisitorSession:
    session_id: str
    is_new: bool = False


class SessionManager:
    """Issue and read the signed cookie that anchors anti-forgery tokens.

    Visitors are anonymous; the cookie only carries a random identifier so a
    token minted for one browser cannot be replayed from another.
    """

    def __init__(self) -> None:
        self._settings = get_settings()
        self.session_cookie_name = self._settings.session_cookie_name
        self.session_ttl = timedelta(seconds=self._settings.csrf_token_ttl)
        self._signer = Signer(self._settings.secret_key, salt="form-block-session")

    def _is_secure(self) -> bool:
        return self._settings.is_production

    def read_session(self, request: Request) -> VisitorSession | None:
        cached: VisitorSession | None = getattr(request.state, "visitor_session", None)
        if cached:
            return cached
        cookie = request.cookies.get(self.session_cookie_name)
        if not cookie:
            return None
        try:
            session_id = self._signer.unsign(cookie).decode("utf-8")
        except BadSignature:
            return None
        if not session_id:
            return None
        session = VisitorSession(session_id=session_id)
        request.state.visitor_session = session
        return session

    def ensure_session(self, request: Request) -> VisitorSession:
        session = self.read_session(request)
        if session:
            return session
        session = VisitorSession(session_id=secrets.token_urlsafe(24), is_new=True)
        request.state.visitor_session = session
        return session

    def apply_session_cookie(self, response: Response, session: VisitorSession) -> None:
        if not session.is_new:
            return
        response.set_cookie(
            self.session_cookie_name,
            self._signer.sign(session.session_id).decode("utf-8"),
            httponly=True,
            secure=self._is_secure(),
            max_age=int(self.session_ttl.total_seconds()),
            samesite="lax",
        )


session_manager = SessionManager()
