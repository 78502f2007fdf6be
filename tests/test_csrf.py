from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

from formblock.core.config import get_settings
from formblock.security.csrf import (
    CSRFMiddleware,
    FormTokenManager,
    form_token_manager,
    normalise_origin,
    request_origin,
    site_origin,
)
from formblock.security.session import session_manager

ORIGIN = "https://www.example.com"


def test_token_round_trip_is_bound_to_session_and_origin():
    manager = FormTokenManager(secret_key="secret", max_age=60)
    token = manager.issue("session-1", ORIGIN)

    assert manager.verify(token, "session-1", ORIGIN) is True
    assert manager.verify(token, "session-2", ORIGIN) is False
    assert manager.verify(token, "session-1", "https://attacker.example") is False
    assert manager.verify("garbage", "session-1", ORIGIN) is False
    assert manager.verify(None, "session-1", ORIGIN) is False
    assert manager.verify(token, None, ORIGIN) is False


def test_token_signed_with_other_secret_is_rejected():
    token = FormTokenManager(secret_key="one", max_age=60).issue("s", ORIGIN)

    assert FormTokenManager(secret_key="two", max_age=60).verify(token, "s", ORIGIN) is False


def test_expired_token_is_rejected():
    manager = FormTokenManager(secret_key="secret", max_age=-1)
    token = manager.issue("s", ORIGIN)

    assert manager.verify(token, "s", ORIGIN) is False


def test_normalise_origin():
    assert normalise_origin("HTTPS://WWW.Example.com/path?q=1") == "https://www.example.com"
    assert normalise_origin("not a url") is None
    assert normalise_origin(None) is None


def test_site_origin_ignores_request_headers():
    assert site_origin() == ORIGIN


def test_session_cookie_lasts_as_long_as_token():
    client = TestClient(_build_app())

    response = client.get("/token")

    cookie = response.headers["set-cookie"]
    assert f"Max-Age={get_settings().csrf_token_ttl}" in cookie


def _build_app():
    app = FastAPI()
    app.add_middleware(CSRFMiddleware, exempt_paths=("/exempt",))

    @app.get("/token")
    async def token(request: Request):
        session = session_manager.ensure_session(request)
        response = JSONResponse({"token": form_token_manager.issue(session.session_id, request_origin(request))})
        session_manager.apply_session_cookie(response, session)
        return response

    @app.post("/protected")
    async def protected():
        return {"ok": True}

    @app.post("/exempt")
    async def exempt():
        return {"ok": True}

    return app


def test_unsafe_request_without_session_is_rejected():
    with TestClient(_build_app()) as client:
        response = client.post("/protected")

    assert response.status_code == 403
    assert response.json() == {"detail": "CSRF validation failed"}


def test_exempt_path_and_admin_key_bypass_check():
    with TestClient(_build_app()) as client:
        assert client.post("/exempt").status_code == 200
        assert client.post("/protected", headers={"X-Admin-Key": "anything"}).status_code == 200


def test_valid_token_in_header_or_form_field_is_accepted():
    with TestClient(_build_app()) as client:
        token = client.get("/token").json()["token"]

        missing = client.post("/protected")
        by_header = client.post("/protected", headers={"X-CSRF-Token": token})
        by_field = client.post("/protected", data={"_csrf": token})
        mismatched = client.post("/protected", headers={"X-CSRF-Token": token, "Origin": "https://attacker.example"})

    assert missing.status_code == 403
    assert missing.json() == {"detail": "CSRF token missing"}
    assert by_header.status_code == 200
    assert by_field.status_code == 200
    assert mismatched.status_code == 403
    assert mismatched.json() == {"detail": "CSRF token mismatch"}
