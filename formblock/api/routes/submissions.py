from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from formblock.api.dependencies.auth import is_admin_request
from formblock.api.dependencies.database import require_database
from formblock.core.config import get_settings
from formblock.schemas.submissions import NonceResponse, SubmissionEnvelope
from formblock.security.csrf import form_token_manager, header_token, request_origin, site_origin
from formblock.security.session import session_manager
from formblock.services.form_settings import FormSettingsStore
from formblock.services.submission_proxy import (
    SubmissionError,
    SubmissionRemoteError,
    submit_form,
)

SUBMIT_PATH = "/api/forms/submit"
SUCCESS_MESSAGE = "Form submitted successfully."

router = APIRouter(prefix="/api/forms", tags=["Forms"])


async def _read_fields(request: Request) -> dict[str, Any]:
    content_type = request.headers.get("content-type", "").lower()
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            return {}
        return dict(body) if isinstance(body, dict) else {}

    form = await request.form()
    fields: dict[str, Any] = {}
    for key in form.keys():
        values = [value for value in form.getlist(key) if isinstance(value, str)]
        if not values:
            continue
        fields[key] = values[0] if len(values) == 1 else values
    return fields


def _envelope(status_code: int, success: bool, message: str, details: str | None = None) -> JSONResponse:
    envelope = SubmissionEnvelope(success=success, message=message, details=details)
    return JSONResponse(status_code=status_code, content=envelope.model_dump(exclude_none=True))


@router.post("/submit", response_model=SubmissionEnvelope)
async def submit_form_endpoint(
    request: Request,
    _: None = Depends(require_database),
) -> JSONResponse:
    fields = await _read_fields(request)
    token = fields.get("nonce") or fields.get("_csrf") or header_token(request)
    if not isinstance(token, str):
        token = None
    form_id = fields.get("formId")
    if not isinstance(form_id, str):
        form_id = None

    session = session_manager.read_session(request)
    session_id = session.session_id if session else None
    origin = request_origin(request)

    app_settings = get_settings()
    form_settings = await FormSettingsStore().load()
    try:
        await submit_form(
            form_id,
            fields,
            token,
            settings=form_settings,
            verify_token=lambda candidate: form_token_manager.verify(candidate, session_id, origin),
            timeout=app_settings.submission_timeout,
            site_url=app_settings.site_url,
        )
    except SubmissionRemoteError as exc:
        status_code = exc.status_code if exc.status_code >= 400 else status.HTTP_502_BAD_GATEWAY
        details = exc.body if is_admin_request(request) else None
        return _envelope(status_code, False, exc.message, details)
    except SubmissionError as exc:
        return _envelope(exc.status_code, False, exc.message)

    return _envelope(status.HTTP_200_OK, True, SUCCESS_MESSAGE)


@router.get("/nonce", response_model=NonceResponse)
async def issue_nonce(request: Request) -> JSONResponse:
    session = session_manager.ensure_session(request)
    token = form_token_manager.issue(session.session_id, site_origin())
    response = JSONResponse(
        content=NonceResponse(nonce=token, submit_url=SUBMIT_PATH).model_dump(),
        headers={"Cache-Control": "no-store"},
    )
    session_manager.apply_session_cookie(response, session)
    return response
