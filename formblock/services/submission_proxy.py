"""Server-side relay for browser form submissions.

Browsers cannot post directly to the vendor lead-capture endpoint because of
cross-origin restrictions, so the loader posts here and this module forwards a
single request on the visitor's behalf. There are no retries: the browser
owns any retry or backoff decision.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping

import httpx

from formblock.core.logging import log_error, log_info, log_warning
from formblock.services.form_settings import FormSettings
from formblock.services.sanitization import sanitize_text_field

DEFAULT_TIMEOUT = 15.0
LEAD_CAPTURE_PATH = "/index.php/leadCapture/save2"
RESERVED_FIELDS = frozenset({"action", "nonce", "formId", "_csrf"})

# Attribution parameters the vendor backend expects to be present on every
# lead-capture post, even when empty.
TRACKING_PARAMETERS: dict[str, str] = {
    "formVid": "",
    "lpId": "",
    "subId": "",
    "retURL": "",
    "lpurl": "",
    "kw": "",
    "q": "",
    "_mkt_trk": "",
    "followup": "false",
    "cr": "",
    "cr_param": "",
    "cr_value": "",
    "cr_op": "",
    "cr_date": "",
    "cr_unit": "",
    "cr_period": "",
    "cr_action": "",
    "cr_program": "",
    "cr_flow": "",
    "cr_camp": "",
    "cr_camp_id": "",
    "cr_camp_type": "",
    "cr_camp_medium": "",
    "cr_camp_source": "",
    "cr_camp_content": "",
    "cr_camp_term": "",
}


class SubmissionError(RuntimeError):
    """Base class for failures relaying a form submission."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class SubmissionAuthError(SubmissionError):
    """Raised when the anti-forgery token is missing or invalid."""

    status_code = 403


class SubmissionRequestError(SubmissionError):
    """Raised when the browser request is malformed (e.g. no form id)."""

    status_code = 400


class SubmissionNetworkError(SubmissionError):
    """Raised when the vendor endpoint could not be reached."""

    status_code = 502


class SubmissionRemoteError(SubmissionError):
    """Raised when the vendor endpoint answers with a non-2xx status."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"Remote endpoint returned HTTP {status_code}")
        self.status_code = status_code
        self.body = body


@dataclass(frozen=True, slots=True)
class SubmissionAck:
    message: str = "submitted"


def lead_capture_url(settings: FormSettings) -> str:
    return f"{settings.base_url}{LEAD_CAPTURE_PATH}"


def _coerce_field_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ";".join(sanitize_text_field(item) for item in value if item not in (None, ""))
    if isinstance(value, bool):
        return "true" if value else "false"
    return sanitize_text_field(value)


def build_payload(form_id: str, fields: Mapping[str, Any], settings: FormSettings) -> dict[str, str]:
    """Merge caller fields with the identifiers and attribution keys.

    Reserved request keys never reach the vendor. The form id, tracking id and
    attribution keys are applied last so callers cannot override them.
    """

    payload: dict[str, str] = {}
    for key, value in fields.items():
        name = str(key)
        if name in RESERVED_FIELDS:
            continue
        payload[name] = _coerce_field_value(value)
    payload.update(
        {
            "formid": form_id,
            "munchkinId": settings.tracking_id,
            **TRACKING_PARAMETERS,
        }
    )
    return payload


async def submit_form(
    form_id: str | None,
    fields: Mapping[str, Any],
    csrf_token: str | None,
    *,
    settings: FormSettings,
    verify_token: Callable[[str | None], bool],
    timeout: float = DEFAULT_TIMEOUT,
    site_url: str | None = None,
) -> SubmissionAck:
    """Relay one submission to the vendor lead-capture endpoint.

    Token and form id checks happen before any outbound call is made.
    """

    if not verify_token(csrf_token):
        log_warning("Form submission rejected - invalid nonce", form_id=sanitize_text_field(form_id))
        raise SubmissionAuthError("Invalid nonce.")

    clean_form_id = sanitize_text_field(form_id)
    if not clean_form_id:
        log_warning("Form submission rejected - missing form id")
        raise SubmissionRequestError("Missing Form ID.")

    url = lead_capture_url(settings)
    payload = build_payload(clean_form_id, fields, settings)
    user_agent = "FormBlock/1.0"
    if site_url:
        user_agent = f"{user_agent}; {site_url}"
    headers = {
        "Content-Type": "application/x-www-form-urlencoded",
        "User-Agent": user_agent,
    }

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(url, data=payload, headers=headers)
    except httpx.HTTPError as exc:
        log_error(
            "Form submission failed to reach remote endpoint",
            form_id=clean_form_id,
            url=url,
            error=str(exc) or exc.__class__.__name__,
        )
        raise SubmissionNetworkError(str(exc) or "Unable to reach the form endpoint.") from exc

    if not 200 <= response.status_code < 300:
        log_error(
            "Form submission rejected by remote endpoint",
            form_id=clean_form_id,
            status_code=response.status_code,
        )
        raise SubmissionRemoteError(response.status_code, response.text)

    log_info("Form submission relayed", form_id=clean_form_id, status_code=response.status_code)
    return SubmissionAck()
