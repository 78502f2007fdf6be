from __future__ import annotations

from dataclasses import dataclass

import httpx

from formblock.core.logging import log_info, log_warning
from formblock.services.form_settings import FormSettings

FORMS_LIBRARY_PATH = "/js/forms2/js/forms2.min.js"
FORMS_LIBRARY_MARKER = "MktoForms2"


@dataclass(slots=True)
class ProbeResult:
    success: bool
    message: str
    status_code: int | None = None
    has_cors_headers: bool | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "success": self.success,
            "message": self.message,
            "status_code": self.status_code,
            "has_cors_headers": self.has_cors_headers,
        }


def forms_library_url(settings: FormSettings) -> str:
    return f"{settings.base_url}{FORMS_LIBRARY_PATH}"


def _status_guidance(status_code: int) -> str | None:
    if status_code == 403:
        return "Access forbidden. Your domain may not be authorized in the vendor's CORS settings."
    if status_code == 404:
        return "The forms library endpoint was not found. Double-check your instance host."
    if status_code >= 500:
        return "Vendor server error. The service might be temporarily unavailable."
    return None


async def probe_connection(
    settings: FormSettings,
    *,
    site_url: str,
    timeout: float = 15.0,
) -> ProbeResult:
    """Check that the configured instance serves the vendor forms library."""

    url = forms_library_url(settings)
    headers = {
        "Referer": site_url,
        "Origin": site_url,
        "User-Agent": f"FormBlock/1.0; {site_url}",
    }
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:
        error = str(exc) or exc.__class__.__name__
        log_warning("Form library probe failed", url=url, error=error)
        tips = [
            "Verify your instance host is correct.",
            "Check that this server can make outbound HTTPS requests.",
            "Ensure your domain is allowed in the vendor's CORS settings.",
        ]
        return ProbeResult(
            success=False,
            message=f"Connection failed: {error}. Troubleshooting tips: " + " ".join(tips),
        )

    status_code = response.status_code
    if status_code != 200:
        message = (
            f"Connection failed with HTTP code {status_code}. "
            "Please check your instance host."
        )
        guidance = _status_guidance(status_code)
        if guidance:
            message = f"{message} {guidance}"
        log_warning("Form library probe returned error status", url=url, status_code=status_code)
        return ProbeResult(success=False, message=message, status_code=status_code)

    if FORMS_LIBRARY_MARKER not in response.text:
        return ProbeResult(
            success=False,
            message=(
                "Connection succeeded but the response does not appear to be the forms "
                "library. Please check your instance host."
            ),
            status_code=status_code,
        )

    has_cors_headers = "access-control-allow-origin" in response.headers
    message = "Connection successful! Your instance is accessible."
    if not has_cors_headers:
        message = (
            f"{message} Note: the server did not return CORS headers. "
            "This might cause issues with form loading on the frontend."
        )
    log_info("Form library probe succeeded", url=url, has_cors_headers=has_cors_headers)
    return ProbeResult(
        success=True,
        message=message,
        status_code=status_code,
        has_cors_headers=has_cors_headers,
    )
