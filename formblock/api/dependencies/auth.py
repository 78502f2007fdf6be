from __future__ import annotations

import hmac

from fastapi import HTTPException, Request, status

from formblock.core.config import get_settings
from formblock.core.logging import log_warning
from formblock.security.request_logger import client_ip

ADMIN_KEY_HEADER = "x-admin-key"


def is_admin_request(request: Request) -> bool:
    configured = get_settings().admin_api_key
    supplied = request.headers.get(ADMIN_KEY_HEADER)
    if not configured or not supplied:
        return False
    return hmac.compare_digest(supplied.encode("utf-8"), configured.encode("utf-8"))


async def require_admin(request: Request) -> None:
    if not get_settings().admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API is not configured",
        )
    if not is_admin_request(request):
        log_warning(
            "Admin request rejected",
            path=request.url.path,
            method=request.method,
            client_ip=client_ip(request),
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Admin key required")
    return None
