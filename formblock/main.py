from __future__ import annotations

from fastapi import FastAPI

from formblock.api.routes import pages, settings as settings_api, submissions
from formblock.core.config import get_settings
from formblock.core.database import db
from formblock.core.logging import configure_logging, log_error, log_info
from formblock.security.csrf import CSRFMiddleware
from formblock.security.request_logger import RequestLoggingMiddleware
from formblock.security.security_headers import SecurityHeadersMiddleware
from formblock.services.form_settings import FormSettingsStore

configure_logging()
settings = get_settings()

tags_metadata = [
    {
        "name": "Forms",
        "description": "Public submission relay and anti-forgery token issuance.",
    },
    {
        "name": "Pages",
        "description": "Rendered form embeds and admin page previews.",
    },
    {
        "name": "Settings",
        "description": "Vendor connection settings, connectivity test and uninstall.",
    },
]

app = FastAPI(
    title=settings.app_name,
    description="Embeds vendor marketing forms and relays their submissions.",
    docs_url=None,
    openapi_url=None,
    openapi_tags=tags_metadata,
)


async def _current_instance_host() -> str:
    return await FormSettingsStore().get_instance_host()


app.add_middleware(
    SecurityHeadersMiddleware,
    exempt_paths=("/health",),
    get_instance_host=_current_instance_host,
    proxy_endpoint=submissions.SUBMIT_PATH,
)

app.add_middleware(
    RequestLoggingMiddleware,
    exempt_paths=("/health",),
)

app.add_middleware(CSRFMiddleware, exempt_paths=(submissions.SUBMIT_PATH,))

app.include_router(submissions.router)
app.include_router(pages.router)
app.include_router(settings_api.router)


@app.on_event("startup")
async def on_startup() -> None:
    try:
        await db.ensure_schema()
    except Exception as exc:
        log_error("Failed to initialise options database", error=str(exc))
        raise
    log_info("Application startup", environment=settings.environment)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await db.disconnect()
    log_info("Application shutdown")


@app.get("/health", include_in_schema=False)
async def health() -> dict[str, str]:
    return {"status": "ok"}
