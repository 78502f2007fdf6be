from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from formblock.api.dependencies.auth import require_admin
from formblock.api.dependencies.database import require_database
from formblock.core.config import get_settings
from formblock.core.logging import log_audit_event
from formblock.schemas.settings import (
    ConnectionTestResponse,
    FormSettingsResponse,
    FormSettingsUpdate,
    FormSettingsUpdateResponse,
    SettingsPurgeResponse,
    SettingsWarning,
)
from formblock.security.request_logger import client_ip
from formblock.services.connection_probe import probe_connection
from formblock.services.form_settings import FormSettings, FormSettingsStore

router = APIRouter(
    prefix="/api/settings",
    tags=["Settings"],
    dependencies=[Depends(require_database), Depends(require_admin)],
)


def _format_response(values: FormSettings) -> FormSettingsResponse:
    return FormSettingsResponse(
        instance_host=values.instance_host,
        tracking_id=values.tracking_id,
        custom_css=values.custom_css,
        base_url=values.base_url,
    )


@router.get("", response_model=FormSettingsResponse)
async def get_form_settings() -> FormSettingsResponse:
    return _format_response(await FormSettingsStore().load())


@router.put("", response_model=FormSettingsUpdateResponse)
async def update_form_settings(payload: FormSettingsUpdate, request: Request) -> FormSettingsUpdateResponse:
    store = FormSettingsStore()
    changes = payload.model_dump(exclude_unset=True)
    values, errors = await store.update(changes)
    ip_address = client_ip(request)
    for setting in sorted(changes):
        log_audit_event(
            "settings",
            "update",
            ip_address=ip_address,
            setting=setting,
            rejected=any(error.setting == setting for error in errors),
        )
    base = _format_response(values)
    return FormSettingsUpdateResponse(
        **base.model_dump(),
        warnings=[SettingsWarning(setting=e.setting, code=e.code, message=e.message) for e in errors],
    )


@router.post("/test-connection", response_model=ConnectionTestResponse)
async def test_connection() -> ConnectionTestResponse:
    settings = get_settings()
    values = await FormSettingsStore().load()
    result = await probe_connection(values, site_url=settings.site_url, timeout=settings.probe_timeout)
    return ConnectionTestResponse(**result.as_dict())


@router.delete("", response_model=SettingsPurgeResponse)
async def purge_form_settings(request: Request) -> SettingsPurgeResponse:
    deleted = await FormSettingsStore().purge()
    log_audit_event("settings", "purge", ip_address=client_ip(request), deleted=deleted)
    return SettingsPurgeResponse(deleted=deleted)
