from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class FormSettingsResponse(BaseModel):
    instance_host: str
    tracking_id: str
    custom_css: str = ""
    base_url: str


class FormSettingsUpdate(BaseModel):
    instance_host: Optional[str] = Field(
        default=None,
        max_length=255,
        description="Vendor instance host, e.g. app-ab33.example-vendor.com",
    )
    tracking_id: Optional[str] = Field(
        default=None,
        max_length=32,
        description="Vendor tracking id in the form 123-ABC-456",
    )
    custom_css: Optional[str] = Field(default=None, max_length=65535)


class SettingsWarning(BaseModel):
    setting: str
    code: str
    message: str


class FormSettingsUpdateResponse(FormSettingsResponse):
    warnings: list[SettingsWarning] = Field(default_factory=list)


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
    status_code: Optional[int] = None
    has_cors_headers: Optional[bool] = None


class SettingsPurgeResponse(BaseModel):
    deleted: int
