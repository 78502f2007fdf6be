from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class PaletteColor(BaseModel):
    """A single named entry of the active theme colour palette."""

    slug: str
    color: str
    name: str | None = None


class Settings(BaseSettings):
    """Application configuration loaded from environment variables.

    Connection settings for the form vendor (instance host, tracking id) are
    not configured here; they are edited by administrators at runtime and
    persisted through :mod:`formblock.repositories.options`.
    """

    app_name: str = "Form Block"
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")
    secret_key: str = Field(validation_alias=AliasChoices("SESSION_SECRET", "SECRET_KEY"))
    site_url: str = Field(default="http://localhost:8000", validation_alias="SITE_URL")
    options_db_path: Path = Field(
        default=_PROJECT_ROOT / "formblock.db",
        validation_alias="OPTIONS_DB_PATH",
    )
    admin_api_key: str | None = Field(default=None, validation_alias="ADMIN_API_KEY")
    session_cookie_name: str = Field(
        default="formblock_session",
        validation_alias=AliasChoices("SESSION_COOKIE_NAME", "SESSION_COOKIE"),
    )
    submission_timeout: float = Field(default=15.0, validation_alias="SUBMISSION_TIMEOUT")
    probe_timeout: float = Field(default=15.0, validation_alias="PROBE_TIMEOUT")
    csrf_token_ttl: int = Field(default=86400, validation_alias="CSRF_TOKEN_TTL")
    enable_csrf: bool = Field(default=True, validation_alias="ENABLE_CSRF")
    theme_color_palette: str = Field(default="", validation_alias="THEME_COLOR_PALETTE")
    log_file_path: Path | None = Field(default=None, validation_alias="LOG_FILE_PATH")

    @field_validator("admin_api_key", "log_file_path", mode="before")
    @classmethod
    def _empty_string_to_none(cls, value: Any) -> Any:
        """Coerce blank environment variables to ``None`` so optional values stay optional."""

        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("site_url", mode="after")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def color_palette(self) -> list[PaletteColor]:
        """Return the theme palette declared in ``THEME_COLOR_PALETTE`` as JSON.

        Malformed entries are skipped so a typo in one colour does not disable
        palette lookups for the rest.
        """

        text = (self.theme_color_palette or "").strip()
        if not text:
            return []
        try:
            raw_entries = json.loads(text)
        except json.JSONDecodeError:
            return []
        if not isinstance(raw_entries, list):
            return []
        palette: list[PaletteColor] = []
        for entry in raw_entries:
            if not isinstance(entry, dict):
                continue
            try:
                palette.append(PaletteColor.model_validate(entry))
            except ValidationError:
                continue
        return palette

    model_config = SettingsConfigDict(
        env_file=(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


class TemplatesConfig(BaseModel):
    """Configuration for the Jinja2 templates used to render form blocks."""

    template_path: Path = Path(__file__).resolve().parent.parent / "templates"


@lru_cache
def get_settings() -> Settings:
    return Settings()


@lru_cache
def get_templates_config() -> TemplatesConfig:
    return TemplatesConfig()
