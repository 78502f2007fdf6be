"""Validated storage for the form vendor connection settings.

Two values identify the vendor account: the instance host serving the forms
library and lead-capture endpoint, and the tracking id that the endpoint
requires with every submission. Both have strict formats; anything else is
replaced by a fixed default and a validation error is recorded so the admin
surface can show a warning. The store only computes validity, it never
renders.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Mapping

from formblock.core.logging import log_warning
from formblock.repositories import options as options_repo
from formblock.services.sanitization import sanitize_css, sanitize_text_field

DEFAULT_INSTANCE_HOST = "app-ab33.example-vendor.com"
DEFAULT_TRACKING_ID = "041-FSQ-281"

INSTANCE_HOST_OPTION = "form_block_instance_host"
TRACKING_ID_OPTION = "form_block_tracking_id"
CUSTOM_CSS_OPTION = "form_block_custom_css"
ALL_OPTIONS: tuple[str, ...] = (INSTANCE_HOST_OPTION, TRACKING_ID_OPTION, CUSTOM_CSS_OPTION)

_INSTANCE_HOST_PATTERN = re.compile(r"^app-[a-z0-9]+\.example-vendor\.com$", re.IGNORECASE)
_TRACKING_ID_PATTERN = re.compile(r"^[0-9]{3}-[A-Z0-9]{3}-[0-9]{3}$", re.IGNORECASE)
_SCHEME_PREFIX = re.compile(r"^https?://", re.IGNORECASE)


class SettingsValidationError(ValueError):
    """Raised when a settings value does not match its required format."""

    def __init__(self, setting: str, code: str, message: str, default: str) -> None:
        super().__init__(message)
        self.setting = setting
        self.code = code
        self.message = message
        self.default = default

    def as_dict(self) -> dict[str, str]:
        return {"setting": self.setting, "code": self.code, "message": self.message}


@dataclass(frozen=True, slots=True)
class FormSettings:
    """Snapshot of the validated settings passed to renderers and the proxy."""

    instance_host: str = DEFAULT_INSTANCE_HOST
    tracking_id: str = DEFAULT_TRACKING_ID
    custom_css: str = ""

    @property
    def base_url(self) -> str:
        return f"https://{self.instance_host}"

    @classmethod
    def defaults(cls) -> "FormSettings":
        return cls()


@dataclass(slots=True)
class SettingResult:
    """Outcome of a single settings update."""

    value: str
    error: SettingsValidationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def strip_scheme(raw: str | None) -> str:
    """Remove a leading ``http://``/``https://`` and any trailing slashes."""

    value = sanitize_text_field(raw)
    value = _SCHEME_PREFIX.sub("", value)
    return value.rstrip("/")


def normalize_instance_host(raw: str | None) -> str:
    value = strip_scheme(raw)
    if not _INSTANCE_HOST_PATTERN.match(value):
        raise SettingsValidationError(
            "instance_host",
            "invalid_instance",
            "The instance host should be in the format app-XXXX.example-vendor.com",
            DEFAULT_INSTANCE_HOST,
        )
    return value


def normalize_tracking_id(raw: str | None) -> str:
    value = sanitize_text_field(raw)
    if not _TRACKING_ID_PATTERN.match(value):
        raise SettingsValidationError(
            "tracking_id",
            "invalid_tracking_id",
            "The tracking ID should be in the format XXX-XXX-XXX (e.g., 041-FSQ-281)",
            DEFAULT_TRACKING_ID,
        )
    return value


OptionReader = Callable[[str], Awaitable[str | None]]
OptionWriter = Callable[[str, str], Awaitable[None]]
OptionPurger = Callable[[Iterable[str]], Awaitable[int]]


@dataclass
class FormSettingsStore:
    """Read and write the persisted settings through the options repository.

    Stored values are re-validated on every read so a hand-edited database
    cannot leak an invalid host into rendered markup or outbound requests.
    """

    read_option: OptionReader = options_repo.get_option
    write_option: OptionWriter = options_repo.update_option
    purge_options: OptionPurger = options_repo.delete_options
    validation_errors: list[SettingsValidationError] = field(default_factory=list)

    async def get_instance_host(self) -> str:
        stored = await self.read_option(INSTANCE_HOST_OPTION)
        if stored is None:
            return DEFAULT_INSTANCE_HOST
        try:
            return normalize_instance_host(stored)
        except SettingsValidationError:
            return DEFAULT_INSTANCE_HOST

    async def get_tracking_id(self) -> str:
        stored = await self.read_option(TRACKING_ID_OPTION)
        if stored is None:
            return DEFAULT_TRACKING_ID
        try:
            return normalize_tracking_id(stored)
        except SettingsValidationError:
            return DEFAULT_TRACKING_ID

    async def get_custom_css(self) -> str:
        return sanitize_css(await self.read_option(CUSTOM_CSS_OPTION))

    async def load(self) -> FormSettings:
        return FormSettings(
            instance_host=await self.get_instance_host(),
            tracking_id=await self.get_tracking_id(),
            custom_css=await self.get_custom_css(),
        )

    async def set_instance_host(self, raw: str | None) -> SettingResult:
        return await self._store(INSTANCE_HOST_OPTION, raw, normalize_instance_host)

    async def set_tracking_id(self, raw: str | None) -> SettingResult:
        return await self._store(TRACKING_ID_OPTION, raw, normalize_tracking_id)

    async def set_custom_css(self, raw: str | None) -> SettingResult:
        value = sanitize_css(raw)
        await self.write_option(CUSTOM_CSS_OPTION, value)
        return SettingResult(value=value)

    async def update(
        self, values: Mapping[str, str | None]
    ) -> tuple[FormSettings, list[SettingsValidationError]]:
        """Apply the provided subset of ``instance_host``, ``tracking_id`` and ``custom_css``."""

        errors: list[SettingsValidationError] = []
        setters = {
            "instance_host": self.set_instance_host,
            "tracking_id": self.set_tracking_id,
            "custom_css": self.set_custom_css,
        }
        for key, setter in setters.items():
            if key not in values:
                continue
            result = await setter(values[key])
            if result.error is not None:
                errors.append(result.error)
        return await self.load(), errors

    async def purge(self) -> int:
        return await self.purge_options(ALL_OPTIONS)

    async def _store(
        self,
        option: str,
        raw: str | None,
        normalise: Callable[[str | None], str],
    ) -> SettingResult:
        try:
            value = normalise(raw)
        except SettingsValidationError as exc:
            self.validation_errors.append(exc)
            log_warning(
                "Rejected invalid form settings value",
                setting=exc.setting,
                code=exc.code,
                fallback=exc.default,
            )
            await self.write_option(option, exc.default)
            return SettingResult(value=exc.default, error=exc)
        await self.write_option(option, value)
        return SettingResult(value=value)
