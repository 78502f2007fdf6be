"""Server-side markup for one embedded form.

The renderer only emits a placeholder: the vendor library fills the form
element in the browser once the loader requests the form definition. Colours
are exposed as CSS custom properties on the wrapper so themes can restyle the
form without touching the vendor markup.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, Mapping
from urllib.parse import urlparse
from uuid import uuid4

from jinja2 import Environment, FileSystemLoader, select_autoescape
from markupsafe import Markup

from formblock.core.config import PaletteColor, get_templates_config
from formblock.schemas.blocks import BlockAttributes
from formblock.services.form_settings import FormSettings
from formblock.services.sanitization import sanitize_css, sanitize_rich_text, sanitize_text_field

DEFAULT_ACCENT_COLOR = "#007cba"
HEX_COLOR_PATTERN = re.compile(r"^#([0-9a-f]{3}){1,2}$", re.IGNORECASE)
INSTANCE_ID_PREFIX = "form-block-"
MISSING_FORM_ID_NOTICE = "Please specify a Form ID."
_ALIGNMENTS = {"left", "center", "right", "wide", "full"}

# (attribute, CSS custom property, default)
COLOR_PROPERTIES: tuple[tuple[str, str, str | None], ...] = (
    ("accent_color", "--form-block-accent-color", DEFAULT_ACCENT_COLOR),
    ("background_color", "--form-block-background-color", None),
    ("text_color", "--form-block-text-color", None),
    ("heading_color", "--form-block-heading-color", None),
)


@dataclass(frozen=True, slots=True)
class RenderedBlock:
    html: str
    instance_id: str | None = None
    form_id: str | None = None


@lru_cache
def template_environment() -> Environment:
    templates_config = get_templates_config()
    return Environment(
        loader=FileSystemLoader(str(templates_config.template_path)),
        autoescape=select_autoescape(["html"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )


def generate_instance_id() -> str:
    return f"{INSTANCE_ID_PREFIX}{uuid4().hex[:16]}"


def _sanitize_style_value(value: str) -> str:
    cleaned = re.sub(r"/\*.*?\*/", "", value, flags=re.DOTALL)
    cleaned = re.sub(r"[^a-z0-9,%#\.\s\-()]", "", cleaned, flags=re.IGNORECASE)
    return cleaned.strip()


def _palette_lookup(palette: Iterable[PaletteColor | Mapping[str, str]]) -> dict[str, str]:
    lookup: dict[str, str] = {}
    for entry in palette:
        if isinstance(entry, PaletteColor):
            slug, color = entry.slug, entry.color
        else:
            slug, color = entry.get("slug"), entry.get("color")
        if slug and color and slug not in lookup:
            lookup[str(slug)] = str(color)
    return lookup


def resolve_color(
    token: str | None,
    palette: Iterable[PaletteColor | Mapping[str, str]],
    default: str | None,
) -> str | None:
    """Resolve a literal hex colour or a theme palette slug.

    Unknown slugs fall back to ``default``.
    """

    if not token:
        return default
    candidate = token.strip()
    if HEX_COLOR_PATTERN.match(candidate):
        return candidate
    color = _palette_lookup(palette).get(candidate)
    if color:
        return _sanitize_style_value(color) or default
    return default


def resolve_redirect_url(raw: str | None, site_url: str) -> str:
    """Return an absolute redirect target or ``""`` when none is usable.

    Site-relative paths are joined with the site URL; only absolute HTTP(S)
    URLs are otherwise accepted.
    """

    value = sanitize_text_field(raw)
    if not value:
        return ""
    if value.startswith("/"):
        base = (site_url or "").rstrip("/")
        return f"{base}{value}"
    parsed = urlparse(value)
    if parsed.scheme.lower() in {"http", "https"} and parsed.netloc:
        return value
    return ""


def scope_custom_css(css: str, instance_id: str) -> str:
    """Replace the ``:scope`` selector with the instance anchor."""

    return css.replace(":scope", f"#{instance_id}")


def build_wrapper_style(attrs: BlockAttributes, palette: Iterable[PaletteColor | Mapping[str, str]]) -> str:
    entries = list(palette)
    declarations: list[str] = []
    for attribute, custom_property, default in COLOR_PROPERTIES:
        color = resolve_color(getattr(attrs, attribute), entries, default)
        if color:
            declarations.append(f"{custom_property}: {color};")
    align = (attrs.align or "").strip().lower()
    if align in {"left", "center", "right"}:
        declarations.append(f"text-align: {align};")
    return " ".join(declarations)


def render_block(
    attrs: BlockAttributes,
    settings: FormSettings,
    *,
    site_url: str = "",
    palette: Iterable[PaletteColor | Mapping[str, str]] = (),
    instance_id: str | None = None,
) -> RenderedBlock:
    """Render the markup for one form block.

    A missing form id renders an inline notice instead of the form.
    """

    form_id = sanitize_text_field(attrs.form_id)
    if not form_id:
        notice = template_environment().get_template("blocks/notice.html").render(message=MISSING_FORM_ID_NOTICE)
        return RenderedBlock(html=notice)

    instance_id = instance_id or generate_instance_id()
    redirect_url = resolve_redirect_url(attrs.redirect_url, site_url)
    success = sanitize_rich_text(attrs.success_message)
    error = sanitize_rich_text(attrs.error_message)
    custom_css = scope_custom_css(sanitize_css(attrs.custom_css), instance_id)
    global_css = sanitize_css(settings.custom_css)
    align = (attrs.align or "").strip().lower()

    html = template_environment().get_template("blocks/form_block.html").render(
        instance_id=instance_id,
        form_id=form_id,
        wrapper_style=build_wrapper_style(attrs, palette),
        align=align if align in _ALIGNMENTS else "",
        confirmation_type="redirect" if redirect_url else "message",
        redirect_url=redirect_url,
        disable_default_styles=attrs.disable_default_styles,
        success_message=Markup(success.html),
        error_message=Markup(error.html),
        custom_css=Markup(custom_css),
        global_css=Markup(global_css),
    )
    return RenderedBlock(html=html, instance_id=instance_id, form_id=form_id)
