"""Utilities for sanitising and normalising user supplied text, HTML and CSS."""

from __future__ import annotations

from dataclasses import dataclass
import html
import re
from typing import Mapping

import bleach

_ALLOWED_TAGS: tuple[str, ...] = (
    "a",
    "b",
    "blockquote",
    "br",
    "code",
    "div",
    "em",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    "hr",
    "i",
    "li",
    "ol",
    "p",
    "span",
    "strong",
    "sub",
    "sup",
    "u",
    "ul",
)

_ALLOWED_ATTRIBUTES: Mapping[str, list[str]] = {
    "a": ["href", "title", "target", "rel"],
    "span": ["class"],
    "p": ["class"],
}

_ALLOWED_PROTOCOLS: tuple[str, ...] = ("http", "https", "mailto", "tel")

_SCRIPT_STYLE_BLOCK = re.compile(r"<(script|style)[^>]*?>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_WHITESPACE_RUN = re.compile(r"[\r\n\t ]+")
_CSS_EXPRESSION = re.compile(r"expression\s*\(.*\)", re.IGNORECASE)
_CSS_BEHAVIOR = re.compile(r"behavior\s*:.*?;", re.IGNORECASE)
_CSS_IMPORT = re.compile(r"@import\s+[^;]+;", re.IGNORECASE)


@dataclass(slots=True)
class SanitizedRichText:
    """Container for sanitised HTML and its derived text content."""

    html: str
    text_content: str
    has_rich_content: bool


def sanitize_rich_text(value: str | None) -> SanitizedRichText:
    """Clean potentially unsafe HTML and normalise newlines.

    Success and error messages keep a small subset of semantic formatting tags
    so editors can add emphasis, lists and links while scripts and unsafe
    attributes are stripped. Plain text newlines are converted to ``<br />``.
    """

    raw_text = _SCRIPT_STYLE_BLOCK.sub("", (value or "").strip())
    cleaned = bleach.clean(
        raw_text,
        tags=_ALLOWED_TAGS,
        attributes=_ALLOWED_ATTRIBUTES,
        protocols=_ALLOWED_PROTOCOLS,
        strip=True,
    )
    normalised = cleaned.replace("\r\n", "\n").replace("\r", "\n").replace("\u200b", "")
    if normalised:
        if "<" not in normalised and ">" not in normalised:
            html_value = normalised.replace("\n", "<br />")
        else:
            html_value = normalised
    else:
        html_value = ""
    text_content = bleach.clean(html_value, tags=[], strip=True).strip()
    if not text_content:
        html_value = ""
    return SanitizedRichText(html=html_value, text_content=text_content, has_rich_content=bool(text_content))


def strip_all_tags(value: str | None) -> str:
    """Remove every HTML tag, including the bodies of script and style blocks.

    The result is plain text with entities decoded; callers must escape it
    again before placing it in HTML attributes or text nodes.
    """

    if not value:
        return ""
    without_blocks = _SCRIPT_STYLE_BLOCK.sub("", str(value))
    stripped = bleach.clean(without_blocks, tags=[], strip=True, strip_comments=True)
    return html.unescape(stripped)


def sanitize_text_field(value: object) -> str:
    """Normalise a single-line text value such as a form id or submitted field.

    Tags are stripped, line breaks and tabs collapse to single spaces and the
    result is trimmed.
    """

    if value is None:
        return ""
    text = strip_all_tags(str(value))
    return _WHITESPACE_RUN.sub(" ", text).strip()


def sanitize_css(value: str | None) -> str:
    """Return custom CSS that is safe to place inside a ``<style>`` element.

    HTML is stripped first; legacy script vectors (``expression()``,
    ``behavior:``) and remote ``@import`` rules are removed. Any remaining
    ``<`` is dropped so the text can never close the surrounding element.
    """

    css = strip_all_tags(value)
    css = _CSS_EXPRESSION.sub("", css)
    css = _CSS_BEHAVIOR.sub("", css)
    css = _CSS_IMPORT.sub("", css)
    return css.replace("<", "").strip()


__all__ = [
    "SanitizedRichText",
    "sanitize_css",
    "sanitize_rich_text",
    "sanitize_text_field",
    "strip_all_tags",
]
