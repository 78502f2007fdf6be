from __future__ import annotations

import json
from typing import Any, Iterable, Mapping, Sequence

from markupsafe import Markup, escape

from formblock.core.config import PaletteColor
from formblock.core.logging import log_debug
from formblock.schemas.blocks import BlockAttributes, BlockNode
from formblock.services.block_renderer import RenderedBlock, render_block, template_environment
from formblock.services.connection_probe import forms_library_url
from formblock.services.form_settings import FormSettings

FORM_BLOCK_NAME = "form-block/form"
CLIENT_CONFIG_GLOBAL = "formBlockConfig"

BlockTree = Iterable[BlockNode | Mapping[str, Any]]


def _as_node(block: BlockNode | Mapping[str, Any]) -> BlockNode:
    if isinstance(block, BlockNode):
        return block
    return BlockNode.model_validate(dict(block))


def iter_form_blocks(blocks: BlockTree) -> Iterable[BlockNode]:
    """Yield every form block of a parsed block tree, depth first."""

    for block in blocks or ():
        node = _as_node(block)
        if node.block_name == FORM_BLOCK_NAME:
            yield node
        if node.inner_blocks:
            yield from iter_form_blocks(node.inner_blocks)


def contains_form_block(blocks: BlockTree) -> bool:
    for _ in iter_form_blocks(blocks):
        return True
    return False


def render_blocks(
    blocks: BlockTree,
    settings: FormSettings,
    *,
    site_url: str = "",
    palette: Sequence[PaletteColor] = (),
) -> list[RenderedBlock]:
    rendered: list[RenderedBlock] = []
    for node in iter_form_blocks(blocks):
        attrs = BlockAttributes.model_validate(node.attrs)
        rendered.append(render_block(attrs, settings, site_url=site_url, palette=palette))
    log_debug("Rendered form blocks", count=len(rendered))
    return rendered


def client_config_payload(settings: FormSettings, nonce: str, submit_url: str) -> dict[str, str]:
    return {
        "url": settings.base_url,
        "trackingId": settings.tracking_id,
        "nonce": nonce,
        "submitUrl": submit_url,
    }


def _script_json(payload: Mapping[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":")).replace("</", "<\\/")


def build_footer_assets(settings: FormSettings, nonce: str, submit_url: str) -> Markup:
    """Return the script tags a page embedding a form must carry.

    The vendor library loads asynchronously; the configuration object is
    defined inline so the loader can read it once the library is ready.
    """

    library = escape(forms_library_url(settings))
    config = _script_json(client_config_payload(settings, nonce, submit_url))
    return Markup(
        f'<script async defer src="{library}"></script>\n'
        f"<script>window.{CLIENT_CONFIG_GLOBAL} = {config};</script>"
    )


def render_page(fragments: Sequence[str], footer_assets: Markup | str, *, title: str = "Form") -> str:
    """Wrap rendered block fragments in the standalone embed page."""

    return template_environment().get_template("embed.html").render(
        title=title,
        fragments=[Markup(fragment) for fragment in fragments],
        footer_assets=Markup(footer_assets),
    )
