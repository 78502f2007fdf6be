from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse

from formblock.api.dependencies.auth import require_admin
from formblock.api.dependencies.database import require_database
from formblock.api.routes.submissions import SUBMIT_PATH
from formblock.core.config import get_settings
from formblock.core.logging import log_info
from formblock.schemas.blocks import BlockAttributes, PageRenderRequest
from formblock.security.csrf import form_token_manager, site_origin
from formblock.security.security_headers import mark_embeds_form
from formblock.security.session import session_manager
from formblock.services.block_renderer import render_block
from formblock.services.form_settings import FormSettings, FormSettingsStore
from formblock.services.page_assets import build_footer_assets, contains_form_block, render_blocks, render_page

router = APIRouter(tags=["Pages"])


def _page_response(
    request: Request,
    fragments: list[str],
    form_settings: FormSettings,
    *,
    title: str,
    embeds_form: bool,
) -> HTMLResponse:
    session = session_manager.ensure_session(request)
    footer = ""
    if embeds_form:
        mark_embeds_form(request)
        nonce = form_token_manager.issue(session.session_id, site_origin())
        footer = build_footer_assets(form_settings, nonce, SUBMIT_PATH)
    response = HTMLResponse(
        render_page(fragments, footer, title=title),
        headers={"Cache-Control": "no-store"},
    )
    session_manager.apply_session_cookie(response, session)
    return response


@router.get("/embed/{form_id}", response_class=HTMLResponse)
async def embed_form(
    request: Request,
    form_id: str,
    redirect_url: Optional[str] = Query(default=None, alias="redirectUrl", max_length=2048),
    _: None = Depends(require_database),
) -> HTMLResponse:
    settings = get_settings()
    form_settings = await FormSettingsStore().load()
    attrs = BlockAttributes(form_id=form_id, redirect_url=redirect_url or "")
    rendered = render_block(
        attrs,
        form_settings,
        site_url=settings.site_url,
        palette=settings.color_palette(),
    )
    return _page_response(
        request,
        [rendered.html],
        form_settings,
        title="Form",
        embeds_form=rendered.form_id is not None,
    )


@router.post("/api/pages/render", response_class=HTMLResponse)
async def render_page_preview(
    request: Request,
    payload: PageRenderRequest,
    _: None = Depends(require_database),
    __: None = Depends(require_admin),
) -> HTMLResponse:
    settings = get_settings()
    form_settings = await FormSettingsStore().load()
    embeds_form = contains_form_block(payload.blocks)
    rendered = render_blocks(
        payload.blocks,
        form_settings,
        site_url=settings.site_url,
        palette=settings.color_palette(),
    )
    log_info("Rendered page preview", blocks=len(rendered), embeds_form=embeds_form)
    return _page_response(
        request,
        [block.html for block in rendered],
        form_settings,
        title=payload.title or "Preview",
        embeds_form=embeds_form,
    )
