from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_SUCCESS_MESSAGE = "Thank you for your submission!"
DEFAULT_ERROR_MESSAGE = "There was an error processing your submission. Please try again."


class BlockAttributes(BaseModel):
    """Per-embed configuration saved with a form block."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    form_id: str = Field(default="", alias="formId")
    redirect_url: str = Field(default="", alias="redirectUrl")
    success_message: str = Field(default=DEFAULT_SUCCESS_MESSAGE, alias="successMessage")
    error_message: str = Field(default=DEFAULT_ERROR_MESSAGE, alias="errorMessage")
    custom_css: str = Field(default="", alias="customCSS")
    disable_default_styles: bool = Field(default=True, alias="disableDefaultStyles")
    accent_color: Optional[str] = Field(default=None, alias="accentColor")
    background_color: Optional[str] = Field(default=None, alias="backgroundColor")
    text_color: Optional[str] = Field(default=None, alias="textColor")
    heading_color: Optional[str] = Field(default=None, alias="headingColor")
    align: Optional[str] = Field(default=None, alias="align")


class BlockNode(BaseModel):
    """A node of a parsed page block tree."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    block_name: Optional[str] = Field(default=None, alias="blockName")
    attrs: dict[str, Any] = Field(default_factory=dict)
    inner_blocks: list["BlockNode"] = Field(default_factory=list, alias="innerBlocks")
    inner_html: str = Field(default="", alias="innerHTML")


class PageRenderRequest(BaseModel):
    blocks: list[BlockNode] = Field(default_factory=list)
    title: Optional[str] = Field(default=None, max_length=255)


BlockNode.model_rebuild()
