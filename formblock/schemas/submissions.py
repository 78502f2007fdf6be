from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class SubmissionEnvelope(BaseModel):
    """Body returned by the public submission endpoint."""

    success: bool
    message: str
    details: Optional[str] = None


class NonceResponse(BaseModel):
    nonce: str
    submit_url: str
