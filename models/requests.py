import re
from typing import Optional

from pydantic import BaseModel, Field, field_validator

# Letters, digits, underscore, dot and dash; the forms X, Reddit and YouTube accept
_HANDLE_RE = re.compile(r"^[a-z0-9_.\-]{1,50}$")


def normalize_handle(raw: str) -> str:
    """Strip whitespace and a leading '@', lowercase, and validate."""
    handle = (raw or "").strip().lstrip("@").lower()
    if not _HANDLE_RE.match(handle):
        raise ValueError(f"Invalid handle: {raw!r}")
    return handle


class AuthenticityRequest(BaseModel):
    handle: str = Field(..., min_length=1, max_length=51)
    content: str = Field(
        ..., min_length=1, max_length=10000,
        description="Draft text to compare against the handle's voice fingerprint",
    )

    @field_validator("handle")
    @classmethod
    def _normalize(cls, v: str) -> str:
        return normalize_handle(v)


class RewriteRequest(AuthenticityRequest):
    context: Optional[str] = Field(
        None, max_length=1000,
        description="What the draft is for, e.g. \"launch announcement thread\"",
    )
    threshold: float = Field(70.0, ge=0, le=100)
    max_attempts: int = Field(2, ge=1, le=5)
