"""
Pydantic schemas for the Badge Printer API (v1).

These models validate request bodies and query strings before they reach the
print queue. Both snake_case and the camelCase names used by existing kiosk
clients (templateId, badgeName) are accepted.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from badge_printer.core.models import (
    MAX_BADGE_NAME_LEN,
    MAX_TEMPLATE_ID_LEN,
    MAX_UID_LEN,
    UID_RE,
    has_control_chars,
)


class BadgeSubmitRequest(BaseModel):
    """A request to personalize and print one badge."""

    model_config = ConfigDict(populate_by_name=True)

    template_id: str = Field(
        validation_alias=AliasChoices("template_id", "templateId"),
        description="Identifier of the badge template to render",
        examples=["default"],
    )
    uid: str = Field(
        description="Caller-supplied identifier, unique among queued and printing jobs",
        examples=["ATT-0042"],
    )
    badge_name: str = Field(
        validation_alias=AliasChoices("badge_name", "badgeName"),
        description="Name printed on the badge",
        examples=["Ada Lovelace"],
    )
    preset: Optional[str] = Field(
        default=None,
        description="Printer preset; defaults to the template's preset, then the configured default",
        examples=["default", "fast"],
    )

    @field_validator("template_id")
    @classmethod
    def _template_id(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("templateId is required")
        if len(v) > MAX_TEMPLATE_ID_LEN:
            raise ValueError(f"templateId must be {MAX_TEMPLATE_ID_LEN} characters or less")
        return v

    @field_validator("uid")
    @classmethod
    def _uid(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("uid is required")
        if len(v) > MAX_UID_LEN:
            raise ValueError(f"uid must be {MAX_UID_LEN} characters or less")
        if not UID_RE.match(v):
            raise ValueError("uid can only contain letters, numbers, hyphens, and underscores")
        return v

    @field_validator("badge_name")
    @classmethod
    def _badge_name(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("badgeName is required")
        if len(v) > MAX_BADGE_NAME_LEN:
            raise ValueError(f"badgeName must be {MAX_BADGE_NAME_LEN} characters or less")
        if has_control_chars(v):
            raise ValueError("badgeName cannot contain control characters")
        return v

    @field_validator("preset")
    @classmethod
    def _preset(cls, v: Optional[str]) -> Optional[str]:
        return (v or "").strip() or None


class RetryRequest(BaseModel):
    override: bool = Field(default=False, description="Bypass the retry cap")


class InterventionRequest(BaseModel):
    """Operator override for a stuck or misbehaving job."""

    action: Literal["reset", "complete", "fail"]
    reason: Optional[str] = Field(default=None, max_length=500)

    @field_validator("reason")
    @classmethod
    def _trim(cls, v: Optional[str]) -> Optional[str]:
        return (v or "").strip() or None


class HistoryQuery(BaseModel):
    status: Optional[Literal["completed", "failed"]] = None
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


class Links(BaseModel):
    """Hypermedia links for API navigation."""

    self: str = Field(description="Link to this resource")
    queue: str = Field(description="Link to the queue status endpoint")


class BadgeAcceptedResponse(BaseModel):
    """Response when a badge job is accepted into the queue."""

    id: str = Field(description="Unique identifier for the submitted job")
    status: str = Field(description="Current job status", examples=["queued"])
    links: Links = Field(description="Related resource links")


__all__ = [
    "BadgeAcceptedResponse",
    "BadgeSubmitRequest",
    "HistoryQuery",
    "InterventionRequest",
    "Links",
    "RetryRequest",
]
