"""
Badge job model.

A Job always carries every field regardless of its status; the status enum
is the closed set of states a job can be in. Cancellation is a removal, not
a status.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

_DATETIME_FIELDS = ("created_at", "updated_at", "started_at", "processed_at", "last_intervention_at")

# Input limits shared by the queue and the API schemas
UID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
MAX_UID_LEN = 50
MAX_BADGE_NAME_LEN = 100
MAX_TEMPLATE_ID_LEN = 64


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class InterventionAction(str, Enum):
    RESET = "reset"
    COMPLETE = "complete"
    FAIL = "fail"


def utc_from_timestamp(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def new_job_id() -> str:
    return uuid.uuid4().hex


def has_control_chars(s: str) -> bool:
    return any((ord(c) < 32 and c not in "\n\r\t") or ord(c) == 127 for c in s)


@dataclass
class Job:
    """One badge personalization request."""

    # Identification and immutable payload
    id: str
    template_id: str
    uid: str
    badge_name: str
    preset: str = "default"
    seq: int = 0

    # State
    status: JobStatus = JobStatus.QUEUED
    retry_count: int = 0
    attempts: int = 0
    error_message: Optional[str] = None

    # Scheduling
    eligible_at: float = 0.0

    # Timestamps
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    # Manual intervention
    last_intervention_at: Optional[datetime] = None
    intervention_reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def copy(self) -> "Job":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["status"] = self.status.value
        for key in _DATETIME_FIELDS:
            if data.get(key):
                data[key] = data[key].isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        """Create from dictionary."""
        data = dict(data)
        data["status"] = JobStatus(data.get("status", JobStatus.QUEUED.value))
        for key in _DATETIME_FIELDS:
            if data.get(key) and isinstance(data[key], str):
                data[key] = datetime.fromisoformat(data[key])
        return cls(**data)


__all__ = [
    "MAX_BADGE_NAME_LEN",
    "MAX_TEMPLATE_ID_LEN",
    "MAX_UID_LEN",
    "UID_RE",
    "InterventionAction",
    "Job",
    "JobStatus",
    "has_control_chars",
    "new_job_id",
    "utc_from_timestamp",
]
