"""Workflow persistence models.

Decoupled from prvisual_core so the store layer can be used independently
and prvisual_core has no knowledge of how records are persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.SUCCESS, WorkflowStatus.FAILED)


# Forward-only transitions. PROCESSING -> PROCESSING is how an expired lease
# is taken over by another runner.
_ALLOWED_TRANSITIONS: dict[WorkflowStatus, set[WorkflowStatus]] = {
    WorkflowStatus.PENDING: {WorkflowStatus.PROCESSING, WorkflowStatus.FAILED},
    WorkflowStatus.PROCESSING: {WorkflowStatus.PROCESSING, WorkflowStatus.SUCCESS, WorkflowStatus.FAILED},
    WorkflowStatus.SUCCESS: set(),
    WorkflowStatus.FAILED: set(),
}


def can_transition(current: WorkflowStatus, target: WorkflowStatus) -> bool:
    return target in _ALLOWED_TRANSITIONS[current]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class WorkflowRecord:
    """One workflow instance, keyed by its idempotency key.

    ``payload`` holds the serialised inbound event so an interrupted workflow
    can be resumed without the original webhook delivery.
    """

    id: str
    status: WorkflowStatus = WorkflowStatus.PENDING
    payload: dict = field(default_factory=dict)
    artifact_url: str | None = None
    error: str | None = None
    created_at: str = field(default_factory=utc_now)  # ISO-8601 UTC timestamp
    updated_at: str = field(default_factory=utc_now)
    owner: str | None = None  # runner currently holding the claim
    lease_expires_at: float | None = None  # epoch seconds
