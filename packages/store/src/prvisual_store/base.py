"""Abstract store interface.

The workflow engine depends on BaseStore, not on a concrete backend, so the
SQLite file store and the in-memory store are swappable without touching
engine code.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from prvisual_store.models import WorkflowRecord, WorkflowStatus


class BaseStore(ABC):
    """Durable state for workflow records, step checkpoints and thread history.

    Implementations must make ``create_workflow`` an atomic insert-if-absent
    and must reject status updates that move a record backwards.
    ``claim_workflow`` is a compare-and-set: at most one runner holds a live
    lease on a workflow at any time. Every method is called from worker threads,
    so backends must be thread-safe.
    """

    @abstractmethod
    def create_workflow(self, workflow_id: str, payload: dict) -> bool:
        """Insert a pending record. Returns False if the id already exists."""

    @abstractmethod
    def get_workflow(self, workflow_id: str) -> WorkflowRecord | None:
        """Return the record for ``workflow_id`` or None."""

    @abstractmethod
    def update_workflow(
        self,
        workflow_id: str,
        status: WorkflowStatus,
        artifact_url: str | None = None,
        error: str | None = None,
        owner: str | None = None,
    ) -> bool:
        """Move a record to ``status``.

        Returns False (and changes nothing) when the record is missing or the
        transition is not allowed, e.g. leaving a terminal state. When
        ``owner`` is given the record must still be claimed by that owner.
        """

    @abstractmethod
    def claim_workflow(self, workflow_id: str, owner: str, lease_seconds: float) -> bool:
        """Mark a record PROCESSING under ``owner`` for ``lease_seconds``.

        Succeeds for a PENDING record, or for a PROCESSING record whose lease
        has expired (or was never taken). Returns False when another runner
        holds a live lease, or when the record is missing or terminal.
        """

    @abstractmethod
    def renew_claim(self, workflow_id: str, owner: str, lease_seconds: float) -> bool:
        """Extend the lease held by ``owner``. Returns False if it was lost."""

    @abstractmethod
    def list_workflows(self, status: WorkflowStatus | None = None) -> list[WorkflowRecord]:
        """Return records ordered by creation time, optionally filtered by status."""

    @abstractmethod
    def save_step_result(self, workflow_id: str, step: str, result: Any) -> None:
        """Checkpoint the JSON-serialisable result of a completed step."""

    @abstractmethod
    def load_step_results(self, workflow_id: str) -> dict[str, Any]:
        """Return ``{step_name: result}`` for every checkpointed step."""

    @abstractmethod
    def save_history(self, subject: str, entries: list[dict]) -> None:
        """Replace the rendered-history entries stored for a subject."""

    @abstractmethod
    def load_history(self, subject: str) -> list[dict] | None:
        """Return stored history entries (newest first) or None if never saved."""

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Optional. Default is a no-op so callers can always call close() safely.
        """
