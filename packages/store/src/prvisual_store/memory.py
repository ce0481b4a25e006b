"""In-process store — the default for `prvisual run --dry-run` and tests.

Keeps the same atomicity guarantees as SQLiteStore within one process by
serialising every operation through a lock. Nothing survives a restart.
"""

from __future__ import annotations

import copy
import threading
import time
from dataclasses import replace
from typing import Any

from prvisual_store.base import BaseStore
from prvisual_store.models import WorkflowRecord, WorkflowStatus, can_transition, utc_now


class MemoryStore(BaseStore):
    def __init__(self):
        self._lock = threading.Lock()
        self._workflows: dict[str, WorkflowRecord] = {}
        self._steps: dict[str, dict[str, Any]] = {}
        self._history: dict[str, list[dict]] = {}

    def create_workflow(self, workflow_id: str, payload: dict) -> bool:
        with self._lock:
            if workflow_id in self._workflows:
                return False
            self._workflows[workflow_id] = WorkflowRecord(id=workflow_id, payload=copy.deepcopy(payload))
            return True

    def get_workflow(self, workflow_id: str) -> WorkflowRecord | None:
        with self._lock:
            record = self._workflows.get(workflow_id)
            return replace(record) if record is not None else None

    def update_workflow(
        self,
        workflow_id: str,
        status: WorkflowStatus,
        artifact_url: str | None = None,
        error: str | None = None,
        owner: str | None = None,
    ) -> bool:
        with self._lock:
            record = self._workflows.get(workflow_id)
            if record is None or not can_transition(record.status, status):
                return False
            if owner is not None and record.owner != owner:
                return False
            record.status = status
            if artifact_url is not None:
                record.artifact_url = artifact_url
            if error is not None:
                record.error = error
            record.updated_at = utc_now()
            return True

    def claim_workflow(self, workflow_id: str, owner: str, lease_seconds: float) -> bool:
        now = time.time()
        with self._lock:
            record = self._workflows.get(workflow_id)
            if record is None:
                return False
            expired = record.lease_expires_at is None or record.lease_expires_at <= now
            if record.status == WorkflowStatus.PENDING or (
                record.status == WorkflowStatus.PROCESSING and expired
            ):
                record.status = WorkflowStatus.PROCESSING
                record.owner = owner
                record.lease_expires_at = now + lease_seconds
                record.updated_at = utc_now()
                return True
            return False

    def renew_claim(self, workflow_id: str, owner: str, lease_seconds: float) -> bool:
        with self._lock:
            record = self._workflows.get(workflow_id)
            if record is None or record.owner != owner or record.status != WorkflowStatus.PROCESSING:
                return False
            record.lease_expires_at = time.time() + lease_seconds
            return True

    def list_workflows(self, status: WorkflowStatus | None = None) -> list[WorkflowRecord]:
        with self._lock:
            records = sorted(self._workflows.values(), key=lambda r: r.created_at)
            return [replace(r) for r in records if status is None or r.status == status]

    def save_step_result(self, workflow_id: str, step: str, result: Any) -> None:
        with self._lock:
            self._steps.setdefault(workflow_id, {})[step] = copy.deepcopy(result)

    def load_step_results(self, workflow_id: str) -> dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._steps.get(workflow_id, {}))

    def save_history(self, subject: str, entries: list[dict]) -> None:
        with self._lock:
            self._history[subject] = copy.deepcopy(entries)

    def load_history(self, subject: str) -> list[dict] | None:
        with self._lock:
            entries = self._history.get(subject)
            return copy.deepcopy(entries) if entries is not None else None
