"""SQLiteStore — file-based workflow store for the webhook server and CLI.

Why SQLite:
- Batteries included: ships with Python, no extra dependencies.
- Atomic insert-if-absent via the primary key, which is exactly the
  create-or-reject contract the engine needs for duplicate deliveries.
- Conditional UPDATEs give forward-only status transitions and an atomic
  lease claim without a read-then-write race, even with several server
  processes on one file.

Schema:
  workflows     — one row per idempotency key, plus the lease of the
                  runner currently processing it.
  step_results  — one row per checkpointed step of a workflow.
  thread_history — rendered-history entries per pull request.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from typing import Any

from prvisual_store.base import BaseStore
from prvisual_store.models import WorkflowRecord, WorkflowStatus, can_transition, utc_now

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS workflows (
    id            TEXT PRIMARY KEY,   -- {account}:{repo}:{pr}:{sha}
    status        TEXT NOT NULL,      -- pending | processing | success | failed
    payload_json  TEXT NOT NULL DEFAULT '{}',
    artifact_url  TEXT,
    error         TEXT,
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL,
    owner         TEXT,               -- runner holding the claim
    lease_expires_at REAL             -- epoch seconds
);
CREATE INDEX IF NOT EXISTS idx_workflows_status ON workflows (status);

CREATE TABLE IF NOT EXISTS step_results (
    workflow_id  TEXT NOT NULL,
    step         TEXT NOT NULL,
    result_json  TEXT NOT NULL,
    completed_at TEXT NOT NULL,
    PRIMARY KEY (workflow_id, step)
);

CREATE TABLE IF NOT EXISTS thread_history (
    subject      TEXT PRIMARY KEY,    -- {account}:{repo}:{pr}
    entries_json TEXT NOT NULL,
    updated_at   TEXT NOT NULL
);
"""


def _predecessors(target: WorkflowStatus) -> list[str]:
    return [s.value for s in WorkflowStatus if can_transition(s, target)]


class SQLiteStore(BaseStore):
    """Stores workflow state in a local SQLite database file.

    The database file path defaults to `.prvisual.db` in the current working
    directory. Configure via .prvisual.yml: `store_path: /path/to/prvisual.db`.
    """

    def __init__(self, db_path: str = ".prvisual.db"):
        # Background workflows run in FastAPI's thread pool; one connection is
        # shared and every statement is serialised through the lock.
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock:
            self._conn.executescript(_SCHEMA)
            self._migrate()
            self._conn.commit()

    def _migrate(self) -> None:
        # Databases created before leases existed lack the claim columns.
        columns = {r["name"] for r in self._conn.execute("PRAGMA table_info(workflows)")}
        if "owner" not in columns:
            self._conn.execute("ALTER TABLE workflows ADD COLUMN owner TEXT")
        if "lease_expires_at" not in columns:
            self._conn.execute("ALTER TABLE workflows ADD COLUMN lease_expires_at REAL")

    def create_workflow(self, workflow_id: str, payload: dict) -> bool:
        now = utc_now()
        with self._lock:
            cursor = self._conn.execute(
                """
                INSERT OR IGNORE INTO workflows (id, status, payload_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (workflow_id, WorkflowStatus.PENDING.value, json.dumps(payload), now, now),
            )
            self._conn.commit()
        return cursor.rowcount == 1

    def get_workflow(self, workflow_id: str) -> WorkflowRecord | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM workflows WHERE id=?", (workflow_id,)).fetchone()
        return self._row_to_record(row) if row is not None else None

    def update_workflow(
        self,
        workflow_id: str,
        status: WorkflowStatus,
        artifact_url: str | None = None,
        error: str | None = None,
        owner: str | None = None,
    ) -> bool:
        allowed = _predecessors(status)
        if not allowed:
            return False
        placeholders = ",".join("?" for _ in allowed)
        with self._lock:
            cursor = self._conn.execute(
                f"""
                UPDATE workflows
                   SET status=?,
                       artifact_url=COALESCE(?, artifact_url),
                       error=COALESCE(?, error),
                       updated_at=?
                 WHERE id=? AND status IN ({placeholders})
                   AND (? IS NULL OR owner=?)
                """,
                (status.value, artifact_url, error, utc_now(), workflow_id, *allowed, owner, owner),
            )
            self._conn.commit()
        if cursor.rowcount != 1:
            logger.debug("Rejected transition of %s to %s", workflow_id, status.value)
            return False
        return True

    def claim_workflow(self, workflow_id: str, owner: str, lease_seconds: float) -> bool:
        now = time.time()
        with self._lock:
            cursor = self._conn.execute(
                """
                UPDATE workflows
                   SET status=?, owner=?, lease_expires_at=?, updated_at=?
                 WHERE id=?
                   AND (status=?
                        OR (status=? AND (lease_expires_at IS NULL OR lease_expires_at <= ?)))
                """,
                (
                    WorkflowStatus.PROCESSING.value,
                    owner,
                    now + lease_seconds,
                    utc_now(),
                    workflow_id,
                    WorkflowStatus.PENDING.value,
                    WorkflowStatus.PROCESSING.value,
                    now,
                ),
            )
            self._conn.commit()
        if cursor.rowcount != 1:
            logger.debug("Claim of %s by %s rejected", workflow_id, owner)
            return False
        return True

    def renew_claim(self, workflow_id: str, owner: str, lease_seconds: float) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE workflows SET lease_expires_at=? WHERE id=? AND owner=? AND status=?",
                (time.time() + lease_seconds, workflow_id, owner, WorkflowStatus.PROCESSING.value),
            )
            self._conn.commit()
        return cursor.rowcount == 1

    def list_workflows(self, status: WorkflowStatus | None = None) -> list[WorkflowRecord]:
        with self._lock:
            if status is not None:
                rows = self._conn.execute(
                    "SELECT * FROM workflows WHERE status=? ORDER BY created_at",
                    (status.value,),
                ).fetchall()
            else:
                rows = self._conn.execute("SELECT * FROM workflows ORDER BY created_at").fetchall()
        return [self._row_to_record(r) for r in rows]

    def save_step_result(self, workflow_id: str, step: str, result: Any) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO step_results (workflow_id, step, result_json, completed_at)
                VALUES (?, ?, ?, ?)
                """,
                (workflow_id, step, json.dumps(result), utc_now()),
            )
            self._conn.commit()

    def load_step_results(self, workflow_id: str) -> dict[str, Any]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT step, result_json FROM step_results WHERE workflow_id=?",
                (workflow_id,),
            ).fetchall()
        return {r["step"]: json.loads(r["result_json"]) for r in rows}

    def save_history(self, subject: str, entries: list[dict]) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO thread_history (subject, entries_json, updated_at) VALUES (?, ?, ?)",
                (subject, json.dumps(entries), utc_now()),
            )
            self._conn.commit()

    def load_history(self, subject: str) -> list[dict] | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT entries_json FROM thread_history WHERE subject=?", (subject,)
            ).fetchone()
        if row is None:
            return None
        return json.loads(row["entries_json"] or "[]")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> WorkflowRecord:
        return WorkflowRecord(
            id=row["id"],
            status=WorkflowStatus(row["status"]),
            payload=json.loads(row["payload_json"] or "{}"),
            artifact_url=row["artifact_url"],
            error=row["error"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            owner=row["owner"],
            lease_expires_at=row["lease_expires_at"],
        )
