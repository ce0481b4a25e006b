"""Tests for prvisual-store implementations."""

from __future__ import annotations

import sqlite3
import threading

import pytest

from prvisual_store.memory import MemoryStore
from prvisual_store.models import WorkflowStatus, can_transition
from prvisual_store.sqlite import SQLiteStore

KEY = "11:22:7:deadbeefcafe"
PAYLOAD = {"account_id": 11, "repository_id": 22, "number": 7, "head_sha": "deadbeefcafe"}


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        s = MemoryStore()
    else:
        s = SQLiteStore(db_path=str(tmp_path / "test.db"))
    yield s
    s.close()


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------


class TestTransitions:
    def test_terminal_states_are_final(self):
        for terminal in (WorkflowStatus.SUCCESS, WorkflowStatus.FAILED):
            for target in WorkflowStatus:
                assert not can_transition(terminal, target)

    def test_pending_cannot_jump_to_success(self):
        assert not can_transition(WorkflowStatus.PENDING, WorkflowStatus.SUCCESS)

    def test_is_terminal(self):
        assert WorkflowStatus.SUCCESS.is_terminal
        assert WorkflowStatus.FAILED.is_terminal
        assert not WorkflowStatus.PROCESSING.is_terminal


# ---------------------------------------------------------------------------
# Shared behaviour — run against every backend
# ---------------------------------------------------------------------------


class TestCreateWorkflow:
    def test_first_create_succeeds(self, store):
        assert store.create_workflow(KEY, PAYLOAD) is True
        record = store.get_workflow(KEY)
        assert record.status == WorkflowStatus.PENDING
        assert record.payload == PAYLOAD

    def test_duplicate_create_rejected(self, store):
        assert store.create_workflow(KEY, PAYLOAD) is True
        assert store.create_workflow(KEY, {"other": True}) is False
        assert len(store.list_workflows()) == 1
        assert store.get_workflow(KEY).payload == PAYLOAD

    def test_concurrent_creates_yield_one_record(self, store):
        results = []

        def worker():
            results.append(store.create_workflow(KEY, PAYLOAD))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert len(store.list_workflows()) == 1

    def test_get_missing_returns_none(self, store):
        assert store.get_workflow("nope") is None


class TestUpdateWorkflow:
    def test_forward_transitions(self, store):
        store.create_workflow(KEY, PAYLOAD)
        assert store.update_workflow(KEY, WorkflowStatus.PROCESSING)
        assert store.update_workflow(KEY, WorkflowStatus.SUCCESS, artifact_url="https://cdn/x.png")
        record = store.get_workflow(KEY)
        assert record.status == WorkflowStatus.SUCCESS
        assert record.artifact_url == "https://cdn/x.png"

    def test_no_back_transition_from_success(self, store):
        store.create_workflow(KEY, PAYLOAD)
        store.update_workflow(KEY, WorkflowStatus.PROCESSING)
        store.update_workflow(KEY, WorkflowStatus.SUCCESS)
        assert store.update_workflow(KEY, WorkflowStatus.PROCESSING) is False
        assert store.update_workflow(KEY, WorkflowStatus.FAILED, error="late") is False
        record = store.get_workflow(KEY)
        assert record.status == WorkflowStatus.SUCCESS
        assert record.error is None

    def test_failed_records_error(self, store):
        store.create_workflow(KEY, PAYLOAD)
        assert store.update_workflow(KEY, WorkflowStatus.FAILED, error="no_credits")
        assert store.get_workflow(KEY).error == "no_credits"

    def test_update_missing_record(self, store):
        assert store.update_workflow("missing", WorkflowStatus.PROCESSING) is False

    def test_list_filters_by_status(self, store):
        store.create_workflow("a", {})
        store.create_workflow("b", {})
        store.update_workflow("b", WorkflowStatus.FAILED, error="x")
        pending = store.list_workflows(WorkflowStatus.PENDING)
        assert [r.id for r in pending] == ["a"]


class TestClaimWorkflow:
    def test_pending_record_claimed_once(self, store):
        store.create_workflow(KEY, PAYLOAD)
        assert store.claim_workflow(KEY, "runner-a", 60) is True
        assert store.claim_workflow(KEY, "runner-b", 60) is False
        record = store.get_workflow(KEY)
        assert record.status == WorkflowStatus.PROCESSING
        assert record.owner == "runner-a"

    def test_concurrent_claims_yield_one_owner(self, store):
        store.create_workflow(KEY, PAYLOAD)
        results = []

        def worker(owner):
            results.append(store.claim_workflow(KEY, owner, 60))

        threads = [threading.Thread(target=worker, args=(f"runner-{i}",)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1

    def test_expired_lease_can_be_taken_over(self, store):
        store.create_workflow(KEY, PAYLOAD)
        assert store.claim_workflow(KEY, "crashed", -1)
        assert store.claim_workflow(KEY, "runner-b", 60) is True
        assert store.get_workflow(KEY).owner == "runner-b"

    def test_processing_without_lease_is_claimable(self, store):
        store.create_workflow(KEY, PAYLOAD)
        store.update_workflow(KEY, WorkflowStatus.PROCESSING)
        assert store.claim_workflow(KEY, "runner-a", 60) is True

    def test_terminal_and_missing_records_not_claimable(self, store):
        store.create_workflow(KEY, PAYLOAD)
        store.update_workflow(KEY, WorkflowStatus.FAILED, error="x")
        assert store.claim_workflow(KEY, "runner-a", 60) is False
        assert store.claim_workflow("missing", "runner-a", 60) is False

    def test_renew_requires_current_owner(self, store):
        store.create_workflow(KEY, PAYLOAD)
        store.claim_workflow(KEY, "crashed", -1)
        store.claim_workflow(KEY, "runner-b", 60)
        assert store.renew_claim(KEY, "crashed", 60) is False
        assert store.renew_claim(KEY, "runner-b", 60) is True

    def test_update_with_owner_rejects_stale_runner(self, store):
        store.create_workflow(KEY, PAYLOAD)
        store.claim_workflow(KEY, "stale", -1)
        store.claim_workflow(KEY, "current", 60)
        assert store.update_workflow(KEY, WorkflowStatus.SUCCESS, owner="stale") is False
        assert store.update_workflow(KEY, WorkflowStatus.SUCCESS, owner="current") is True


class TestStepResults:
    def test_round_trip(self, store):
        store.create_workflow(KEY, PAYLOAD)
        store.save_step_result(KEY, "generate-brief", "a brief")
        store.save_step_result(KEY, "fetch-files", [{"filename": "a.py", "patch": "+x"}])
        results = store.load_step_results(KEY)
        assert results == {
            "generate-brief": "a brief",
            "fetch-files": [{"filename": "a.py", "patch": "+x"}],
        }

    def test_results_isolated_per_workflow(self, store):
        store.save_step_result("a", "s", 1)
        assert store.load_step_results("b") == {}


class TestHistory:
    def test_missing_subject_returns_none(self, store):
        assert store.load_history("11:22:7") is None

    def test_save_replaces(self, store):
        store.save_history("11:22:7", [{"revision_short": "aaaaaaa", "artifact_url": "u1"}])
        store.save_history("11:22:7", [{"revision_short": "bbbbbbb", "artifact_url": "u2"}])
        assert store.load_history("11:22:7") == [{"revision_short": "bbbbbbb", "artifact_url": "u2"}]


# ---------------------------------------------------------------------------
# SQLiteStore specifics
# ---------------------------------------------------------------------------


class TestSQLiteStore:
    def test_persists_across_connections(self, tmp_path):
        path = str(tmp_path / "test.db")
        first = SQLiteStore(db_path=path)
        first.create_workflow(KEY, PAYLOAD)
        first.save_step_result(KEY, "build-context", "ctx")
        first.close()

        second = SQLiteStore(db_path=path)
        assert second.create_workflow(KEY, PAYLOAD) is False
        assert second.load_step_results(KEY) == {"build-context": "ctx"}
        second.close()

    def test_adds_lease_columns_to_older_databases(self, tmp_path):
        path = str(tmp_path / "old.db")
        conn = sqlite3.connect(path)
        conn.execute(
            """
            CREATE TABLE workflows (
                id TEXT PRIMARY KEY, status TEXT NOT NULL, payload_json TEXT NOT NULL DEFAULT '{}',
                artifact_url TEXT, error TEXT, created_at TEXT NOT NULL, updated_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            "INSERT INTO workflows (id, status, created_at, updated_at) VALUES (?, 'processing', 't', 't')",
            (KEY,),
        )
        conn.commit()
        conn.close()

        store = SQLiteStore(db_path=path)
        assert store.get_workflow(KEY).owner is None
        assert store.claim_workflow(KEY, "runner-a", 60) is True
        store.close()
