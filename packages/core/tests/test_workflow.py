"""Tests for the workflow engine: idempotent submission, retries and checkpoints."""

import threading

import pytest

from prvisual_core.errors import EntitlementDenied
from prvisual_core.events import InboundEvent
from prvisual_core.workflow import NOT_OWNED, Pipeline, Step, SubmitResult, WorkflowEngine
from prvisual_store.memory import MemoryStore
from prvisual_store.models import WorkflowStatus

EVENT = InboundEvent(
    account_id=42,
    repository_id=1001,
    repository="acme/widgets",
    number=7,
    head_sha="deadbeef",
    action="opened",
    title="Add caching",
)
KEY = EVENT.idempotency_key


class _Pipeline(Pipeline):
    def __init__(self, steps):
        self._steps = steps
        self.closed = False

    def steps(self):
        return self._steps

    def close(self):
        self.closed = True


class _Flaky:
    """Callable that raises the given errors in turn, then returns ``result``."""

    def __init__(self, result, errors=()):
        self.result = result
        self.errors = list(errors)
        self.calls = 0

    def __call__(self, event, prior):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def _engine(steps, store=None, max_attempts=3):
    store = store or MemoryStore()
    sleeps = []
    pipelines = []

    def factory(event):
        pipeline = _Pipeline(steps)
        pipelines.append(pipeline)
        return pipeline

    engine = WorkflowEngine(store, factory, max_attempts=max_attempts, base_delay=2.0, sleep=sleeps.append)
    return engine, sleeps, pipelines


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


class TestSubmit:
    def test_first_submission_accepted(self):
        engine, _, _ = _engine([])
        assert engine.submit_event(EVENT) == SubmitResult.ACCEPTED
        assert engine.store.get_workflow(KEY).status == WorkflowStatus.PENDING

    def test_duplicate_submission_rejected(self):
        engine, _, _ = _engine([])
        engine.submit_event(EVENT)
        assert engine.submit_event(EVENT) == SubmitResult.ALREADY_EXISTS

    def test_concurrent_submissions_accept_exactly_one(self):
        engine, _, _ = _engine([])
        results = []
        barrier = threading.Barrier(8)

        def submit():
            barrier.wait()
            results.append(engine.submit_event(EVENT))

        threads = [threading.Thread(target=submit) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count(SubmitResult.ACCEPTED) == 1

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            WorkflowEngine(MemoryStore(), lambda e: _Pipeline([]), max_attempts=0)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class TestRun:
    def test_runs_steps_in_order_and_records_artifact(self):
        order = []

        def step(name, result):
            def run(event, prior):
                order.append(name)
                return result

            return run

        engine, _, pipelines = _engine(
            [
                Step("a", step("a", 1)),
                Step("b", step("b", "https://cdn/x.png"), artifact=True),
                Step("c", step("c", True)),
            ]
        )
        engine.submit_event(EVENT)
        outcome = engine.run(KEY)

        assert outcome.succeeded
        assert outcome.artifact_url == "https://cdn/x.png"
        assert order == ["a", "b", "c"]
        assert engine.store.get_workflow(KEY).artifact_url == "https://cdn/x.png"
        assert pipelines[0].closed

    def test_steps_see_earlier_results(self):
        seen = {}

        def second(event, prior):
            seen.update(prior)
            return None

        engine, _, _ = _engine([Step("first", lambda e, p: {"n": 1}), Step("second", second)])
        engine.submit_event(EVENT)
        engine.run(KEY)
        assert seen == {"first": {"n": 1}}

    def test_unknown_workflow_raises(self):
        engine, _, _ = _engine([])
        with pytest.raises(KeyError):
            engine.run("missing")

    def test_terminal_workflow_not_rerun(self):
        step = _Flaky("ok")
        engine, _, _ = _engine([Step("only", step)])
        engine.submit_event(EVENT)
        engine.run(KEY)
        outcome = engine.run(KEY)
        assert outcome.succeeded
        assert step.calls == 1

    def test_pipeline_factory_failure_fails_workflow(self):
        def factory(event):
            raise RuntimeError("bad credentials")

        engine = WorkflowEngine(MemoryStore(), factory, sleep=lambda s: None)
        engine.submit_event(EVENT)
        outcome = engine.run(KEY)
        assert outcome.status == WorkflowStatus.FAILED
        assert outcome.reason == "setup: bad credentials"


class TestRetries:
    def test_transient_failures_back_off_exponentially(self):
        step = _Flaky("ok", errors=[RuntimeError("502"), RuntimeError("502")])
        engine, sleeps, _ = _engine([Step("flaky", step)])
        engine.submit_event(EVENT)

        assert engine.run(KEY).succeeded
        assert step.calls == 3
        assert sleeps == [2.0, 4.0]

    def test_exhausted_retries_fail_workflow_and_stop(self):
        failing = _Flaky("never", errors=[RuntimeError("boom")] * 3)
        later = _Flaky("later")
        engine, sleeps, pipelines = _engine([Step("gen", failing), Step("post", later)])
        engine.submit_event(EVENT)

        outcome = engine.run(KEY)
        assert outcome.status == WorkflowStatus.FAILED
        assert outcome.reason == "gen: boom"
        assert failing.calls == 3
        assert later.calls == 0
        assert sleeps == [2.0, 4.0]
        assert engine.store.get_workflow(KEY).error == "gen: boom"
        assert pipelines[0].closed

    def test_non_retryable_step_runs_once(self):
        step = _Flaky("never", errors=[RuntimeError("down")])
        engine, sleeps, _ = _engine([Step("report", step, retryable=False)])
        engine.submit_event(EVENT)
        assert engine.run(KEY).status == WorkflowStatus.FAILED
        assert step.calls == 1
        assert sleeps == []

    def test_best_effort_failure_does_not_fail_workflow(self):
        engine, _, _ = _engine(
            [
                Step("image", lambda e, p: "https://cdn/x.png", artifact=True),
                Step("report", _Flaky(None, errors=[RuntimeError("down")]), retryable=False, best_effort=True),
            ]
        )
        engine.submit_event(EVENT)
        outcome = engine.run(KEY)
        assert outcome.succeeded
        assert outcome.artifact_url == "https://cdn/x.png"

    def test_entitlement_denied_is_not_retried(self):
        step = _Flaky(None, errors=[EntitlementDenied("no_credits", 42)])
        later = _Flaky("later")
        engine, sleeps, _ = _engine([Step("billing", step), Step("gen", later)])
        engine.submit_event(EVENT)

        outcome = engine.run(KEY)
        assert outcome.status == WorkflowStatus.FAILED
        assert outcome.reason == "no_credits"
        assert step.calls == 1
        assert later.calls == 0
        assert sleeps == []


class TestCheckpoints:
    def test_completed_steps_skipped_on_resume(self):
        store = MemoryStore()
        store.create_workflow(KEY, EVENT.to_payload())
        store.update_workflow(KEY, WorkflowStatus.PROCESSING)
        store.save_step_result(KEY, "brief", "saved brief")

        brief = _Flaky("new brief")
        seen = {}

        def image(event, prior):
            seen["brief"] = prior["brief"]
            return "https://cdn/x.png"

        engine, _, _ = _engine([Step("brief", brief), Step("image", image, artifact=True)], store=store)
        outcome = engine.run(KEY)

        assert outcome.succeeded
        assert brief.calls == 0
        assert seen["brief"] == "saved brief"

    def test_resume_pending_runs_interrupted_workflows(self):
        store = MemoryStore()
        other = InboundEvent(**{**EVENT.to_payload(), "head_sha": "cafebabe"})
        store.create_workflow(KEY, EVENT.to_payload())
        store.create_workflow(other.idempotency_key, other.to_payload())
        store.update_workflow(other.idempotency_key, WorkflowStatus.PROCESSING)

        engine, _, _ = _engine([Step("only", lambda e, p: "https://cdn/x.png", artifact=True)], store=store)
        outcomes = engine.resume_pending()

        assert [o.workflow_id for o in outcomes] == [other.idempotency_key, KEY]
        assert all(o.succeeded for o in outcomes)
        assert store.list_workflows(WorkflowStatus.PENDING) == []

    def test_step_results_are_saved(self):
        engine, _, _ = _engine([Step("a", lambda e, p: {"x": 1})])
        engine.submit_event(EVENT)
        engine.run(KEY)
        assert engine.store.load_step_results(KEY) == {"a": {"x": 1}}


class TestClaims:
    def test_second_runner_leaves_workflow_in_progress_alone(self):
        started = threading.Event()
        release = threading.Event()
        calls = []

        def slow_image(event, prior):
            calls.append(event.head_sha)
            started.set()
            assert release.wait(timeout=5)
            return "https://cdn/x.png"

        engine, _, _ = _engine([Step("image", slow_image, artifact=True)])
        engine.submit_event(EVENT)
        outcomes = []
        first = threading.Thread(target=lambda: outcomes.append(engine.run(KEY)))
        first.start()
        assert started.wait(timeout=5)

        # A startup sweep and a second delivery of the same key arrive mid-run.
        assert engine.resume_pending() == []
        second = engine.run(KEY)

        release.set()
        first.join(timeout=5)

        assert second.status == WorkflowStatus.PROCESSING
        assert second.reason == NOT_OWNED
        assert calls == ["deadbeef"]
        assert outcomes[0].succeeded
        assert engine.store.get_workflow(KEY).status == WorkflowStatus.SUCCESS

    def test_two_engines_on_one_store_execute_once(self):
        store = MemoryStore()
        store.create_workflow(KEY, EVENT.to_payload())
        barrier = threading.Barrier(2)
        step = _Flaky("https://cdn/x.png")
        engines = [_engine([Step("image", step, artifact=True)], store=store)[0] for _ in range(2)]
        outcomes = []

        def run(engine):
            barrier.wait()
            outcomes.append(engine.run(KEY))

        threads = [threading.Thread(target=run, args=(e,)) for e in engines]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert step.calls == 1
        assert store.get_workflow(KEY).status == WorkflowStatus.SUCCESS

    def test_expired_lease_is_resumed_from_checkpoint(self):
        store = MemoryStore()
        store.create_workflow(KEY, EVENT.to_payload())
        store.claim_workflow(KEY, "crashed-runner", -1)
        store.save_step_result(KEY, "brief", "saved brief")
        brief = _Flaky("new brief")

        engine, _, _ = _engine([Step("brief", brief), Step("image", lambda e, p: "u", artifact=True)], store=store)
        outcomes = engine.resume_pending()

        assert [o.workflow_id for o in outcomes] == [KEY]
        assert outcomes[0].succeeded
        assert brief.calls == 0

    def test_lost_lease_stops_before_next_step(self):
        store = MemoryStore()

        def taken_over(event, prior):
            # Our lease has lapsed and another runner claims the workflow.
            assert store.claim_workflow(KEY, "other-runner", 60)
            return "brief"

        later = _Flaky("https://cdn/x.png")
        engine = WorkflowEngine(
            store,
            lambda e: _Pipeline([Step("brief", taken_over), Step("image", later, artifact=True)]),
            sleep=lambda s: None,
            lease_seconds=-1,
        )
        engine.submit_event(EVENT)
        outcome = engine.run(KEY)

        assert outcome.reason == NOT_OWNED
        assert later.calls == 0
        record = store.get_workflow(KEY)
        assert record.status == WorkflowStatus.PROCESSING
        assert record.owner == "other-runner"
