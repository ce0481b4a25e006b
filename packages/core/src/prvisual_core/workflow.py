"""Durable, idempotent step execution.

A workflow is one run of the pipeline for one idempotency key. The engine
guarantees three things:

- At most one workflow per key: ``submit`` is an atomic insert-if-absent, so
  a redelivered webhook is a no-op. ``run`` first claims a lease on the
  record, so two runners (a webhook task and a startup resume, or two server
  processes) never execute the same workflow at once. A lease that is not
  renewed expires and the workflow becomes resumable again.
- Steps run strictly in order, each with its own bounded retry loop and
  exponential backoff. A step that exhausts its attempts fails the whole
  workflow; later steps never run.
- Completed steps are checkpointed. Running the same workflow again (after a
  crash, or via ``resume_pending``) skips every step that already produced a
  result, so paid calls and side effects are not repeated.

The engine knows nothing about pull requests. The step list comes from a
Pipeline built per run, which also owns the run's collaborator clients.
"""

from __future__ import annotations

import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping, Sequence

from prvisual_core.errors import EntitlementDenied, UpstreamFailure
from prvisual_core.events import InboundEvent
from prvisual_store.base import BaseStore
from prvisual_store.models import WorkflowStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 2.0
# Must outlast the slowest single step including its retries.
DEFAULT_LEASE_SECONDS = 600.0

NOT_OWNED = "claimed by another runner"


@dataclass(frozen=True)
class Step:
    """One named unit of work.

    ``run`` receives the event and a read-only view of earlier step results
    keyed by step name. Its return value must be JSON-serialisable: it is the
    checkpoint.
    """

    name: str
    run: Callable[[InboundEvent, Mapping[str, Any]], Any]
    retryable: bool = True
    best_effort: bool = False  # failure is logged; the workflow carries on
    artifact: bool = False  # the result is the artifact url recorded on success


class Pipeline(ABC):
    """The ordered steps of one workflow run plus the clients they use."""

    @abstractmethod
    def steps(self) -> Sequence[Step]:
        """Return the steps in execution order."""

    def close(self) -> None:
        """Release run-scoped clients. Called once the run is over."""


class SubmitResult(str, Enum):
    ACCEPTED = "accepted"
    ALREADY_EXISTS = "already_exists"


@dataclass
class WorkflowOutcome:
    workflow_id: str
    status: WorkflowStatus
    artifact_url: str | None = None
    reason: str | None = None  # error message or entitlement denial reason

    @property
    def succeeded(self) -> bool:
        return self.status == WorkflowStatus.SUCCESS


class WorkflowEngine:
    def __init__(
        self,
        store: BaseStore,
        pipeline_factory: Callable[[InboundEvent], Pipeline],
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        sleep: Callable[[float], None] = time.sleep,
        lease_seconds: float = DEFAULT_LEASE_SECONDS,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self._pipeline_factory = pipeline_factory
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep
        self.lease_seconds = lease_seconds

    # ------------------------------------------------------------------ #
    # Submission                                                           #
    # ------------------------------------------------------------------ #

    def submit(self, workflow_id: str, payload: dict) -> SubmitResult:
        if self.store.create_workflow(workflow_id, payload):
            logger.info("Workflow %s accepted", workflow_id)
            return SubmitResult.ACCEPTED
        logger.info("Workflow %s already exists, skipping", workflow_id)
        return SubmitResult.ALREADY_EXISTS

    def submit_event(self, event: InboundEvent) -> SubmitResult:
        return self.submit(event.idempotency_key, event.to_payload())

    # ------------------------------------------------------------------ #
    # Execution                                                            #
    # ------------------------------------------------------------------ #

    def run(self, workflow_id: str) -> WorkflowOutcome:
        """Drive a workflow to a terminal state and return the outcome.

        Terminal workflows are returned as they are; nothing is re-executed.
        A workflow whose lease is held by another runner is left alone and
        comes back still PROCESSING.
        """
        record = self.store.get_workflow(workflow_id)
        if record is None:
            raise KeyError(f"Unknown workflow: {workflow_id}")
        if record.status.is_terminal:
            logger.debug("Workflow %s already %s", workflow_id, record.status.value)
            return WorkflowOutcome(workflow_id, record.status, record.artifact_url, record.error)

        owner = uuid.uuid4().hex
        if not self.store.claim_workflow(workflow_id, owner, self.lease_seconds):
            return self._not_owned(workflow_id)

        event = InboundEvent.from_payload(record.payload)
        results = self.store.load_step_results(workflow_id)

        try:
            pipeline = self._pipeline_factory(event)
        except Exception as e:
            logger.error("Workflow %s: could not build pipeline: %s", workflow_id, e)
            return self._fail(workflow_id, owner, f"setup: {e}")

        try:
            steps = list(pipeline.steps())
            for step in steps:
                if step.name in results:
                    logger.debug("Workflow %s: step %s already completed", workflow_id, step.name)
                    continue
                if not self.store.renew_claim(workflow_id, owner, self.lease_seconds):
                    logger.warning("Workflow %s: lease lost before step %s", workflow_id, step.name)
                    return self._not_owned(workflow_id)

                try:
                    result = self._execute(step, event, MappingProxyType(dict(results)))
                except EntitlementDenied as e:
                    return self._fail(workflow_id, owner, e.reason)
                except UpstreamFailure as e:
                    if step.best_effort:
                        logger.warning("Workflow %s: %s (ignored)", workflow_id, e)
                        continue
                    return self._fail(workflow_id, owner, str(e))

                results[step.name] = result
                self.store.save_step_result(workflow_id, step.name, result)
        finally:
            pipeline.close()

        artifact_url = next((results.get(s.name) for s in steps if s.artifact), None)
        if not self.store.update_workflow(
            workflow_id, WorkflowStatus.SUCCESS, artifact_url=artifact_url, owner=owner
        ):
            return self._not_owned(workflow_id)
        logger.info("Workflow %s succeeded", workflow_id)
        return WorkflowOutcome(workflow_id, WorkflowStatus.SUCCESS, artifact_url=artifact_url)

    def resume_pending(self) -> list[WorkflowOutcome]:
        """Run every workflow left pending or processing, e.g. after a restart.

        Workflows another runner is actively processing are skipped; only
        outcomes of workflows this call drove to a terminal state are returned.
        """
        outcomes = []
        for status in (WorkflowStatus.PROCESSING, WorkflowStatus.PENDING):
            for record in self.store.list_workflows(status):
                logger.info("Resuming workflow %s (%s)", record.id, status.value)
                outcome = self.run(record.id)
                if outcome.status.is_terminal:
                    outcomes.append(outcome)
        return outcomes

    def _execute(self, step: Step, event: InboundEvent, prior: Mapping[str, Any]) -> Any:
        """Run one step with exponential backoff between attempts.

        EntitlementDenied propagates immediately. Any other exception counts
        as one failed attempt; the last one is wrapped in UpstreamFailure.
        """
        attempts = self.max_attempts if step.retryable else 1
        for attempt in range(attempts):
            try:
                return step.run(event, prior)
            except EntitlementDenied:
                raise
            except Exception as e:
                if attempt == attempts - 1:
                    logger.error("Step %s failed after %d attempt(s): %s", step.name, attempts, e)
                    raise UpstreamFailure(step.name, str(e) or type(e).__name__) from e
                delay = self.base_delay * 2**attempt
                logger.warning(
                    "Step %s error (attempt %d/%d): %s. Retrying in %gs...",
                    step.name,
                    attempt + 1,
                    attempts,
                    e,
                    delay,
                )
                self._sleep(delay)

    def _fail(self, workflow_id: str, owner: str, reason: str) -> WorkflowOutcome:
        if not self.store.update_workflow(workflow_id, WorkflowStatus.FAILED, error=reason, owner=owner):
            return self._not_owned(workflow_id)
        logger.info("Workflow %s failed: %s", workflow_id, reason)
        return WorkflowOutcome(workflow_id, WorkflowStatus.FAILED, reason=reason)

    def _not_owned(self, workflow_id: str) -> WorkflowOutcome:
        record = self.store.get_workflow(workflow_id)
        if record.status.is_terminal:
            return WorkflowOutcome(workflow_id, record.status, record.artifact_url, record.error)
        logger.info("Workflow %s is claimed by another runner, leaving it", workflow_id)
        return WorkflowOutcome(workflow_id, record.status, reason=NOT_OWNED)
