"""The PR visual pipeline as an explicit list of workflow steps.

    check-billing → fetch-files → build-context → generate-brief
      → allocate-artifact → generate-image → post-comment → report-usage

Order is load-bearing: billing gates every paid call, the artifact key is
checkpointed before the image exists so a retried upload reuses it, and
usage is reported only once the comment is live.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Mapping

from prvisual_core.artifacts import new_key
from prvisual_core.billing import DEFAULT_COST_CENTS, EntitlementGate, UsageReporter
from prvisual_core.events import ChangedFile, InboundEvent
from prvisual_core.history import COMMENT_MARKER, HistoryEntry, thread_comment
from prvisual_core.utils.context import DEFAULT_LOCKFILE_SUFFIXES, MAX_CONTEXT_BYTES, build_diff_context
from prvisual_core.workflow import Pipeline, Step

if TYPE_CHECKING:
    from prvisual_core.artifacts import BaseArtifactStore
    from prvisual_core.billing import BaseBilling
    from prvisual_core.gh.pull_request import CommentPublisher
    from prvisual_core.providers.base import BaseGenerator
    from prvisual_store.base import BaseStore

logger = logging.getLogger(__name__)

CHECK_BILLING = "check-billing"
FETCH_FILES = "fetch-files"
BUILD_CONTEXT = "build-context"
GENERATE_BRIEF = "generate-brief"
ALLOCATE_ARTIFACT = "allocate-artifact"
GENERATE_IMAGE = "generate-image"
POST_COMMENT = "post-comment"
REPORT_USAGE = "report-usage"


@dataclass
class Collaborators:
    """Run-scoped handles to every external system the pipeline touches.

    ``publisher`` is a factory so that authenticating against GitHub happens
    inside a step, where a failure is retried like any other.
    """

    billing: BaseBilling
    generator: BaseGenerator
    artifacts: BaseArtifactStore
    publisher: Callable[[], CommentPublisher]
    history: BaseStore | None = None
    max_context_bytes: int = MAX_CONTEXT_BYTES
    skip_suffixes: tuple[str, ...] = DEFAULT_LOCKFILE_SUFFIXES
    cost_cents: float = DEFAULT_COST_CENTS
    _publisher: CommentPublisher | None = field(default=None, init=False, repr=False)

    def get_publisher(self) -> CommentPublisher:
        if self._publisher is None:
            self._publisher = self.publisher()
        return self._publisher

    def close(self) -> None:
        try:
            self.generator.close()
        finally:
            self.billing.close()


class PRVisualPipeline(Pipeline):
    def __init__(self, collaborators: Collaborators):
        self.c = collaborators

    def steps(self) -> list[Step]:
        return [
            Step(CHECK_BILLING, self.check_billing),
            Step(FETCH_FILES, self.fetch_files),
            Step(BUILD_CONTEXT, self.build_context),
            Step(GENERATE_BRIEF, self.generate_brief),
            Step(ALLOCATE_ARTIFACT, self.allocate_artifact),
            Step(GENERATE_IMAGE, self.generate_image, artifact=True),
            Step(POST_COMMENT, self.post_comment),
            # Not retried: an ingest that failed on the response path may
            # still have been recorded, and a second one would double-bill.
            Step(REPORT_USAGE, self.report_usage, retryable=False, best_effort=True),
        ]

    def close(self) -> None:
        self.c.close()

    # ------------------------------------------------------------------ #
    # Steps                                                                #
    # ------------------------------------------------------------------ #

    def check_billing(self, event: InboundEvent, prior: Mapping[str, Any]) -> dict:
        state = EntitlementGate(self.c.billing).check(event.account_id)
        return {"customer_id": state.customer_id, "balance": state.balance}

    def fetch_files(self, event: InboundEvent, prior: Mapping[str, Any]) -> list[dict]:
        files = self.c.get_publisher().list_files()
        logger.info("PR %s#%d: %d changed file(s)", event.repository, event.number, len(files))
        return [{"filename": f.filename, "patch": f.patch} for f in files]

    def build_context(self, event: InboundEvent, prior: Mapping[str, Any]) -> str:
        files = [ChangedFile(filename=f["filename"], patch=f.get("patch")) for f in prior[FETCH_FILES]]
        context = build_diff_context(
            files,
            event.title,
            event.description,
            max_bytes=self.c.max_context_bytes,
            skip_suffixes=self.c.skip_suffixes,
        )
        logger.debug("Diff context: %d bytes", len(context.encode("utf-8")))
        return context

    def generate_brief(self, event: InboundEvent, prior: Mapping[str, Any]) -> str:
        return self.c.generator.produce_brief(prior[BUILD_CONTEXT])

    def allocate_artifact(self, event: InboundEvent, prior: Mapping[str, Any]) -> str:
        return new_key(self.c.generator.content_type)

    def generate_image(self, event: InboundEvent, prior: Mapping[str, Any]) -> str:
        # Generation and upload share a step so the image bytes never have to
        # be checkpointed; the key from allocate-artifact keeps the upload
        # idempotent across retries.
        data = self.c.generator.produce_artifact(prior[GENERATE_BRIEF])
        url = self.c.artifacts.put(data, self.c.generator.content_type, key=prior[ALLOCATE_ARTIFACT])
        logger.info("PR %s#%d: stored image (%d bytes)", event.repository, event.number, len(data))
        return url

    def post_comment(self, event: InboundEvent, prior: Mapping[str, Any]) -> int:
        publisher = self.c.get_publisher()
        existing = publisher.find_existing(COMMENT_MARKER)

        stored = None
        if self.c.history is not None:
            raw = self.c.history.load_history(event.subject)
            if raw is not None:
                stored = [HistoryEntry.from_dict(e) for e in raw]

        entry = HistoryEntry(revision_short=event.short_sha, artifact_url=prior[GENERATE_IMAGE])
        body, entries = thread_comment(existing.body if existing else None, entry, stored)

        comment_id = publisher.upsert(body, existing.id if existing else None)
        # Only revisions that reached GitHub are remembered.
        if self.c.history is not None:
            self.c.history.save_history(event.subject, [e.to_dict() for e in entries])
        return comment_id

    def report_usage(self, event: InboundEvent, prior: Mapping[str, Any]) -> bool:
        reporter = UsageReporter(self.c.billing, cost_cents=self.c.cost_cents)
        reporter.report(prior[CHECK_BILLING]["customer_id"], event, prior[GENERATE_IMAGE])
        return True
