"""Inbound pull request events: filtering, parsing and idempotency keys."""

from __future__ import annotations

from dataclasses import asdict, dataclass

from prvisual_core.errors import FilterSkip

SUPPORTED_EVENT = "pull_request"
ACTIONABLE_ACTIONS = frozenset({"opened", "synchronize", "reopened"})

IGNORED_EVENT = "Ignored event"
IGNORED_ACTION = "Ignored action"

SHORT_SHA_LENGTH = 7


@dataclass(frozen=True)
class ChangedFile:
    filename: str
    patch: str | None = None  # None for binary files or diffs GitHub refuses to render


@dataclass(frozen=True)
class InboundEvent:
    """The subject of one workflow run. Immutable once received."""

    account_id: int  # GitHub App installation id
    repository_id: int
    repository: str  # owner/name
    number: int
    head_sha: str
    action: str
    title: str
    description: str | None = None

    @property
    def idempotency_key(self) -> str:
        return f"{self.account_id}:{self.repository_id}:{self.number}:{self.head_sha}"

    @property
    def subject(self) -> str:
        """Identifies the pull request across revisions."""
        return f"{self.account_id}:{self.repository_id}:{self.number}"

    @property
    def short_sha(self) -> str:
        return self.head_sha[:SHORT_SHA_LENGTH]

    def to_payload(self) -> dict:
        return asdict(self)

    @classmethod
    def from_payload(cls, data: dict) -> InboundEvent:
        return cls(**data)


def _require(mapping: dict, key: str, kind: type):
    value = mapping.get(key) if isinstance(mapping, dict) else None
    if not isinstance(value, kind) or isinstance(value, bool):
        raise ValueError(f"Invalid pull_request payload: missing or malformed '{key}'")
    return value


def parse_event(event_type: str | None, payload: dict) -> InboundEvent:
    """Turn a GitHub webhook delivery into an InboundEvent.

    Raises FilterSkip for deliveries we deliberately ignore and ValueError for
    pull_request payloads missing the fields a workflow needs.
    """
    if (event_type or "").lower() != SUPPORTED_EVENT:
        raise FilterSkip(IGNORED_EVENT)

    action = payload.get("action") if isinstance(payload, dict) else None
    if action not in ACTIONABLE_ACTIONS:
        raise FilterSkip(IGNORED_ACTION)

    installation = _require(payload, "installation", dict)
    repository = _require(payload, "repository", dict)
    pull_request = _require(payload, "pull_request", dict)
    head = _require(pull_request, "head", dict)

    body = pull_request.get("body")
    return InboundEvent(
        account_id=_require(installation, "id", int),
        repository_id=_require(repository, "id", int),
        repository=_require(repository, "full_name", str),
        number=_require(pull_request, "number", int),
        head_sha=_require(head, "sha", str),
        action=action,
        title=pull_request.get("title") or "",
        description=body if isinstance(body, str) and body else None,
    )
