"""Rendered image history for the PR visual comment.

Each PR has one bot comment. Every run replaces its "Latest" image and pushes
the previous one into a collapsed "Previous versions" list, newest first. The
comment body is the only state GitHub holds, so it is rendered in a format
that can be parsed back on the next run.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass

COMMENT_MARKER = "<!-- pr-visual -->"
PROJECT_URL = "https://github.com/gitethanwoo/pr-visual"

_LATEST_RE = re.compile(r"\*\*Latest\*\* \(`([0-9a-f]+)`\)[\s\S]*?!\[[^\]]*\]\(([^\s)]+)\)")
_OLDER_RE = re.compile(r"### `([0-9a-f]+)`\s*\n!\[[^\]]*\]\(([^\s)]+)\)")


@dataclass(frozen=True)
class HistoryEntry:
    revision_short: str
    artifact_url: str

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> HistoryEntry:
        return cls(revision_short=data["revision_short"], artifact_url=data["artifact_url"])


def parse_history(body: str | None) -> tuple[HistoryEntry | None, list[HistoryEntry]]:
    """Extract the latest entry and the older entries from a rendered comment.

    Bodies without the marker (including comments written before the marker
    existed) carry no history.
    """
    if not body or COMMENT_MARKER not in body:
        return None, []

    latest = None
    older_text = body
    match = _LATEST_RE.search(body)
    if match:
        latest = HistoryEntry(revision_short=match.group(1), artifact_url=match.group(2))
        older_text = body[match.end() :]

    older = [HistoryEntry(revision_short=m.group(1), artifact_url=m.group(2)) for m in _OLDER_RE.finditer(older_text)]
    return latest, older


def merge_history(
    latest: HistoryEntry | None,
    older: list[HistoryEntry],
    new: HistoryEntry,
) -> tuple[HistoryEntry, list[HistoryEntry]]:
    """Make ``new`` the latest entry and return it with the older list.

    The previous latest is demoted to the front of the older list unless it is
    the same revision. Re-processing a revision replaces its entry instead of
    duplicating it, and each revision appears at most once.
    """
    merged: list[HistoryEntry] = []
    seen = {new.revision_short}
    candidates = ([latest] if latest is not None else []) + list(older)
    for entry in candidates:
        if entry.revision_short in seen:
            continue
        seen.add(entry.revision_short)
        merged.append(entry)
    return new, merged


def render_comment(latest: HistoryEntry, older: list[HistoryEntry]) -> str:
    history_section = ""
    if older:
        image_list = "\n\n".join(f"### `{e.revision_short}`\n![{e.revision_short}]({e.artifact_url})" for e in older)
        history_section = f"""
<details>
<summary>Previous versions ({len(older)})</summary>

{image_list}

</details>
"""

    return f"""{COMMENT_MARKER}
## 🎨 PR Visual

**Latest** (`{latest.revision_short}`):

![PR Infographic]({latest.artifact_url})

{history_section}
<details>
<summary>About this image</summary>

Generated automatically by [pr-visual]({PROJECT_URL}).

</details>"""


def split_entries(entries: list[HistoryEntry]) -> tuple[HistoryEntry | None, list[HistoryEntry]]:
    if not entries:
        return None, []
    return entries[0], list(entries[1:])


def thread_comment(
    previous_body: str | None,
    new: HistoryEntry,
    stored: list[HistoryEntry] | None = None,
) -> tuple[str, list[HistoryEntry]]:
    """Render the comment for ``new`` on top of the prior history.

    ``stored`` is the history persisted by an earlier run; when present it is
    trusted over the comment body, which is only parsed for PRs whose history
    predates the store. Returns the body and the full entry list, newest first.
    """
    if stored is not None:
        latest, older = split_entries(stored)
    else:
        latest, older = parse_history(previous_body)
    latest, older = merge_history(latest, older, new)
    return render_comment(latest, older), [latest, *older]
