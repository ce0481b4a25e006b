"""Diff context assembly for the brief generator.

The generator sees the PR title, the description and the patches of the
changed files, in the order GitHub lists them. The whole context is capped
on its encoded UTF-8 size so a PR touching thousands of files costs the same
as one touching a few dozen.
"""

from __future__ import annotations

import logging
from typing import Iterable

from prvisual_core.events import ChangedFile

logger = logging.getLogger(__name__)

# 50 KB is enough for the model to understand what a PR does; beyond that the
# brief gets worse, not better, and every extra byte is billed.
MAX_CONTEXT_BYTES = 50_000

# Lockfiles are regenerated wholesale on dependency bumps. They dominate the
# diff size while saying nothing about intent, so they never reach the model.
DEFAULT_LOCKFILE_SUFFIXES = (
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "bun.lockb",
    "poetry.lock",
    "Pipfile.lock",
    "Cargo.lock",
    "uv.lock",
    "composer.lock",
    "Gemfile.lock",
    "go.sum",
)


def truncation_marker(max_bytes: int) -> str:
    return f"\n... (diff truncated at {max_bytes} bytes) ..."


def _byte_len(text: str) -> int:
    return len(text.encode("utf-8"))


def _clip(text: str, budget: int) -> str:
    """Cut ``text`` to at most ``budget`` encoded bytes without splitting a character."""
    return text.encode("utf-8")[: max(budget, 0)].decode("utf-8", errors="ignore")


def is_lockfile(filename: str, suffixes: Iterable[str] = DEFAULT_LOCKFILE_SUFFIXES) -> bool:
    return any(filename.endswith(suffix) for suffix in suffixes)


def build_header(title: str, description: str | None) -> str:
    header = f"PR Title: {title}\n"
    if description:
        header += f"Description: {description}\n"
    return header + "\n"


def build_diff_context(
    files: Iterable[ChangedFile],
    title: str,
    description: str | None = None,
    max_bytes: int = MAX_CONTEXT_BYTES,
    skip_suffixes: Iterable[str] = DEFAULT_LOCKFILE_SUFFIXES,
) -> str:
    """Concatenate the header and per-file patch blocks, capped at ``max_bytes``.

    The returned string never exceeds ``max_bytes`` once encoded. Room for the
    truncation marker is only kept while another file could still follow, so
    a last block that fits the cap is included in full. As soon as one block
    does not fit, the marker is appended and no later file is considered, even
    a smaller one: the output only depends on the file order and the cap.
    """
    suffixes = tuple(skip_suffixes)
    marker = truncation_marker(max_bytes)
    budget = max_bytes - _byte_len(marker)

    blocks = [
        (file.filename, f"\n--- {file.filename} ---\n{file.patch}\n")
        for file in files
        if file.patch and not is_lockfile(file.filename, suffixes)
    ]

    header = build_header(title, description)
    if _byte_len(header) > (budget if blocks else max_bytes):
        logger.debug("PR header alone exceeds %d bytes; clipping", max_bytes)
        return _clip(header, budget) + marker

    parts = [header]
    total = _byte_len(header)

    for index, (filename, block) in enumerate(blocks):
        last = index == len(blocks) - 1
        size = _byte_len(block)
        if total + size > (max_bytes if last else budget):
            logger.debug("Diff context truncated before %s (%d bytes used)", filename, total)
            parts.append(marker)
            break

        parts.append(block)
        total += size

    return "".join(parts)
