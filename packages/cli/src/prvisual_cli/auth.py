"""GitHub token resolution for local runs.

The hosted server authenticates as a GitHub App installation. Local
`prvisual run` and `prvisual resume` use a personal token instead, taken
from the first source that has one:
  1. GITHUB_TOKEN environment variable
  2. `gh auth token` (an existing GitHub CLI session)
"""

from __future__ import annotations

import logging
import os
import subprocess

logger = logging.getLogger(__name__)


def resolve_github_token() -> str | None:
    """Return a GitHub token or None. Never raises."""
    token = os.environ.get("GITHUB_TOKEN")
    if token:
        return token

    try:
        result = subprocess.run(["gh", "auth", "token"], capture_output=True, text=True, timeout=5)
    except (FileNotFoundError, subprocess.TimeoutExpired):
        # gh is not installed or hung; there is no other source to try.
        return None

    gh_token = result.stdout.strip() if result.returncode == 0 else ""
    if gh_token:
        logger.debug("Resolved GitHub token via gh CLI session.")
        return gh_token
    return None
