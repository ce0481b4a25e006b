"""GitHub access for the pipeline: changed files in, one bot comment out."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from github import Auth, Github

from prvisual_core.events import ChangedFile

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 90


def get_repo(repo_name: str, token: str, timeout: int = DEFAULT_TIMEOUT):
    return Github(auth=Auth.Token(token), timeout=timeout).get_repo(repo_name)


def get_pull(repo, pr_number: int):
    return repo.get_pull(pr_number)


def get_pull_requests(repo, state: str = "open"):
    return repo.get_pulls(state=state)


class GitHubApp:
    """Mints a fresh installation-scoped client for each workflow run.

    Installation tokens expire after an hour and are tied to one account, so
    a client is never shared between runs or installations.
    """

    def __init__(self, app_id: str | int, private_key: str, timeout: int = DEFAULT_TIMEOUT):
        self._auth = Auth.AppAuth(int(app_id), private_key)
        self._timeout = timeout

    def client(self, installation_id: int) -> Github:
        return Github(auth=self._auth.get_installation_auth(installation_id), timeout=self._timeout)

    def publisher(self, installation_id: int, repo_name: str, pr_number: int) -> CommentPublisher:
        repo = self.client(installation_id).get_repo(repo_name)
        return CommentPublisher(get_pull(repo, pr_number))


@dataclass(frozen=True)
class ExistingComment:
    id: int
    body: str


class CommentPublisher:
    """Reads the PR's changed files and maintains the single bot comment."""

    def __init__(self, pull):
        self._pull = pull

    def list_files(self) -> list[ChangedFile]:
        return [ChangedFile(filename=f.filename, patch=f.patch or None) for f in self._pull.get_files()]

    def find_existing(self, marker: str) -> ExistingComment | None:
        """Return the first issue comment containing ``marker``, or None."""
        for comment in self._pull.get_issue_comments():
            if comment.body and marker in comment.body:
                return ExistingComment(id=comment.id, body=comment.body)
        return None

    def upsert(self, body: str, existing_id: int | None = None) -> int:
        """Edit the existing comment or create one. Returns the comment id."""
        if existing_id:
            comment = self._pull.get_issue_comment(existing_id)
            comment.edit(body)
            logger.debug("Updated comment %s on PR #%s", existing_id, self._pull.number)
            return existing_id
        comment = self._pull.create_issue_comment(body)
        logger.debug("Created comment %s on PR #%s", comment.id, self._pull.number)
        return comment.id
