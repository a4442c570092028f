"""GitHub client for pull-request management."""

import logging
from dataclasses import dataclass
from typing import Optional

from github import Github, GithubException
from github.PullRequest import PullRequest
from github.Repository import Repository

from ...utils.validators import validate_owner_repo

logger = logging.getLogger(__name__)


@dataclass
class PullRequestRef:
    """The pull request a branch was published to."""
    number: int
    url: str
    created: bool


class GitHubClient:
    """GitHub API client for PR operations on one token."""

    def __init__(self, token: str):
        self.gh = Github(token)

    def _repo(self, owner_repo: str) -> Repository:
        return self.gh.get_repo(validate_owner_repo(owner_repo))

    def get_pr_by_branch(self, owner_repo: str, branch_name: str) -> Optional[PullRequest]:
        """Get the open PR for a branch, if any."""
        owner = owner_repo.split("/")[0]
        pulls = self._repo(owner_repo).get_pulls(state="open", head=f"{owner}:{branch_name}")
        for pr in pulls:
            return pr
        return None

    def create_or_update_pull_request(
        self,
        owner_repo: str,
        title: str,
        body: str,
        head_branch: str,
        base_branch: str,
    ) -> PullRequestRef:
        """Open a PR for ``head_branch`` or refresh the one already open.

        Raises:
            GithubException: If the GitHub API rejects the request
        """
        existing = self.get_pr_by_branch(owner_repo, head_branch)
        if existing is not None:
            existing.edit(title=title, body=body)
            logger.info(f"🔁 Updated PR #{existing.number} for {head_branch}")
            return PullRequestRef(number=existing.number, url=existing.html_url, created=False)

        pr = self._repo(owner_repo).create_pull(
            title=title,
            body=body,
            head=head_branch,
            base=base_branch,
        )
        logger.info(f"🔀 Opened PR #{pr.number}: {pr.html_url}")
        return PullRequestRef(number=pr.number, url=pr.html_url, created=True)

    def add_pr_comment(self, owner_repo: str, pr_number: int, comment: str) -> None:
        """Add a comment to a PR."""
        try:
            self._repo(owner_repo).get_pull(pr_number).create_issue_comment(comment)
        except GithubException as e:
            logger.warning(f"Failed to comment on PR #{pr_number}: {e}")
