"""Tests for pull-request publishing through PyGithub."""

from unittest.mock import MagicMock, patch

import pytest
from github import GithubException

from agent_remote.integrations.github.client import GitHubClient


@pytest.fixture
def repo():
    return MagicMock()


@pytest.fixture
def client(repo):
    with patch("agent_remote.integrations.github.client.Github") as github_cls:
        github_cls.return_value.get_repo.return_value = repo
        yield GitHubClient("ghp_test")


class TestCreateOrUpdatePullRequest:
    def test_opens_new_pr(self, client, repo):
        repo.get_pulls.return_value = []
        repo.create_pull.return_value = MagicMock(number=7, html_url="https://github.com/org/repo/pull/7")

        ref = client.create_or_update_pull_request(
            "org/repo", title="Add footer", body="body", head_branch="task-t1", base_branch="main"
        )

        assert (ref.number, ref.created) == (7, True)
        repo.get_pulls.assert_called_once_with(state="open", head="org:task-t1")
        repo.create_pull.assert_called_once_with(title="Add footer", body="body", head="task-t1", base="main")

    def test_updates_open_pr(self, client, repo):
        existing = MagicMock(number=3, html_url="https://github.com/org/repo/pull/3")
        repo.get_pulls.return_value = [existing]

        ref = client.create_or_update_pull_request(
            "org/repo", title="Add footer v2", body="new body", head_branch="task-t1", base_branch="main"
        )

        assert (ref.number, ref.created) == (3, False)
        existing.edit.assert_called_once_with(title="Add footer v2", body="new body")
        repo.create_pull.assert_not_called()

    def test_api_error_propagates(self, client, repo):
        repo.get_pulls.return_value = []
        repo.create_pull.side_effect = GithubException(422, {"message": "No commits"}, None)

        with pytest.raises(GithubException):
            client.create_or_update_pull_request(
                "org/repo", title="t", body="b", head_branch="task-t1", base_branch="main"
            )

    def test_invalid_repository(self, client):
        with pytest.raises(ValueError):
            client.create_or_update_pull_request(
                "not a repo", title="t", body="b", head_branch="task-t1", base_branch="main"
            )


class TestComments:
    def test_comment_failure_is_logged(self, client, repo):
        repo.get_pull.return_value.create_issue_comment.side_effect = GithubException(403, {}, None)
        client.add_pr_comment("org/repo", 7, "Preview ready")

    def test_posts_issue_comment(self, client, repo):
        client.add_pr_comment("org/repo", 7, "Preview ready")

        repo.get_pull.assert_called_once_with(7)
        repo.get_pull.return_value.create_issue_comment.assert_called_once_with("Preview ready")
