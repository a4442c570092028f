"""Tests for Vercel preview deployments."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest
import requests

from agent_remote.core.config import DeployConfig
from agent_remote.deploy.vercel import (
    DeploymentManager,
    generate_preview_subdomain,
    parse_github_repo,
)
from agent_remote.utils.subprocess_utils import SubprocessError

RUN_COMMAND = "agent_remote.deploy.vercel.run_command"


def http_response(ok=True, status_code=200, data=None, text=""):
    res = MagicMock(ok=ok, status_code=status_code, text=text)
    res.json.return_value = data or {}
    return res


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def make_manager(http=None, clock=None, **overrides):
    config = DeployConfig(**{"enabled": True, "token": "vt", "project_name": None, "team_id": None, **overrides})
    clock = clock or FakeClock()
    return DeploymentManager(config, session=http or MagicMock(), sleep=clock.sleep, clock=clock)


class TestSubdomain:
    @pytest.mark.parametrize("branch,expected", [
        ("task-t1", "task-t1"),
        ("Feature/Add_Footer", "feature-add-footer"),
        ("--weird//name--", "weird-name"),
    ])
    def test_normalizes(self, branch, expected):
        assert generate_preview_subdomain(branch) == expected

    def test_pattern(self):
        assert generate_preview_subdomain("task-t1", "preview-{branch}") == "preview-task-t1"

    def test_length_capped(self):
        subdomain = generate_preview_subdomain("a" * 100)
        assert len(subdomain) == 63

    def test_deterministic(self):
        assert generate_preview_subdomain("task-t1") == generate_preview_subdomain("task-t1")

    @pytest.mark.parametrize("url", [
        "https://github.com/org/repo.git",
        "git@github.com:org/repo.git",
        "https://github.com/org/repo",
    ])
    def test_parse_github_repo(self, url):
        assert parse_github_repo(url) == "org/repo"

    def test_parse_non_github(self):
        assert parse_github_repo("https://gitlab.com/org/repo") is None


class TestDeployGuards:
    @pytest.mark.asyncio
    async def test_disabled_is_successful_noop(self, tmp_path):
        manager = DeploymentManager(DeployConfig(enabled=False, token=None))
        with patch(RUN_COMMAND) as run_command:
            result = await manager.deploy("task-t1", tmp_path)
        assert result.success and result.skipped
        run_command.assert_not_called()

    @pytest.mark.asyncio
    async def test_token_required(self, tmp_path):
        manager = make_manager(token=None)
        result = await manager.deploy("task-t1", tmp_path)
        assert not result.success
        assert "VERCEL_TOKEN" in result.error


# -- CLI strategy --


class TestCliStrategy:
    @pytest.mark.asyncio
    async def test_deploy_extracts_url(self, tmp_path):
        manager = make_manager()
        deployed = subprocess.CompletedProcess([], 0, stdout="Inspect: x\nhttps://app-abc.vercel.app\n", stderr="")
        with patch(RUN_COMMAND, return_value=deployed) as run_command:
            result = await manager.deploy("task-t1", tmp_path)

        assert result.success
        assert result.vercel_url == "https://app-abc.vercel.app"
        assert result.preview_url == "https://app-abc.vercel.app"
        argv = run_command.call_args.args[0]
        assert argv[:2] == ["vercel", "deploy"]
        assert "--token=vt" in argv

    @pytest.mark.asyncio
    async def test_alias_created_for_preview_domain(self, tmp_path):
        manager = make_manager(preview_domain="preview.example.com")
        deployed = subprocess.CompletedProcess([], 0, stdout="https://app-abc.vercel.app\n", stderr="")
        with patch(RUN_COMMAND, return_value=deployed) as run_command:
            result = await manager.deploy("task-t1", tmp_path)

        assert result.alias_url == "https://task-t1.preview.example.com"
        assert result.preview_url == result.alias_url
        alias_argv = run_command.call_args_list[-1].args[0]
        assert alias_argv[:4] == ["vercel", "alias", "https://app-abc.vercel.app", "task-t1.preview.example.com"]

    @pytest.mark.asyncio
    async def test_alias_failure_is_not_fatal(self, tmp_path):
        manager = make_manager(preview_domain="preview.example.com")
        deployed = subprocess.CompletedProcess([], 0, stdout="https://app-abc.vercel.app\n", stderr="")
        alias_error = SubprocessError("vercel alias", 1, "domain not verified")
        with patch(RUN_COMMAND, side_effect=[deployed, alias_error]):
            result = await manager.deploy("task-t1", tmp_path)

        assert result.success
        assert result.alias_url is None
        assert result.preview_url == "https://app-abc.vercel.app"

    @pytest.mark.asyncio
    async def test_link_failure_only_warns(self, tmp_path):
        manager = make_manager(project_name="site")
        deployed = subprocess.CompletedProcess([], 0, stdout="https://app-abc.vercel.app\n", stderr="")
        link_error = SubprocessError("vercel link", 1, "nope")
        with patch(RUN_COMMAND, side_effect=[link_error, deployed]):
            result = await manager.deploy("task-t1", tmp_path)
        assert result.success

    @pytest.mark.asyncio
    async def test_missing_url_fails(self, tmp_path):
        manager = make_manager()
        deployed = subprocess.CompletedProcess([], 0, stdout="Something went sideways\n", stderr="")
        with patch(RUN_COMMAND, return_value=deployed):
            result = await manager.deploy("task-t1", tmp_path)
        assert not result.success
        assert "Could not extract" in result.error

    @pytest.mark.asyncio
    async def test_cli_error_becomes_result(self, tmp_path):
        manager = make_manager()
        with patch(RUN_COMMAND, side_effect=SubprocessError("vercel deploy", 1, "auth failed")):
            result = await manager.deploy("task-t1", tmp_path)
        assert not result.success
        assert "auth failed" in result.error


# -- API strategy --


PROJECTS = {"projects": [
    {"id": "prj_other", "name": "other", "link": {"repo": "org/other"}},
    {"id": "prj_1", "name": "site", "link": {"repo": "org/repo"}},
]}


class TestApiStrategy:
    def _http(self, *statuses, alias_ok=True):
        http = MagicMock()
        http.get.side_effect = [http_response(data=PROJECTS)] + [
            http_response(data={"readyState": s, "url": "site-abc.vercel.app"}) for s in statuses
        ]
        http.post.side_effect = [
            http_response(data={"id": "dpl_1", "url": "site-abc.vercel.app"}),
            http_response(ok=alias_ok, status_code=200 if alias_ok else 403),
        ]
        return http

    @pytest.mark.asyncio
    async def test_polls_until_ready(self, tmp_path, clock):
        http = self._http("QUEUED", "BUILDING", "READY")
        manager = make_manager(http=http, clock=clock, use_api=True, poll_interval_seconds=10)

        result = await manager.deploy("task-t1", tmp_path, repository="org/repo")

        assert result.success
        assert result.vercel_url == "https://site-abc.vercel.app"
        assert clock.now == 20
        payload = http.post.call_args_list[0].kwargs["json"]
        assert payload["project"] == "prj_1"
        assert payload["gitSource"] == {"type": "github", "repo": "org/repo", "ref": "task-t1"}
        assert payload["target"] == "preview"
        assert http.get.call_args_list[0].kwargs["headers"]["Authorization"] == "Bearer vt"

    @pytest.mark.asyncio
    async def test_error_state_fails(self, tmp_path, clock):
        manager = make_manager(http=self._http("BUILDING", "ERROR"), clock=clock, use_api=True)

        result = await manager.deploy("task-t1", tmp_path, repository="org/repo")

        assert not result.success
        assert result.vercel_url == "https://site-abc.vercel.app"
        assert "READY" in result.error

    @pytest.mark.asyncio
    async def test_times_out(self, tmp_path, clock):
        http = self._http(*["BUILDING"] * 10)
        manager = make_manager(http=http, clock=clock, use_api=True, poll_interval_seconds=10, max_wait_seconds=30)

        result = await manager.deploy("task-t1", tmp_path, repository="org/repo")

        assert not result.success
        assert http.get.call_count == 1 + 3

    @pytest.mark.asyncio
    async def test_alias_failure_is_not_fatal(self, tmp_path, clock):
        manager = make_manager(
            http=self._http("READY", alias_ok=False), clock=clock, use_api=True, preview_domain="p.example.com"
        )

        result = await manager.deploy("task-t1", tmp_path, repository="org/repo")

        assert result.success
        assert result.alias_url is None
        assert result.preview_url == "https://site-abc.vercel.app"

    @pytest.mark.asyncio
    async def test_alias_success(self, tmp_path, clock):
        http = self._http("READY")
        manager = make_manager(http=http, clock=clock, use_api=True, preview_domain="p.example.com")

        result = await manager.deploy("task-t1", tmp_path, repository="org/repo")

        assert result.preview_url == "https://task-t1.p.example.com"
        assert http.post.call_args_list[1].kwargs["json"] == {"alias": "task-t1.p.example.com"}

    @pytest.mark.asyncio
    async def test_unknown_project(self, tmp_path, clock):
        http = MagicMock()
        http.get.return_value = http_response(data={"projects": []})
        manager = make_manager(http=http, clock=clock, use_api=True)

        result = await manager.deploy("task-t1", tmp_path, repository="org/repo")

        assert not result.success
        assert "No Vercel project" in result.error

    @pytest.mark.asyncio
    async def test_network_error_becomes_result(self, tmp_path, clock):
        http = MagicMock()
        http.get.side_effect = requests.exceptions.ConnectionError("dns")
        manager = make_manager(http=http, clock=clock, use_api=True)

        result = await manager.deploy("task-t1", tmp_path, repository="org/repo")

        assert not result.success

    @pytest.mark.asyncio
    async def test_deployment_without_id_becomes_result(self, tmp_path, clock):
        http = MagicMock()
        http.get.return_value = http_response(data=PROJECTS)
        http.post.return_value = http_response(data={"error": "weird"}, text='{"error":"weird"}')
        manager = make_manager(http=http, clock=clock, use_api=True)

        result = await manager.deploy("task-t1", tmp_path, repository="org/repo")

        assert not result.success
        assert "no id" in result.error
        assert http.get.call_count == 1

    @pytest.mark.asyncio
    async def test_non_json_response_becomes_result(self, tmp_path, clock):
        http = MagicMock()
        projects = http_response()
        projects.json.side_effect = ValueError("Expecting value")
        http.get.return_value = projects
        manager = make_manager(http=http, clock=clock, use_api=True)

        result = await manager.deploy("task-t1", tmp_path, repository="org/repo")

        assert not result.success
        assert "non-JSON projects" in result.error

    @pytest.mark.asyncio
    async def test_malformed_project_list(self, tmp_path, clock):
        http = MagicMock()
        http.get.return_value = http_response(data={"projects": ["org/repo", {"name": "site"}]})
        manager = make_manager(http=http, clock=clock, use_api=True, project_name="site")

        result = await manager.deploy("task-t1", tmp_path, repository="org/repo")

        assert not result.success
        assert "No Vercel project" in result.error
        http.post.assert_not_called()
