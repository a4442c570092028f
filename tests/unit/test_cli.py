"""Tests for the agent-remote CLI."""

import asyncio
import os
import time
from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from agent_remote.cli.main import cli
from agent_remote.core.config import clear_config_cache
from agent_remote.core.session_manager import SessionManager
from agent_remote.core.workflow import WorkflowStateMachine, WorkflowStatus, WorkflowStore

CHECK_COMMAND = "agent_remote.health.checker.check_command_exists"


@pytest.fixture(autouse=True)
def _fresh_config_cache():
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "agent-remote.yaml"
    path.write_text(yaml.safe_dump({
        "server": {
            "webhook_secret": "S",
            "callback_url": "http://astrid.test/api/remote-callback",
            "sessions_path": str(tmp_path / "state" / "sessions.json"),
            "workflows_path": str(tmp_path / "state" / "workflows.json"),
            "logs_dir": str(tmp_path / "logs"),
        },
        "providers": {"anthropic_api_key": "sk-ant", "openai_api_key": "sk-oa", "gemini_api_key": "g"},
        "workspace": {"github_token": "ghp", "root": str(tmp_path / "repos")},
        "deploy": {"enabled": False},
    }))
    return path


def invoke(config_file, *args):
    return CliRunner().invoke(cli, ["--config", str(config_file), *args])


def seed_sessions(tmp_path):
    manager = SessionManager(tmp_path / "state" / "sessions.json")

    async def _seed():
        await manager.create_session("t1", "Add footer")
        await manager.update_session("t1", status="running")
        await manager.create_session("t2", "Fix header")
        await manager.update_session("t2", status="error")

    asyncio.run(_seed())


class TestSessions:
    def test_empty(self, config_file):
        result = invoke(config_file, "sessions")
        assert result.exit_code == 0
        assert "No sessions" in result.output

    def test_lists_sessions(self, config_file, tmp_path):
        seed_sessions(tmp_path)

        result = invoke(config_file, "sessions")

        assert result.exit_code == 0
        assert "Add footer" in result.output
        assert "Fix header" in result.output

    def test_active_only(self, config_file, tmp_path):
        seed_sessions(tmp_path)

        result = invoke(config_file, "sessions", "--active")

        assert "Add footer" in result.output
        assert "Fix header" not in result.output


class TestWorkflows:
    @pytest.fixture
    def machine(self, tmp_path):
        return WorkflowStateMachine(WorkflowStore(tmp_path / "state" / "workflows.json"))

    def test_empty(self, config_file):
        result = invoke(config_file, "workflows")
        assert "No workflows" in result.output

    def test_table(self, config_file, machine):
        machine.find_or_create("t1", repository_id="org/repo")
        machine.transition("t1", WorkflowStatus.TESTING, pull_request_number=42)

        result = invoke(config_file, "workflows")

        assert result.exit_code == 0
        assert "org/repo" in result.output
        assert "#42" in result.output

    def test_detail(self, config_file, machine):
        machine.find_or_create("t1", repository_id="org/repo")
        machine.fail("t1", "Model gave up")

        result = invoke(config_file, "workflows", "t1")

        assert result.exit_code == 0
        assert "FAILED" in result.output
        assert "Model gave up" in result.output

    def test_unknown_task(self, config_file):
        result = invoke(config_file, "workflows", "missing")
        assert result.exit_code == 1

    def test_delete_lets_task_start_over(self, config_file, machine, tmp_path):
        seed_sessions(tmp_path)
        machine.find_or_create("t1", repository_id="org/repo")
        machine.fail("t1", "provider outage")

        result = invoke(config_file, "workflows", "t1", "--delete")

        assert result.exit_code == 0
        assert "Deleted workflow for task t1" in result.output
        reloaded = WorkflowStateMachine(WorkflowStore(tmp_path / "state" / "workflows.json"))
        assert reloaded.get("t1") is None
        assert reloaded.can_start_new_assignment("t1")
        sessions = asyncio.run(SessionManager(tmp_path / "state" / "sessions.json").get_all_sessions())
        assert [s.task_id for s in sessions] == ["t2"]

    def test_delete_requires_task_id(self, config_file):
        result = invoke(config_file, "workflows", "--delete")
        assert result.exit_code == 2

    def test_delete_unknown_task(self, config_file):
        result = invoke(config_file, "workflows", "missing", "--delete")
        assert result.exit_code == 1


class TestHealth:
    def test_healthy(self, config_file):
        with patch(CHECK_COMMAND, return_value=True):
            result = invoke(config_file, "health")
        assert result.exit_code == 0
        assert "healthy" in result.output

    def test_missing_git_is_degraded(self, config_file):
        with patch(CHECK_COMMAND, return_value=False):
            result = invoke(config_file, "health")
        assert result.exit_code == 1
        assert "degraded" in result.output


class TestCleanup:
    def test_recovers_and_prunes(self, config_file, tmp_path):
        seed_sessions(tmp_path)
        logs = tmp_path / "logs" / "sessions"
        logs.mkdir(parents=True)
        old_log = logs / "old-task.jsonl"
        old_log.write_text("{}\n")
        ten_days_ago = time.time() - 10 * 86400
        os.utime(old_log, (ten_days_ago, ten_days_ago))
        fresh_log = logs / "t1.jsonl"
        fresh_log.write_text("{}\n")

        result = invoke(config_file, "cleanup")

        assert result.exit_code == 0
        assert "Recovered 1" in result.output
        assert "Removed 1 old session logs" in result.output
        assert not old_log.exists()
        assert fresh_log.exists()

        remaining = asyncio.run(SessionManager(tmp_path / "state" / "sessions.json").get_all_sessions())
        assert [s.task_id for s in remaining] == ["t1"]

    def test_failed_workflows_deleted_on_request(self, config_file, tmp_path):
        machine = WorkflowStateMachine(WorkflowStore(tmp_path / "state" / "workflows.json"))
        for task_id in ("failed", "cancelled", "live"):
            machine.find_or_create(task_id)
        machine.fail("failed", "provider outage")
        machine.cancel("cancelled")
        machine.transition("live", WorkflowStatus.PLANNING)

        result = invoke(config_file, "cleanup", "--failed")

        assert result.exit_code == 0
        assert "Deleted 2 failed/cancelled workflows" in result.output
        remaining = WorkflowStore(tmp_path / "state" / "workflows.json").all()
        assert [w.task_id for w in remaining] == ["live"]

    def test_workflows_kept_by_default(self, config_file, tmp_path):
        machine = WorkflowStateMachine(WorkflowStore(tmp_path / "state" / "workflows.json"))
        machine.find_or_create("failed")
        machine.fail("failed", "provider outage")

        invoke(config_file, "cleanup")

        assert WorkflowStore(tmp_path / "state" / "workflows.json").get("failed") is not None
