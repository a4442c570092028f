"""Tests for the per-task JSONL session transcript."""

import json
import os
import time
from pathlib import Path

import pytest

from agent_remote.core.session_logger import (
    SessionLogger,
    _redact_sensitive_values,
    noop_logger,
    redact,
)


@pytest.fixture
def logs_dir(tmp_path):
    return tmp_path / "logs"


@pytest.fixture
def session_log_path(logs_dir):
    return logs_dir / "sessions" / "task-123.jsonl"


@pytest.fixture
def logger(logs_dir):
    sl = SessionLogger(logs_dir, "task-123", enabled=True)
    yield sl
    sl.close()


def read_events(path):
    return [json.loads(line) for line in path.read_text().strip().splitlines()]


# -- Enabled / Disabled --


class TestEnabledDisabled:
    def test_enabled_writes_events(self, logger, session_log_path):
        logger.log("phase_start", phase="planning")
        events = read_events(session_log_path)
        assert len(events) == 1
        assert events[0]["event"] == "phase_start"
        assert events[0]["phase"] == "planning"
        assert events[0]["task_id"] == "task-123"
        assert "ts" in events[0]

    def test_disabled_writes_nothing(self, logs_dir, session_log_path):
        sl = SessionLogger(logs_dir, "task-123", enabled=False)
        sl.log("phase_start", phase="planning")
        sl.log_tool_call("read_file", {"path": "src/app.ts"})
        sl.log_error("boom")
        sl.close()
        assert not session_log_path.exists()

    def test_path_property(self, logs_dir, session_log_path):
        assert SessionLogger(logs_dir, "task-123").path == session_log_path


# -- Tool calls --


class TestToolCalls:
    def test_inputs_included(self, logs_dir, session_log_path):
        sl = SessionLogger(logs_dir, "task-123", log_tool_inputs=True)
        sl.log_tool_call("read_file", {"path": "src/app.ts"})
        sl.close()
        assert read_events(session_log_path)[0]["input"] == {"path": "src/app.ts"}

    def test_inputs_excluded(self, logs_dir, session_log_path):
        sl = SessionLogger(logs_dir, "task-123", log_tool_inputs=False)
        sl.log_tool_call("read_file", {"path": "src/app.ts"})
        sl.close()
        event = read_events(session_log_path)[0]
        assert "input" not in event
        assert event["tool"] == "read_file"

    def test_sequence_shared_with_results(self, logger, session_log_path):
        logger.log_tool_call("read_file", {"path": "a.ts"})
        logger.log_tool_result("read_file", success=True, result_size=120)
        logger.log_tool_call("write_file", {"path": "a.ts", "content": "x"})
        logger.log_tool_result("write_file", success=False, result_size=0)

        events = read_events(session_log_path)
        assert [e["sequence"] for e in events] == [1, 1, 2, 2]
        assert events[3]["success"] is False

    def test_long_content_clipped(self, logs_dir, session_log_path):
        sl = SessionLogger(logs_dir, "task-123", max_content_chars=10)
        sl.log_tool_call("write_file", {"path": "a.ts", "content": "x" * 50})
        sl.close()
        assert read_events(session_log_path)[0]["input"]["content"] == "x" * 10 + "..."

    def test_non_serializable_values_use_str(self, logger, session_log_path):
        logger.log("plan_ready", repo_path=Path("/some/path"))
        assert read_events(session_log_path)[0]["repo_path"] == "/some/path"


# -- Lifecycle --


class TestLifecycle:
    def test_close_twice_is_safe(self, logger):
        logger.log("phase_start", phase="planning")
        logger.close()
        logger.close()

    def test_context_manager(self, logs_dir, session_log_path):
        with SessionLogger(logs_dir, "task-123") as sl:
            sl.log("execution_complete", files=2)
        assert read_events(session_log_path)[0]["files"] == 2

    def test_runs_append_to_same_file(self, logs_dir, session_log_path):
        with SessionLogger(logs_dir, "task-123") as sl:
            sl.log("phase_start", phase="planning")
        with SessionLogger(logs_dir, "task-123") as sl:
            sl.log("phase_start", phase="implementing")

        assert [e["phase"] for e in read_events(session_log_path)] == ["planning", "implementing"]

    def test_write_failure_is_not_raised(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        sl = SessionLogger(blocker, "task-123")
        sl.log("phase_start", phase="planning")
        sl.close()


class TestNoopLogger:
    def test_same_instance(self):
        assert noop_logger() is noop_logger()

    def test_disabled(self):
        assert noop_logger().enabled is False

    def test_sequence_untouched(self):
        nl = noop_logger()
        before = nl._sequence
        nl.log_tool_call("read_file", {"path": "a.ts"})
        assert nl._sequence == before


class TestCleanupOldSessions:
    def test_removes_old_files(self, logs_dir):
        sessions_dir = logs_dir / "sessions"
        sessions_dir.mkdir(parents=True)

        old_file = sessions_dir / "old-task.jsonl"
        old_file.write_text('{"event": "phase_start"}\n')
        old_mtime = time.time() - (60 * 86400)
        os.utime(old_file, (old_mtime, old_mtime))

        new_file = sessions_dir / "new-task.jsonl"
        new_file.write_text('{"event": "phase_start"}\n')

        assert SessionLogger.cleanup_old_sessions(logs_dir, retention_days=30) == 1
        assert not old_file.exists()
        assert new_file.exists()

    def test_no_sessions_dir(self, logs_dir):
        assert SessionLogger.cleanup_old_sessions(logs_dir, retention_days=30) == 0


# -- Redaction --


class TestRedaction:
    @pytest.mark.parametrize("text,secret,expected", [
        ("curl -u admin:s3cret https://api.example.com", "s3cret", "-u admin:***"),
        ('curl -H "Authorization: Bearer tok_abc123" x', "tok_abc123", "Authorization: Bearer ***"),
        ("GITHUB_TOKEN=abc123 git push", "abc123", "GITHUB_TOKEN=***"),
        ("vercel deploy --token=vt_secret", "vt_secret", "--token=***"),
        ("key sk-ant-REDACTED", "abcdefghijklmnop", "sk-ant-api0***"),
        ("remote https://ghp_abcdef123456@github.com", "abcdef123456", "ghp_***"),
    ])
    def test_patterns(self, text, secret, expected):
        result = redact(text)
        assert secret not in result
        assert expected in result

    def test_safe_text_unchanged(self):
        assert redact("git status && npm test") == "git status && npm test"

    def test_dict_helpers(self):
        assert _redact_sensitive_values(None) is None
        assert _redact_sensitive_values({}) == {}
        assert _redact_sensitive_values({"timeout": 30}) == {"timeout": 30}

    def test_applied_to_tool_calls_and_errors(self, logger, session_log_path):
        logger.log_tool_call("run_command", {"command": "curl -u user:hunter2 https://x"})
        logger.log_error("push failed for https://ghp_leaked99@github.com/org/repo")

        raw = session_log_path.read_text()
        assert "hunter2" not in raw
        assert "ghp_leaked99" not in raw
