"""Structured per-task transcript of agent decisions.

Writes append-only JSONL files to logs/sessions/{task_id}.jsonl. Each line
is a timestamped event: phase_start, llm_call, tool_call, tool_result,
plan_ready, execution_complete, error.
"""

import json
import logging
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Patterns that may leak credentials through tool inputs or error text
_REDACTION_PATTERNS = [
    # curl -u user:password → curl -u user:***
    (re.compile(r'(-u\s+\S+?:)\S+'), r'\1***'),
    # Authorization: Bearer/Basic/Token <value>
    (re.compile(r'(Authorization:\s*(?:Bearer|Basic|Token)\s+)\S+', re.IGNORECASE), r'\1***'),
    # FOO_TOKEN=value, FOO_API_KEY=value, FOO_SECRET=value
    (re.compile(r'(\b[A-Z][A-Z0-9_]*(?:_TOKEN|_API_KEY|_KEY|_SECRET|_PASSWORD)=)\S+'), r'\1***'),
    # --token=value / --token value
    (re.compile(r'(--token[=\s])\S+'), r'\1***'),
    # Provider key shapes
    (re.compile(r'\b(sk-[A-Za-z0-9_-]{8})[A-Za-z0-9_-]+'), r'\1***'),
    (re.compile(r'\b(gh[pousr]_)[A-Za-z0-9]+'), r'\1***'),
]


def redact(text: str) -> str:
    """Scrub known credential patterns from a string."""
    for pattern, replacement in _REDACTION_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def _redact_sensitive_values(tool_input: Optional[dict]) -> Optional[dict]:
    """Scrub known credential patterns from tool input before logging."""
    if not tool_input:
        return tool_input
    return {k: redact(v) if isinstance(v, str) else v for k, v in tool_input.items()}


class SessionLogger:
    """Append-only JSONL session log per task.

    Events are flushed immediately so logs survive crashes. Write failures
    are logged at debug level and never interrupt a run.
    """

    def __init__(
        self,
        logs_dir: Path,
        task_id: str,
        enabled: bool = True,
        log_tool_inputs: bool = True,
        max_content_chars: int = 2000,
    ):
        self._enabled = enabled
        self._log_tool_inputs = log_tool_inputs
        self._max_content_chars = max_content_chars
        self._task_id = task_id
        self._path = Path(logs_dir) / "sessions" / f"{task_id}.jsonl"
        self._file = None
        self._sequence = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def enabled(self) -> bool:
        return self._enabled

    def log(self, event: str, **data: Any) -> None:
        """Append a single event line."""
        if not self._enabled:
            return
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "task_id": self._task_id,
            **data,
        }
        try:
            self._ensure_open()
            self._file.write(json.dumps(entry, default=str) + "\n")
            self._file.flush()
        except (OSError, TypeError, ValueError) as e:
            logger.debug(f"Session log write failed (non-fatal): {e}")

    def log_tool_call(self, tool_name: str, tool_input: Optional[dict] = None) -> None:
        """Log a tool call with its redacted input parameters."""
        if not self._enabled:
            return
        self._sequence += 1
        data = {"tool": tool_name, "sequence": self._sequence}
        if self._log_tool_inputs and tool_input:
            data["input"] = self._clip(_redact_sensitive_values(tool_input))
        self.log("tool_call", **data)

    def log_tool_result(self, tool_name: str, success: bool, result_size: int) -> None:
        self.log("tool_result", tool=tool_name, sequence=self._sequence, success=success, result_size=result_size)

    def log_error(self, message: str, **data: Any) -> None:
        self.log("error", message=redact(message), **data)

    def _clip(self, tool_input: dict) -> dict:
        limit = self._max_content_chars
        return {
            k: (v[:limit] + "...") if isinstance(v, str) and len(v) > limit else v
            for k, v in tool_input.items()
        }

    def close(self) -> None:
        if self._file:
            try:
                self._file.close()
            except OSError:
                pass
            self._file = None

    def _ensure_open(self) -> None:
        if self._file is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self._path, "a")

    @staticmethod
    def cleanup_old_sessions(logs_dir: Path, retention_days: int) -> int:
        """Delete session logs older than retention_days. Returns count removed."""
        sessions_dir = Path(logs_dir) / "sessions"
        if not sessions_dir.exists():
            return 0

        cutoff = time.time() - (retention_days * 86400)
        removed = 0
        for f in sessions_dir.glob("*.jsonl"):
            try:
                if f.stat().st_mtime < cutoff:
                    f.unlink()
                    removed += 1
            except OSError:
                pass
        if removed:
            logger.info(f"Cleaned up {removed} session logs older than {retention_days} days")
        return removed

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


# Singleton no-op instance to avoid None checks everywhere
_NOOP = None


def noop_logger() -> "SessionLogger":
    """Return a disabled SessionLogger (avoids None checks at call sites)."""
    global _NOOP
    if _NOOP is None:
        _NOOP = SessionLogger(Path("/dev/null"), "noop", enabled=False)
    return _NOOP
