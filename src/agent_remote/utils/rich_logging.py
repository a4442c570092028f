"""Logging setup with rich console output and per-task context."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


class TaskLogFormatter(logging.Formatter):
    """Plain formatter for log files (no ANSI codes)."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        line = (
            f"{timestamp} {record.levelname:8s} [{self.service_name}] "
            f"{record.name}: {record.getMessage()}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that stamps task id and phase on every record."""

    def __init__(self, logger: logging.Logger, task_id: Optional[str] = None):
        super().__init__(logger, {})
        self.current_task_id: Optional[str] = task_id
        self.current_phase: Optional[str] = None

    def set_phase(self, phase: Optional[str]) -> None:
        self.current_phase = phase

    def process(self, msg, kwargs):
        prefix = ""
        if self.current_phase:
            prefix += f"[{self.current_phase}] "
        if self.current_task_id:
            prefix += f"[{self.current_task_id}] "
        return f"{prefix}{msg}", kwargs

    def phase_change(self, phase: str) -> None:
        """Log a phase transition."""
        self.set_phase(phase)
        phase_emoji = {
            "planning": "📝",
            "implementing": "⚙️",
            "pushing": "🔀",
            "deploying": "🚀",
        }
        emoji = phase_emoji.get(phase.lower(), "▶️")
        self.info(f"{emoji} Phase: {phase}")

    def token_usage(self, input_tokens: int, output_tokens: int, cost: float) -> None:
        """Log token usage and estimated cost."""
        total = input_tokens + output_tokens
        self.info(
            f"💰 Tokens: {input_tokens:,} in + {output_tokens:,} out = {total:,} total "
            f"(~${cost:.4f})"
        )


def task_logger(name: str, task_id: str) -> ContextLogger:
    """Return a ContextLogger bound to ``task_id``."""
    return ContextLogger(logging.getLogger(name), task_id=task_id)


def setup_rich_logging(
    service_name: str = "agent-remote",
    logs_dir: Optional[Path] = None,
    log_level: str = "INFO",
) -> logging.Logger:
    """
    Configure the root logger for the server process.

    Args:
        service_name: Name stamped on file log lines
        logs_dir: Directory for the rotating file log (None disables file output)
        log_level: Logging level name

    Returns:
        The configured root logger
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Close existing handlers before clearing (prevents file descriptor leak)
    for handler in root.handlers[:]:
        handler.close()
        root.removeHandler(handler)

    # Skip the console handler when stdout is redirected to avoid duplicate logs
    stdout_is_redirected = not sys.stdout.isatty() if hasattr(sys.stdout, "isatty") else False
    if not stdout_is_redirected:
        console_handler = RichHandler(
            console=Console(stderr=False),
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
        root.addHandler(console_handler)
    else:
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(TaskLogFormatter(service_name))
        root.addHandler(stream_handler)

    if logs_dir is not None:
        logs_dir = Path(logs_dir)
        logs_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(logs_dir / f"{service_name}.log")
        file_handler.setFormatter(TaskLogFormatter(service_name))
        root.addHandler(file_handler)

    # litellm is chatty at INFO
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return root
