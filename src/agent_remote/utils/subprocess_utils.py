"""Standardized subprocess helpers for git and sandboxed shell commands."""

import logging
import os
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class SubprocessError(Exception):
    """Raised when a checked subprocess command exits non-zero."""

    def __init__(self, cmd: str, returncode: int, stderr: str, stdout: str = ""):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        super().__init__(
            f"Command failed with exit code {returncode}: {cmd}\nstderr: {stderr}"
        )


def run_command(
    cmd: Union[str, List[str]],
    *,
    cwd: Optional[Path] = None,
    check: bool = True,
    timeout: Optional[float] = None,
    env: Optional[Dict[str, str]] = None,
    shell: bool = False,
) -> subprocess.CompletedProcess:
    """
    Run a command and capture text output.

    Args:
        cmd: Command to run (string or argv list)
        cwd: Working directory
        check: Raise SubprocessError on non-zero exit
        timeout: Timeout in seconds
        env: Full environment for the child (None inherits)
        shell: Run through /bin/sh

    Raises:
        SubprocessError: If check=True and the command fails
        subprocess.TimeoutExpired: If timeout exceeded
    """
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
            shell=shell,
            check=False,
        )
    except subprocess.TimeoutExpired:
        logger.error(f"Command timed out after {timeout}s: {cmd}")
        raise

    if check and result.returncode != 0:
        cmd_str = cmd if isinstance(cmd, str) else " ".join(cmd)
        raise SubprocessError(
            cmd=cmd_str,
            returncode=result.returncode,
            stderr=result.stderr,
            stdout=result.stdout,
        )
    return result


def git_env(token: Optional[str] = None) -> Dict[str, str]:
    """Environment for git subprocesses, never prompting for credentials."""
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    if token:
        env["GIT_ASKPASS"] = "echo"
        env["GIT_USERNAME"] = "x-access-token"
        env["GIT_PASSWORD"] = token
    return env


def run_git_command(
    args: List[str],
    *,
    cwd: Optional[Path] = None,
    check: bool = True,
    timeout: int = 30,
    token: Optional[str] = None,
) -> subprocess.CompletedProcess:
    """
    Run a git command.

    Args:
        args: Git arguments (without the leading 'git')
        cwd: Repository directory
        check: Raise SubprocessError on non-zero exit
        timeout: Timeout in seconds
        token: Optional GitHub token exposed through GIT_ASKPASS
    """
    try:
        return run_command(
            ["git"] + args,
            cwd=cwd,
            check=check,
            timeout=timeout,
            env=git_env(token),
        )
    except SubprocessError:
        logger.error(f"Git command failed in {cwd}: git {' '.join(args)}")
        raise


def run_shell(
    command: str,
    *,
    cwd: Path,
    timeout: float,
    max_output_bytes: int,
) -> subprocess.CompletedProcess:
    """Run a shell command with a timeout, truncating combined output.

    Output beyond ``max_output_bytes`` is cut and marked so callers can tell
    the model that the command produced more than it is shown.
    """
    result = run_command(command, cwd=cwd, check=False, timeout=timeout, shell=True)
    result.stdout = _cap(result.stdout or "", max_output_bytes)
    result.stderr = _cap(result.stderr or "", max_output_bytes)
    return result


def _cap(text: str, max_bytes: int) -> str:
    encoded = text.encode("utf-8", errors="replace")
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max_bytes].decode("utf-8", errors="ignore") + "\n[... output exceeded buffer]"


def check_command_exists(command: str) -> bool:
    """Return True if ``command`` resolves on PATH."""
    try:
        result = subprocess.run(
            ["which", command],
            capture_output=True,
            text=True,
            check=False,
        )
        return result.returncode == 0
    except OSError:
        return False
