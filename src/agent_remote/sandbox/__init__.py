"""Tool sandbox for agent file, shell and search operations."""

from .tool_executor import FileChange, ToolExecutor, ToolResult, truncate_output
from .tools import TOOL_DEFINITIONS, TOOL_NAMES

__all__ = [
    "FileChange",
    "ToolExecutor",
    "ToolResult",
    "truncate_output",
    "TOOL_DEFINITIONS",
    "TOOL_NAMES",
]
