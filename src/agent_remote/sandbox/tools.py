"""Tool declarations sent to providers in OpenAI function-calling format."""

from typing import Any, Dict, List

TOOL_NAMES = (
    "read_file",
    "write_file",
    "edit_file",
    "run_bash",
    "glob_files",
    "grep_search",
    "task_complete",
)


def _function(name: str, description: str, properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        },
    }


_PATH = {"type": "string", "description": "Path to the file, relative to the repository root"}

TOOL_DEFINITIONS: List[Dict[str, Any]] = [
    _function(
        "read_file",
        "Read the contents of a file",
        {"file_path": _PATH},
        ["file_path"],
    ),
    _function(
        "write_file",
        "Write content to a file, creating it and its parent directories if needed",
        {"file_path": _PATH, "content": {"type": "string", "description": "Content to write"}},
        ["file_path", "content"],
    ),
    _function(
        "edit_file",
        "Edit a file by replacing the first exact occurrence of old_string with new_string",
        {
            "file_path": _PATH,
            "old_string": {"type": "string", "description": "Exact string to find"},
            "new_string": {"type": "string", "description": "Replacement string"},
        },
        ["file_path", "old_string", "new_string"],
    ),
    _function(
        "run_bash",
        "Run a bash command in the repository root",
        {"command": {"type": "string", "description": "The bash command"}},
        ["command"],
    ),
    _function(
        "glob_files",
        "Find files matching a glob pattern",
        {"pattern": {"type": "string", "description": "Glob pattern, e.g. src/**/*.ts"}},
        ["pattern"],
    ),
    _function(
        "grep_search",
        "Search for a pattern in files",
        {
            "pattern": {"type": "string", "description": "Search pattern"},
            "file_pattern": {"type": "string", "description": "Optional file or directory to search"},
        },
        ["pattern"],
    ),
    _function(
        "task_complete",
        "Signal that the task is complete",
        {
            "commit_message": {"type": "string", "description": "Git commit message"},
            "pr_title": {"type": "string", "description": "Pull request title"},
            "pr_description": {"type": "string", "description": "Pull request description"},
        },
        ["commit_message", "pr_title", "pr_description"],
    ),
]
