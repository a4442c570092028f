"""Prompt construction for the planning and execution phases."""

import json
import logging
from pathlib import Path
from typing import Optional

from .base import ImplementationPlan

logger = logging.getLogger(__name__)

PROJECT_CONTEXT_FILE = "ASTRID.md"

# Marker file -> first glob the planner is asked to run
_INITIAL_GLOB_MARKERS = [
    ("pyproject.toml", "**/*.py"),
    ("setup.py", "**/*.py"),
    ("go.mod", "**/*.go"),
    ("Cargo.toml", "**/*.rs"),
    ("Gemfile", "**/*.rb"),
    ("tsconfig.json", "**/*.ts"),
    ("package.json", "**/*.js"),
]
DEFAULT_INITIAL_GLOB = "**/*.ts"


def load_project_context(repo_path: Path, max_length: int) -> Optional[str]:
    """Load ASTRID.md, falling back to README.md at half the budget."""
    repo_path = Path(repo_path)
    context_file = repo_path / PROJECT_CONTEXT_FILE
    if context_file.is_file():
        try:
            content = context_file.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"Could not read {context_file}: {e}")
        else:
            if len(content) > max_length:
                content = content[:max_length] + "\n\n[truncated...]"
            return content

    readme = repo_path / "README.md"
    if readme.is_file():
        try:
            content = readme.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"Could not read {readme}: {e}")
            return None
        budget = max_length // 2
        if len(content) > budget:
            content = content[:budget] + "\n\n[README.md truncated...]"
        return f"## Project Context (from README.md)\n\n{content}"
    return None


def initial_glob_pattern(repo_path: Path) -> str:
    repo_path = Path(repo_path)
    for marker, pattern in _INITIAL_GLOB_MARKERS:
        if (repo_path / marker).exists():
            return pattern
    return DEFAULT_INITIAL_GLOB


def _task_block(title: str, description: Optional[str]) -> str:
    block = f'"{title}"'
    if description:
        block += f"\n\nDetails: {description}"
    return block


def _context_block(project_context: Optional[str]) -> str:
    return f"## Project Context\n{project_context}\n" if project_context else ""


def build_planning_system_prompt(
    title: str,
    description: Optional[str],
    project_context: Optional[str],
    max_files: int,
) -> str:
    return f"""You are an expert software engineer analyzing a codebase to create an implementation plan.

{_context_block(project_context)}
## Your Task
Create an implementation plan for: {_task_block(title, description)}

## EXPLORATION WORKFLOW (MANDATORY)

### Step 1: Understand Project Structure
- Use glob_files to find source files
- Read package manifests and config files to understand the project

### Step 2: Find Relevant Code
- Use grep_search to find related terms, functions, or patterns
- Read files that are likely to need changes

### Step 3: Create Precise Plan
After reading the relevant files, respond with ONLY a JSON block:
```json
{{
  "summary": "Brief summary",
  "approach": "High-level approach with technical details",
  "files": [{{"path": "path/to/file", "purpose": "Why", "changes": "Specific changes"}}],
  "estimatedComplexity": "simple|medium|complex",
  "considerations": ["Edge case 1", "Testing requirement"]
}}
```

RULES:
- Maximum {max_files} files
- Only list files that MUST change
- Use file paths you discovered, never guessed ones
- Follow existing patterns in the codebase"""


def build_planning_user_message(title: str, initial_pattern: str) -> str:
    return (
        f'Start by calling glob_files with pattern "{initial_pattern}" to find relevant files, '
        f"then create an implementation plan for: {title}"
    )


def build_execution_system_prompt(
    plan: ImplementationPlan,
    title: str,
    description: Optional[str],
    project_context: Optional[str],
) -> str:
    plan_json = json.dumps(plan.to_dict(), indent=2)
    return f"""You are an expert software engineer implementing changes to a codebase.

{_context_block(project_context)}
## Task
Implement: {_task_block(title, description)}

## Implementation Plan
{plan_json}

## IMPLEMENTATION WORKFLOW (MANDATORY)

1. Re-read the files in the plan to confirm your approach
2. Make changes one file at a time, following existing code style
3. Run the build or tests with run_bash and fix any failures
4. Call task_complete with a commit message, PR title and PR description

## Rules
- Follow the plan
- Write complete code with no placeholders
- Prefer edit_file for small changes to existing files"""


def build_execution_user_message(extra_context: Optional[str] = None) -> str:
    message = "Please implement the changes according to the plan."
    if extra_context:
        message = f"## Reviewer Feedback\n{extra_context}\n\n{message} Address the feedback above."
    return message
