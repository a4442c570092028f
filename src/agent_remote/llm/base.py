"""Provider executor contract and the plan/result types it exchanges."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..core.session_logger import SessionLogger
from ..sandbox.tool_executor import FileChange

ProgressCallback = Callable[[str], Awaitable[None]]


class PlanFile(BaseModel):
    """One file the plan intends to touch."""
    path: str
    purpose: str = ""
    changes: str = ""


class ImplementationPlan(BaseModel):
    """Structured plan produced by the planning phase."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    summary: str = ""
    approach: str = ""
    files: List[PlanFile] = Field(default_factory=list)
    estimated_complexity: str = Field(default="medium", alias="estimatedComplexity")
    considerations: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def coerce_llm_shapes(cls, data: Any) -> Any:
        """Tolerate the loose shapes models emit for list fields.

        Bare strings in ``files`` become ``{"path": ...}``; dict or non-string
        entries in ``considerations`` are flattened to strings.
        """
        if not isinstance(data, dict):
            return data
        data = dict(data)
        files = data.get("files")
        if isinstance(files, list):
            data["files"] = [{"path": f} if isinstance(f, str) else f for f in files]
        considerations = data.get("considerations")
        if isinstance(considerations, str):
            data["considerations"] = [considerations]
        elif isinstance(considerations, list):
            data["considerations"] = [
                " - ".join(str(v) for v in c.values()) if isinstance(c, dict) else str(c)
                for c in considerations
            ]
        if "estimated_complexity" in data and "estimatedComplexity" not in data:
            data["estimatedComplexity"] = data.pop("estimated_complexity")
        return data

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


@dataclass
class Usage:
    """Accumulated token usage with an advisory cost estimate."""
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "costUSD": round(self.cost_usd, 6),
        }


@dataclass
class PlanningResult:
    """Outcome of the planning phase."""
    success: bool
    plan: Optional[ImplementationPlan] = None
    error: Optional[str] = None
    usage: Optional[Usage] = None
    timed_out: bool = False


@dataclass
class ExecutionResult:
    """Outcome of the execution phase. ``files`` holds the final change-set."""
    success: bool
    files: List[FileChange] = field(default_factory=list)
    commit_message: str = ""
    pr_title: str = ""
    pr_description: str = ""
    error: Optional[str] = None
    usage: Optional[Usage] = None
    timed_out: bool = False


@dataclass
class ExecutorRunConfig:
    """Per-run inputs shared by plan() and execute()."""
    repo_path: Path
    task_id: Optional[str] = None
    on_progress: Optional[ProgressCallback] = None
    extra_context: Optional[str] = None  # reviewer feedback prepended on change requests
    session_logger: Optional[SessionLogger] = None


class ProviderExecutor(ABC):
    """Abstract base class for language-model provider executors.

    One implementation per provider. Both phases run a tool-use loop against
    the sandbox; the loop is strictly sequential within a run.
    """

    provider_name: str = ""

    @abstractmethod
    async def plan(
        self,
        title: str,
        description: Optional[str],
        config: ExecutorRunConfig,
    ) -> PlanningResult:
        """Explore the workspace and produce an ImplementationPlan."""
        pass

    @abstractmethod
    async def execute(
        self,
        plan: ImplementationPlan,
        title: str,
        description: Optional[str],
        config: ExecutorRunConfig,
    ) -> ExecutionResult:
        """Carry out ``plan`` in the workspace and return the change-set."""
        pass
