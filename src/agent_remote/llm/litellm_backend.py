"""LiteLLM-backed tool-use loop shared by every provider executor.

Each iteration sends the full transcript plus tool declarations, executes
any requested tool calls through the sandbox, folds the results back into
the transcript and only then calls the provider again.
"""

import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import litellm

from .base import (
    ExecutionResult,
    ExecutorRunConfig,
    ImplementationPlan,
    PlanningResult,
    ProviderExecutor,
    Usage,
)
from .plan_parser import USE_TOOLS_MESSAGE, PlanParseError, parse_plan
from .prompts import (
    build_execution_system_prompt,
    build_execution_user_message,
    build_planning_system_prompt,
    build_planning_user_message,
    initial_glob_pattern,
    load_project_context,
)
from ..core.config import AgentConfig, RetryConfig, SandboxConfig
from ..core.errors import ProviderAPIError, RateLimitError
from ..core.session_logger import noop_logger
from ..safeguards.retry_handler import RetryHandler
from ..sandbox.tool_executor import FileChange, ToolExecutor
from ..sandbox.tools import TOOL_DEFINITIONS

logger = logging.getLogger(__name__)

TASK_COMPLETE_REMINDER = "Please call task_complete to finalize."


class _RunState:
    """Mutable bookkeeping for one plan or execute loop."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.messages: List[Dict[str, Any]] = []
        self.usage = Usage()
        self.file_changes: Dict[str, FileChange] = {}
        self._clock = clock
        self.started = clock()

    def elapsed(self) -> float:
        return self._clock() - self.started

    def files(self) -> List[FileChange]:
        return list(self.file_changes.values())


class LiteLLMExecutor(ProviderExecutor):
    """Provider executor that talks to any litellm-supported model.

    Subclasses fix the provider name and the per-1k-token cost rates used
    for the advisory cost estimate.
    """

    provider_name = "litellm"
    input_cost_per_1k = 0.003
    output_cost_per_1k = 0.015

    def __init__(
        self,
        model: str,
        api_key: Optional[str] = None,
        agent_config: Optional[AgentConfig] = None,
        sandbox_config: Optional[SandboxConfig] = None,
        retry_config: Optional[RetryConfig] = None,
        api_base: Optional[str] = None,
        retry_handler: Optional[RetryHandler] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.model = model
        self._clock = clock
        self.api_key = api_key
        self.api_base = api_base
        self.agent_config = agent_config or AgentConfig()
        self.sandbox_config = sandbox_config or SandboxConfig()
        self.retry_config = retry_config or RetryConfig()
        self.retry_handler = retry_handler or RetryHandler(
            initial_backoff_ms=self.retry_config.initial_backoff_ms,
            max_backoff_ms=self.retry_config.max_backoff_ms,
            multiplier=self.retry_config.backoff_multiplier,
            max_retries=self.retry_config.max_retries,
        )

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return (
            input_tokens * self.input_cost_per_1k + output_tokens * self.output_cost_per_1k
        ) / 1000

    async def _complete(self, messages: List[Dict[str, Any]], temperature: float) -> Any:
        """One provider call, with provider errors mapped onto our taxonomy."""
        kwargs = {
            "model": self.model,
            "messages": messages,
            "tools": TOOL_DEFINITIONS,
            "tool_choice": "auto",
            "max_tokens": self.agent_config.max_tokens,
            "temperature": temperature,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base

        timeout = self.retry_config.api_timeout_seconds
        try:
            return await asyncio.wait_for(litellm.acompletion(**kwargs), timeout=timeout)
        except litellm.RateLimitError as e:
            raise RateLimitError(f"{self.provider_name} rate limited: {e}") from e
        except asyncio.TimeoutError as e:
            raise ProviderAPIError(f"{self.provider_name} call timed out after {timeout:g}s") from e
        except Exception as e:
            status = getattr(e, "status_code", None)
            if status == 429:
                raise RateLimitError(f"{self.provider_name} rate limited: {e}") from e
            raise ProviderAPIError(f"{self.provider_name} API error: {e}", status_code=status) from e

    async def _call(self, state: _RunState, temperature: float, config: ExecutorRunConfig) -> Any:
        session_log = config.session_logger or noop_logger()
        response = await self.retry_handler.call_with_retry(
            lambda: self._complete(state.messages, temperature),
            description=f"{self.provider_name} call",
        )
        usage = getattr(response, "usage", None)
        input_tokens = getattr(usage, "prompt_tokens", 0) or 0
        output_tokens = getattr(usage, "completion_tokens", 0) or 0
        state.usage.input_tokens += input_tokens
        state.usage.output_tokens += output_tokens
        state.usage.cost_usd = self.estimate_cost(state.usage.input_tokens, state.usage.output_tokens)
        session_log.log(
            "llm_call",
            model=self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            transcript_length=len(state.messages),
        )
        return response

    @staticmethod
    def _assistant_message(message: Any) -> Dict[str, Any]:
        entry: Dict[str, Any] = {"role": "assistant", "content": getattr(message, "content", None)}
        tool_calls = getattr(message, "tool_calls", None) or []
        if tool_calls:
            entry["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.function.name, "arguments": call.function.arguments},
                }
                for call in tool_calls
            ]
        return entry

    @staticmethod
    def _parse_arguments(raw: Any) -> Optional[Dict[str, Any]]:
        if isinstance(raw, dict):
            return raw
        try:
            parsed = json.loads(raw or "{}")
        except (json.JSONDecodeError, TypeError):
            return None
        return parsed if isinstance(parsed, dict) else None

    async def _run_tool(
        self,
        tools: ToolExecutor,
        state: _RunState,
        call: Any,
        args: Optional[Dict[str, Any]],
        config: ExecutorRunConfig,
    ) -> None:
        """Execute one tool call and append its result to the transcript."""
        session_log = config.session_logger or noop_logger()
        name = call.function.name
        session_log.log_tool_call(name, args)
        if args is None:
            content = "Error: Tool arguments were not valid JSON"
            success = False
        else:
            result = await asyncio.to_thread(tools.execute, name, args)
            if result.file_change is not None:
                state.file_changes[result.file_change.path] = result.file_change
            content = result.result
            success = result.success
        session_log.log_tool_result(name, success, len(content))
        state.messages.append({"role": "tool", "tool_call_id": call.id, "content": content})

    async def _progress(self, config: ExecutorRunConfig, message: str) -> None:
        if config.on_progress is not None:
            await config.on_progress(message)

    def _over_budget(self, state: _RunState) -> bool:
        return state.usage.cost_usd > self.agent_config.max_budget_usd

    async def plan(
        self,
        title: str,
        description: Optional[str],
        config: ExecutorRunConfig,
    ) -> PlanningResult:
        session_log = config.session_logger or noop_logger()
        max_files = self.sandbox_config.max_files_per_plan
        project_context = load_project_context(
            config.repo_path, self.sandbox_config.context_truncation_length
        )
        tools = ToolExecutor(config.repo_path, self.sandbox_config)

        state = _RunState(self._clock)
        state.messages = [
            {
                "role": "system",
                "content": build_planning_system_prompt(title, description, project_context, max_files),
            },
            {
                "role": "user",
                "content": build_planning_user_message(title, initial_glob_pattern(config.repo_path)),
            },
        ]
        max_iterations = self.agent_config.max_planning_iterations
        timeout_minutes = self.agent_config.planning_timeout_minutes
        session_log.log("phase_start", phase="planning", provider=self.provider_name, model=self.model)
        logger.info(f"📝 Planning with {self.provider_name} ({self.model}) for: {title}")

        try:
            for iteration in range(max_iterations):
                if state.elapsed() > timeout_minutes * 60:
                    return PlanningResult(
                        success=False,
                        error=f"Planning timed out after {timeout_minutes:g} minutes",
                        usage=state.usage,
                        timed_out=True,
                    )
                if self._over_budget(state):
                    return PlanningResult(
                        success=False,
                        error=f"Budget of ${self.agent_config.max_budget_usd:.2f} exceeded during planning",
                        usage=state.usage,
                    )

                await self._progress(config, f"Planning iteration {iteration + 1}...")
                response = await self._call(state, self.agent_config.planning_temperature, config)
                choice = response.choices[0]
                message = choice.message
                state.messages.append(self._assistant_message(message))

                tool_calls = getattr(message, "tool_calls", None) or []
                if tool_calls:
                    for call in tool_calls:
                        await self._progress(config, f"Using tool: {call.function.name}")
                        args = self._parse_arguments(call.function.arguments)
                        await self._run_tool(tools, state, call, args, config)
                    continue

                content = getattr(message, "content", None)
                outcome = parse_plan(content, max_files=max_files)
                if outcome.ok:
                    session_log.log(
                        "plan_ready",
                        files=[f.path for f in outcome.plan.files],
                        iterations=iteration + 1,
                    )
                    logger.info(f"✅ Plan ready: {len(outcome.plan.files)} files, ~${state.usage.cost_usd:.4f}")
                    return PlanningResult(success=True, plan=outcome.plan, usage=state.usage)

                if outcome.error == PlanParseError.NO_BLOCK and iteration == 0 and content:
                    state.messages.append({"role": "user", "content": USE_TOOLS_MESSAGE})
                    continue

                logger.debug(f"Plan not accepted ({outcome.error.value}), sending corrective prompt")
                state.messages.append({"role": "user", "content": outcome.corrective_message})

            return PlanningResult(success=False, error="Max iterations reached", usage=state.usage)
        except ProviderAPIError as e:
            session_log.log_error(str(e), phase="planning")
            logger.error(f"❌ Planning failed: {e}")
            return PlanningResult(success=False, error=str(e), usage=state.usage)

    def _partial(
        self,
        state: _RunState,
        title: str,
        description: Optional[str],
        error: str,
        timed_out: bool = False,
    ) -> ExecutionResult:
        files = state.files()
        return ExecutionResult(
            success=bool(files),
            files=files,
            commit_message=f"feat: {title}",
            pr_title=f"feat: {title}",
            pr_description=description or title,
            error=error,
            usage=state.usage,
            timed_out=timed_out,
        )

    async def execute(
        self,
        plan: ImplementationPlan,
        title: str,
        description: Optional[str],
        config: ExecutorRunConfig,
    ) -> ExecutionResult:
        session_log = config.session_logger or noop_logger()
        project_context = load_project_context(
            config.repo_path, self.sandbox_config.context_truncation_length
        )
        tools = ToolExecutor(config.repo_path, self.sandbox_config)

        state = _RunState(self._clock)
        state.messages = [
            {
                "role": "system",
                "content": build_execution_system_prompt(plan, title, description, project_context),
            },
            {"role": "user", "content": build_execution_user_message(config.extra_context)},
        ]
        max_iterations = self.agent_config.max_execution_iterations
        timeout_minutes = self.agent_config.execution_timeout_minutes
        session_log.log("phase_start", phase="implementing", provider=self.provider_name, model=self.model)
        logger.info(f"⚙️ Executing plan with {self.provider_name}: {len(plan.files)} files")

        try:
            for iteration in range(max_iterations):
                if state.elapsed() > timeout_minutes * 60:
                    logger.warning(f"⏱️ Execution timed out with {len(state.file_changes)} partial changes")
                    return self._partial(
                        state, title, description,
                        f"Execution timed out after {timeout_minutes:g} minutes",
                        timed_out=True,
                    )
                if self._over_budget(state):
                    return self._partial(
                        state, title, description,
                        f"Budget of ${self.agent_config.max_budget_usd:.2f} exceeded during execution",
                    )

                await self._progress(config, f"Implementation iteration {iteration + 1}...")
                response = await self._call(state, self.agent_config.execution_temperature, config)
                choice = response.choices[0]
                message = choice.message
                state.messages.append(self._assistant_message(message))

                tool_calls = getattr(message, "tool_calls", None) or []
                if not tool_calls:
                    state.messages.append({"role": "user", "content": TASK_COMPLETE_REMINDER})
                    continue

                for call in tool_calls:
                    name = call.function.name
                    args = self._parse_arguments(call.function.arguments)
                    await self._progress(config, f"Using tool: {name}")
                    if name == "task_complete" and args is not None:
                        files = state.files()
                        session_log.log(
                            "execution_complete",
                            files=[f.path for f in files],
                            iterations=iteration + 1,
                        )
                        logger.info(f"✅ Execution complete: {len(files)} files changed")
                        return ExecutionResult(
                            success=True,
                            files=files,
                            commit_message=args.get("commit_message") or f"feat: {title}",
                            pr_title=args.get("pr_title") or f"feat: {title}",
                            pr_description=args.get("pr_description") or description or title,
                            usage=state.usage,
                        )
                    await self._run_tool(tools, state, call, args, config)

            return self._partial(state, title, description, "Max iterations reached")
        except ProviderAPIError as e:
            session_log.log_error(str(e), phase="implementing")
            logger.error(f"❌ Execution failed: {e}")
            return ExecutionResult(success=False, files=state.files(), error=str(e), usage=state.usage)
