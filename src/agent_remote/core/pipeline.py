"""Task pipeline: workspace, plan, execute, publish, deploy.

One ``TaskPipeline`` instance serves every task. Each run walks the workflow
lattice and reports back through the callback client; every accepted run
ends with either ``session.completed`` or ``session.error``.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from .config import AgentRemoteConfig
from .errors import AgentRemoteError, DeploymentError, PhaseTimeoutError, WorkspaceError
from .session import Session, SessionStatus
from .session_logger import SessionLogger
from .session_manager import SessionManager
from .workflow import WorkflowStateMachine, WorkflowStatus
from ..deploy.vercel import DeploymentManager
from ..llm.base import ExecutionResult, ExecutorRunConfig, ImplementationPlan, ProviderExecutor
from ..llm.providers import create_executor
from ..utils.rich_logging import task_logger
from ..webhooks.callback_client import CallbackClient
from ..workspace.manager import Workspace, WorkspaceManager

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[str, AgentRemoteConfig], ProviderExecutor]


class TaskPipeline:
    """Drives one task from assignment to pull request."""

    def __init__(
        self,
        config: AgentRemoteConfig,
        sessions: SessionManager,
        workflows: WorkflowStateMachine,
        workspaces: WorkspaceManager,
        callbacks: CallbackClient,
        deployer: Optional[DeploymentManager] = None,
        executor_factory: ExecutorFactory = create_executor,
    ):
        self.config = config
        self.sessions = sessions
        self.workflows = workflows
        self.workspaces = workspaces
        self.callbacks = callbacks
        self.deployer = deployer or DeploymentManager(config.deploy)
        self.executor_factory = executor_factory

    def repository_for(self, session: Session) -> Optional[str]:
        return session.metadata.get("repository") or self.config.workspace.default_repository

    async def run(self, session: Session) -> None:
        """Full run for a fresh assignment: plan, then implement."""
        await self._guarded(session, self._plan_and_implement, session)

    async def continue_implementation(self, session: Session, feedback: Optional[str] = None) -> None:
        """Resume a workflow already moved to IMPLEMENTING by approval or a change request."""
        await self._guarded(session, self._implement_stored_plan, session, feedback)

    async def _guarded(self, session: Session, step: Callable, *args: Any) -> None:
        task_id = session.task_id
        log = task_logger(__name__, task_id)
        state: Dict[str, Any] = {"workspace": None, "files": []}
        try:
            await self.sessions.update_session(task_id, status=SessionStatus.RUNNING)
            await step(*args, state=state, log=log)
        except PhaseTimeoutError as e:
            log.error(f"⏱️ {e}")
            await self._report_failure(session, str(e), state["files"])
        except Exception as e:
            log.exception(f"❌ Task failed: {e}")
            await self._report_failure(session, str(e) or type(e).__name__, state["files"])
        finally:
            await self.workspaces.cleanup(state["workspace"])

    async def _report_failure(self, session: Session, error: str, files: List[str]) -> None:
        self.workflows.fail(session.task_id, error)
        await self.sessions.update_session(session.task_id, status=SessionStatus.ERROR)
        await self.callbacks.notify_error(session.task_id, session.id, error, files=files or None)

    def _run_config(self, session: Session, workspace: Workspace, log_file: SessionLogger,
                    feedback: Optional[str] = None) -> ExecutorRunConfig:
        async def on_progress(message: str) -> None:
            await self.callbacks.notify_progress(session.task_id, session.id, message)

        return ExecutorRunConfig(
            repo_path=workspace.path,
            task_id=session.task_id,
            on_progress=on_progress,
            extra_context=feedback,
            session_logger=log_file,
        )

    async def _prepare(self, session: Session, state: Dict[str, Any]) -> Workspace:
        repository = self.repository_for(session)
        if not repository:
            raise WorkspaceError(f"No repository configured for task {session.task_id}")
        workspace = await self.workspaces.prepare_workspace(session.task_id, repository)
        state["workspace"] = workspace
        await self.sessions.update_session(session.task_id, project_path=str(workspace.path))
        return workspace

    async def _plan_and_implement(self, session: Session, state: Dict[str, Any], log) -> None:
        task_id = session.task_id
        repository = self.repository_for(session)
        self.workflows.find_or_create(task_id, repository_id=repository, ai_service=session.provider)

        executor = self.executor_factory(session.provider, self.config)
        await self.callbacks.notify_started(
            task_id, session.id, f"Starting work on: {session.title} (using {session.provider})"
        )

        workspace = await self._prepare(session, state)
        workflow = self.workflows.update(
            task_id, working_branch=workspace.branch, base_branch=workspace.base_branch
        )

        log.phase_change("planning")
        self.workflows.transition(task_id, WorkflowStatus.PLANNING)
        with SessionLogger(self.config.server.logs_dir, task_id) as log_file:
            planning = await executor.plan(
                session.title, session.description, self._run_config(session, workspace, log_file)
            )
        if planning.usage:
            log.token_usage(planning.usage.input_tokens, planning.usage.output_tokens, planning.usage.cost_usd)
        if planning.timed_out:
            raise PhaseTimeoutError(planning.error or "Planning timed out")
        if not planning.success or planning.plan is None:
            raise AgentRemoteError(planning.error or "Planning failed")

        plan = planning.plan
        metadata = {**workflow.metadata, "title": session.title, "plan": plan.to_dict()}
        self.workflows.transition(task_id, WorkflowStatus.AWAITING_APPROVAL, metadata=metadata)
        log.info(f"📋 Plan ready: {len(plan.files)} file(s)")

        if self.config.agent.require_plan_approval:
            await self.sessions.update_session(task_id, status=SessionStatus.WAITING_INPUT)
            await self.callbacks.notify_waiting_input(
                task_id,
                session.id,
                question=f"Approve this plan?\n\n{plan.summary}",
                options=["approve", "request changes"],
                extra={"files": [f.path for f in plan.files]},
            )
            log.info("⏸️ Waiting for plan approval")
            return

        self.workflows.transition(task_id, WorkflowStatus.IMPLEMENTING, plan_approved=True)
        await self._implement(session, executor, workspace, plan, None, state, log)

    async def _implement_stored_plan(self, session: Session, feedback: Optional[str], state: Dict[str, Any], log) -> None:
        workflow = self.workflows.get(session.task_id)
        if workflow is None or "plan" not in workflow.metadata:
            raise AgentRemoteError(f"No stored plan for task {session.task_id}")
        plan = ImplementationPlan.model_validate(workflow.metadata["plan"])

        executor = self.executor_factory(session.provider, self.config)
        workspace = await self._prepare(session, state)
        await self._implement(session, executor, workspace, plan, feedback, state, log)

    async def _implement(
        self,
        session: Session,
        executor: ProviderExecutor,
        workspace: Workspace,
        plan: ImplementationPlan,
        feedback: Optional[str],
        state: Dict[str, Any],
        log,
    ) -> None:
        task_id = session.task_id
        log.phase_change("implementing")
        with SessionLogger(self.config.server.logs_dir, task_id) as log_file:
            result = await executor.execute(
                plan,
                session.title,
                session.description,
                self._run_config(session, workspace, log_file, feedback),
            )
        if result.usage:
            log.token_usage(result.usage.input_tokens, result.usage.output_tokens, result.usage.cost_usd)

        state["files"] = [f.path for f in result.files]
        if result.timed_out:
            raise PhaseTimeoutError(result.error or "Execution timed out")
        # Partial results (timeout, budget, max iterations) carry an error and are not published
        if not result.success or result.error:
            raise AgentRemoteError(result.error or "Execution failed")
        if not result.files:
            raise AgentRemoteError("Execution finished without any file changes")

        log.phase_change("pushing")
        push = await self.workspaces.push_changes(
            workspace,
            title=result.pr_title or session.title,
            commit_message=result.commit_message or session.title,
            body=self._pr_body(result, plan),
        )
        if not push.pushed:
            raise WorkspaceError(push.error or f"Nothing pushed for {workspace.branch}")
        if push.error:
            log.warning(f"⚠️ {push.error}")

        self.workflows.transition(
            task_id,
            WorkflowStatus.TESTING,
            pull_request_number=push.pr_number,
            pull_request_url=push.pr_url,
        )

        preview_url = await self._deploy(workspace, log)
        if preview_url and push.pr_number:
            await self.workspaces.comment_on_pull_request(
                workspace, push.pr_number, f"🚀 Preview deployment ready: {preview_url}"
            )

        # A revised PR stays in review so further change requests can follow
        if feedback is None and not self.config.agent.hold_for_review:
            self.workflows.transition(task_id, WorkflowStatus.READY_TO_MERGE)
            self.workflows.transition(task_id, WorkflowStatus.COMPLETED)
        else:
            log.info(f"👀 PR {push.pr_url or workspace.branch} left in TESTING for review")
        await self.sessions.update_session(task_id, status=SessionStatus.COMPLETED)
        await self.callbacks.notify_completed(
            task_id,
            session.id,
            summary=result.pr_description or plan.summary,
            files=state["files"],
            pr_url=push.pr_url,
            preview_url=preview_url,
        )
        log.info(f"✅ Completed: {len(result.files)} file(s), PR {push.pr_url or 'not created'}")

    async def _deploy(self, workspace: Workspace, log) -> Optional[str]:
        if not self.deployer.enabled:
            return None
        log.phase_change("deploying")
        deployment = await self.deployer.deploy(workspace.branch, workspace.path, workspace.owner_repo)
        if not deployment.success:
            if self.config.deploy.required:
                raise DeploymentError(deployment.error or "Preview deployment failed")
            log.warning(f"⚠️ Preview deployment failed (continuing): {deployment.error}")
            return None
        self.workflows.update(
            workspace.task_id,
            deployment_url=deployment.vercel_url,
            preview_url=deployment.preview_url,
        )
        return deployment.preview_url

    @staticmethod
    def _pr_body(result: ExecutionResult, plan: ImplementationPlan) -> str:
        sections = [result.pr_description or plan.summary]
        if plan.approach:
            sections.append(f"## Approach\n\n{plan.approach}")
        changed = "\n".join(f"- `{f.path}` ({f.action})" for f in result.files)
        sections.append(f"## Files\n\n{changed}")
        return "\n\n".join(s for s in sections if s)
