"""Routes verified webhook events onto the task pipeline."""

import asyncio
import logging
import re
from typing import Any, Awaitable, Dict, Optional, Set, TYPE_CHECKING

from ..core.config import AgentRemoteConfig
from ..core.errors import WorkflowStateError
from ..core.execution_lock import ExecutionRegistry
from ..core.session import Session, SessionStatus
from ..core.session_manager import SessionManager
from ..core.workflow import CHANGE_REQUEST_STATUSES, Workflow, WorkflowStateMachine, WorkflowStatus
from ..llm.providers import detect_provider
from ..utils.validators import validate_identifier

if TYPE_CHECKING:
    from ..core.pipeline import TaskPipeline

logger = logging.getLogger(__name__)

TASK_ASSIGNED = "task.assigned"
COMMENT_CREATED = "comment.created"
TASK_UPDATED = "task.updated"

APPROVE = "approve"
CHANGES = "changes"

APPROVAL_PHRASES = (
    "approve", "approved", "lgtm", "looks good", "go ahead", "proceed",
    "yes", "good to go", "ship it",
)
CHANGE_PHRASES = (
    "change", "fix", "update", "modify", "revise", "adjust", "improve",
    "can you", "could you", "needs work", "not quite", "instead",
)


def _count_phrases(text: str, phrases) -> int:
    return sum(1 for p in phrases if re.search(rf"\b{re.escape(p)}\b", text))


def detect_comment_action(content: str) -> str:
    """Classify a review comment as an approval or as change feedback.

    A comment counts as approval only when approval phrases outnumber change
    phrases; anything else is treated as feedback.
    """
    text = content.lower()
    approvals = _count_phrases(text, APPROVAL_PHRASES)
    changes = _count_phrases(text, CHANGE_PHRASES)
    return APPROVE if approvals > changes else CHANGES


class WebhookDispatcher:
    """Turns inbound events into pipeline runs.

    Every run holds the task's execution lock from acquisition until the run
    finishes. Background runs are tracked so they are not garbage collected
    mid-flight and so callers can wait for them with ``drain()``.
    """

    def __init__(
        self,
        config: AgentRemoteConfig,
        sessions: SessionManager,
        workflows: WorkflowStateMachine,
        registry: ExecutionRegistry,
        pipeline: "TaskPipeline",
    ):
        self.config = config
        self.sessions = sessions
        self.workflows = workflows
        self.registry = registry
        self.pipeline = pipeline
        self._tasks: Set[asyncio.Task] = set()

    @staticmethod
    def _task_id(payload: Dict[str, Any], event: str) -> Optional[str]:
        task_id = (payload.get("task") or {}).get("id")
        try:
            return validate_identifier(str(task_id or ""), "task id")
        except ValueError as e:
            logger.warning(f"⚠️ {event} ignored: {e}")
            return None

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def schedule(self, event: str, payload: Dict[str, Any]) -> asyncio.Task:
        """Process ``event`` in the background; the caller does not wait."""
        return self._spawn(self.dispatch(event, payload))

    async def drain(self) -> None:
        """Wait for every in-flight background run."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def dispatch(self, event: str, payload: Dict[str, Any]) -> None:
        try:
            if event == TASK_ASSIGNED:
                await self.handle_task_assigned(payload)
            elif event == COMMENT_CREATED:
                await self.handle_comment_created(payload)
            elif event == TASK_UPDATED:
                logger.info(f"📝 Task updated: {(payload.get('task') or {}).get('id')}")
            else:
                logger.warning(f"⚠️ Unknown event type: {event}")
        except Exception as e:
            # The HTTP response has already been sent
            logger.exception(f"❌ Error handling webhook {event}: {e}")

    async def handle_task_assigned(self, payload: Dict[str, Any]) -> None:
        task = payload.get("task") or {}
        task_id = self._task_id(payload, TASK_ASSIGNED)
        if task_id is None:
            return

        if not self.workflows.can_start_new_assignment(task_id):
            workflow = self.workflows.get(task_id)
            logger.info(
                f"⏭️ Task {task_id} workflow is {workflow.status if workflow else 'unknown'}; "
                f"use a change request instead of a new assignment"
            )
            return

        if not self.registry.try_acquire(task_id):
            logger.info(f"⚠️ Task {task_id} already executing, skipping duplicate")
            return

        try:
            if not await self._clear_previous_session(task_id):
                return
            session = await self._create_session(task_id, task, payload)
            logger.info(
                f"🆕 New task assigned: {session.title} "
                f"(provider: {session.provider}, repo: {session.metadata.get('repository') or 'none'})"
            )
            await self.pipeline.run(session)
        finally:
            self.registry.release(task_id)

    async def _clear_previous_session(self, task_id: str) -> bool:
        """Drop a leftover session. False when a fresh one is still running."""
        existing = await self.sessions.get_by_task_id(task_id)
        if existing is None:
            return True
        if existing.status == SessionStatus.RUNNING:
            stale_after = self.sessions.stale_running_minutes * 60
            if existing.age_seconds() <= stale_after:
                logger.info(f"⚠️ Session already running for task {task_id}")
                return False
            logger.warning(f"⚠️ Session for task {task_id} appears stuck, starting fresh")
        await self.sessions.delete_session(task_id)
        return True

    async def _create_session(self, task_id: str, task: Dict[str, Any], payload: Dict[str, Any]) -> Session:
        task_list = payload.get("list") or {}
        ai_agent = payload.get("aiAgent") or {}
        return await self.sessions.create_session(
            task_id=task_id,
            title=task.get("title") or f"Task {task_id}",
            description=task.get("description") or "",
            provider=detect_provider(ai_agent),
            metadata={
                "listId": task_list.get("id"),
                "listName": task_list.get("name"),
                "repository": task_list.get("githubRepositoryId"),
                "aiAgent": ai_agent,
            },
        )

    async def handle_comment_created(self, payload: Dict[str, Any]) -> None:
        task_id = self._task_id(payload, COMMENT_CREATED)
        if task_id is None:
            return
        comment = payload.get("comment") or {}
        content = comment.get("content") or comment.get("body") or ""
        logger.info(f"💬 Comment received on task {task_id}: {content[:50]}")

        workflow = self.workflows.get(task_id)
        if workflow is not None and workflow.status in CHANGE_REQUEST_STATUSES and content:
            await self._review_comment(workflow, content)
            return

        session = await self.sessions.get_by_task_id(task_id)
        if session is None:
            logger.info(f"⚠️ No session found for task {task_id}, treating as new assignment")
            await self.handle_task_assigned(payload)
            return

        await self.sessions.increment_message_count(task_id)
        logger.info(f"💬 Comment logged against session {session.id} ({session.status})")

    async def _review_comment(self, workflow: Workflow, content: str) -> None:
        task_id = workflow.task_id
        action = detect_comment_action(content)
        try:
            if action == APPROVE and workflow.status == WorkflowStatus.AWAITING_APPROVAL:
                await self.approve_plan(task_id)
            elif action == APPROVE:
                logger.info(f"👍 Approval comment on task {task_id} in {workflow.status}, nothing to resume")
            else:
                await self.submit_change_request(task_id, content)
        except WorkflowStateError as e:
            logger.warning(f"⚠️ Comment on task {task_id} not applied: {e}")

    async def _session_for_workflow(self, workflow: Workflow) -> Session:
        session = await self.sessions.get_by_task_id(workflow.task_id)
        if session is not None:
            return session
        # Session may have been cleared by recovery; rebuild from the workflow
        return await self.sessions.create_session(
            task_id=workflow.task_id,
            title=workflow.metadata.get("title") or f"Task {workflow.task_id}",
            provider=workflow.ai_service,
            metadata={"repository": workflow.repository_id},
        )

    async def submit_change_request(self, task_id: str, feedback: str) -> Workflow:
        """Accept reviewer feedback and re-run execution in the background.

        Raises:
            WorkflowStateError: If the task is busy or the workflow is not in review
        """
        return await self._resume(task_id, lambda: self.workflows.request_changes(task_id, feedback), feedback)

    async def approve_plan(self, task_id: str) -> Workflow:
        """Approve the stored plan and start implementation in the background.

        Raises:
            WorkflowStateError: If the task is busy or not awaiting approval
        """
        return await self._resume(task_id, lambda: self.workflows.approve_plan(task_id), None)

    async def delete_workflow(self, task_id: str) -> bool:
        """Forget a task's workflow and session so a new assignment starts over.

        Raises:
            WorkflowStateError: If the task is executing
        """
        if not self.registry.try_acquire(task_id):
            raise WorkflowStateError(f"Task {task_id} is already executing")
        try:
            removed = self.workflows.store.delete(task_id)
            await self.sessions.delete_session(task_id)
        finally:
            self.registry.release(task_id)
        if removed:
            logger.info(f"🗑️ Deleted workflow for task {task_id}")
        return removed

    async def _resume(self, task_id: str, accept, feedback: Optional[str]) -> Workflow:
        if self.workflows.get(task_id) is None:
            raise WorkflowStateError(f"No workflow for task {task_id}")
        if not self.registry.try_acquire(task_id):
            raise WorkflowStateError(f"Task {task_id} is already executing")
        try:
            workflow = accept()
            session = await self._session_for_workflow(workflow)
            await self.sessions.increment_message_count(task_id)
        except BaseException:
            self.registry.release(task_id)
            raise
        self._spawn(self._run_locked(task_id, self.pipeline.continue_implementation(session, feedback)))
        return workflow

    async def _run_locked(self, task_id: str, run: Awaitable[None]) -> None:
        try:
            await run
        finally:
            self.registry.release(task_id)
