"""Per-task workflow record, JSON store and state machine.

Status lattice::

    PENDING -> PLANNING -> AWAITING_APPROVAL -> IMPLEMENTING -> TESTING
        -> READY_TO_MERGE -> COMPLETED

FAILED and CANCELLED are reachable from any non-terminal status and are
absorbing. The only move against the lattice is a change request, which
sends AWAITING_APPROVAL or TESTING back to IMPLEMENTING.
"""

import json
import logging
import threading
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import WorkflowStateError
from ..utils.atomic_io import atomic_write_json

logger = logging.getLogger(__name__)


class WorkflowStatus(str, Enum):
    PENDING = "PENDING"
    PLANNING = "PLANNING"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    IMPLEMENTING = "IMPLEMENTING"
    TESTING = "TESTING"
    READY_TO_MERGE = "READY_TO_MERGE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


STATUS_ORDER = [
    WorkflowStatus.PENDING,
    WorkflowStatus.PLANNING,
    WorkflowStatus.AWAITING_APPROVAL,
    WorkflowStatus.IMPLEMENTING,
    WorkflowStatus.TESTING,
    WorkflowStatus.READY_TO_MERGE,
    WorkflowStatus.COMPLETED,
]

TERMINAL_STATUSES = frozenset({
    WorkflowStatus.COMPLETED,
    WorkflowStatus.FAILED,
    WorkflowStatus.CANCELLED,
})

CHANGE_REQUEST_STATUSES = frozenset({
    WorkflowStatus.AWAITING_APPROVAL,
    WorkflowStatus.TESTING,
})

# A crashed run may leave a workflow in PLANNING; a new assignment may resume it
RESTARTABLE_STATUSES = frozenset({
    WorkflowStatus.PENDING,
    WorkflowStatus.PLANNING,
})


def _now() -> datetime:
    return datetime.now(UTC)


class Workflow(BaseModel):
    """Durable orchestration state for one task."""

    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    task_id: str
    repository_id: Optional[str] = None
    base_branch: Optional[str] = None
    working_branch: Optional[str] = None
    status: WorkflowStatus = WorkflowStatus.PENDING
    ai_service: str = "claude"
    pull_request_number: Optional[int] = None
    pull_request_url: Optional[str] = None
    deployment_url: Optional[str] = None
    preview_url: Optional[str] = None
    plan_approved: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape for HTTP and CLI output."""
        return {
            "id": self.id,
            "taskId": self.task_id,
            "repositoryId": self.repository_id,
            "baseBranch": self.base_branch,
            "workingBranch": self.working_branch,
            "status": self.status,
            "aiService": self.ai_service,
            "pullRequestNumber": self.pull_request_number,
            "pullRequestUrl": self.pull_request_url,
            "deploymentUrl": self.deployment_url,
            "previewUrl": self.preview_url,
            "planApproved": self.plan_approved,
            "metadata": self.metadata,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


class WorkflowStore:
    """JSON-file persistence for workflows, keyed by task id."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._workflows: Dict[str, Workflow] = {}
        self._lock = threading.Lock()
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read workflows from {self.path}: {e}")
            return
        for task_id, data in raw.items():
            try:
                self._workflows[task_id] = Workflow(**data)
            except ValidationError as e:
                logger.warning(f"Skipping invalid workflow for task {task_id}: {e}")

    def _save(self) -> None:
        data = {task_id: wf.model_dump(mode="json") for task_id, wf in self._workflows.items()}
        try:
            atomic_write_json(self.path, data)
        except OSError as e:
            logger.error(f"⚠️ Failed to persist workflows: {e}")

    def get(self, task_id: str) -> Optional[Workflow]:
        return self._workflows.get(task_id)

    def put(self, workflow: Workflow) -> None:
        with self._lock:
            self._workflows[workflow.task_id] = workflow
            self._save()

    def delete(self, task_id: str) -> bool:
        with self._lock:
            if self._workflows.pop(task_id, None) is None:
                return False
            self._save()
            return True

    def all(self) -> List[Workflow]:
        return list(self._workflows.values())


class WorkflowStateMachine:
    """Guards every workflow status change."""

    def __init__(self, store: WorkflowStore):
        self.store = store

    def get(self, task_id: str) -> Optional[Workflow]:
        return self.store.get(task_id)

    def find_or_create(
        self,
        task_id: str,
        repository_id: Optional[str] = None,
        ai_service: str = "claude",
        base_branch: Optional[str] = None,
    ) -> Workflow:
        """Return the task's workflow, creating it in PENDING on first use."""
        workflow = self.store.get(task_id)
        if workflow is not None:
            return workflow
        workflow = Workflow(
            task_id=task_id,
            repository_id=repository_id,
            ai_service=ai_service,
            base_branch=base_branch,
        )
        self.store.put(workflow)
        logger.info(f"📋 Created workflow {workflow.id} for task {task_id}")
        return workflow

    def _require(self, task_id: str) -> Workflow:
        workflow = self.store.get(task_id)
        if workflow is None:
            raise WorkflowStateError(f"No workflow for task {task_id}")
        return workflow

    def _save(self, workflow: Workflow, status: WorkflowStatus, fields: Dict[str, Any]) -> Workflow:
        updated = workflow.model_copy(
            update={**fields, "status": WorkflowStatus(status).value, "updated_at": _now()}
        )
        self.store.put(updated)
        return updated

    def update(self, task_id: str, **fields: Any) -> Workflow:
        """Update non-status fields of a live workflow."""
        workflow = self._require(task_id)
        if workflow.is_terminal:
            raise WorkflowStateError(
                f"Workflow for task {task_id} is {workflow.status}; no further updates",
                current_status=workflow.status,
            )
        fields.pop("status", None)
        return self._save(workflow, workflow.status, fields)

    def transition(self, task_id: str, new_status: WorkflowStatus, **fields: Any) -> Workflow:
        """Move a workflow forward along the lattice.

        Raises:
            WorkflowStateError: If the workflow is terminal or the move is backward
        """
        workflow = self._require(task_id)
        current = WorkflowStatus(workflow.status)
        new_status = WorkflowStatus(new_status)

        if current in TERMINAL_STATUSES:
            raise WorkflowStateError(
                f"Workflow for task {task_id} is {current.value}; cannot move to {new_status.value}",
                current_status=current.value,
            )
        if new_status not in (WorkflowStatus.FAILED, WorkflowStatus.CANCELLED):
            if STATUS_ORDER.index(new_status) < STATUS_ORDER.index(current):
                raise WorkflowStateError(
                    f"Invalid transition {current.value} -> {new_status.value} for task {task_id}",
                    current_status=current.value,
                )

        updated = self._save(workflow, new_status, fields)
        if current != new_status:
            logger.info(f"🔁 Workflow {task_id}: {current.value} -> {new_status.value}")
        return updated

    def fail(self, task_id: str, error: str) -> Optional[Workflow]:
        """Mark FAILED unless already terminal. Never raises for terminal workflows."""
        workflow = self.store.get(task_id)
        if workflow is None or workflow.is_terminal:
            return workflow
        metadata = {**workflow.metadata, "error": error}
        return self.transition(task_id, WorkflowStatus.FAILED, metadata=metadata)

    def cancel(self, task_id: str) -> Workflow:
        return self.transition(task_id, WorkflowStatus.CANCELLED)

    def approve_plan(self, task_id: str) -> Workflow:
        """AWAITING_APPROVAL -> IMPLEMENTING with the plan marked approved."""
        workflow = self._require(task_id)
        if workflow.status != WorkflowStatus.AWAITING_APPROVAL:
            raise WorkflowStateError(
                f"Plan approval requires AWAITING_APPROVAL, workflow is {workflow.status}",
                current_status=workflow.status,
            )
        return self.transition(task_id, WorkflowStatus.IMPLEMENTING, plan_approved=True)

    def request_changes(self, task_id: str, feedback: str) -> Workflow:
        """Accept reviewer feedback and send the workflow back to IMPLEMENTING.

        Raises:
            WorkflowStateError: Unless the workflow is AWAITING_APPROVAL or TESTING
        """
        workflow = self._require(task_id)
        if workflow.status not in CHANGE_REQUEST_STATUSES:
            raise WorkflowStateError(
                f"Change requests are only accepted in AWAITING_APPROVAL or TESTING, "
                f"workflow is {workflow.status}",
                current_status=workflow.status,
            )
        history = list(workflow.metadata.get("change_requests", []))
        history.append({"feedback": feedback, "at": _now().isoformat()})
        metadata = {**workflow.metadata, "change_requests": history}
        updated = self._save(
            workflow,
            WorkflowStatus.IMPLEMENTING,
            {"metadata": metadata, "plan_approved": True},
        )
        logger.info(f"✏️ Change request accepted for task {task_id}: {workflow.status} -> IMPLEMENTING")
        return updated

    def can_start_new_assignment(self, task_id: str) -> bool:
        """True when ``task.assigned`` may (re)start the plan/execute pipeline.

        Workflows with an open pull request, in review, or terminal must go
        through the change-request path instead.
        """
        workflow = self.store.get(task_id)
        if workflow is None:
            return True
        if workflow.pull_request_number is not None:
            return False
        return workflow.status in RESTARTABLE_STATUSES
