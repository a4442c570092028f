"""Session model for one agent's work on a task."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class SessionStatus(str, Enum):
    """Session lifecycle values."""
    IDLE = "idle"
    RUNNING = "running"
    WAITING_INPUT = "waiting_input"
    INTERRUPTED = "interrupted"
    COMPLETED = "completed"
    ERROR = "error"


ACTIVE_STATUSES = (SessionStatus.RUNNING, SessionStatus.WAITING_INPUT)


def utcnow() -> datetime:
    return datetime.now(UTC)


class Session(BaseModel):
    """In-flight agent session, one per task."""

    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    task_id: str
    title: str
    description: str = ""
    project_path: Optional[str] = None
    provider: str = "claude"
    status: SessionStatus = SessionStatus.IDLE
    metadata: Dict[str, Any] = Field(default_factory=dict)
    message_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        """Seconds since the last update."""
        now = now or utcnow()
        updated = self.updated_at
        if updated.tzinfo is None:
            updated = updated.replace(tzinfo=UTC)
        return (now - updated).total_seconds()

    def to_summary(self) -> Dict[str, Any]:
        """Wire shape used by the sessions listing."""
        return {
            "id": self.id,
            "taskId": self.task_id,
            "title": self.title,
            "status": self.status,
            "provider": self.provider,
            "updatedAt": self.updated_at.isoformat(),
        }
