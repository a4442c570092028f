"""Pydantic models for the HTTP API."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class WebhookAccepted(BaseModel):
    """Immediate reply to a verified webhook."""
    success: bool = True
    event: Optional[str] = None
    message: str = "Processing started"


class ErrorResponse(BaseModel):
    error: str
    status: Optional[str] = None


class HealthResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str
    providers: Dict[str, str]
    active_sessions: int = Field(alias="activeSessions")
    timestamp: str


class SessionSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    task_id: str = Field(alias="taskId")
    title: str
    status: str
    provider: str
    updated_at: str = Field(alias="updatedAt")


class SessionsResponse(BaseModel):
    count: int
    sessions: List[SessionSummary]


class ChangeRequestBody(BaseModel):
    """Reviewer feedback for an implementation in review."""
    feedback: str = Field(min_length=1)


class WorkflowActionResponse(BaseModel):
    success: bool = True
    message: str
    workflow: Dict[str, Any]


class WorkflowDeleted(BaseModel):
    success: bool = True
    message: str
