"""FastAPI server: webhook intake, health, sessions and workflow actions."""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .. import __version__
from ..core.config import AgentRemoteConfig
from ..core.errors import SignatureError, WorkflowStateError
from ..core.execution_lock import ExecutionRegistry
from ..core.pipeline import TaskPipeline
from ..core.session_manager import SessionManager
from ..core.workflow import WorkflowStateMachine, WorkflowStore
from ..utils.validators import validate_identifier
from ..webhooks.callback_client import CallbackClient
from ..webhooks.dispatcher import WebhookDispatcher
from ..webhooks.signature import verify_signature
from ..workspace.manager import WorkspaceManager
from .models import (
    ChangeRequestBody,
    ErrorResponse,
    HealthResponse,
    SessionsResponse,
    SessionSummary,
    WebhookAccepted,
    WorkflowActionResponse,
    WorkflowDeleted,
)

logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


def build_dispatcher(config: AgentRemoteConfig) -> WebhookDispatcher:
    """Wire sessions, workflows, the execution registry and the pipeline."""
    sessions = SessionManager(
        config.server.sessions_path,
        stale_running_minutes=config.session.stale_running_minutes,
        expiry_hours=config.session.expiry_hours,
    )
    workflows = WorkflowStateMachine(WorkflowStore(config.server.workflows_path))
    pipeline = TaskPipeline(
        config,
        sessions,
        workflows,
        WorkspaceManager(config.workspace),
        CallbackClient(config.server),
    )
    return WebhookDispatcher(config, sessions, workflows, ExecutionRegistry(), pipeline)


def create_app(config: AgentRemoteConfig, dispatcher: Optional[WebhookDispatcher] = None) -> FastAPI:
    """Create the FastAPI application.

    Raises:
        ConfigurationError: If the webhook secret is missing
    """
    config.require_dispatcher_secrets()
    dispatcher = dispatcher or build_dispatcher(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        removed = await dispatcher.sessions.recover_sessions()
        expired = await dispatcher.sessions.cleanup_expired()
        logger.info(f"🚀 agent-remote ready (recovered {len(removed)}, expired {expired})")
        yield
        if dispatcher.in_flight:
            logger.warning(f"⚠️ Shutting down with {dispatcher.in_flight} run(s) in flight")

    app = FastAPI(
        title="agent-remote",
        description="Remote coding-agent webhook service",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.dispatcher = dispatcher

    register_routes(app)
    return app


def _verify(request: Request, raw_body: bytes) -> None:
    config: AgentRemoteConfig = request.app.state.config
    prefix = config.server.signature_header_prefix
    verify_signature(
        raw_body,
        request.headers.get(f"{prefix}-Signature"),
        request.headers.get(f"{prefix}-Timestamp"),
        config.server.webhook_secret,
        max_age_seconds=config.server.max_timestamp_age_seconds,
        max_future_skew_seconds=config.server.max_future_skew_seconds,
    )


def _error(status_code: int, message: str, status: Optional[str] = None) -> JSONResponse:
    body = ErrorResponse(error=message, status=status)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def _task_id(task_id: str) -> str:
    try:
        return validate_identifier(task_id, "task_id")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def register_routes(app: FastAPI):
    """Register all API routes."""

    @app.post("/webhook", response_model=WebhookAccepted, responses=ERROR_RESPONSES)
    async def receive_webhook(request: Request):
        raw_body = await request.body()
        try:
            _verify(request, raw_body)
        except SignatureError as e:
            logger.error(f"❌ Webhook signature verification failed: {e}")
            return _error(401, str(e))

        try:
            payload = json.loads(raw_body or b"{}")
        except ValueError:
            return _error(400, "Invalid JSON body")
        if not isinstance(payload, dict):
            return _error(400, "Webhook body must be a JSON object")

        prefix = app.state.config.server.signature_header_prefix
        event = request.headers.get(f"{prefix}-Event") or payload.get("event")
        logger.info(f"📥 Received webhook: {event}")
        app.state.dispatcher.schedule(event, payload)
        return WebhookAccepted(event=event)

    @app.get("/health", response_model=HealthResponse, response_model_by_alias=True)
    async def health():
        providers = app.state.config.providers.availability()
        active = await app.state.dispatcher.sessions.get_active_sessions()
        status = "healthy" if "available" in providers.values() else "degraded"
        return HealthResponse(
            status=status,
            providers=providers,
            active_sessions=len(active),
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    @app.get("/sessions", response_model=SessionsResponse, response_model_by_alias=True)
    async def list_sessions():
        sessions = await app.state.dispatcher.sessions.get_all_sessions()
        return SessionsResponse(
            count=len(sessions),
            sessions=[SessionSummary(**s.to_summary()) for s in sessions],
        )

    @app.get("/workflows/{task_id}")
    async def get_workflow(task_id: str):
        workflow = app.state.dispatcher.workflows.get(_task_id(task_id))
        if workflow is None:
            raise HTTPException(status_code=404, detail=f"No workflow for task {task_id}")
        return workflow.to_dict()

    @app.post(
        "/workflows/{task_id}/changes", response_model=WorkflowActionResponse, responses=ERROR_RESPONSES
    )
    async def request_changes(task_id: str, request: Request):
        task_id = _task_id(task_id)
        raw_body = await request.body()
        try:
            _verify(request, raw_body)
        except SignatureError as e:
            return _error(401, str(e))
        try:
            body = ChangeRequestBody.model_validate_json(raw_body)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))

        try:
            workflow = await app.state.dispatcher.submit_change_request(task_id, body.feedback)
        except WorkflowStateError as e:
            return _error(409, str(e), e.current_status)
        return WorkflowActionResponse(message="Change request accepted", workflow=workflow.to_dict())

    @app.post(
        "/workflows/{task_id}/approve", response_model=WorkflowActionResponse, responses=ERROR_RESPONSES
    )
    async def approve_plan(task_id: str, request: Request):
        task_id = _task_id(task_id)
        try:
            _verify(request, await request.body())
        except SignatureError as e:
            return _error(401, str(e))
        try:
            workflow = await app.state.dispatcher.approve_plan(task_id)
        except WorkflowStateError as e:
            return _error(409, str(e), e.current_status)
        return WorkflowActionResponse(message="Plan approved", workflow=workflow.to_dict())

    @app.delete("/workflows/{task_id}", response_model=WorkflowDeleted, responses=ERROR_RESPONSES)
    async def delete_workflow(task_id: str, request: Request):
        task_id = _task_id(task_id)
        try:
            _verify(request, await request.body())
        except SignatureError as e:
            return _error(401, str(e))
        try:
            removed = await app.state.dispatcher.delete_workflow(task_id)
        except WorkflowStateError as e:
            return _error(409, str(e), e.current_status)
        if not removed:
            raise HTTPException(status_code=404, detail=f"No workflow for task {task_id}")
        return WorkflowDeleted(message=f"Workflow for task {task_id} deleted")


def run_server(config: AgentRemoteConfig, host: Optional[str] = None, port: Optional[int] = None):
    """Run the webhook server with uvicorn."""
    import uvicorn

    app = create_app(config)
    host = host or config.server.host
    port = port or config.server.port
    logger.info(f"Starting agent-remote server at http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="info")
