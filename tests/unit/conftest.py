"""Shared test fixtures and fakes for unit tests."""

import json
import threading
from pathlib import Path
from types import SimpleNamespace
from typing import List, Optional
from unittest.mock import MagicMock

import pytest

from agent_remote.core.config import (
    AgentRemoteConfig,
    DeployConfig,
    ProvidersConfig,
    ServerConfig,
    WorkspaceConfig,
    WorktreeSettings,
)
from agent_remote.core.execution_lock import ExecutionRegistry
from agent_remote.core.pipeline import TaskPipeline
from agent_remote.core.session_manager import SessionManager
from agent_remote.core.workflow import WorkflowStateMachine, WorkflowStore
from agent_remote.integrations.github.client import PullRequestRef
from agent_remote.llm.base import (
    ExecutionResult,
    ExecutorRunConfig,
    ImplementationPlan,
    PlanFile,
    PlanningResult,
    ProviderExecutor,
    Usage,
)
from agent_remote.sandbox.tool_executor import FileChange
from agent_remote.webhooks.callback_client import CallbackClient
from agent_remote.webhooks.dispatcher import WebhookDispatcher
from agent_remote.workspace.manager import WorkspaceManager
from agent_remote.workspace.repo_manager import RepoManager

WEBHOOK_SECRET = "S"
CALLBACK_URL = "http://astrid.test/api/remote-callback"


def make_config(tmp_path: Path, **agent_overrides) -> AgentRemoteConfig:
    config = AgentRemoteConfig(
        server=ServerConfig(
            webhook_secret=WEBHOOK_SECRET,
            callback_url=CALLBACK_URL,
            sessions_path=tmp_path / "state" / "sessions.json",
            workflows_path=tmp_path / "state" / "workflows.json",
            logs_dir=tmp_path / "logs",
        ),
        providers=ProvidersConfig(anthropic_api_key="sk-ant-test", openai_api_key=None, gemini_api_key=None),
        workspace=WorkspaceConfig(
            root=tmp_path / "repos",
            worktree=WorktreeSettings(enabled=False),
            github_token="ghp_test",
        ),
        deploy=DeployConfig(enabled=False, token=None),
    )
    if agent_overrides:
        config.agent = config.agent.model_copy(update=agent_overrides)
    return config


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path)


class FakeExecutor(ProviderExecutor):
    """Scripted executor: one plan, one change-set."""

    provider_name = "fake"

    def __init__(self, plan: Optional[ImplementationPlan] = None, result: Optional[ExecutionResult] = None):
        self.plan_result = PlanningResult(
            success=True,
            plan=plan or ImplementationPlan(
                summary="Add a site footer",
                approach="New component rendered from the layout",
                files=[PlanFile(path="src/Footer.tsx", purpose="footer component")],
            ),
            usage=Usage(input_tokens=1200, output_tokens=300, cost_usd=0.0081),
        )
        self.execution_result = result or ExecutionResult(
            success=True,
            files=[FileChange(path="src/Footer.tsx", content="export const Footer = () => null\n", action="create")],
            commit_message="feat: add footer",
            pr_title="Add footer",
            pr_description="Adds a footer component",
            usage=Usage(input_tokens=2000, output_tokens=500, cost_usd=0.0135),
        )
        self.plan_calls: List[str] = []
        self.execute_calls: List[ExecutorRunConfig] = []

    async def plan(self, title, description, config):
        self.plan_calls.append(title)
        if config.on_progress is not None:
            await config.on_progress("Planning iteration 1...")
        return self.plan_result

    async def execute(self, plan, title, description, config):
        self.execute_calls.append(config)
        return self.execution_result


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def repo_manager(tmp_path):
    repos = MagicMock(spec=RepoManager)
    repo_path = tmp_path / "repos" / "org" / "repo"
    repo_path.mkdir(parents=True)
    repos.ensure_repo.return_value = repo_path
    repos.get_default_branch.return_value = "main"
    repos.commit_all.return_value = True
    repos.repo_lock.side_effect = lambda owner_repo: threading.Lock()
    return repos


@pytest.fixture
def github_client():
    client = MagicMock()
    client.create_or_update_pull_request.return_value = PullRequestRef(
        number=42, url="https://github.com/org/repo/pull/42", created=True
    )
    return client


@pytest.fixture
def callback_http():
    http = MagicMock()
    http.post.return_value = MagicMock(ok=True, status_code=200)
    return http


def posted_callbacks(http: MagicMock) -> List[dict]:
    """Decode every callback body posted through a mocked requests session."""
    return [json.loads(call.kwargs["data"]) for call in http.post.call_args_list]


@pytest.fixture
def services(config, fake_executor, repo_manager, github_client, callback_http):
    """A fully wired dispatcher with external edges faked."""
    sessions = SessionManager(config.server.sessions_path)
    workflows = WorkflowStateMachine(WorkflowStore(config.server.workflows_path))
    workspaces = WorkspaceManager(config.workspace, repo_manager=repo_manager, github_client=github_client)
    callbacks = CallbackClient(config.server, session=callback_http)
    providers_used = []

    def factory(provider, cfg):
        providers_used.append(provider)
        return fake_executor

    pipeline = TaskPipeline(config, sessions, workflows, workspaces, callbacks, executor_factory=factory)
    registry = ExecutionRegistry()
    dispatcher = WebhookDispatcher(config, sessions, workflows, registry, pipeline)
    return SimpleNamespace(
        config=config,
        sessions=sessions,
        workflows=workflows,
        workspaces=workspaces,
        callbacks=callbacks,
        pipeline=pipeline,
        registry=registry,
        dispatcher=dispatcher,
        executor=fake_executor,
        providers_used=providers_used,
        http=callback_http,
        repos=repo_manager,
        github=github_client,
    )


def assigned_payload(task_id="t1", title="Add footer", repo="org/repo", email="claude@x"):
    return {
        "event": "task.assigned",
        "task": {"id": task_id, "title": title, "description": "Add a footer to every page"},
        "list": {"id": "list-1", "name": "Website", "githubRepositoryId": repo},
        "aiAgent": {"email": email},
    }
