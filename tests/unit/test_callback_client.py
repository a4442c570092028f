"""Tests for the signed outbound callback client."""

import json
from unittest.mock import MagicMock

import pytest
import requests

from agent_remote.core.config import ServerConfig
from agent_remote.webhooks.callback_client import CallbackClient, build_payload
from agent_remote.webhooks.signature import verify_signature

from conftest import CALLBACK_URL, WEBHOOK_SECRET


@pytest.fixture
def server_config():
    return ServerConfig(webhook_secret=WEBHOOK_SECRET, callback_url=CALLBACK_URL)


@pytest.fixture
def client(server_config, callback_http):
    return CallbackClient(server_config, session=callback_http)


def _sent(http):
    call = http.post.call_args
    return call.args[0], call.kwargs["data"], call.kwargs["headers"]


class TestBuildPayload:
    def test_shape(self):
        payload = build_payload("session.progress", "t1", "s1", {"message": "hi"})
        assert payload["event"] == "session.progress"
        assert payload["taskId"] == "t1"
        assert payload["sessionId"] == "s1"
        assert payload["data"] == {"message": "hi"}
        assert payload["timestamp"].endswith("+00:00")

    def test_none_values_dropped(self):
        payload = build_payload("session.completed", "t1", "s1", {"summary": "ok", "previewUrl": None})
        assert payload["data"] == {"summary": "ok"}


class TestSend:
    @pytest.mark.asyncio
    async def test_signed_headers_verify(self, client, callback_http):
        assert await client.notify_started("t1", "s1", "Starting work") is True

        url, body, headers = _sent(callback_http)
        assert url == CALLBACK_URL
        assert headers["Content-Type"] == "application/json"
        assert headers["X-Astrid-Event"] == "session.started"
        verify_signature(
            body,
            headers["X-Astrid-Signature"],
            headers["X-Astrid-Timestamp"],
            WEBHOOK_SECRET,
        )

    @pytest.mark.asyncio
    async def test_completed_payload(self, client, callback_http):
        await client.notify_completed(
            "t1", "s1",
            summary="Added footer",
            files=["src/Footer.tsx"],
            pr_url="https://github.com/org/repo/pull/42",
        )
        _, body, _ = _sent(callback_http)
        payload = json.loads(body)
        assert payload["event"] == "session.completed"
        assert payload["data"] == {
            "summary": "Added footer",
            "files": ["src/Footer.tsx"],
            "prUrl": "https://github.com/org/repo/pull/42",
        }

    @pytest.mark.asyncio
    async def test_waiting_input_payload(self, client, callback_http):
        await client.notify_waiting_input(
            "t1", "s1", "Approve this plan?", options=["approve"], extra={"files": ["a.py"]}
        )
        payload = json.loads(_sent(callback_http)[1])
        assert payload["data"] == {"question": "Approve this plan?", "options": ["approve"], "files": ["a.py"]}

    @pytest.mark.asyncio
    async def test_error_payload(self, client, callback_http):
        await client.notify_error("t1", "s1", "boom", files=["a.py"])
        payload = json.loads(_sent(callback_http)[1])
        assert payload["event"] == "session.error"
        assert payload["data"] == {"error": "boom", "files": ["a.py"]}


class TestBestEffort:
    @pytest.mark.asyncio
    async def test_disabled_without_url(self, callback_http):
        client = CallbackClient(ServerConfig(webhook_secret=WEBHOOK_SECRET, callback_url=None), session=callback_http)
        assert client.enabled is False
        assert await client.notify_progress("t1", "s1", "x") is False
        callback_http.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_timeout_swallowed(self, client, callback_http):
        callback_http.post.side_effect = requests.exceptions.Timeout()
        assert await client.notify_progress("t1", "s1", "x") is False

    @pytest.mark.asyncio
    async def test_connection_error_swallowed(self, client, callback_http):
        callback_http.post.side_effect = requests.exceptions.ConnectionError("refused")
        assert await client.notify_error("t1", "s1", "boom") is False

    @pytest.mark.asyncio
    async def test_http_error_status(self, client, callback_http):
        callback_http.post.return_value = MagicMock(ok=False, status_code=500)
        assert await client.notify_progress("t1", "s1", "x") is False

    @pytest.mark.asyncio
    async def test_unknown_event_rejected(self, client, callback_http):
        with pytest.raises(ValueError, match="session.finished"):
            await client.send("session.finished", "t1", "s1")
        callback_http.post.assert_not_called()
