"""Signed outbound status callbacks to the owning system.

Delivery is best effort: a failed POST is logged and dropped, never retried
and never raised into the pipeline.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from .. import __version__
from ..core.config import ServerConfig
from .signature import generate_headers

logger = logging.getLogger(__name__)

CALLBACK_EVENTS = (
    "session.started",
    "session.progress",
    "session.waiting_input",
    "session.completed",
    "session.error",
)


def build_payload(event: str, task_id: str, session_id: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "event": event,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "sessionId": session_id,
        "taskId": task_id,
    }
    if data:
        payload["data"] = {k: v for k, v in data.items() if v is not None}
    return payload


class CallbackClient:
    """Posts ``CallbackPayload`` bodies to ``server.callback_url``."""

    def __init__(self, config: ServerConfig, session: Optional[requests.Session] = None):
        self.url = config.callback_url
        self.secret = config.webhook_secret
        self.timeout = config.callback_timeout_seconds
        self.header_prefix = config.signature_header_prefix
        self.http = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.url and self.secret)

    async def send(self, event: str, task_id: str, session_id: str, data: Optional[Dict[str, Any]] = None) -> bool:
        """Deliver one callback. Returns False when skipped or failed.

        Raises:
            ValueError: If ``event`` is not a known callback event
        """
        if event not in CALLBACK_EVENTS:
            raise ValueError(f"Unknown callback event: {event}")
        if not self.enabled:
            logger.debug(f"Callbacks disabled; dropping {event} for task {task_id}")
            return False
        body = json.dumps(build_payload(event, task_id, session_id, data))
        return await asyncio.to_thread(self._post, event, task_id, body)

    def _post(self, event: str, task_id: str, body: str) -> bool:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"agent-remote/{__version__}",
            **generate_headers(body, self.secret, event, prefix=self.header_prefix),
        }
        try:
            response = self.http.post(self.url, data=body.encode("utf-8"), headers=headers, timeout=self.timeout)
        except requests.exceptions.Timeout:
            logger.warning(f"⏱️ Callback {event} for task {task_id} timed out after {self.timeout:g}s")
            return False
        except requests.RequestException as e:
            logger.warning(f"Callback {event} for task {task_id} failed: {e}")
            return False

        if not response.ok:
            logger.warning(f"Callback {event} for task {task_id} rejected: HTTP {response.status_code}")
            return False
        logger.debug(f"📤 Sent {event} for task {task_id}")
        return True

    async def notify_started(self, task_id: str, session_id: str, message: str) -> bool:
        return await self.send("session.started", task_id, session_id, {"message": message})

    async def notify_progress(self, task_id: str, session_id: str, message: str) -> bool:
        return await self.send("session.progress", task_id, session_id, {"message": message})

    async def notify_waiting_input(
        self,
        task_id: str,
        session_id: str,
        question: str,
        options: Optional[List[str]] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> bool:
        data = {"question": question, "options": options, **(extra or {})}
        return await self.send("session.waiting_input", task_id, session_id, data)

    async def notify_completed(
        self,
        task_id: str,
        session_id: str,
        summary: Optional[str] = None,
        files: Optional[List[str]] = None,
        pr_url: Optional[str] = None,
        preview_url: Optional[str] = None,
    ) -> bool:
        data = {"summary": summary, "files": files, "prUrl": pr_url, "previewUrl": preview_url}
        return await self.send("session.completed", task_id, session_id, data)

    async def notify_error(
        self,
        task_id: str,
        session_id: str,
        error: str,
        files: Optional[List[str]] = None,
    ) -> bool:
        return await self.send("session.error", task_id, session_id, {"error": error, "files": files})
