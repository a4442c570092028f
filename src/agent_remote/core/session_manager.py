"""Process-wide registry of task sessions with crash recovery."""

import asyncio
import json
import logging
import threading
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .session import ACTIVE_STATUSES, Session, SessionStatus, utcnow
from ..utils.atomic_io import atomic_write_json

logger = logging.getLogger(__name__)

_IMMUTABLE_FIELDS = ("id", "task_id", "created_at")


class SessionManager:
    """Maps task ids to sessions and persists them as a JSON map.

    Sessions are kept in memory and mirrored to ``storage_path`` after every
    mutation. A failed write is logged and the registry keeps working from
    memory.
    """

    def __init__(
        self,
        storage_path: Path,
        stale_running_minutes: float = 30,
        expiry_hours: float = 24,
    ):
        self.storage_path = Path(storage_path)
        self.stale_running_minutes = stale_running_minutes
        self.expiry_hours = expiry_hours
        self._sessions: Dict[str, Session] = {}
        self._loaded = False
        self._write_lock = threading.Lock()

    def load(self) -> None:
        """Read persisted sessions once. Corrupt entries are skipped."""
        if self._loaded:
            return
        self._loaded = True
        if not self.storage_path.exists():
            logger.info(f"📂 No existing sessions file at {self.storage_path}, starting fresh")
            return
        try:
            raw = json.loads(self.storage_path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read sessions from {self.storage_path}: {e}")
            return
        for task_id, data in raw.items():
            try:
                self._sessions[task_id] = Session(**data)
            except ValidationError as e:
                logger.warning(f"Skipping invalid session for task {task_id}: {e}")
        logger.info(f"📂 Loaded {len(self._sessions)} sessions from {self.storage_path}")

    def _save(self) -> None:
        data = {task_id: s.model_dump(mode="json") for task_id, s in self._sessions.items()}
        with self._write_lock:
            try:
                atomic_write_json(self.storage_path, data)
            except OSError as e:
                logger.error(f"⚠️ Failed to persist sessions: {e}")

    async def _persist(self) -> None:
        await asyncio.to_thread(self._save)

    async def create_session(
        self,
        task_id: str,
        title: str,
        description: str = "",
        project_path: Optional[str] = None,
        provider: str = "claude",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Session:
        """Create a session for ``task_id``, replacing any previous one."""
        self.load()
        session = Session(
            task_id=task_id,
            title=title,
            description=description,
            project_path=project_path,
            provider=provider,
            metadata=metadata or {},
        )
        self._sessions[task_id] = session
        await self._persist()
        logger.info(f"📝 Created session {session.id} for task {task_id} (provider: {provider})")
        return session

    async def get_by_task_id(self, task_id: str) -> Optional[Session]:
        self.load()
        return self._sessions.get(task_id)

    async def get_by_id(self, session_id: str) -> Optional[Session]:
        self.load()
        for session in self._sessions.values():
            if session.id == session_id:
                return session
        return None

    async def update_session(self, task_id: str, **updates: Any) -> Optional[Session]:
        """Apply field updates and bump ``updated_at``. Returns None if unknown."""
        self.load()
        session = self._sessions.get(task_id)
        if session is None:
            return None
        for key in _IMMUTABLE_FIELDS:
            updates.pop(key, None)
        if isinstance(updates.get("status"), SessionStatus):
            updates["status"] = updates["status"].value
        session = session.model_copy(update={**updates, "updated_at": utcnow()})
        self._sessions[task_id] = session
        await self._persist()
        return session

    async def increment_message_count(self, task_id: str) -> None:
        session = await self.get_by_task_id(task_id)
        if session is not None:
            await self.update_session(task_id, message_count=session.message_count + 1)

    async def delete_session(self, task_id: str) -> bool:
        self.load()
        if task_id not in self._sessions:
            return False
        del self._sessions[task_id]
        await self._persist()
        logger.info(f"🗑️ Deleted session for task {task_id}")
        return True

    async def get_all_sessions(self) -> List[Session]:
        self.load()
        return list(self._sessions.values())

    async def get_active_sessions(self) -> List[Session]:
        """Sessions that are running or waiting for input."""
        self.load()
        return [s for s in self._sessions.values() if s.status in ACTIVE_STATUSES]

    async def recover_sessions(self) -> List[Session]:
        """Clear sessions left behind by a previous process.

        Interrupted and errored sessions are removed so the next assignment
        starts clean. Running sessions untouched for longer than the staleness
        threshold are treated as stuck and removed. Fresh running sessions are
        kept.

        Returns:
            The sessions that were removed
        """
        self.load()
        stale_after = timedelta(minutes=self.stale_running_minutes).total_seconds()
        now = utcnow()
        removed: List[Session] = []

        for task_id, session in list(self._sessions.items()):
            if session.status in (SessionStatus.INTERRUPTED, SessionStatus.ERROR):
                logger.info(f"🧹 Clearing {session.status} session for task {task_id}")
                removed.append(self._sessions.pop(task_id))
            elif session.status == SessionStatus.RUNNING:
                age = session.age_seconds(now)
                if age > stale_after:
                    logger.warning(
                        f"⏱️ Clearing stuck running session for task {task_id} "
                        f"(last update {age / 60:.0f} min ago)"
                    )
                    removed.append(self._sessions.pop(task_id))

        if removed:
            await self._persist()
            logger.info(f"🔄 Recovered {len(removed)} sessions")
        return removed

    async def cleanup_expired(self, max_age_hours: Optional[float] = None) -> int:
        """Remove non-running sessions not updated within ``max_age_hours``."""
        self.load()
        max_age = timedelta(hours=max_age_hours or self.expiry_hours).total_seconds()
        now = utcnow()
        cleaned = 0
        for task_id, session in list(self._sessions.items()):
            if session.status != SessionStatus.RUNNING and session.age_seconds(now) > max_age:
                del self._sessions[task_id]
                cleaned += 1
        if cleaned:
            await self._persist()
            logger.info(f"🧹 Cleaned up {cleaned} expired sessions")
        return cleaned
