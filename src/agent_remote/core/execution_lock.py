"""Per-task execution lock registry."""

import logging
from typing import Set

logger = logging.getLogger(__name__)


class ExecutionRegistry:
    """Tracks task ids with an in-flight run.

    Overlapping attempts are rejected, not queued. All calls happen on the
    event-loop thread, so the check-and-add in ``try_acquire`` is atomic with
    respect to other coroutines.
    """

    def __init__(self):
        self._active: Set[str] = set()

    def try_acquire(self, task_id: str) -> bool:
        if task_id in self._active:
            logger.info(f"⏭️ Task {task_id} already executing, lock not acquired")
            return False
        self._active.add(task_id)
        logger.debug(f"🔒 Execution lock acquired for task {task_id}")
        return True

    def release(self, task_id: str) -> None:
        if task_id in self._active:
            self._active.discard(task_id)
            logger.debug(f"🔓 Execution lock released for task {task_id}")

    def is_active(self, task_id: str) -> bool:
        return task_id in self._active

    def active_tasks(self) -> Set[str]:
        return set(self._active)

    def __len__(self) -> int:
        return len(self._active)
