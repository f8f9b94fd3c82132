# src/lifecompass/core/sync_queue.py
"""
Background queue for best-effort remote sync.

Callers never wait on submitted work. Completion only moves the observable
status: SYNCING while anything runs, then ERROR if any operation of that
batch failed, else IDLE.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, Set, Tuple

from .models import SyncStatus, utcnow
from .ports import RemoteStoreError

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]


class SyncQueue:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self.status = SyncStatus.IDLE
        self.last_synced_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self._active = 0
        self._batch_failed = False
        self._tasks: Set[asyncio.Task] = set()
        self._deferred: List[Tuple[str, Operation]] = []

    @property
    def pending(self) -> int:
        """Operations submitted but not finished."""
        return len(self._tasks) + len(self._deferred)

    def submit(self, description: str, operation: Operation) -> None:
        """Queue an operation without waiting for it.

        With a running event loop the operation starts as a task right away;
        otherwise it waits for the next drain().
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._deferred.append((description, operation))
            logger.debug(f"Deferred sync operation: {description}")
            return

        task = loop.create_task(self._run_detached(description, operation))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def run(self, description: str, operation: Operation) -> Tuple[bool, Any]:
        """Await one operation with status bookkeeping.

        Remote errors are logged and reported as (False, None). Anything else
        is a bug and propagates.
        """
        self._begin()
        try:
            result = await operation()
        except RemoteStoreError as e:
            logger.error(f"Remote sync failed ({description}): {e}")
            self._finish(False, str(e))
            return False, None
        except Exception as e:
            self._finish(False, str(e))
            raise
        self._finish(True)
        return True, result

    def record_failure(self, description: str, error: str) -> None:
        """Mark a failure detected outside run(), such as a partial migration."""
        logger.error(f"Remote sync failed ({description}): {error}")
        self.last_error = error
        if self._active:
            self._batch_failed = True
        else:
            self.status = SyncStatus.ERROR

    async def drain(self) -> None:
        """Run deferred operations, then wait for every in-flight task."""
        while self._deferred or self._tasks:
            while self._deferred:
                description, operation = self._deferred.pop(0)
                await self._run_detached(description, operation)
            if self._tasks:
                await asyncio.gather(*list(self._tasks))

    async def _run_detached(self, description: str, operation: Operation) -> None:
        try:
            await self.run(description, operation)
        except Exception:
            logger.exception(f"Unexpected error in background sync ({description})")

    def _begin(self) -> None:
        if self._active == 0:
            self._batch_failed = False
        self._active += 1
        self.status = SyncStatus.SYNCING

    def _finish(self, ok: bool, error: Optional[str] = None) -> None:
        self._active -= 1
        if not ok:
            self._batch_failed = True
            self.last_error = error
        if self._active == 0:
            if self._batch_failed:
                self.status = SyncStatus.ERROR
            else:
                self.status = SyncStatus.IDLE
                self.last_synced_at = self.clock()
