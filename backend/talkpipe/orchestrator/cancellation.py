"""Epoch-based cancellation for pipeline runs.

Every unit of in-flight work captures the epoch it was started under and
re-checks it after each await. Bumping the epoch strands all older work and
cancels the asyncio tasks registered under older epochs, which aborts any
HTTP request they are awaiting.

Usage:
    controller = CancellationController()
    epoch = controller.bump()
    task = controller.spawn(do_work(epoch), epoch)
    ...
    controller.check(epoch)   # raises PipelineCancelled once superseded
"""

import asyncio
import logging
from typing import Any, Coroutine, Optional

from talkpipe.errors import PipelineCancelled

logger = logging.getLogger(__name__)


class CancellationController:
    """Single cancellation token scoped to the current run."""

    def __init__(self) -> None:
        self._epoch = 0
        self._tasks: dict[int, set[asyncio.Task]] = {}

    @property
    def epoch(self) -> int:
        return self._epoch

    def is_current(self, epoch: int) -> bool:
        return epoch == self._epoch

    def check(self, epoch: int) -> None:
        """Raise PipelineCancelled if epoch has been superseded."""
        if epoch != self._epoch:
            raise PipelineCancelled(epoch, self._epoch)

    def bump(self) -> int:
        """Advance the epoch and abort every task started under an older one."""
        stale = self._tasks
        self._tasks = {}
        self._epoch += 1

        aborted = 0
        for tasks in stale.values():
            for task in tasks:
                if not task.done():
                    task.cancel()
                    aborted += 1
        if aborted:
            logger.info(f"Epoch {self._epoch}: aborted {aborted} in-flight task(s)")
        return self._epoch

    def spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        epoch: int,
        *,
        name: Optional[str] = None,
    ) -> asyncio.Task:
        """Run coro as a task tied to epoch.

        Raises:
            PipelineCancelled: If epoch is already stale (coro is closed unstarted).
        """
        if epoch != self._epoch:
            coro.close()
            raise PipelineCancelled(epoch, self._epoch)

        task = asyncio.get_running_loop().create_task(coro, name=name)
        bucket = self._tasks.setdefault(epoch, set())
        bucket.add(task)
        task.add_done_callback(bucket.discard)
        return task
