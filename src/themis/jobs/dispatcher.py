from __future__ import annotations

import asyncio
from typing import Dict

from sanic.log import logger

from themis.jobs.worker import JobWorker
from themis.metric import checks_running, error_counter


class InProcessDispatcher:
    """Runs each dispatched check run as its own asyncio task.

    Tasks are detached from the request that created them. Cancelling them on
    shutdown leaves their records as they are.
    """

    def __init__(self, worker: JobWorker):
        self.worker = worker
        self._tasks: Dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    async def dispatch(self, check_run_id: str) -> None:
        async with self._lock:
            if check_run_id in self._tasks:
                return
            self._tasks[check_run_id] = asyncio.create_task(self._run(check_run_id))
            checks_running.set(len(self._tasks))

    async def join(self) -> None:
        async with self._lock:
            tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        async with self._lock:
            tasks = list(self._tasks.values())
            self._tasks.clear()
            checks_running.set(0)

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def running(self) -> int:
        return len(self._tasks)

    async def _run(self, check_run_id: str) -> None:
        try:
            await self.worker.run(check_run_id)
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            error_counter.labels(context="dispatch").inc()
            logger.error("Check run %s task crashed", check_run_id, exc_info=True)
        finally:
            async with self._lock:
                self._tasks.pop(check_run_id, None)
                checks_running.set(len(self._tasks))


class DeferredDispatcher:
    """Leaves PENDING check runs for a standalone worker process."""

    async def dispatch(self, check_run_id: str) -> None:
        logger.debug("Check run %s left for the worker loop", check_run_id)
