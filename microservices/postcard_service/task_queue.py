"""
Background task scheduling for dispatch and reconciliation.

Two dispatch backends implement TaskQueueProtocol: an in-process asyncio
queue (default) and the external task service, which calls back the
internal trigger endpoints.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional
from uuid import uuid4

from .clients.task_client import DISPATCH_TASK_TYPE, TaskClient
from .protocols import DispatchInProgressError

logger = logging.getLogger(__name__)

DispatchRunner = Callable[[str], Awaitable[Any]]


class AsyncioTaskQueue:
    """One asyncio task per campaign dispatch, inside this process"""

    def __init__(self, runner: Optional[DispatchRunner] = None, shutdown_timeout: float = 30.0):
        self._runner = runner
        self._tasks: Dict[str, asyncio.Task] = {}
        self.shutdown_timeout = shutdown_timeout

    def bind(self, runner: DispatchRunner) -> None:
        """Attach the coroutine that dispatches a campaign id"""
        self._runner = runner

    def is_running(self, campaign_id: str) -> bool:
        task = self._tasks.get(campaign_id)
        return task is not None and not task.done()

    async def enqueue_dispatch(self, campaign_id: str, organization_id: str) -> str:
        """
        Start dispatching in the background and return a task id.

        Raises:
            DispatchInProgressError: a dispatch of this campaign is still running
        """
        if self._runner is None:
            raise RuntimeError("Task queue has no dispatch runner bound")
        if self.is_running(campaign_id):
            raise DispatchInProgressError(f"Campaign {campaign_id} is already dispatching")

        task_id = f"task_{uuid4().hex[:16]}"
        task = asyncio.create_task(self._run(campaign_id, task_id), name=f"postcard-dispatch-{campaign_id}")
        self._tasks[campaign_id] = task
        task.add_done_callback(lambda t: self._forget(campaign_id, t))
        logger.info(f"Dispatch task {task_id} started for campaign {campaign_id} (org {organization_id})")
        return task_id

    def _forget(self, campaign_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(campaign_id) is task:
            del self._tasks[campaign_id]

    async def _run(self, campaign_id: str, task_id: str) -> None:
        try:
            await self._runner(campaign_id)
        except Exception as e:
            logger.error(f"Dispatch task {task_id} for campaign {campaign_id} failed: {e}")

    async def close(self) -> None:
        """Wait for running dispatches, cancelling any that outlive the timeout"""
        tasks = list(self._tasks.values())
        if not tasks:
            return
        logger.info(f"Waiting for {len(tasks)} dispatch task(s) to finish")
        done, pending = await asyncio.wait(tasks, timeout=self.shutdown_timeout)
        for task in pending:
            logger.warning(f"Cancelling unfinished dispatch task {task.get_name()}")
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


class TaskServiceQueue:
    """Hands dispatches to task_service, which calls /internal/postcards/dispatch/{id}"""

    def __init__(self, task_client: TaskClient):
        self.task_client = task_client

    async def enqueue_dispatch(self, campaign_id: str, organization_id: str) -> str:
        task_id = await self.task_client.create_dispatch_task(campaign_id, organization_id)
        logger.info(f"Dispatch for campaign {campaign_id} handed to task_service: {task_id}")
        return task_id

    async def close(self) -> None:
        pass


class PeriodicRunner:
    """Calls an async function every interval until stopped"""

    def __init__(self, name: str, interval_seconds: float, func: Callable[[], Awaitable[Any]]):
        self.name = name
        self.interval_seconds = interval_seconds
        self.func = func
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info(f"Periodic task {self.name} started (every {self.interval_seconds}s)")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.func()
            except Exception as e:
                logger.error(f"Periodic task {self.name} failed: {e}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"Periodic task {self.name} stopped")


__all__ = [
    "DISPATCH_TASK_TYPE",
    "AsyncioTaskQueue",
    "TaskServiceQueue",
    "PeriodicRunner",
]
