import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from action_engine.integrations.models import ActionResult
from action_engine.vars import LOGGER_NAME

JobFactory = Callable[[], Awaitable[Optional[ActionResult]]]

logger = logging.getLogger(LOGGER_NAME)


@dataclass
class QueuedAction:
    request_id: str
    task: Optional[asyncio.Task] = None
    result: Optional[ActionResult] = None
    error: Optional[BaseException] = None


class ActionBackgroundQueue:
    """
    Run queued integration actions as background tasks.

    The caller only gets the request id back; each job is responsible for
    logging its own outcome and posting to its callback.
    """

    def __init__(self, logger_obj: Optional[logging.Logger] = None):
        self._logger = logger_obj or logger
        self._jobs: Dict[str, QueuedAction] = {}
        self._lock = asyncio.Lock()

    @property
    def pending_count(self) -> int:
        return sum(1 for job in self._jobs.values() if job.task and not job.task.done())

    async def enqueue(self, request_id: str, job_factory: JobFactory) -> QueuedAction:
        async with self._lock:
            job = QueuedAction(request_id=request_id)
            self._jobs[request_id] = job
            job.task = asyncio.create_task(
                self._run_job(job, job_factory), name=f"action-bg-{request_id}"
            )
            self._logger.debug("[ActionBackground] Queued action %s", request_id)
            return job

    async def drain(self) -> None:
        """Wait until every queued job has finished."""
        while True:
            async with self._lock:
                tasks = [
                    job.task
                    for job in self._jobs.values()
                    if job.task and not job.task.done()
                ]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def cancel_all(self) -> None:
        async with self._lock:
            jobs = list(self._jobs.values())
        for job in jobs:
            if job.task and not job.task.done():
                job.task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await job.task

    async def _run_job(self, job: QueuedAction, job_factory: JobFactory) -> None:
        try:
            job.result = await job_factory()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            job.error = exc
            self._logger.warning(
                "[ActionBackground] Queued action %s failed: %s", job.request_id, exc
            )
        finally:
            async with self._lock:
                if self._jobs.get(job.request_id) is job:
                    self._jobs.pop(job.request_id, None)
