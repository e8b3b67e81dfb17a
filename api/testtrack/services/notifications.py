"""Notification of newly made assignments.

At most one job is built per session turn, and only when that turn touched
splits. Jobs are handed to a queue and never awaited on the response path.
Delivery failures belong to the queue, and the queue below only logs them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from pydantic import BaseModel

from testtrack.models.assignment import is_feature_gate
from testtrack.services.remote import AssignmentRecord, RemoteService

logger = logging.getLogger(__name__)


class NotificationJob(BaseModel):
    correlation_distinct_id: str
    visitor_id: str
    new_assignments: dict[str, str]

    model_config = {"frozen": True}

    async def perform(self, client: RemoteService) -> None:
        for split_name, variant in self.new_assignments.items():
            await client.create_assignment(
                AssignmentRecord(
                    visitor_id=self.visitor_id,
                    split_name=split_name,
                    variant=variant,
                    mixpanel_distinct_id=self.correlation_distinct_id,
                    context="feature_gate" if is_feature_gate(split_name) else "experiment",
                )
            )


class JobQueue(Protocol):
    def enqueue(self, job: NotificationJob) -> None: ...


class BackgroundJobQueue:
    """Runs each job as a detached asyncio task on the running loop."""

    def __init__(self, client: RemoteService) -> None:
        self._client = client
        self._tasks: set[asyncio.Task] = set()

    def enqueue(self, job: NotificationJob) -> None:
        task = asyncio.get_running_loop().create_task(job.perform(self._client))
        self._tasks.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Notification job failed", exc_info=exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for in-flight jobs, e.g. on shutdown."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


class NotificationDispatcher:
    def __init__(self, queue: JobQueue) -> None:
        self._queue = queue

    def dispatch(
        self,
        correlation_distinct_id: str,
        visitor_id: str,
        new_assignments: dict[str, str],
    ) -> NotificationJob | None:
        if not new_assignments:
            return None
        job = NotificationJob(
            correlation_distinct_id=correlation_distinct_id,
            visitor_id=visitor_id,
            new_assignments=dict(new_assignments),
        )
        self._queue.enqueue(job)
        logger.debug("Enqueued notification of %d assignment(s) for %s", len(new_assignments), visitor_id)
        return job
