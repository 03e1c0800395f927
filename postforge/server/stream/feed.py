# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Polling progress feed relaying a job's log and checkpoints to a client."""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable

from loguru import logger

from postforge.pipeline.state import CHECKPOINT_STATUSES, stage_for_step
from postforge.server.database.job_repository import JobRepository
from postforge.server.models.job import Job, ProgressLog
from postforge.server.models.stream import (
    ErrorEvent,
    ProgressEvent,
    StreamEvent,
    checkpoint_event,
    terminal_event,
)


def _log_event(log: ProgressLog, job: Job) -> ProgressEvent:
    data = log.data or {}
    progress = data.get("progress")
    return ProgressEvent(
        event_id=log.id,
        step=log.step,
        status=log.status,
        message=log.message,
        progress=progress if isinstance(progress, int) else job.progress,
        stage=stage_for_step(log.step),
        data=log.data,
    )


def _snapshot_event(job: Job) -> ProgressEvent:
    return ProgressEvent(
        step=job.current_step or "init",
        status="snapshot",
        message=f"Current status: {job.status}",
        progress=job.progress,
        stage=job.status,
    )


class ProgressFeed:
    """Produces the event sequence for one client watching one job.

    On open a terminal job yields its terminal event and ends; a job at a
    checkpoint yields the checkpoint event first, then a status snapshot.
    After that the store is polled: every new log entry becomes a progress
    event, checkpoint events are re-emitted on every poll while the job
    waits, and the feed ends when the job turns terminal or the client goes
    away. Read errors are logged and retried after a backoff, indefinitely.
    The feed only reads; dropping it never affects the job.
    """

    def __init__(
        self,
        repository: JobRepository,
        poll_interval: float = 2.0,
        error_backoff: float = 3.0,
    ) -> None:
        """Initialize the feed.

        Args:
            repository: Job store to read from.
            poll_interval: Seconds between polls.
            error_backoff: Seconds to wait before the next poll after a read error.
        """
        self._repository = repository
        self._poll_interval = poll_interval
        self._error_backoff = error_backoff

    async def events(
        self,
        job_id: str,
        cursor: int | None = None,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Yield the job's events until it is terminal or the client leaves.

        Args:
            job_id: Job to follow.
            cursor: Id of the last log entry the client has seen. Defaults to
                the newest entry, so only entries appended after opening are
                relayed.
            is_disconnected: Optional probe checked before every poll.

        Yields:
            Stream events in emission order.
        """
        job = await self._repository.get(job_id)
        if job is None:
            yield ErrorEvent(message=f"Job not found: {job_id}")
            return

        final = terminal_event(job)
        if final is not None:
            yield final
            return

        if cursor is None:
            cursor = await self._repository.get_max_log_id(job_id)

        checkpoint = checkpoint_event(job)
        if checkpoint is not None:
            yield checkpoint
        yield _snapshot_event(job)

        delay = self._poll_interval
        while True:
            await asyncio.sleep(delay)
            if is_disconnected is not None and await is_disconnected():
                logger.debug("Feed client disconnected", job_id=job_id)
                return

            try:
                logs = await self._repository.get_logs_after(job_id, cursor)
                current = await self._repository.get(job_id)
            except Exception as e:
                logger.warning("Feed poll failed, backing off", job_id=job_id, error=str(e))
                delay = self._error_backoff
                continue
            delay = self._poll_interval

            if current is None:
                yield ErrorEvent(message=f"Job not found: {job_id}")
                return

            for log in logs:
                cursor = log.id
                yield _log_event(log, current)

            final = terminal_event(current)
            if final is not None:
                yield final
                return

            if current.status in CHECKPOINT_STATUSES:
                checkpoint = checkpoint_event(current)
                if checkpoint is not None:
                    yield checkpoint
