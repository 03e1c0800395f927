# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Turns due schedules into launched jobs."""

from datetime import UTC, datetime

from loguru import logger

from postforge.core.types import LogStatus, resolve_template
from postforge.server.database.job_repository import JobRepository
from postforge.server.database.schedule_repository import ScheduleRepository, get_next_topic
from postforge.server.engine.service import WorkflowEngine
from postforge.server.models.schedule import Schedule, ScheduleRunResult


NO_TOPIC_ERROR = "No topic available"


def build_brief(topic: str, target_reader: str | None, keywords: list[str]) -> str:
    """Compose the writer context for a scheduled job.

    Args:
        topic: Resolved topic.
        target_reader: Optional audience hint.
        keywords: Optional keywords.

    Returns:
        The topic, followed by audience and keyword lines when present.
    """
    lines = [topic]
    if target_reader:
        lines.append(f"Target reader: {target_reader}")
    if keywords:
        lines.append(f"Keywords: {', '.join(keywords)}")
    return "\n".join(lines)


class SchedulerTrigger:
    """Processes every due schedule once per invocation.

    A due schedule with a resolvable topic gets a new job, launched on the
    engine without waiting for it. A schedule without a topic, or one whose
    processing raises, is recorded as a failed run; either way it is
    rescheduled and the remaining schedules are still processed.
    """

    def __init__(
        self,
        schedules: ScheduleRepository,
        jobs: JobRepository,
        engine: WorkflowEngine,
    ) -> None:
        """Initialize the trigger.

        Args:
            schedules: Schedule store.
            jobs: Job store.
            engine: Engine used to launch created jobs.
        """
        self._schedules = schedules
        self._jobs = jobs
        self._engine = engine

    async def process_due(self, now: datetime | None = None) -> list[ScheduleRunResult]:
        """Run all schedules due at ``now``.

        Args:
            now: Reference time (defaults to the current time).

        Returns:
            One result per due schedule.
        """
        now = now or datetime.now(UTC)
        due = await self._schedules.get_due(now)
        if due:
            logger.info("Processing due schedules", count=len(due))

        results: list[ScheduleRunResult] = []
        for schedule in due:
            try:
                results.append(await self._run_schedule(schedule, now))
            except Exception as e:
                logger.exception("Scheduled run failed", schedule_id=schedule.id, error=str(e))
                try:
                    await self._schedules.mark_as_run(
                        schedule.id, None, success=False, error=str(e), now=now
                    )
                except Exception:
                    logger.exception("Failed to record scheduled run", schedule_id=schedule.id)
                results.append(
                    ScheduleRunResult(
                        schedule_id=schedule.id, name=schedule.name, success=False, error=str(e)
                    )
                )
        return results

    async def _run_schedule(self, schedule: Schedule, now: datetime) -> ScheduleRunResult:
        topic = get_next_topic(schedule)
        if topic is None:
            logger.warning("Schedule has no topic, skipping run", schedule_id=schedule.id)
            await self._schedules.mark_as_run(
                schedule.id, None, success=False, error=NO_TOPIC_ERROR, now=now
            )
            return ScheduleRunResult(
                schedule_id=schedule.id,
                name=schedule.name,
                success=False,
                error=NO_TOPIC_ERROR,
            )

        job = await self._jobs.create(
            topic=topic,
            category=schedule.category,
            template=resolve_template(schedule.template),
        )
        await self._jobs.log(
            job.id,
            "init",
            LogStatus.STARTED,
            f"Scheduled job created from schedule: {schedule.name}",
            {
                "schedule_id": schedule.id,
                "target_reader": schedule.target_reader,
                "keywords": schedule.keywords,
            },
        )

        self._engine.launch(
            job.id, brief=build_brief(topic, schedule.target_reader, schedule.keywords)
        )
        await self._schedules.mark_as_run(schedule.id, job.id, success=True, now=now)
        logger.info(
            "Scheduled job launched", schedule_id=schedule.id, job_id=job.id, topic=topic
        )
        return ScheduleRunResult(
            schedule_id=schedule.id,
            name=schedule.name,
            success=True,
            job_id=job.id,
            topic=topic,
        )
