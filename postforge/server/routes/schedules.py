# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Schedule management routes."""

from fastapi import APIRouter, Depends, Query, status
from loguru import logger

from postforge.server.database import ScheduleRepository
from postforge.server.dependencies import get_schedule_repository
from postforge.server.exceptions import ScheduleNotFoundError
from postforge.server.models.requests import (
    CreateScheduleRequest,
    SetEnabledRequest,
    UpdateScheduleRequest,
)
from postforge.server.models.responses import ScheduleListResponse
from postforge.server.models.schedule import Schedule, ScheduleStats


router = APIRouter(prefix="/schedules", tags=["schedules"])


@router.get("", response_model=ScheduleListResponse)
async def list_schedules(
    enabled: bool | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    repository: ScheduleRepository = Depends(get_schedule_repository),
) -> ScheduleListResponse:
    """List schedules newest first.

    Args:
        enabled: Optional enabled filter.
        page: 1-based page number.
        limit: Page size.
        repository: Schedule repository dependency.

    Returns:
        A page of schedules with the total count.
    """
    schedules, total = await repository.list_schedules(enabled=enabled, page=page, limit=limit)
    return ScheduleListResponse(
        schedules=schedules,
        total=total,
        page=page,
        limit=limit,
        has_more=page * limit < total,
    )


@router.get("/stats", response_model=ScheduleStats)
async def get_schedule_stats(
    repository: ScheduleRepository = Depends(get_schedule_repository),
) -> ScheduleStats:
    """Get counters over all schedules."""
    return await repository.get_stats()


@router.get("/{schedule_id}", response_model=Schedule)
async def get_schedule(
    schedule_id: str,
    repository: ScheduleRepository = Depends(get_schedule_repository),
) -> Schedule:
    """Get a schedule by ID.

    Raises:
        ScheduleNotFoundError: If the schedule doesn't exist.
    """
    schedule = await repository.get(schedule_id)
    if schedule is None:
        raise ScheduleNotFoundError(schedule_id)
    return schedule


@router.post("", status_code=status.HTTP_201_CREATED, response_model=Schedule)
async def create_schedule(
    request: CreateScheduleRequest,
    repository: ScheduleRepository = Depends(get_schedule_repository),
) -> Schedule:
    """Create a schedule; its first next_run_at is computed from the cron expression."""
    schedule = await repository.create(Schedule(**request.model_dump()))
    logger.info(
        "Created schedule",
        schedule_id=schedule.id,
        name=schedule.name,
        next_run_at=schedule.next_run_at,
    )
    return schedule


@router.patch("/{schedule_id}", response_model=Schedule)
async def update_schedule(
    schedule_id: str,
    request: UpdateScheduleRequest,
    repository: ScheduleRepository = Depends(get_schedule_repository),
) -> Schedule:
    """Apply the fields set in the request to a schedule.

    Raises:
        ScheduleNotFoundError: If the schedule doesn't exist.
    """
    fields = request.model_dump(exclude_unset=True)
    schedule = await repository.update(schedule_id, **fields)
    logger.info("Updated schedule", schedule_id=schedule_id, fields=sorted(fields))
    return schedule


@router.patch("/{schedule_id}/enabled", response_model=Schedule)
async def set_schedule_enabled(
    schedule_id: str,
    request: SetEnabledRequest,
    repository: ScheduleRepository = Depends(get_schedule_repository),
) -> Schedule:
    """Enable or disable a schedule.

    Raises:
        ScheduleNotFoundError: If the schedule doesn't exist.
    """
    return await repository.set_enabled(schedule_id, request.enabled)


@router.delete("/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_schedule(
    schedule_id: str,
    repository: ScheduleRepository = Depends(get_schedule_repository),
) -> None:
    """Delete a schedule. Jobs it created are kept.

    Raises:
        ScheduleNotFoundError: If the schedule doesn't exist.
    """
    await repository.delete(schedule_id)
    logger.info("Deleted schedule", schedule_id=schedule_id)
