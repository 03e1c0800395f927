# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Cron trigger endpoint for external schedulers."""
import secrets

from fastapi import APIRouter, Depends, Header, HTTPException, status
from loguru import logger

from postforge.server.config import ServerConfig
from postforge.server.dependencies import get_config, get_scheduler_trigger
from postforge.server.models.responses import CronRunResponse
from postforge.server.scheduler.trigger import SchedulerTrigger


router = APIRouter(prefix="/cron", tags=["cron"])


def verify_cron_secret(
    authorization: str | None = Header(default=None),
    config: ServerConfig = Depends(get_config),
) -> None:
    """Require ``Authorization: Bearer <secret>`` matching the configured cron secret.

    Raises:
        HTTPException: 401 if no secret is configured, or the header is
            missing or does not match.
    """
    if config.cron_secret is None:
        logger.warning("Rejected cron trigger: no cron secret configured")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    expected = f"Bearer {config.cron_secret}"
    if authorization is None or not secrets.compare_digest(authorization, expected):
        logger.warning("Rejected cron trigger with bad credentials")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


async def _run_due(trigger: SchedulerTrigger) -> CronRunResponse:
    results = await trigger.process_due()
    successful = sum(1 for result in results if result.success)
    logger.info(
        "Cron trigger processed schedules",
        processed=len(results),
        successful=successful,
        failed=len(results) - successful,
    )
    return CronRunResponse(
        processed=len(results),
        successful=successful,
        failed=len(results) - successful,
        results=results,
    )


@router.get("", response_model=CronRunResponse, dependencies=[Depends(verify_cron_secret)])
async def trigger_cron(
    trigger: SchedulerTrigger = Depends(get_scheduler_trigger),
) -> CronRunResponse:
    """Process every due schedule once."""
    return await _run_due(trigger)


@router.post("", response_model=CronRunResponse, dependencies=[Depends(verify_cron_secret)])
async def trigger_cron_post(
    trigger: SchedulerTrigger = Depends(get_scheduler_trigger),
) -> CronRunResponse:
    """Process every due schedule once (POST alias for schedulers that can't GET)."""
    return await _run_due(trigger)
