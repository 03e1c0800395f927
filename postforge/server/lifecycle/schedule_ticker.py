# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""In-process periodic scheduler trigger."""

import asyncio
import contextlib
from typing import TYPE_CHECKING

from loguru import logger


if TYPE_CHECKING:
    from postforge.server.scheduler.trigger import SchedulerTrigger


class ScheduleTicker:
    """Periodically processes due schedules.

    An alternative to calling the cron endpoint from an external scheduler.
    """

    def __init__(
        self,
        trigger: "SchedulerTrigger",
        interval: float = 60.0,
    ) -> None:
        """Initialize the ticker.

        Args:
            trigger: Scheduler trigger to invoke.
            interval: Seconds between invocations (default: 60).
        """
        self._trigger = trigger
        self._interval = interval
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Start the tick loop."""
        self._task = asyncio.create_task(self._tick_loop())
        logger.info("ScheduleTicker started", interval=self._interval)

    async def stop(self) -> None:
        """Stop the tick loop."""
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info("ScheduleTicker stopped")

    async def _tick_loop(self) -> None:
        """Process due schedules forever, sleeping between runs."""
        while True:
            await asyncio.sleep(self._interval)
            try:
                results = await self._trigger.process_due()
                if results:
                    logger.info(
                        "Scheduled runs processed",
                        processed=len(results),
                        failed=sum(1 for r in results if not r.success),
                    )
            except Exception as e:
                logger.error(
                    "Schedule tick failed - continuing loop",
                    error=str(e),
                    error_type=type(e).__name__,
                )
