"""
Recurring Expense Job

Background worker that turns due templates into expenses.

Runs first at the next configured wall-clock time (02:00 by default) and
then every ``interval_hours``. Re-running is harmless: a template that
was already advanced is simply no longer due.

Stopping cancels the worker between templates or inside one; a template
whose transaction is interrupted rolls back as a whole.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog

from src.config import SchedulerSettings, get_settings
from src.models.recurring import ProcessingReport
from src.recurring.recurring_service import RecurringExpenseService


logger = structlog.get_logger(__name__)


def seconds_until(now: datetime, hour: int, minute: int) -> float:
    """Seconds from ``now`` to the next hour:minute, today or tomorrow."""
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class RecurringExpenseJob:

    def __init__(
        self,
        service: RecurringExpenseService,
        settings: Optional[SchedulerSettings] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._service = service
        self._settings = settings or get_settings().scheduler
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self.last_report: Optional[ProcessingReport] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> ProcessingReport:
        """Process everything due today, right now."""
        report = await self._service.process_due_recurring_expenses()
        self.last_report = report
        if report.failed:
            logger.warning(
                "recurring_run_had_failures",
                run_id=str(report.run_id),
                failed=report.failed,
            )
        return report

    async def _loop(self) -> None:
        delay = seconds_until(self._clock(), self._settings.run_hour, self._settings.run_minute)
        period = self._settings.interval_hours * 3600
        while True:
            logger.info("recurring_job_sleeping", seconds=round(delay))
            await asyncio.sleep(delay)
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                # Storage outage or similar; try again next period.
                logger.exception("recurring_job_run_failed")
            delay = period

    def start(self) -> None:
        if not self._settings.enabled:
            logger.info("recurring_job_disabled")
            return
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="recurring-expense-job")
        logger.info(
            "recurring_job_started",
            run_hour=self._settings.run_hour,
            run_minute=self._settings.run_minute,
            interval_hours=self._settings.interval_hours,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("recurring_job_stopped")
