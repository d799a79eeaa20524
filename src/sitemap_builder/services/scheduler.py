"""APScheduler integration for periodic maintenance jobs."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import cast

from apscheduler.events import EVENT_JOB_ERROR  # type: ignore[import-untyped]
from apscheduler.events import EVENT_JOB_EXECUTED
from apscheduler.events import JobExecutionEvent
from apscheduler.events import SchedulerEvent
from apscheduler.job import Job  # type: ignore[import-untyped]
from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]

from sitemap_builder.config import Settings

CLEANUP_JOB_ID = "purge-expired-records"

JobCallable = Callable[[], Awaitable[object] | None]

_scheduler_logger = logging.getLogger("sitemap_builder.scheduler")


@dataclass(slots=True, frozen=True)
class SchedulerJobState:
    """Registered job summary for health output."""

    job_id: str
    name: str | None
    trigger: str
    next_run_time: datetime | None


class SchedulerService:
    """Own the in-process scheduler and log job outcomes.

    Jobs live in the default memory job store; they are re-registered on
    every startup.
    """

    def __init__(
        self,
        *,
        enabled: bool,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._enabled = enabled
        self._scheduler = scheduler or AsyncIOScheduler(
            job_defaults={"coalesce": True, "max_instances": 1}
        )
        self._scheduler.add_listener(
            self._handle_job_event,
            EVENT_JOB_EXECUTED | EVENT_JOB_ERROR,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> SchedulerService:
        return cls(enabled=settings.SCHEDULER_ENABLED)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def running(self) -> bool:
        if not self._enabled:
            return False
        return cast(bool, self._scheduler.running)

    async def start(self) -> None:
        if not self._enabled:
            _scheduler_logger.info("scheduler_disabled")
            return

        if self._scheduler.running:
            return

        self._scheduler.start()
        _scheduler_logger.info("scheduler_started")

    async def shutdown(self) -> None:
        if not self._enabled or not self._scheduler.running:
            return

        self._scheduler.shutdown(wait=False)
        _scheduler_logger.info("scheduler_shutdown")

    def add_interval_job(
        self,
        *,
        job_id: str,
        func: JobCallable,
        seconds: int,
        name: str | None = None,
    ) -> Job | None:
        """Register ``func`` every ``seconds``; no-op while disabled."""

        if not self._enabled:
            return None
        if seconds <= 0:
            raise ValueError("Interval seconds must be greater than zero")

        return self._scheduler.add_job(
            func=func,
            trigger="interval",
            seconds=seconds,
            id=job_id,
            name=name,
            replace_existing=True,
        )

    def register_cleanup_job(self, func: JobCallable, *, seconds: int) -> Job | None:
        job = self.add_interval_job(
            job_id=CLEANUP_JOB_ID,
            func=func,
            seconds=seconds,
            name="Purge expired batches, sitemap jobs, and download tokens",
        )
        if job is not None:
            _scheduler_logger.info(
                "scheduler_cleanup_job_registered",
                extra={"job_id": CLEANUP_JOB_ID, "interval_seconds": seconds},
            )
        return job

    def list_jobs(self) -> list[SchedulerJobState]:
        if not self._enabled:
            return []
        return [
            SchedulerJobState(
                job_id=job.id,
                name=job.name,
                trigger=str(job.trigger),
                next_run_time=job.next_run_time,
            )
            for job in self._scheduler.get_jobs()
        ]

    @staticmethod
    def _handle_job_event(event: SchedulerEvent) -> None:
        if not isinstance(event, JobExecutionEvent):
            return

        if event.exception is None:
            _scheduler_logger.debug(
                "scheduler_job_succeeded",
                extra={"job_id": event.job_id},
            )
            return

        _scheduler_logger.error(
            "scheduler_job_failed",
            extra={
                "job_id": event.job_id,
                "exception": str(event.exception),
                "traceback": event.traceback,
            },
        )


__all__ = ["CLEANUP_JOB_ID", "SchedulerJobState", "SchedulerService"]
