"""Tests for scheduler service lifecycle and cleanup job registration."""

from __future__ import annotations

import pytest

from sitemap_builder.config import Settings
from sitemap_builder.services.scheduler import CLEANUP_JOB_ID, SchedulerService


async def _noop_job() -> None:
    return None


@pytest.mark.asyncio
async def test_scheduler_service_registers_cleanup_job() -> None:
    scheduler = SchedulerService(enabled=True)

    scheduler.register_cleanup_job(_noop_job, seconds=60)
    scheduler.add_interval_job(job_id="interval-job", func=_noop_job, seconds=30)

    await scheduler.start()
    try:
        assert scheduler.running is True
        jobs = scheduler.list_jobs()
        assert {job.job_id for job in jobs} == {CLEANUP_JOB_ID, "interval-job"}
        assert all("interval" in job.trigger.lower() for job in jobs)
    finally:
        await scheduler.shutdown()


@pytest.mark.asyncio
async def test_scheduler_service_replaces_job_with_same_id() -> None:
    scheduler = SchedulerService(enabled=True)

    scheduler.register_cleanup_job(_noop_job, seconds=60)
    scheduler.register_cleanup_job(_noop_job, seconds=120)

    await scheduler.start()
    try:
        assert [job.job_id for job in scheduler.list_jobs()] == [CLEANUP_JOB_ID]
    finally:
        await scheduler.shutdown()


@pytest.mark.asyncio
async def test_scheduler_service_is_inert_when_disabled() -> None:
    scheduler = SchedulerService.from_settings(Settings(SCHEDULER_ENABLED=False))

    assert scheduler.register_cleanup_job(_noop_job, seconds=60) is None
    await scheduler.start()

    assert scheduler.enabled is False
    assert scheduler.running is False
    assert scheduler.list_jobs() == []
    await scheduler.shutdown()


def test_scheduler_service_rejects_non_positive_interval() -> None:
    scheduler = SchedulerService(enabled=True)

    with pytest.raises(ValueError, match="greater than zero"):
        scheduler.add_interval_job(job_id="bad", func=_noop_job, seconds=0)
