import asyncio

import pytest
from celery.schedules import crontab

from app.tasks.scheduler import JobDefinition, JobScheduler, default_jobs
from app.utils.datetime_utils import utc_now


class BlockingJob:
    """Job body that waits until released, so runs can overlap in a test."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = []

    async def __call__(self, request_id):
        self.calls.append(request_id)
        self.started.set()
        await self.release.wait()
        return {"success": True, "request_id": request_id}


def _scheduler(func, name="reminder-scheduler") -> JobScheduler:
    return JobScheduler(jobs=[JobDefinition(name=name, schedule=crontab(minute="*/15"), func=func)])


def _fire_once(scheduler: JobScheduler) -> None:
    delays = iter([0.0])
    scheduler._seconds_until_next_run = lambda job, after: next(delays, 3600.0)


class TestRunJob:
    @pytest.mark.asyncio
    async def test_returns_result_and_releases_lease(self):
        async def job(request_id):
            return {"success": True, "request_id": request_id}

        scheduler = _scheduler(job)
        result = await scheduler.run_job("reminder-scheduler", request_id="manual-1")

        assert result == {"success": True, "request_id": "manual-1"}
        assert not scheduler.is_running("reminder-scheduler")
        assert scheduler.status()[0]["runs"] == 1
        assert scheduler.status()[0]["last_status"] == "success"

    @pytest.mark.asyncio
    async def test_overlapping_run_is_skipped(self):
        job = BlockingJob()
        scheduler = _scheduler(job)

        first = asyncio.create_task(scheduler.run_job("reminder-scheduler"))
        await job.started.wait()

        assert scheduler.is_running("reminder-scheduler")
        assert await scheduler.run_job("reminder-scheduler") is None
        with pytest.raises(ValueError, match="JOB_ALREADY_RUNNING"):
            await scheduler.run_job("reminder-scheduler", raise_if_running=True)

        job.release.set()
        assert (await first)["success"] is True
        assert len(job.calls) == 1
        assert scheduler.status()[0]["skipped"] == 2

    @pytest.mark.asyncio
    async def test_failure_is_logged_and_lease_released(self):
        async def job(request_id):
            raise RuntimeError("database unavailable")

        scheduler = _scheduler(job)
        assert await scheduler.run_job("reminder-scheduler") is None

        state = scheduler.status()[0]
        assert state["failures"] == 1
        assert state["last_status"] == "failed"
        assert state["last_error"] == "database unavailable"
        assert not scheduler.is_running("reminder-scheduler")

        # The next run is not blocked by the failed one
        assert await scheduler.run_job("reminder-scheduler") is None
        assert scheduler.status()[0]["runs"] == 2

    @pytest.mark.asyncio
    async def test_unknown_job(self):
        scheduler = _scheduler(BlockingJob())
        with pytest.raises(ValueError, match="UNKNOWN_JOB"):
            await scheduler.run_job("nope")

    def test_stale_lease_release_is_ignored(self):
        scheduler = _scheduler(BlockingJob())
        first = scheduler.acquire_lease("reminder-scheduler", "a")
        scheduler.release_lease(first)
        second = scheduler.acquire_lease("reminder-scheduler", "b")

        scheduler.release_lease(first)
        assert scheduler.is_running("reminder-scheduler")
        scheduler.release_lease(second)
        assert not scheduler.is_running("reminder-scheduler")


class TestLoop:
    @pytest.mark.asyncio
    async def test_shutdown_waits_for_running_job(self):
        job = BlockingJob()
        scheduler = _scheduler(job)
        _fire_once(scheduler)

        scheduler.start()
        await asyncio.wait_for(job.started.wait(), timeout=1)
        asyncio.get_running_loop().call_later(0.05, job.release.set)
        await scheduler.shutdown(grace_period=1)

        assert not scheduler.is_started
        assert scheduler.status()[0]["last_status"] == "success"

    @pytest.mark.asyncio
    async def test_shutdown_cancels_job_after_grace_period(self):
        job = BlockingJob()
        scheduler = _scheduler(job)
        _fire_once(scheduler)

        scheduler.start()
        await asyncio.wait_for(job.started.wait(), timeout=1)
        await scheduler.shutdown(grace_period=0.05)

        state = scheduler.status()[0]
        assert state["last_status"] == "cancelled"
        assert not state["running"]

    def test_next_run_follows_crontab(self):
        scheduler = _scheduler(BlockingJob())
        job = JobDefinition(name="x", schedule=crontab(minute="*/15"), func=BlockingJob())
        assert 0 <= scheduler._seconds_until_next_run(job, utc_now()) <= 15 * 60


class TestDefaults:
    def test_default_jobs_cover_all_periodic_jobs(self):
        assert [job.name for job in default_jobs()] == [
            "recurrence-generator",
            "reminder-scheduler",
            "missed-event-checker",
            "feeding-reminder-checker",
            "budget-alert-checker",
        ]
