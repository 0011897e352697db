import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

from celery.schedules import crontab

from app.config.celeryconfig import job_crontabs
from app.config.settings import settings
from app.tasks.cron.budget_alert_checker import run_budget_alert_checker
from app.tasks.cron.feeding_reminder_checker import run_feeding_reminder_checker
from app.tasks.cron.missed_event_checker import run_missed_event_checker
from app.tasks.cron.recurrence_generator import run_recurrence_generator
from app.tasks.cron.reminder_scheduler import run_reminder_scheduler
from app.utils.context import new_job_request_id
from app.utils.datetime_utils import utc_now
from app.utils.logging import get_logger

logger = get_logger()

JobFunc = Callable[[str], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class JobDefinition:
    name: str
    schedule: crontab
    func: JobFunc


@dataclass(frozen=True)
class JobLease:
    """Proof that one run of ``job_name`` owns the job until released"""

    job_name: str
    request_id: str
    lease_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    acquired_at: datetime = field(default_factory=utc_now)


@dataclass
class JobState:
    runs: int = 0
    failures: int = 0
    skipped: int = 0
    last_started_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    last_status: Optional[str] = None
    last_error: Optional[str] = None
    last_result: Optional[Dict[str, Any]] = None


def default_jobs() -> List[JobDefinition]:
    funcs: Dict[str, JobFunc] = {
        "recurrence-generator": run_recurrence_generator,
        "reminder-scheduler": run_reminder_scheduler,
        "missed-event-checker": run_missed_event_checker,
        "feeding-reminder-checker": run_feeding_reminder_checker,
        "budget-alert-checker": run_budget_alert_checker,
    }
    return [
        JobDefinition(name=name, schedule=job_crontabs[name], func=func)
        for name, func in funcs.items()
    ]


class JobScheduler:
    """
    In-process cron loop for the periodic jobs.

    Different jobs may run concurrently; a job never overlaps with itself.
    Each run holds a ``JobLease`` owned by this scheduler and always hands it
    back, whatever the job does. Single-instance only: leases live in memory.
    """

    def __init__(self, jobs: Optional[Sequence[JobDefinition]] = None):
        self._jobs: Dict[str, JobDefinition] = {
            job.name: job for job in (jobs if jobs is not None else default_jobs())
        }
        self._leases: Dict[str, JobLease] = {}
        self._states: Dict[str, JobState] = {name: JobState() for name in self._jobs}
        self._loops: List[asyncio.Task] = []
        self._in_flight: Set[asyncio.Task] = set()
        self._accepting = False

    @property
    def job_names(self) -> List[str]:
        return list(self._jobs)

    @property
    def is_started(self) -> bool:
        return self._accepting

    def is_running(self, name: str) -> bool:
        return name in self._leases

    # Leases
    def acquire_lease(self, name: str, request_id: Optional[str] = None) -> Optional[JobLease]:
        if name in self._leases:
            return None
        lease = JobLease(job_name=name, request_id=request_id or new_job_request_id(name))
        self._leases[name] = lease
        return lease

    def release_lease(self, lease: JobLease) -> None:
        current = self._leases.get(lease.job_name)
        if current is not None and current.lease_id == lease.lease_id:
            del self._leases[lease.job_name]

    # Runs
    async def run_job(
        self,
        name: str,
        request_id: Optional[str] = None,
        raise_if_running: bool = False,
    ) -> Optional[Dict[str, Any]]:
        """
        Run ``name`` once under a lease.

        Job exceptions are logged and swallowed here so one bad run never
        stops the loop. Returns the job's result, or None when the run was
        skipped or failed.
        """
        job = self._jobs.get(name)
        if job is None:
            raise ValueError(f"UNKNOWN_JOB: {name}")

        state = self._states[name]
        lease = self.acquire_lease(name, request_id)
        if lease is None:
            state.skipped += 1
            if raise_if_running:
                raise ValueError(f"JOB_ALREADY_RUNNING: {name} is already running")
            logger.warning(f"Skipping {name}: previous run still in progress")
            return None

        job_logger = logger.bind(request_id=lease.request_id, job=name, lease_id=lease.lease_id)
        state.runs += 1
        state.last_started_at = utc_now()
        try:
            job_logger.info(f"Job {name} started")
            result = await job.func(lease.request_id)
            state.last_status = "success"
            state.last_error = None
            state.last_result = result
            job_logger.info(f"Job {name} finished")
            return result
        except asyncio.CancelledError:
            state.last_status = "cancelled"
            raise
        except Exception as e:
            state.failures += 1
            state.last_status = "failed"
            state.last_error = str(e)
            job_logger.exception(f"Job {name} failed: {str(e)}")
            return None
        finally:
            state.last_finished_at = utc_now()
            self.release_lease(lease)

    def _seconds_until_next_run(self, job: JobDefinition, after: datetime) -> float:
        """Seconds from now until the first tick of ``job`` strictly after ``after``"""
        return max(job.schedule.remaining_estimate(after).total_seconds(), 0.0)

    async def _job_loop(self, job: JobDefinition) -> None:
        after = utc_now()
        while self._accepting:
            await asyncio.sleep(self._seconds_until_next_run(job, after))
            if not self._accepting:
                break
            task = asyncio.create_task(self.run_job(job.name))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            # A timer waking slightly early must not fire the same tick twice
            after = utc_now() + timedelta(seconds=1)

    def start(self) -> None:
        if self._accepting:
            return
        self._accepting = True
        self._loops = [
            asyncio.create_task(self._job_loop(job), name=f"job-loop:{job.name}")
            for job in self._jobs.values()
        ]
        logger.info(f"Job scheduler started with {len(self._loops)} jobs")

    async def shutdown(self, grace_period: Optional[float] = None) -> None:
        """Stop ticking, give in-flight runs ``grace_period`` seconds, then cancel"""
        grace = (
            grace_period
            if grace_period is not None
            else settings.SCHEDULER_SHUTDOWN_GRACE_SECONDS
        )
        self._accepting = False

        for loop in self._loops:
            loop.cancel()
        await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops = []

        pending = set(self._in_flight)
        if pending:
            logger.info(f"Waiting up to {grace:.0f}s for {len(pending)} running job(s)")
            _, still_running = await asyncio.wait(pending, timeout=grace)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)
                logger.warning(f"Cancelled {len(still_running)} job(s) at shutdown")

        logger.info("Job scheduler stopped")

    def status(self) -> List[Dict[str, Any]]:
        jobs = []
        for name, job in self._jobs.items():
            state = self._states[name]
            lease = self._leases.get(name)
            jobs.append(
                {
                    "name": name,
                    "schedule": str(job.schedule),
                    "running": lease is not None,
                    "lease_id": lease.lease_id if lease else None,
                    "runs": state.runs,
                    "failures": state.failures,
                    "skipped": state.skipped,
                    "last_started_at": state.last_started_at,
                    "last_finished_at": state.last_finished_at,
                    "last_status": state.last_status,
                    "last_error": state.last_error,
                }
            )
        return jobs


job_scheduler = JobScheduler()


def get_job_scheduler() -> JobScheduler:
    """Dependency to get the process-wide JobScheduler"""
    return job_scheduler
