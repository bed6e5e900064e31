import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from croniter import croniter

from core.config import Settings, get_settings
from core.db import utcnow
from core.expiry import sweep_consent_handles, sweep_consents
from core.failure_modes import classify_failure
from core.logging_utils import log_structured

_scheduler_lock = asyncio.Lock()


@dataclass(frozen=True)
class ScheduledJob:
    name: str
    cron: str
    run: Callable[[], Any]


def next_fire_time(cron: str, now: datetime) -> datetime:
    return croniter(cron, now).get_next(datetime)


def default_jobs(settings: Settings | None = None) -> list[ScheduledJob]:
    settings = settings or get_settings()
    return [
        ScheduledJob("consent_handle_expiry", settings.consent_handle_expiry_cron, sweep_consent_handles),
        ScheduledJob("consent_expiry", settings.consent_expiry_cron, sweep_consents),
    ]


async def run_job_once(job: ScheduledJob) -> bool:
    try:
        await asyncio.to_thread(job.run)
    except Exception as exc:
        # A failed cycle must not end the loop; the next tick retries the whole sweep.
        log_structured(
            "scheduler.cycle_failed",
            level=logging.ERROR,
            job=job.name,
            error_class=exc.__class__.__name__,
            failure_class=classify_failure(exc).value,
        )
        return False
    return True


async def _job_loop(job: ScheduledJob, stop_event: asyncio.Event) -> None:
    try:
        while not stop_event.is_set():
            now = utcnow()
            fire_at = next_fire_time(job.cron, now)
            log_structured("scheduler.next_run", level=logging.DEBUG, job=job.name, next_run_at=fire_at.isoformat())
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=max(0.0, (fire_at - now).total_seconds()))
                return
            except asyncio.TimeoutError:
                pass
            await run_job_once(job)
    except asyncio.CancelledError:
        return


def start_scheduler(app, jobs: list[ScheduledJob] | None = None) -> None:
    if not get_settings().scheduler_enabled:
        return
    existing = getattr(app.state, "scheduler_tasks", None)
    if existing and any(not task.done() for task in existing):
        return
    stop_event = asyncio.Event()
    app.state.scheduler_stop_event = stop_event
    app.state.scheduler_tasks = [
        asyncio.create_task(_job_loop(job, stop_event), name=f"scheduler:{job.name}")
        for job in (jobs if jobs is not None else default_jobs())
    ]
    log_structured("scheduler.started", count=len(app.state.scheduler_tasks))


async def stop_scheduler(app) -> None:
    stop_event = getattr(app.state, "scheduler_stop_event", None)
    if stop_event is not None:
        stop_event.set()
    if not getattr(app.state, "scheduler_tasks", None):
        return

    async with _scheduler_lock:
        tasks = getattr(app.state, "scheduler_tasks", None)
        if not tasks:
            return
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await asyncio.wait_for(task, timeout=5)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass
        app.state.scheduler_tasks = None
        log_structured("scheduler.stopped")


def scheduler_running(app) -> bool:
    tasks = getattr(getattr(app, "state", object()), "scheduler_tasks", None)
    return bool(tasks) and all(not task.done() for task in tasks)
