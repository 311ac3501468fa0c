"""Public job API: start, resume, pause, cancel and the startup recovery hook.

Validation happens synchronously and raises before any job record is
touched. Execution is spawned as a background asyncio task per job, so the
caller gets the job id back immediately and polls the job store for
progress. Call these methods from inside a running event loop.
"""

import asyncio
import functools
import logging
import uuid
from typing import Dict, Optional

from .automation import TargetAutomation
from .config import Settings
from .errors import InvalidStateError, NotFoundError, StaleJobError, ValidationError
from .executor import JobExecutor
from .models import CANCELLED, PAUSED, RESUMABLE_STATUSES, RUNNING, Job
from .repository import create_job, get_active_job, get_job, list_targets, update_job
from .utils import now_iso

logger = logging.getLogger(__name__)


def new_run_id() -> str:
    return uuid.uuid4().hex


class Orchestrator:
    def __init__(self, conn, automation: TargetAutomation, settings: Optional[Settings] = None):
        self.conn = conn
        self.automation = automation
        self.settings = settings or Settings()
        self.executor = JobExecutor(conn, automation, settings=self.settings)
        self._runs: Dict[str, asyncio.Task] = {}
        self._cancel_events: Dict[str, asyncio.Event] = {}

    # ---------- operations ----------
    def start(self) -> str:
        active = get_active_job(self.conn)
        if active is not None:
            raise ValidationError(f"Job {active.id} is already {active.status}")
        for live_id in self._runs:
            live = get_job(self.conn, live_id)
            if live is not None and live.status == CANCELLED:
                raise ValidationError(f"Job {live_id} is finishing a cancelled run, try again shortly")
            raise ValidationError(f"Job {live_id} is still being executed")

        targets = list_targets(self.conn, enabled_only=True)
        if not targets:
            raise ValidationError("No enabled targets to scrape")

        run_id = new_run_id()
        job = create_job(self.conn, targets, require_idle=True, run_id=run_id)
        logger.info("orchestrator: created job %s with %d target(s)", job.id, job.total_targets)
        self._launch(job.id, run_id)
        return job.id

    def resume(self, job_id: str) -> str:
        job = self._get(job_id)
        if job.status not in RESUMABLE_STATUSES:
            raise InvalidStateError(f"Cannot resume job with status: {job.status}")
        if job_id in self._runs:
            raise InvalidStateError(f"Job {job_id} is still winding down, try again shortly")
        active = get_active_job(self.conn)
        if active is not None and active.id != job_id:
            raise ValidationError(f"Job {active.id} is already {active.status}")

        # a new run id retires any executor still attached to the job elsewhere
        run_id = new_run_id()
        update_job(
            self.conn, job_id, expected_status=RESUMABLE_STATUSES,
            status=RUNNING, completed_at=None, error=None, run_id=run_id,
        )
        logger.info("orchestrator: resuming job %s at index %d", job_id, job.current_index)
        self._launch(job_id, run_id)
        return job_id

    def cancel(self, job_id: str) -> Job:
        job = self._get(job_id)
        if job.status != RUNNING:
            raise InvalidStateError(f"Cannot cancel job with status: {job.status}")

        logger.info("orchestrator: cancelling job %s", job_id)
        job = update_job(
            self.conn, job_id, expected_status=RUNNING,
            status=CANCELLED, completed_at=now_iso(),
        )
        self._signal(job_id)
        return job

    def pause(self, job_id: str) -> Job:
        job = self._get(job_id)
        if job.status != RUNNING:
            raise InvalidStateError(f"Cannot pause job with status: {job.status}")

        logger.info("orchestrator: pausing job %s", job_id)
        job = update_job(self.conn, job_id, expected_status=RUNNING, status=PAUSED)
        self._signal(job_id)
        return job

    def resume_interrupted_jobs(self) -> Optional[str]:
        """Relaunch a job left ``running`` by a process that died mid-run."""
        active = get_active_job(self.conn)
        if active is None or active.status != RUNNING or active.id in self._runs:
            return None

        run_id = new_run_id()
        try:
            update_job(
                self.conn, active.id, expected_status=RUNNING,
                expected_run_id=active.run_id, run_id=run_id,
            )
        except StaleJobError as stale:
            logger.info("orchestrator: job %s was picked up elsewhere: %s", active.id, stale)
            return None

        logger.info(
            "orchestrator: resuming interrupted job %s at %d/%d",
            active.id, active.current_index + 1, active.total_targets,
        )
        self._launch(active.id, run_id)
        return active.id

    # ---------- background runs ----------
    def is_executing(self, job_id: str) -> bool:
        return job_id in self._runs

    async def wait(self, job_id: Optional[str] = None):
        """Wait for background runs (all of them, or one job's) to finish."""
        if job_id is not None:
            tasks = [self._runs[job_id]] if job_id in self._runs else []
        else:
            tasks = list(self._runs.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self):
        tasks = list(self._runs.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        close = getattr(self.automation, "close", None)
        if close is not None:
            await close()

    def _get(self, job_id: str) -> Job:
        job = get_job(self.conn, job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    def _signal(self, job_id: str):
        event = self._cancel_events.get(job_id)
        if event is not None:
            event.set()

    def _launch(self, job_id: str, run_id: str):
        event = asyncio.Event()
        task = asyncio.create_task(
            self.executor.execute(job_id, run_id, event), name=f"scrapectl-job-{job_id}"
        )
        self._cancel_events[job_id] = event
        self._runs[job_id] = task
        task.add_done_callback(functools.partial(self._on_run_done, job_id))

    def _on_run_done(self, job_id: str, task: asyncio.Task):
        if self._runs.get(job_id) is task:
            del self._runs[job_id]
            self._cancel_events.pop(job_id, None)

        if task.cancelled():
            logger.warning("orchestrator: run of job %s was interrupted", job_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("orchestrator: run of job %s crashed: %s", job_id, exc, exc_info=exc)
