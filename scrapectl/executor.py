import asyncio
import logging
from dataclasses import replace
from typing import Optional

from .automation import TargetAutomation
from .config import Settings
from .errors import ExecutorFatalError, JobNotFoundError, StaleJobError
from .models import (
    COMPLETED, DONE_RESULT_STATUSES, FAILED, PENDING, RUNNING, SKIPPED, SUCCESS,
    Job,
)
from .repository import (
    cleanup_old_jobs, get_job, mark_target_scraped, resolve_target, update_job,
)
from .utils import error_message, now_iso

logger = logging.getLogger(__name__)


class JobExecutor:
    """
    Drives one job's targets from its saved cursor to the end, persisting after every step.

    Each launch runs under a ``run_id`` stored on the job. Every write is pinned
    to it, so a run superseded by a resume from another process stops at its
    next write instead of running alongside the new one.
    """

    def __init__(self, conn, automation: TargetAutomation, settings: Optional[Settings] = None):
        self.conn = conn
        self.automation = automation
        self.settings = settings or Settings()

    async def execute(self, job_id: str, run_id: str, cancel_event: asyncio.Event):
        try:
            await self._run(job_id, run_id, cancel_event)
        except StaleJobError as stale:
            logger.info("executor: job %s run %s stopping: %s", job_id, run_id, stale)
        except Exception as e:
            message = error_message(e)
            logger.error("executor: job %s failed: %s", job_id, message)
            try:
                update_job(
                    self.conn, job_id,
                    expected_status=(PENDING, RUNNING), expected_run_id=run_id,
                    status=FAILED, completed_at=now_iso(), error=message,
                )
            except StaleJobError as stale:
                logger.warning("executor: job %s is %s, not marking it failed", job_id, stale.actual)
            except JobNotFoundError:
                logger.warning("executor: job %s was deleted, not marking it failed", job_id)

    def _owns(self, job: Job, run_id: str) -> bool:
        return job.status == RUNNING and job.run_id == run_id

    def _persist(self, job_id: str, run_id: str, expected_status=RUNNING, **changes) -> Job:
        return update_job(
            self.conn, job_id, expected_status=expected_status, expected_run_id=run_id, **changes
        )

    def _load(self, job_id: str) -> Job:
        job = get_job(self.conn, job_id)
        if job is None:
            raise ExecutorFatalError(f"Job {job_id} not found")
        return job

    async def _run(self, job_id: str, run_id: str, cancel_event: asyncio.Event):
        job = self._load(job_id)
        if job.status == PENDING:
            job = self._persist(job_id, run_id, PENDING, status=RUNNING, started_at=now_iso())
        elif not self._owns(job, run_id):
            logger.info("executor: job %s is %s under run %s, nothing to run", job_id, job.status, job.run_id)
            return

        logger.info(
            "executor: job %s running %d target(s) from index %d",
            job_id, job.total_targets, job.current_index,
        )

        results = list(job.target_results)
        for i in range(job.current_index, job.total_targets):
            if cancel_event.is_set():
                logger.info("executor: job %s stopped before target %d/%d", job_id, i + 1, job.total_targets)
                return

            # cancel, pause or resume may have come from another process
            job = self._load(job_id)
            if not self._owns(job, run_id):
                logger.info(
                    "executor: job %s is now %s, stopping before target %d/%d",
                    job_id, job.status, i + 1, job.total_targets,
                )
                return

            result = results[i]
            if result.status in DONE_RESULT_STATUSES:
                continue

            logger.info(
                "executor: job %s target %d/%d %s (%s)",
                job_id, i + 1, job.total_targets, result.target_name, result.target_id,
            )

            # breadcrumb before any work; a retried failure no longer counts as failed
            failed_count = job.failed_count - 1 if result.status == FAILED else job.failed_count
            started = replace(result, status=PENDING, error=None, completed_at=None, started_at=now_iso())
            results[i] = started
            job = self._persist(
                job_id, run_id, current_index=i, target_results=results, failed_count=failed_count,
            )

            target = resolve_target(self.conn, result.target_id)
            if target is None:
                logger.warning("executor: target %s not found, skipping", result.target_id)
                results[i] = replace(started, status=SKIPPED, error="Target not found", completed_at=now_iso())
                job = self._persist(job_id, run_id, target_results=results)
                continue

            try:
                summary = await self.automation.run(target)
            except Exception as e:
                message = error_message(e)
                logger.warning("executor: target %s failed: %s", target.id, message)
                results[i] = replace(started, status=FAILED, error=message, completed_at=now_iso())
                # the in-flight outcome is kept even if the job was cancelled or paused meanwhile
                job = self._persist(
                    job_id, run_id, None,
                    target_results=results, failed_count=job.failed_count + 1,
                )
            else:
                results[i] = replace(
                    started, status=SUCCESS,
                    posts_scraped=summary.posts_scraped, completed_at=now_iso(),
                )
                job = self._persist(
                    job_id, run_id, None,
                    target_results=results, success_count=job.success_count + 1,
                )
                mark_target_scraped(self.conn, target.id)
                logger.info("executor: target %s scraped %d post(s)", target.id, summary.posts_scraped)

            job = self._load(job_id)
            if not self._owns(job, run_id):
                logger.info("executor: job %s is now %s, stopping", job_id, job.status)
                return

            if i < job.total_targets - 1:
                await self._wait_between_targets(cancel_event)

        try:
            job = self._persist(job_id, run_id, status=COMPLETED, completed_at=now_iso())
        except StaleJobError as stale:
            logger.info("executor: job %s ended as %s", job_id, stale.actual)
            return

        logger.info(
            "executor: job %s completed (succeeded=%d, failed=%d)",
            job_id, job.success_count, job.failed_count,
        )
        removed = cleanup_old_jobs(self.conn, keep=self.settings.max_completed_jobs)
        if removed:
            logger.debug("executor: pruned %d old completed job(s)", removed)

    async def _wait_between_targets(self, cancel_event: asyncio.Event):
        """Fixed rate-limit delay; returns early once cancellation is requested."""
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=self.settings.inter_target_delay)
        except asyncio.TimeoutError:
            pass
