"""
Job queue for Answer Visibility.

The only writer of job rows. Every status change is validated by
ensure_transition before it reaches the database; claiming relies on the
repository's conditional UPDATE (locked_at IS NULL), so concurrent drains
never claim the same job.
"""

import logging
from datetime import datetime
from typing import Any

from answer_visibility.exceptions import NotFoundError
from answer_visibility.storage.models import Job
from answer_visibility.storage.repository import Repository

from .state import JobStatus, ensure_transition

PROMPT_RUN_JOB = "prompt_run"

logger = logging.getLogger(__name__)


class JobQueue:
    """Job lifecycle operations over a Repository."""

    def __init__(self, repo: Repository):
        self.repo = repo

    def enqueue(
        self,
        type: str,
        payload: dict[str, Any],
        scheduled_for: datetime,
        project_id: str | None = None,
        organization_id: str | None = None,
        max_attempts: int = 5,
    ) -> Job:
        job = self.repo.create_job(
            type,
            payload,
            scheduled_for,
            project_id=project_id,
            organization_id=organization_id,
            max_attempts=max_attempts,
        )
        logger.debug(f"Enqueued {type} job {job.id} for {scheduled_for.isoformat()}")
        return job

    def claim(self, limit: int, worker_id: str, now: datetime | None = None) -> list[Job]:
        """Lock up to limit due pending jobs for worker_id."""
        jobs = self.repo.lock_pending_jobs(limit, worker_id, now)
        logger.debug(f"Worker {worker_id} claimed {len(jobs)} job(s)")
        return jobs

    def release(self, job_id: str) -> None:
        """Unlock a claimed job without changing its status or attempts."""
        self.repo.release_job_lock(job_id)

    def start(self, job_id: str) -> int:
        """Move a job to running and return its new attempt count."""
        self._transition(job_id, JobStatus.RUNNING)
        self.repo.update_job_status(job_id, JobStatus.RUNNING)
        return self.repo.increment_job_attempts(job_id)

    def complete(self, job_id: str) -> None:
        self._transition(job_id, JobStatus.COMPLETED)
        self.repo.update_job_status(job_id, JobStatus.COMPLETED)

    def fail(self, job_id: str, error: str) -> None:
        self._transition(job_id, JobStatus.FAILED)
        self.repo.update_job_status(job_id, JobStatus.FAILED, error)

    def retry(self, job_id: str, retry_at: datetime, error: str) -> None:
        """Put a running job back to pending, unlocked, due at retry_at."""
        self._transition(job_id, JobStatus.PENDING)
        self.repo.schedule_job_retry(job_id, retry_at, error)

    def _transition(self, job_id: str, target: JobStatus) -> JobStatus:
        job = self.repo.get_job(job_id)
        if job is None:
            raise NotFoundError("job", job_id)
        return ensure_transition(job.status, target)
