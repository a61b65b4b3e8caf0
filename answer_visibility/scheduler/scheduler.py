"""
Scheduler for Answer Visibility.

One cron tick is an enqueue phase followed by a drain phase:

- enqueue_due_prompts: create a pending prompt_run job for every due
  prompt, unless the project's hard budget is used up (skip + audit log)
  or the project/organization already runs as many jobs as allowed
  (skip), then advance the prompt's schedule by its cadence.
- process_jobs: claim up to max_jobs_per_tick due jobs, run each one
  sequentially and complete, retry (exponential backoff) or fail it. A
  job whose processing raises is unlocked before the batch moves on.

Budget and concurrency saturation are skips, not failures: they consume
no attempt. Limits and backoff come from the injected SchedulerSettings.

Example:
    >>> runner = PromptRunner.from_config(config)
    >>> result = await run_cron_tick(repo, runner, config.scheduler)
    >>> result.to_dict()
    {'enqueued': 3, 'skippedBudget': 0, 'skippedConcurrency': 1,
     'processed': 3, 'failed': 0, 'retried': 0, 'released': 0}
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from answer_visibility.alerts.evaluator import evaluate_alerts_for_run
from answer_visibility.config.schema import SchedulerSettings
from answer_visibility.exceptions import NotFoundError
from answer_visibility.runner.prompt_runner import PromptRunner, apply_run_usage
from answer_visibility.storage.models import Job, Project
from answer_visibility.storage.repository import Repository
from answer_visibility.utils.logging import log_with_context, track_error
from answer_visibility.utils.time import utc_now

from .queue import PROMPT_RUN_JOB, JobQueue
from .state import JobStatus

CADENCE_INTERVALS = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
}

logger = logging.getLogger(__name__)


def next_run_time(
    cadence: str, last_run_at: datetime | None, now: datetime | None = None
) -> datetime:
    """
    Next due time after last_run_at for a cadence, never earlier than now.

    Unknown cadences are treated as weekly.

    Examples:
        >>> t = datetime(2025, 11, 2, 8, 0, tzinfo=timezone.utc)
        >>> next_run_time("daily", t, now=t)
        datetime.datetime(2025, 11, 3, 8, 0, tzinfo=datetime.timezone.utc)
    """
    now = now or utc_now()
    if last_run_at is None:
        return now
    next_run = last_run_at + CADENCE_INTERVALS.get(cadence, CADENCE_INTERVALS["weekly"])
    return max(next_run, now)


def backoff_delay_ms(attempts: int, settings: SchedulerSettings) -> float:
    """
    Retry delay after the given number of attempts.

    Examples:
        >>> [backoff_delay_ms(n, SchedulerSettings()) for n in (1, 2, 3)]
        [2000.0, 4000.0, 8000.0]
    """
    return settings.backoff_base_ms * settings.backoff_multiplier**attempts


def new_worker_id() -> str:
    return f"worker-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


@dataclass
class EnqueueResult:
    enqueued: int = 0
    skipped_budget: int = 0
    skipped_concurrency: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "enqueued": self.enqueued,
            "skippedBudget": self.skipped_budget,
            "skippedConcurrency": self.skipped_concurrency,
        }


@dataclass
class ProcessResult:
    """
    Counts of one drain pass.

    released counts jobs unlocked without an attempt: their project or
    organization was at its concurrency ceiling, or storage failed before
    the job started.
    """

    processed: int = 0
    failed: int = 0
    retried: int = 0
    released: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "retried": self.retried,
            "released": self.released,
        }


@dataclass
class TickResult:
    enqueue: EnqueueResult = field(default_factory=EnqueueResult)
    process: ProcessResult = field(default_factory=ProcessResult)

    def to_dict(self) -> dict[str, int]:
        return {**self.enqueue.to_dict(), **self.process.to_dict()}


def _budget_exhausted(project: Project) -> bool:
    hard_limit = project.monthly_budget_hard
    return hard_limit is not None and (project.current_month_usage or 0) >= hard_limit


def _at_concurrency_limit(
    repo: Repository,
    settings: SchedulerSettings,
    project_id: str | None,
    organization_id: str | None,
) -> bool:
    if project_id and (
        repo.count_running_jobs_for_project(project_id)
        >= settings.concurrency_limit_per_project
    ):
        return True
    if organization_id and (
        repo.count_running_jobs_for_org(organization_id)
        >= settings.concurrency_limit_per_org
    ):
        return True
    return False


def enqueue_due_prompts(
    repo: Repository, settings: SchedulerSettings, now: datetime | None = None
) -> EnqueueResult:
    """
    Enqueue a prompt_run job for every due, schedulable prompt.

    Args:
        repo: Repository
        settings: Scheduler settings (limits, default provider/model)
        now: Reference time (default: now)

    Returns:
        EnqueueResult with enqueued and skipped counts
    """
    now = now or utc_now()
    result = EnqueueResult()
    queue = JobQueue(repo)

    for prompt in repo.get_due_prompts(now):
        project = repo.get_project(prompt.project_id)
        if project is None:
            logger.warning(f"Prompt {prompt.id} has no project, skipping")
            continue

        if _budget_exhausted(project):
            result.skipped_budget += 1
            logger.info(
                f"Hard budget limit reached for project {project.name}. "
                f"Prompt {prompt.id} skipped."
            )
            repo.create_audit_log(
                entity_type="prompt",
                action="budget_change",
                project_id=project.id,
                entity_id=prompt.id,
                metadata={
                    "reason": "Hard budget limit reached",
                    "budgetLimit": project.monthly_budget_hard,
                    "currentUsage": project.current_month_usage,
                },
            )
            continue

        if _at_concurrency_limit(repo, settings, project.id, project.organization_id):
            result.skipped_concurrency += 1
            continue

        payload: dict[str, Any] = {
            "promptId": prompt.id,
            "provider": settings.default_provider,
        }
        if settings.default_model:
            payload["model"] = settings.default_model

        queue.enqueue(
            PROMPT_RUN_JOB,
            payload,
            scheduled_for=now,
            project_id=project.id,
            organization_id=project.organization_id,
            max_attempts=settings.max_retry_attempts,
        )
        repo.update_prompt_schedule(
            prompt.id, now, next_run_time(prompt.schedule_cadence or "weekly", now, now)
        )
        result.enqueued += 1

    logger.info(
        f"Enqueue phase: enqueued={result.enqueued}, "
        f"skipped_budget={result.skipped_budget}, "
        f"skipped_concurrency={result.skipped_concurrency}"
    )
    return result


def _after_success(
    repo: Repository,
    settings: SchedulerSettings,
    job: Job,
    prompt_run,
    now: datetime | None = None,
) -> None:
    """Usage accounting and alert evaluation for a completed run."""
    if not job.project_id:
        return
    project = repo.get_project(job.project_id)
    if project is None:
        return
    apply_run_usage(repo, project, prompt_run)
    if settings.evaluate_alerts:
        evaluate_alerts_for_run(repo, prompt_run, project, now)


async def _process_job(
    repo: Repository,
    queue: JobQueue,
    runner: PromptRunner,
    settings: SchedulerSettings,
    job: Job,
    now: datetime | None,
) -> str:
    """Run one claimed job. Returns the ProcessResult counter to increment."""
    if _at_concurrency_limit(repo, settings, job.project_id, job.organization_id):
        queue.release(job.id)
        logger.debug(f"Job {job.id} released: concurrency limit reached")
        return "released"

    attempts = queue.start(job.id)

    if job.type != PROMPT_RUN_JOB:
        logger.warning(f"Unknown job type '{job.type}' for job {job.id}, completing")
        queue.complete(job.id)
        return "processed"

    payload = job.payload
    try:
        result = await runner.run(
            repo,
            payload["promptId"],
            payload.get("provider") or settings.default_provider,
            payload.get("model"),
            now=now,
        )
    except NotFoundError as e:
        queue.fail(job.id, str(e))
        log_with_context(
            logger, logging.ERROR, f"Job failed: {e}", job_id=job.id
        )
        return "failed"
    except Exception as e:
        error = str(e) or type(e).__name__
    else:
        if result.success:
            queue.complete(job.id)
            try:
                _after_success(repo, settings, job, result.prompt_run, now)
            except Exception as e:
                logger.error(
                    f"Post-run processing failed for job {job.id}: {e}", exc_info=True
                )
            log_with_context(
                logger,
                logging.INFO,
                "Job completed",
                context={"cost": result.prompt_run.cost, "attempts": attempts},
                job_id=job.id,
                run_id=result.prompt_run.id,
            )
            return "processed"

        if result.limit_exceeded:
            queue.fail(job.id, result.error)
            log_with_context(
                logger, logging.WARNING, f"Job failed: {result.error}", job_id=job.id
            )
            return "failed"

        error = result.error or "Unknown error"

    if attempts < job.max_attempts:
        delay_ms = backoff_delay_ms(attempts, settings)
        retry_at = (now or utc_now()) + timedelta(milliseconds=delay_ms)
        queue.retry(job.id, retry_at, error)
        log_with_context(
            logger,
            logging.WARNING,
            f"Job failed, retrying in {delay_ms:g}ms: {error}",
            context={"attempts": attempts, "max_attempts": job.max_attempts},
            job_id=job.id,
        )
        return "retried"

    queue.fail(job.id, error)
    log_with_context(
        logger,
        logging.ERROR,
        f"Job failed after {attempts} attempts: {error}",
        job_id=job.id,
    )
    return "failed"


def _recover_job(
    queue: JobQueue,
    settings: SchedulerSettings,
    job: Job,
    exc: Exception,
    now: datetime | None,
) -> str | None:
    """
    Unlock a job whose processing raised outside the runner.

    A claimed job never keeps its lock: one still pending is released, one
    already running goes through the normal retry/fail path. Returns the
    counter to increment, or None if the job could not be recovered.
    """
    error = str(exc) or type(exc).__name__
    track_error(logger, exc, {"job_id": job.id})
    try:
        current = queue.repo.get_job(job.id)
        if current is None:
            return None
        if current.status == JobStatus.PENDING:
            queue.release(job.id)
            return "released"
        if current.status != JobStatus.RUNNING:
            return None
        if current.attempts < current.max_attempts:
            delay_ms = backoff_delay_ms(current.attempts, settings)
            queue.retry(
                job.id, (now or utc_now()) + timedelta(milliseconds=delay_ms), error
            )
            return "retried"
        queue.fail(job.id, error)
        return "failed"
    except Exception:
        logger.error(
            f"Could not recover job {job.id}, lock left in place", exc_info=True
        )
        return None


async def process_jobs(
    repo: Repository,
    runner: PromptRunner,
    settings: SchedulerSettings,
    limit: int | None = None,
    now: datetime | None = None,
) -> ProcessResult:
    """
    Claim and run up to limit due jobs, one at a time.

    Args:
        repo: Repository
        runner: Prompt runner
        settings: Scheduler settings
        limit: Batch size (default settings.max_jobs_per_tick)
        now: Reference time for due jobs and retry scheduling (default: now)

    Returns:
        ProcessResult with processed/failed/retried/released counts
    """
    queue = JobQueue(repo)
    worker_id = new_worker_id()
    jobs = queue.claim(limit or settings.max_jobs_per_tick, worker_id, now)

    result = ProcessResult()
    for job in jobs:
        try:
            outcome = await _process_job(repo, queue, runner, settings, job, now)
        except Exception as e:
            outcome = _recover_job(queue, settings, job, e, now)
        if outcome:
            setattr(result, outcome, getattr(result, outcome) + 1)

    logger.info(
        f"Drain phase ({worker_id}): processed={result.processed}, "
        f"failed={result.failed}, retried={result.retried}, "
        f"released={result.released}"
    )
    return result


async def run_cron_tick(
    repo: Repository,
    runner: PromptRunner,
    settings: SchedulerSettings,
    now: datetime | None = None,
) -> TickResult:
    """One enqueue phase followed by one drain phase."""
    enqueue = enqueue_due_prompts(repo, settings, now)
    process = await process_jobs(repo, runner, settings, now=now)
    return TickResult(enqueue=enqueue, process=process)
