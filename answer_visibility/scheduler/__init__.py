"""Job scheduling: state machine, queue and the cron tick."""

from .queue import PROMPT_RUN_JOB, JobQueue
from .scheduler import (
    EnqueueResult,
    ProcessResult,
    TickResult,
    backoff_delay_ms,
    enqueue_due_prompts,
    next_run_time,
    process_jobs,
    run_cron_tick,
)
from .state import ALLOWED_TRANSITIONS, JobStatus, ensure_transition

__all__ = [
    "ALLOWED_TRANSITIONS",
    "PROMPT_RUN_JOB",
    "EnqueueResult",
    "JobQueue",
    "JobStatus",
    "ProcessResult",
    "TickResult",
    "backoff_delay_ms",
    "enqueue_due_prompts",
    "ensure_transition",
    "next_run_time",
    "process_jobs",
    "run_cron_tick",
]
