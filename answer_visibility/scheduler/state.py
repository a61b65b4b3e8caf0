"""
Job state machine.

    pending -> running -> completed
                       -> pending   (retry with a later scheduled_for)
                       -> failed    (attempts exhausted or not retryable)

completed and failed are terminal.
"""

from enum import StrEnum

from answer_visibility.exceptions import InvalidJobTransitionError


class JobStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset(
        {JobStatus.COMPLETED, JobStatus.PENDING, JobStatus.FAILED}
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


def can_transition(current: str, target: str) -> bool:
    try:
        return JobStatus(target) in ALLOWED_TRANSITIONS[JobStatus(current)]
    except ValueError:
        return False


def ensure_transition(current: str, target: str) -> JobStatus:
    """
    Validate a status change and return the target status.

    Raises:
        InvalidJobTransitionError: The change is not allowed, or either
            status is unknown

    Examples:
        >>> ensure_transition("pending", "running")
        <JobStatus.RUNNING: 'running'>
        >>> ensure_transition("completed", "running")
        Traceback (most recent call last):
        ...
        answer_visibility.exceptions.InvalidJobTransitionError: Illegal job transition: completed -> running
    """
    if not can_transition(current, target):
        raise InvalidJobTransitionError(str(current), str(target))
    return JobStatus(target)
