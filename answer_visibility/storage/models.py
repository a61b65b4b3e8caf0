"""
Row models for the Answer Visibility database.

Plain dataclasses mapped from SQLite rows by the Repository. Timestamps are
timezone-aware UTC datetimes; JSON columns are decoded to dicts.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any


class PromptRunStatus(StrEnum):
    """Lifecycle of a PromptRun row: created once, updated once."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class ScheduleCadence(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"


@dataclass
class Organization:
    id: str
    name: str
    slug: str
    subscription_tier: str
    created_at: datetime


@dataclass
class Project:
    id: str
    organization_id: str
    name: str
    monthly_budget_soft: float | None
    monthly_budget_hard: float | None
    current_month_usage: float
    created_at: datetime


@dataclass
class Brand:
    id: str
    project_id: str
    name: str
    domain: str | None
    synonyms: list[str]
    created_at: datetime


@dataclass
class Competitor:
    id: str
    project_id: str
    name: str
    domain: str | None
    synonyms: list[str]
    created_at: datetime


@dataclass
class Prompt:
    """
    A stored query template tracked for brand visibility.

    A prompt is schedulable only when it is both active and has scheduling
    enabled.
    """

    id: str
    project_id: str
    name: str
    template: str
    locale: str
    is_active: bool
    schedule_enabled: bool
    schedule_cadence: str
    last_run_at: datetime | None
    next_run_at: datetime | None
    created_at: datetime

    @property
    def is_schedulable(self) -> bool:
        return self.is_active and self.schedule_enabled


@dataclass
class PromptRun:
    id: str
    prompt_id: str
    provider: str
    model: str | None
    status: str
    raw_response: str | None
    parsed_mentions: dict[str, Any] | None
    response_metadata: dict[str, Any] | None
    cost: float | None
    executed_at: datetime


@dataclass
class Citation:
    id: str
    prompt_run_id: str
    url: str | None
    title: str | None
    snippet: str | None
    domain: str | None
    position: int | None
    created_at: datetime


@dataclass
class Score:
    id: str
    project_id: str
    prompt_run_id: str | None
    entity_type: str
    entity_id: str
    provider: str
    score: float
    mention_count: int
    sentiment_score: float | None
    citation_score: float | None
    calculated_at: datetime


@dataclass
class AlertRule:
    id: str
    project_id: str
    type: str
    threshold: float | None
    is_active: bool
    created_at: datetime


@dataclass
class AlertEvent:
    id: str
    alert_rule_id: str
    prompt_run_id: str | None
    message: str
    metadata: dict[str, Any] | None
    acknowledged: bool
    created_at: datetime


@dataclass
class Job:
    """
    A queued unit of work.

    Status changes go through scheduler.state.ensure_transition; the job
    queue is the only writer.
    """

    id: str
    type: str
    payload: dict[str, Any]
    status: str
    attempts: int
    max_attempts: int
    error: str | None
    scheduled_for: datetime
    started_at: datetime | None
    completed_at: datetime | None
    project_id: str | None
    organization_id: str | None
    locked_at: datetime | None
    locked_by: str | None
    created_at: datetime


@dataclass
class AuditLog:
    id: str
    project_id: str | None
    entity_type: str
    entity_id: str | None
    action: str
    previous_value: dict[str, Any] | None = None
    new_value: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
    created_at: datetime | None = None


@dataclass
class JobStats:
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "pending": self.pending,
            "running": self.running,
            "completed": self.completed,
            "failed": self.failed,
        }

