"""
Repository over the Answer Visibility SQLite database.

The scheduler, job queue, prompt runner and alert evaluator reach storage
only through this class. It owns one sqlite3 connection, maps rows to the
dataclasses in storage.models, and commits after every write.

Job locking:
    lock_pending_jobs() first selects candidate rows, then claims each one
    with its own conditional write:

        UPDATE job_queue SET locked_at = ?, locked_by = ?
        WHERE id = ? AND locked_at IS NULL

    A claim counts only when exactly one row changed. Two drainers racing for
    the same row therefore never both receive it; the loser just doesn't see
    the job. This is the only write protected this way. Status changes and
    usage increments are plain last-write-wins updates.

Example:
    >>> repo = Repository.open("./visibility.db")
    >>> org = repo.create_organization("Acme Inc", subscription_tier="pro")
    >>> project = repo.create_project(org.id, "Acme", monthly_budget_hard=50.0)
    >>> repo.close()

Security:
    ALL queries use parameterized statements.
"""

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from answer_visibility.utils.time import (
    format_timestamp,
    parse_timestamp,
    start_of_month,
    utc_now,
    utc_timestamp,
)

from .db import connect, ensure_schema
from .models import (
    AlertEvent,
    AlertRule,
    AuditLog,
    Brand,
    Citation,
    Competitor,
    Job,
    JobStats,
    Organization,
    Project,
    Prompt,
    PromptRun,
    PromptRunStatus,
    Score,
)

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return str(uuid.uuid4())


def _ts(value: str | None) -> datetime | None:
    return parse_timestamp(value) if value else None


def _dump(value: Any) -> str | None:
    return json.dumps(value) if value is not None else None


def _load(value: str | None) -> Any:
    return json.loads(value) if value else None


def _slugify(name: str) -> str:
    slug = "".join(ch if ch.isalnum() else "-" for ch in name.lower())
    return "-".join(part for part in slug.split("-") if part)


# ============================================================================
# Row mappers
# ============================================================================


def _organization(row: sqlite3.Row) -> Organization:
    return Organization(
        id=row["id"],
        name=row["name"],
        slug=row["slug"],
        subscription_tier=row["subscription_tier"],
        created_at=parse_timestamp(row["created_at"]),
    )


def _project(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        organization_id=row["organization_id"],
        name=row["name"],
        monthly_budget_soft=row["monthly_budget_soft"],
        monthly_budget_hard=row["monthly_budget_hard"],
        current_month_usage=row["current_month_usage"] or 0.0,
        created_at=parse_timestamp(row["created_at"]),
    )


def _brand(row: sqlite3.Row) -> Brand:
    return Brand(
        id=row["id"],
        project_id=row["project_id"],
        name=row["name"],
        domain=row["domain"],
        synonyms=_load(row["synonyms_json"]) or [],
        created_at=parse_timestamp(row["created_at"]),
    )


def _competitor(row: sqlite3.Row) -> Competitor:
    return Competitor(
        id=row["id"],
        project_id=row["project_id"],
        name=row["name"],
        domain=row["domain"],
        synonyms=_load(row["synonyms_json"]) or [],
        created_at=parse_timestamp(row["created_at"]),
    )


def _prompt(row: sqlite3.Row) -> Prompt:
    return Prompt(
        id=row["id"],
        project_id=row["project_id"],
        name=row["name"],
        template=row["template"],
        locale=row["locale"],
        is_active=bool(row["is_active"]),
        schedule_enabled=bool(row["schedule_enabled"]),
        schedule_cadence=row["schedule_cadence"],
        last_run_at=_ts(row["last_run_at"]),
        next_run_at=_ts(row["next_run_at"]),
        created_at=parse_timestamp(row["created_at"]),
    )


def _prompt_run(row: sqlite3.Row) -> PromptRun:
    return PromptRun(
        id=row["id"],
        prompt_id=row["prompt_id"],
        provider=row["provider"],
        model=row["model"],
        status=row["status"],
        raw_response=row["raw_response"],
        parsed_mentions=_load(row["parsed_mentions_json"]),
        response_metadata=_load(row["response_metadata_json"]),
        cost=row["cost"],
        executed_at=parse_timestamp(row["executed_at"]),
    )


def _citation(row: sqlite3.Row) -> Citation:
    return Citation(
        id=row["id"],
        prompt_run_id=row["prompt_run_id"],
        url=row["url"],
        title=row["title"],
        snippet=row["snippet"],
        domain=row["domain"],
        position=row["position"],
        created_at=parse_timestamp(row["created_at"]),
    )


def _score(row: sqlite3.Row) -> Score:
    return Score(
        id=row["id"],
        project_id=row["project_id"],
        prompt_run_id=row["prompt_run_id"],
        entity_type=row["entity_type"],
        entity_id=row["entity_id"],
        provider=row["provider"],
        score=row["score"],
        mention_count=row["mention_count"],
        sentiment_score=row["sentiment_score"],
        citation_score=row["citation_score"],
        calculated_at=parse_timestamp(row["calculated_at"]),
    )


def _alert_rule(row: sqlite3.Row) -> AlertRule:
    return AlertRule(
        id=row["id"],
        project_id=row["project_id"],
        type=row["type"],
        threshold=row["threshold"],
        is_active=bool(row["is_active"]),
        created_at=parse_timestamp(row["created_at"]),
    )


def _alert_event(row: sqlite3.Row) -> AlertEvent:
    return AlertEvent(
        id=row["id"],
        alert_rule_id=row["alert_rule_id"],
        prompt_run_id=row["prompt_run_id"],
        message=row["message"],
        metadata=_load(row["metadata_json"]),
        acknowledged=bool(row["acknowledged"]),
        created_at=parse_timestamp(row["created_at"]),
    )


def _job(row: sqlite3.Row) -> Job:
    return Job(
        id=row["id"],
        type=row["type"],
        payload=_load(row["payload_json"]) or {},
        status=row["status"],
        attempts=row["attempts"],
        max_attempts=row["max_attempts"],
        error=row["error"],
        scheduled_for=parse_timestamp(row["scheduled_for"]),
        started_at=_ts(row["started_at"]),
        completed_at=_ts(row["completed_at"]),
        project_id=row["project_id"],
        organization_id=row["organization_id"],
        locked_at=_ts(row["locked_at"]),
        locked_by=row["locked_by"],
        created_at=parse_timestamp(row["created_at"]),
    )


def _audit_log(row: sqlite3.Row) -> AuditLog:
    return AuditLog(
        id=row["id"],
        project_id=row["project_id"],
        entity_type=row["entity_type"],
        entity_id=row["entity_id"],
        action=row["action"],
        previous_value=_load(row["previous_value_json"]),
        new_value=_load(row["new_value_json"]),
        metadata=_load(row["metadata_json"]),
        created_at=parse_timestamp(row["created_at"]),
    )


class Repository:
    """
    Narrow storage interface used by the scheduling and run pipeline.

    Args:
        conn: Open sqlite3 connection with row_factory=sqlite3.Row and the
            schema already migrated (see Repository.open)
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    @classmethod
    def open(cls, db_path: str) -> "Repository":
        """Connect to db_path, apply pending migrations and wrap the connection."""
        conn = connect(db_path)
        try:
            ensure_schema(conn)
        except Exception:
            conn.close()
            raise
        return cls(conn)

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "Repository":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _fetch_one(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        return self.conn.execute(sql, params).fetchone()

    def _fetch_all(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        return self.conn.execute(sql, params).fetchall()

    # ========================================================================
    # Organizations & projects
    # ========================================================================

    def create_organization(
        self,
        name: str,
        slug: str | None = None,
        subscription_tier: str = "free",
    ) -> Organization:
        org_id = _new_id()
        self.conn.execute(
            """
            INSERT INTO organizations (id, name, slug, subscription_tier, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                org_id,
                name,
                slug or f"{_slugify(name)}-{org_id[:8]}",
                subscription_tier,
                utc_timestamp(),
            ),
        )
        self.conn.commit()
        return self.get_organization(org_id)

    def get_organization(self, org_id: str) -> Organization | None:
        row = self._fetch_one("SELECT * FROM organizations WHERE id = ?", (org_id,))
        return _organization(row) if row else None

    def create_project(
        self,
        organization_id: str,
        name: str,
        monthly_budget_soft: float | None = None,
        monthly_budget_hard: float | None = None,
        current_month_usage: float = 0.0,
    ) -> Project:
        project_id = _new_id()
        self.conn.execute(
            """
            INSERT INTO projects (
                id, organization_id, name, monthly_budget_soft,
                monthly_budget_hard, current_month_usage, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                project_id,
                organization_id,
                name,
                monthly_budget_soft,
                monthly_budget_hard,
                current_month_usage,
                utc_timestamp(),
            ),
        )
        self.conn.commit()
        return self.get_project(project_id)

    def get_project(self, project_id: str) -> Project | None:
        row = self._fetch_one("SELECT * FROM projects WHERE id = ?", (project_id,))
        return _project(row) if row else None

    def increment_project_usage(self, project_id: str, amount: float) -> None:
        """Add amount (USD) to the project's current-month usage in one UPDATE."""
        self.conn.execute(
            """
            UPDATE projects
            SET current_month_usage = COALESCE(current_month_usage, 0) + ?
            WHERE id = ?
            """,
            (amount, project_id),
        )
        self.conn.commit()

    # ========================================================================
    # Brands & competitors
    # ========================================================================

    def create_brand(
        self,
        project_id: str,
        name: str,
        domain: str | None = None,
        synonyms: list[str] | None = None,
    ) -> Brand:
        brand_id = _new_id()
        self.conn.execute(
            """
            INSERT INTO brands (id, project_id, name, domain, synonyms_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (brand_id, project_id, name, domain, json.dumps(synonyms or []), utc_timestamp()),
        )
        self.conn.commit()
        row = self._fetch_one("SELECT * FROM brands WHERE id = ?", (brand_id,))
        return _brand(row)

    def get_brands_by_project(self, project_id: str) -> list[Brand]:
        """Brands in creation order; the first one is the project's primary brand."""
        rows = self._fetch_all(
            "SELECT * FROM brands WHERE project_id = ? ORDER BY created_at, rowid",
            (project_id,),
        )
        return [_brand(row) for row in rows]

    def create_competitor(
        self,
        project_id: str,
        name: str,
        domain: str | None = None,
        synonyms: list[str] | None = None,
    ) -> Competitor:
        competitor_id = _new_id()
        self.conn.execute(
            """
            INSERT INTO competitors (
                id, project_id, name, domain, synonyms_json, created_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                competitor_id,
                project_id,
                name,
                domain,
                json.dumps(synonyms or []),
                utc_timestamp(),
            ),
        )
        self.conn.commit()
        row = self._fetch_one("SELECT * FROM competitors WHERE id = ?", (competitor_id,))
        return _competitor(row)

    def get_competitors_by_project(self, project_id: str) -> list[Competitor]:
        rows = self._fetch_all(
            "SELECT * FROM competitors WHERE project_id = ? ORDER BY created_at, rowid",
            (project_id,),
        )
        return [_competitor(row) for row in rows]

    # ========================================================================
    # Prompts
    # ========================================================================

    def create_prompt(
        self,
        project_id: str,
        name: str,
        template: str,
        locale: str = "en",
        is_active: bool = True,
        schedule_enabled: bool = False,
        schedule_cadence: str = "weekly",
        next_run_at: datetime | None = None,
    ) -> Prompt:
        prompt_id = _new_id()
        self.conn.execute(
            """
            INSERT INTO prompts (
                id, project_id, name, template, locale, is_active,
                schedule_enabled, schedule_cadence, next_run_at, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                prompt_id,
                project_id,
                name,
                template,
                locale,
                int(is_active),
                int(schedule_enabled),
                schedule_cadence,
                format_timestamp(next_run_at) if next_run_at else None,
                utc_timestamp(),
            ),
        )
        self.conn.commit()
        return self.get_prompt(prompt_id)

    def get_prompt(self, prompt_id: str) -> Prompt | None:
        row = self._fetch_one("SELECT * FROM prompts WHERE id = ?", (prompt_id,))
        return _prompt(row) if row else None

    def get_due_prompts(self, now: datetime) -> list[Prompt]:
        """
        Prompts that are active, scheduled, and never ran or are due by now.

        Ordered by next_run_at ascending with never-run prompts first.
        """
        rows = self._fetch_all(
            """
            SELECT * FROM prompts
            WHERE is_active = 1
              AND schedule_enabled = 1
              AND (next_run_at IS NULL OR next_run_at <= ?)
            ORDER BY next_run_at IS NOT NULL, next_run_at, created_at, rowid
            """,
            (format_timestamp(now),),
        )
        return [_prompt(row) for row in rows]

    def update_prompt_schedule(
        self, prompt_id: str, last_run_at: datetime, next_run_at: datetime
    ) -> None:
        self.conn.execute(
            "UPDATE prompts SET last_run_at = ?, next_run_at = ? WHERE id = ?",
            (format_timestamp(last_run_at), format_timestamp(next_run_at), prompt_id),
        )
        self.conn.commit()

    # ========================================================================
    # Prompt runs, citations, scores
    # ========================================================================

    def create_prompt_run(
        self, prompt_id: str, provider: str, model: str | None
    ) -> PromptRun:
        """Insert a run in the 'started' state with all content fields empty."""
        run_id = _new_id()
        self.conn.execute(
            """
            INSERT INTO prompt_runs (id, prompt_id, provider, model, status, executed_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                run_id,
                prompt_id,
                provider,
                model,
                PromptRunStatus.STARTED.value,
                utc_timestamp(),
            ),
        )
        self.conn.commit()
        return self.get_prompt_run(run_id)

    def get_prompt_run(self, run_id: str) -> PromptRun | None:
        row = self._fetch_one("SELECT * FROM prompt_runs WHERE id = ?", (run_id,))
        return _prompt_run(row) if row else None

    def complete_prompt_run(
        self,
        run_id: str,
        raw_response: str,
        parsed_mentions: dict[str, Any],
        response_metadata: dict[str, Any],
        cost: float,
    ) -> PromptRun | None:
        """
        Store the final result of a run.

        Only a run still in the 'started' state is updated. Returns the
        updated run, or None if the run was missing or already finalized.
        """
        cursor = self.conn.execute(
            """
            UPDATE prompt_runs
            SET status = ?, raw_response = ?, parsed_mentions_json = ?,
                response_metadata_json = ?, cost = ?
            WHERE id = ? AND status = ?
            """,
            (
                PromptRunStatus.COMPLETED.value,
                raw_response,
                _dump(parsed_mentions),
                _dump(response_metadata),
                cost,
                run_id,
                PromptRunStatus.STARTED.value,
            ),
        )
        self.conn.commit()
        if cursor.rowcount != 1:
            logger.warning(f"Prompt run {run_id} not in 'started' state, not completed")
            return None
        return self.get_prompt_run(run_id)

    def fail_prompt_run(self, run_id: str, error: str) -> PromptRun | None:
        """Record an error onto a started run's metadata and mark it failed."""
        cursor = self.conn.execute(
            """
            UPDATE prompt_runs
            SET status = ?, response_metadata_json = ?
            WHERE id = ? AND status = ?
            """,
            (
                PromptRunStatus.FAILED.value,
                _dump({"error": error}),
                run_id,
                PromptRunStatus.STARTED.value,
            ),
        )
        self.conn.commit()
        if cursor.rowcount != 1:
            logger.warning(f"Prompt run {run_id} not in 'started' state, not failed")
            return None
        return self.get_prompt_run(run_id)

    def get_prompt_runs_by_project(
        self, project_id: str, limit: int = 50
    ) -> list[PromptRun]:
        """Most recent runs of all the project's prompts, newest first."""
        rows = self._fetch_all(
            """
            SELECT pr.* FROM prompt_runs pr
            JOIN prompts p ON p.id = pr.prompt_id
            WHERE p.project_id = ?
            ORDER BY pr.executed_at DESC, pr.rowid DESC
            LIMIT ?
            """,
            (project_id, limit),
        )
        return [_prompt_run(row) for row in rows]

    def get_monthly_run_count_by_org(
        self, org_id: str, now: datetime | None = None
    ) -> int:
        """Count runs of the organization's prompts since the start of now's month."""
        month_start = start_of_month(now or utc_now())
        row = self._fetch_one(
            """
            SELECT COUNT(*) FROM prompt_runs pr
            JOIN prompts p ON p.id = pr.prompt_id
            JOIN projects pj ON pj.id = p.project_id
            WHERE pj.organization_id = ? AND pr.executed_at >= ?
            """,
            (org_id, format_timestamp(month_start)),
        )
        return row[0]

    def create_citations(self, prompt_run_id: str, citations: Iterable) -> list[Citation]:
        """
        Insert citations for a run in one transaction.

        Each item needs url, title, snippet, domain and position attributes
        (providers.models.ParsedCitation).
        """
        created_at = utc_timestamp()
        ids = []
        for citation in citations:
            citation_id = _new_id()
            ids.append(citation_id)
            self.conn.execute(
                """
                INSERT INTO citations (
                    id, prompt_run_id, url, title, snippet, position, domain, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    citation_id,
                    prompt_run_id,
                    citation.url,
                    citation.title,
                    citation.snippet,
                    citation.position,
                    citation.domain,
                    created_at,
                ),
            )
        self.conn.commit()
        return [c for c in self.get_citations_by_run(prompt_run_id) if c.id in ids]

    def get_citations_by_run(self, prompt_run_id: str) -> list[Citation]:
        rows = self._fetch_all(
            "SELECT * FROM citations WHERE prompt_run_id = ? ORDER BY position, rowid",
            (prompt_run_id,),
        )
        return [_citation(row) for row in rows]

    def create_score(
        self,
        project_id: str,
        prompt_run_id: str | None,
        entity_type: str,
        entity_id: str,
        provider: str,
        score: float,
        mention_count: int,
        sentiment_score: float | None,
        citation_score: float | None,
    ) -> Score:
        score_id = _new_id()
        self.conn.execute(
            """
            INSERT INTO scores (
                id, project_id, prompt_run_id, entity_type, entity_id, provider,
                score, mention_count, sentiment_score, citation_score, calculated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                score_id,
                project_id,
                prompt_run_id,
                entity_type,
                entity_id,
                provider,
                score,
                mention_count,
                sentiment_score,
                citation_score,
                utc_timestamp(),
            ),
        )
        self.conn.commit()
        row = self._fetch_one("SELECT * FROM scores WHERE id = ?", (score_id,))
        return _score(row)

    def get_scores_by_run(self, prompt_run_id: str) -> list[Score]:
        rows = self._fetch_all(
            "SELECT * FROM scores WHERE prompt_run_id = ? ORDER BY rowid",
            (prompt_run_id,),
        )
        return [_score(row) for row in rows]

    # ========================================================================
    # Alerts
    # ========================================================================

    def create_alert_rule(
        self,
        project_id: str,
        type: str,
        threshold: float | None = None,
        is_active: bool = True,
    ) -> AlertRule:
        rule_id = _new_id()
        self.conn.execute(
            """
            INSERT INTO alert_rules (id, project_id, type, threshold, is_active, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (rule_id, project_id, type, threshold, int(is_active), utc_timestamp()),
        )
        self.conn.commit()
        row = self._fetch_one("SELECT * FROM alert_rules WHERE id = ?", (rule_id,))
        return _alert_rule(row)

    def get_alert_rules_by_project(self, project_id: str) -> list[AlertRule]:
        rows = self._fetch_all(
            """
            SELECT * FROM alert_rules WHERE project_id = ?
            ORDER BY created_at DESC, rowid DESC
            """,
            (project_id,),
        )
        return [_alert_rule(row) for row in rows]

    def create_alert_event(
        self,
        alert_rule_id: str,
        prompt_run_id: str | None,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> AlertEvent:
        event_id = _new_id()
        self.conn.execute(
            """
            INSERT INTO alert_events (
                id, alert_rule_id, prompt_run_id, message, metadata_json, created_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (event_id, alert_rule_id, prompt_run_id, message, _dump(metadata), utc_timestamp()),
        )
        self.conn.commit()
        row = self._fetch_one("SELECT * FROM alert_events WHERE id = ?", (event_id,))
        return _alert_event(row)

    def get_alert_events_by_project(self, project_id: str) -> list[AlertEvent]:
        rows = self._fetch_all(
            """
            SELECT ae.* FROM alert_events ae
            JOIN alert_rules ar ON ar.id = ae.alert_rule_id
            WHERE ar.project_id = ?
            ORDER BY ae.created_at, ae.rowid
            """,
            (project_id,),
        )
        return [_alert_event(row) for row in rows]

    # ========================================================================
    # Job queue
    # ========================================================================

    def create_job(
        self,
        type: str,
        payload: dict[str, Any],
        scheduled_for: datetime,
        project_id: str | None = None,
        organization_id: str | None = None,
        max_attempts: int = 5,
    ) -> Job:
        job_id = _new_id()
        self.conn.execute(
            """
            INSERT INTO job_queue (
                id, type, payload_json, status, attempts, max_attempts,
                scheduled_for, project_id, organization_id, created_at
            ) VALUES (?, ?, ?, 'pending', 0, ?, ?, ?, ?, ?)
            """,
            (
                job_id,
                type,
                json.dumps(payload),
                max_attempts,
                format_timestamp(scheduled_for),
                project_id,
                organization_id,
                utc_timestamp(),
            ),
        )
        self.conn.commit()
        return self.get_job(job_id)

    def get_job(self, job_id: str) -> Job | None:
        row = self._fetch_one("SELECT * FROM job_queue WHERE id = ?", (job_id,))
        return _job(row) if row else None

    def list_jobs(self, status: str | None = None, limit: int = 50) -> list[Job]:
        """Jobs newest first, optionally filtered by status."""
        if status is None:
            rows = self._fetch_all(
                "SELECT * FROM job_queue ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (limit,),
            )
        else:
            rows = self._fetch_all(
                """
                SELECT * FROM job_queue WHERE status = ?
                ORDER BY created_at DESC, rowid DESC LIMIT ?
                """,
                (status, limit),
            )
        return [_job(row) for row in rows]

    def get_job_stats(self) -> JobStats:
        stats = JobStats()
        for row in self._fetch_all(
            "SELECT status, COUNT(*) AS n FROM job_queue GROUP BY status"
        ):
            setattr(stats, row["status"], row["n"])
        return stats

    def lock_pending_jobs(
        self, limit: int, worker_id: str, now: datetime | None = None
    ) -> list[Job]:
        """
        Claim up to limit pending, due, unlocked jobs for worker_id.

        Candidates are ordered by scheduled_for. Each is claimed by its own
        conditional UPDATE; rows another worker claimed in between are
        skipped.
        """
        now_ts = format_timestamp(now or utc_now())
        candidates = self._fetch_all(
            """
            SELECT id FROM job_queue
            WHERE status = 'pending' AND scheduled_for <= ? AND locked_at IS NULL
            ORDER BY scheduled_for, rowid
            LIMIT ?
            """,
            (now_ts, limit),
        )

        locked: list[Job] = []
        for row in candidates:
            cursor = self.conn.execute(
                """
                UPDATE job_queue SET locked_at = ?, locked_by = ?
                WHERE id = ? AND locked_at IS NULL
                """,
                (now_ts, worker_id, row["id"]),
            )
            self.conn.commit()
            if cursor.rowcount == 1:
                locked.append(self.get_job(row["id"]))
            else:
                logger.debug(f"Job {row['id']} claimed by another worker, skipping")
        return locked

    def release_job_lock(self, job_id: str) -> None:
        self.conn.execute(
            "UPDATE job_queue SET locked_at = NULL, locked_by = NULL WHERE id = ?",
            (job_id,),
        )
        self.conn.commit()

    def update_job_status(
        self, job_id: str, status: str, error: str | None = None
    ) -> Job | None:
        """
        Set a job's status.

        'running' stamps started_at; 'completed' and 'failed' stamp
        completed_at. A non-empty error replaces the stored one.
        """
        now_ts = utc_timestamp()
        assignments = ["status = ?"]
        params: list[Any] = [str(status)]
        if status == "running":
            assignments.append("started_at = ?")
            params.append(now_ts)
        elif status in ("completed", "failed"):
            assignments.append("completed_at = ?")
            params.append(now_ts)
        if error:
            assignments.append("error = ?")
            params.append(error)
        params.append(job_id)

        self.conn.execute(
            f"UPDATE job_queue SET {', '.join(assignments)} WHERE id = ?",
            tuple(params),
        )
        self.conn.commit()
        return self.get_job(job_id)

    def increment_job_attempts(self, job_id: str) -> int:
        """Add one attempt and return the new attempt count."""
        self.conn.execute(
            "UPDATE job_queue SET attempts = attempts + 1 WHERE id = ?", (job_id,)
        )
        self.conn.commit()
        row = self._fetch_one("SELECT attempts FROM job_queue WHERE id = ?", (job_id,))
        return row["attempts"] if row else 0

    def schedule_job_retry(self, job_id: str, retry_at: datetime, error: str) -> None:
        """Put a job back to pending at retry_at with its lock cleared."""
        self.conn.execute(
            """
            UPDATE job_queue
            SET status = 'pending', scheduled_for = ?, error = ?,
                locked_at = NULL, locked_by = NULL
            WHERE id = ?
            """,
            (format_timestamp(retry_at), error, job_id),
        )
        self.conn.commit()

    def count_running_jobs_for_project(self, project_id: str) -> int:
        row = self._fetch_one(
            "SELECT COUNT(*) FROM job_queue WHERE project_id = ? AND status = 'running'",
            (project_id,),
        )
        return row[0]

    def count_running_jobs_for_org(self, organization_id: str) -> int:
        row = self._fetch_one(
            """
            SELECT COUNT(*) FROM job_queue
            WHERE organization_id = ? AND status = 'running'
            """,
            (organization_id,),
        )
        return row[0]

    # ========================================================================
    # Audit log
    # ========================================================================

    def create_audit_log(
        self,
        entity_type: str,
        action: str,
        project_id: str | None = None,
        entity_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        new_value: dict[str, Any] | None = None,
        previous_value: dict[str, Any] | None = None,
    ) -> AuditLog:
        log_id = _new_id()
        self.conn.execute(
            """
            INSERT INTO audit_logs (
                id, project_id, entity_type, entity_id, action,
                previous_value_json, new_value_json, metadata_json, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                log_id,
                project_id,
                entity_type,
                entity_id,
                action,
                _dump(previous_value),
                _dump(new_value),
                _dump(metadata),
                utc_timestamp(),
            ),
        )
        self.conn.commit()
        row = self._fetch_one("SELECT * FROM audit_logs WHERE id = ?", (log_id,))
        return _audit_log(row)

    def get_audit_logs(self, project_id: str | None = None) -> list[AuditLog]:
        if project_id is None:
            rows = self._fetch_all("SELECT * FROM audit_logs ORDER BY created_at, rowid")
        else:
            rows = self._fetch_all(
                "SELECT * FROM audit_logs WHERE project_id = ? ORDER BY created_at, rowid",
                (project_id,),
            )
        return [_audit_log(row) for row in rows]
