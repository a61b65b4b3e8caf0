"""
Tests for scheduler.scheduler module.

Tests cover:
- next_run_time() cadences and clamping
- Exponential backoff delays
- Enqueue phase: due prompts, hard budget skip with audit log,
  concurrency skip, payload and schedule advance
- Drain phase: success with usage accounting, retries with increasing
  delays until max attempts, release at concurrency ceiling, missing
  prompts, unknown job types, tier limits
- run_cron_tick() combined counts
"""

import sqlite3
from datetime import UTC, datetime, timedelta

import pytest
from freezegun import freeze_time

from answer_visibility.config.schema import SchedulerSettings, TierLimits
from answer_visibility.providers.mock_adapter import MockProviderAdapter
from answer_visibility.runner.prompt_runner import PromptRunner
from answer_visibility.scheduler.queue import PROMPT_RUN_JOB
from answer_visibility.scheduler.scheduler import (
    backoff_delay_ms,
    enqueue_due_prompts,
    new_worker_id,
    next_run_time,
    process_jobs,
    run_cron_tick,
)

NOW = datetime(2025, 11, 2, 8, 0, tzinfo=UTC)
ANSWER = "Acme is the best CRM.\nSources:\n- https://acme.com"


# ============================================================================
# Helpers
# ============================================================================


class FailingAdapter:
    name = "failing"

    async def run_prompt(self, prompt_text, context=None):
        raise RuntimeError("upstream 503")


def _runner(adapter=None, **kwargs):
    adapter = adapter or MockProviderAdapter(
        default_response=ANSWER, cost_per_response=0.02
    )
    return PromptRunner(adapter_factory=lambda provider, model: adapter, **kwargs)


@pytest.fixture
def settings():
    return SchedulerSettings(default_provider="mock")


@pytest.fixture
def prompt(repo, seeded):
    return repo.create_prompt(
        seeded.project.id,
        "Best CRM",
        "What is the best CRM?",
        schedule_enabled=True,
        schedule_cadence="daily",
    )


def _enqueue_job(repo, seeded, prompt_id, scheduled_for=NOW, **kwargs):
    return repo.create_job(
        PROMPT_RUN_JOB,
        {"promptId": prompt_id, "provider": "mock"},
        scheduled_for,
        project_id=seeded.project.id,
        organization_id=seeded.org.id,
        **kwargs,
    )


def _running_job(repo, project_id, org_id):
    job = repo.create_job(
        PROMPT_RUN_JOB, {}, NOW, project_id=project_id, organization_id=org_id
    )
    repo.update_job_status(job.id, "running")
    return job


# ============================================================================
# Schedule and backoff
# ============================================================================


class TestNextRunTime:
    def test_never_run_is_due_now(self):
        assert next_run_time("daily", None, NOW) == NOW

    def test_daily(self):
        assert next_run_time("daily", NOW, NOW) == NOW + timedelta(days=1)

    def test_weekly(self):
        assert next_run_time("weekly", NOW, NOW) == NOW + timedelta(days=7)

    def test_unknown_cadence_is_weekly(self):
        assert next_run_time("monthly", NOW, NOW) == NOW + timedelta(days=7)

    def test_never_in_the_past(self):
        last = NOW - timedelta(days=30)
        assert next_run_time("daily", last, NOW) == NOW

    @freeze_time("2025-11-02 08:00:00")
    def test_defaults_to_current_time(self):
        assert next_run_time("daily", None) == NOW


class TestBackoff:
    def test_doubles_per_attempt(self):
        settings = SchedulerSettings()
        delays = [backoff_delay_ms(n, settings) for n in range(1, 5)]

        assert delays == [2000, 4000, 8000, 16000]

    def test_custom_settings(self):
        settings = SchedulerSettings(backoff_base_ms=500, backoff_multiplier=3)
        assert backoff_delay_ms(2, settings) == 4500


def test_worker_ids_are_unique():
    ids = {new_worker_id() for _ in range(20)}

    assert len(ids) == 20
    assert all(i.startswith("worker-") for i in ids)


# ============================================================================
# Enqueue phase
# ============================================================================


class TestEnqueueDuePrompts:
    """Test suite for enqueue_due_prompts()."""

    def test_enqueues_due_prompt_and_advances_schedule(
        self, repo, seeded, prompt, settings
    ):
        result = enqueue_due_prompts(repo, settings, NOW)

        assert result.to_dict() == {
            "enqueued": 1,
            "skippedBudget": 0,
            "skippedConcurrency": 0,
        }
        [job] = repo.list_jobs()
        assert job.type == "prompt_run"
        assert job.payload == {"promptId": prompt.id, "provider": "mock"}
        assert job.status == "pending"
        assert job.scheduled_for == NOW
        assert job.project_id == seeded.project.id
        assert job.organization_id == seeded.org.id
        assert job.max_attempts == 5

        updated = repo.get_prompt(prompt.id)
        assert updated.last_run_at == NOW
        assert updated.next_run_at == NOW + timedelta(days=1)

    def test_not_due_again_until_next_run(self, repo, seeded, prompt, settings):
        enqueue_due_prompts(repo, settings, NOW)

        again = enqueue_due_prompts(repo, settings, NOW + timedelta(hours=1))

        assert again.enqueued == 0
        assert len(repo.list_jobs()) == 1

    def test_payload_includes_default_model(self, repo, seeded, prompt):
        settings = SchedulerSettings(default_provider="openai", default_model="gpt-4o")

        enqueue_due_prompts(repo, settings, NOW)

        assert repo.list_jobs()[0].payload == {
            "promptId": prompt.id,
            "provider": "openai",
            "model": "gpt-4o",
        }

    def test_skips_unscheduled_and_inactive_prompts(self, repo, seeded, settings):
        repo.create_prompt(seeded.project.id, "manual", "t", schedule_enabled=False)
        repo.create_prompt(
            seeded.project.id, "off", "t", is_active=False, schedule_enabled=True
        )

        assert enqueue_due_prompts(repo, settings, NOW).enqueued == 0

    def test_hard_budget_skip_writes_one_audit_log(self, repo, seeded, settings):
        project = repo.create_project(
            seeded.org.id, "Spent", monthly_budget_hard=10.0, current_month_usage=10.0
        )
        spent = repo.create_prompt(project.id, "p", "t", schedule_enabled=True)

        result = enqueue_due_prompts(repo, settings, NOW)

        assert result.skipped_budget == 1
        assert result.enqueued == 0
        assert repo.list_jobs() == []
        logs = repo.get_audit_logs(project.id)
        assert len(logs) == 1
        assert logs[0].entity_type == "prompt"
        assert logs[0].entity_id == spent.id
        assert logs[0].action == "budget_change"
        assert logs[0].metadata == {
            "reason": "Hard budget limit reached",
            "budgetLimit": 10.0,
            "currentUsage": 10.0,
        }

    def test_project_concurrency_skip(self, repo, seeded, prompt, settings):
        """Test a project with 2 running jobs gets no new job."""
        for _ in range(2):
            _running_job(repo, seeded.project.id, seeded.org.id)

        result = enqueue_due_prompts(repo, settings, NOW)

        assert result.skipped_concurrency == 1
        assert result.enqueued == 0
        assert repo.get_prompt(prompt.id).next_run_at is None

    def test_org_concurrency_skip(self, repo, seeded, prompt, settings):
        other = repo.create_project(seeded.org.id, "Other")
        for _ in range(3):
            _running_job(repo, other.id, seeded.org.id)

        result = enqueue_due_prompts(repo, settings, NOW)

        assert result.skipped_concurrency == 1

    @freeze_time("2025-11-02 08:00:00")
    def test_defaults_to_current_time(self, repo, seeded, prompt, settings):
        enqueue_due_prompts(repo, settings)

        assert repo.list_jobs()[0].scheduled_for == NOW


# ============================================================================
# Drain phase
# ============================================================================


class TestProcessJobs:
    """Test suite for process_jobs()."""

    @pytest.mark.asyncio
    async def test_success_completes_job_and_charges_usage(
        self, repo, seeded, prompt, settings
    ):
        job = _enqueue_job(repo, seeded, prompt.id)

        result = await process_jobs(repo, _runner(), settings, now=NOW)

        assert result.to_dict() == {
            "processed": 1,
            "failed": 0,
            "retried": 0,
            "released": 0,
        }
        stored = repo.get_job(job.id)
        assert stored.status == "completed"
        assert stored.attempts == 1
        assert stored.completed_at is not None

        [run] = repo.get_prompt_runs_by_project(seeded.project.id)
        assert run.status == "completed"
        assert run.provider == "mock"
        assert repo.get_project(seeded.project.id).current_month_usage == (
            pytest.approx(0.02)
        )

    @pytest.mark.asyncio
    async def test_success_evaluates_alerts(self, repo, seeded, prompt, settings):
        repo.create_alert_rule(seeded.project.id, "new_domain_cited")
        _enqueue_job(repo, seeded, prompt.id)

        await process_jobs(repo, _runner(), settings, now=NOW)

        events = repo.get_alert_events_by_project(seeded.project.id)
        assert [e.message for e in events] == ["New domain cited: acme.com"]

    @pytest.mark.asyncio
    async def test_alerts_disabled(self, repo, seeded, prompt):
        repo.create_alert_rule(seeded.project.id, "new_domain_cited")
        _enqueue_job(repo, seeded, prompt.id)
        settings = SchedulerSettings(default_provider="mock", evaluate_alerts=False)

        await process_jobs(repo, _runner(), settings, now=NOW)

        assert repo.get_alert_events_by_project(seeded.project.id) == []

    @pytest.mark.asyncio
    async def test_retry_delays_grow_until_failed(self, repo, seeded, prompt, settings):
        """Test each failure reschedules with a longer delay, then fails terminally."""
        job = _enqueue_job(repo, seeded, prompt.id)
        runner = _runner(FailingAdapter())

        delays = []
        now = NOW
        for _ in range(4):
            result = await process_jobs(repo, runner, settings, now=now)
            assert result.retried == 1
            stored = repo.get_job(job.id)
            assert stored.status == "pending"
            assert stored.error == "upstream 503"
            delays.append(stored.scheduled_for - now)
            now = stored.scheduled_for

        assert delays == [
            timedelta(milliseconds=2000),
            timedelta(milliseconds=4000),
            timedelta(milliseconds=8000),
            timedelta(milliseconds=16000),
        ]

        result = await process_jobs(repo, runner, settings, now=now)

        assert result.failed == 1
        stored = repo.get_job(job.id)
        assert stored.status == "failed"
        assert stored.attempts == 5
        assert stored.error == "upstream 503"
        runs = repo.get_prompt_runs_by_project(seeded.project.id)
        assert len(runs) == 5
        assert {run.status for run in runs} == {"failed"}

    @pytest.mark.asyncio
    async def test_retried_job_not_claimed_before_due(
        self, repo, seeded, prompt, settings
    ):
        _enqueue_job(repo, seeded, prompt.id)
        runner = _runner(FailingAdapter())
        await process_jobs(repo, runner, settings, now=NOW)

        result = await process_jobs(
            repo, runner, settings, now=NOW + timedelta(seconds=1)
        )

        assert result.to_dict() == {
            "processed": 0,
            "failed": 0,
            "retried": 0,
            "released": 0,
        }

    @pytest.mark.asyncio
    async def test_released_at_concurrency_ceiling(
        self, repo, seeded, prompt, settings
    ):
        job = _enqueue_job(repo, seeded, prompt.id)
        for _ in range(2):
            _running_job(repo, seeded.project.id, seeded.org.id)

        result = await process_jobs(repo, _runner(), settings, now=NOW)

        assert result.released == 1
        stored = repo.get_job(job.id)
        assert stored.status == "pending"
        assert stored.attempts == 0
        assert stored.locked_by is None

    @pytest.mark.asyncio
    async def test_missing_prompt_fails_without_retry(self, repo, seeded, settings):
        job = _enqueue_job(repo, seeded, "deleted-prompt")

        result = await process_jobs(repo, _runner(), settings, now=NOW)

        assert result.failed == 1
        stored = repo.get_job(job.id)
        assert stored.status == "failed"
        assert stored.error == "Prompt not found: deleted-prompt"

    @pytest.mark.asyncio
    async def test_monthly_limit_fails_without_retry(self, repo, seeded, prompt):
        settings = SchedulerSettings(default_provider="mock")
        tiers = {
            "starter": TierLimits(project_limit=1, prompts_per_project=1, runs_per_month=0)
        }
        job = _enqueue_job(repo, seeded, prompt.id)

        result = await process_jobs(repo, _runner(tiers=tiers), settings, now=NOW)

        assert result.failed == 1
        assert repo.get_job(job.id).error.startswith("Monthly run limit reached")
        assert repo.get_prompt_runs_by_project(seeded.project.id) == []

    @pytest.mark.asyncio
    async def test_unknown_job_type_is_completed(self, repo, settings):
        job = repo.create_job("send_report", {}, NOW)

        result = await process_jobs(repo, _runner(), settings, now=NOW)

        assert result.processed == 1
        assert repo.get_job(job.id).status == "completed"

    @pytest.mark.asyncio
    async def test_limit_caps_batch(self, repo, settings):
        for _ in range(3):
            repo.create_job("noop", {}, NOW)

        result = await process_jobs(repo, _runner(), settings, limit=2, now=NOW)

        assert result.processed == 2
        assert repo.get_job_stats().to_dict()["pending"] == 1

    @pytest.mark.asyncio
    async def test_alert_history_window_uses_drain_time(
        self, repo, seeded, prompt, settings
    ):
        """Test a run from the day before the drain time counts as history."""
        repo.create_alert_rule(seeded.project.id, "new_domain_cited")
        with freeze_time("2025-11-01 08:00:00"):
            earlier = repo.create_prompt_run(prompt.id, "mock", None)
            repo.complete_prompt_run(
                earlier.id,
                raw_response="Acme",
                parsed_mentions={
                    "brandMentioned": True,
                    "brandMentionCount": 1,
                    "citedDomains": [
                        {"domain": "acme.com", "count": 1, "urls": ["https://acme.com"]}
                    ],
                },
                response_metadata={},
                cost=None,
            )
        _enqueue_job(repo, seeded, prompt.id)

        await process_jobs(repo, _runner(), settings, now=NOW)

        assert repo.get_alert_events_by_project(seeded.project.id) == []


class TestProcessJobsStorageErrors:
    """A storage error mid-batch must not leave claimed jobs locked."""

    @pytest.mark.asyncio
    async def test_error_before_start_releases_job(
        self, repo, seeded, prompt, settings, monkeypatch, caplog
    ):
        jobs = [_enqueue_job(repo, seeded, prompt.id) for _ in range(3)]
        count_running = repo.count_running_jobs_for_project
        calls = []

        def locked_once(project_id):
            calls.append(project_id)
            if len(calls) == 1:
                raise sqlite3.OperationalError("database is locked")
            return count_running(project_id)

        monkeypatch.setattr(repo, "count_running_jobs_for_project", locked_once)

        result = await process_jobs(repo, _runner(), settings, now=NOW)

        assert result.to_dict() == {
            "processed": 2,
            "failed": 0,
            "retried": 0,
            "released": 1,
        }
        first = repo.get_job(jobs[0].id)
        assert first.status == "pending"
        assert first.attempts == 0
        assert first.locked_at is None
        assert first.locked_by is None
        assert "Tracked error: OperationalError" in caplog.text

        later = await process_jobs(
            repo, _runner(), settings, now=NOW + timedelta(minutes=1)
        )

        assert later.processed == 1
        assert repo.get_job(jobs[0].id).status == "completed"

    @pytest.mark.asyncio
    async def test_error_after_start_retries_with_backoff(
        self, repo, seeded, prompt, settings, monkeypatch
    ):
        job = _enqueue_job(repo, seeded, prompt.id)
        update_status = repo.update_job_status

        def locked_on_complete(job_id, status, error=None):
            if status == "completed":
                raise sqlite3.OperationalError("database is locked")
            return update_status(job_id, status, error)

        monkeypatch.setattr(repo, "update_job_status", locked_on_complete)

        result = await process_jobs(repo, _runner(), settings, now=NOW)

        assert result.retried == 1
        stored = repo.get_job(job.id)
        assert stored.status == "pending"
        assert stored.attempts == 1
        assert stored.error == "database is locked"
        assert stored.scheduled_for == NOW + timedelta(milliseconds=2000)
        assert stored.locked_at is None


# ============================================================================
# Cron tick
# ============================================================================


@pytest.mark.asyncio
async def test_run_cron_tick_enqueues_and_drains(repo, seeded, prompt, settings):
    result = await run_cron_tick(repo, _runner(), settings, NOW)

    assert result.to_dict() == {
        "enqueued": 1,
        "skippedBudget": 0,
        "skippedConcurrency": 0,
        "processed": 1,
        "failed": 0,
        "retried": 0,
        "released": 0,
    }
    assert repo.get_job_stats().to_dict()["completed"] == 1
    [run] = repo.get_prompt_runs_by_project(seeded.project.id)
    assert repo.get_scores_by_run(run.id)[0].score == 80
