"""
Tests for runner.prompt_runner module.

Tests cover:
- Successful run: PromptRun completed, metadata, citations and score stored
- Monthly tier gate (no run row created when the quota is used up)
- Provider failures and timeouts recorded onto the run
- Not-found errors for missing prompts
- PromptRunner.from_config() wiring
- On-demand path: hard budget, usage, soft budget alert, audit log, alerts
"""

import asyncio
import math
from unittest.mock import MagicMock

import pytest

from answer_visibility.config.schema import (
    RuntimeConfig,
    RuntimeExtractionSettings,
    RuntimeProvider,
    SchedulerSettings,
    TierLimits,
)
from answer_visibility.exceptions import (
    BudgetExceededError,
    NotFoundError,
    ProviderTimeoutError,
)
from answer_visibility.extractor.strategies import LexicalExtractionStrategy
from answer_visibility.providers.mock_adapter import MockProviderAdapter
from answer_visibility.providers.models import ProviderContext, ProviderResponse
from answer_visibility.runner.prompt_runner import (
    PromptRunner,
    apply_run_usage,
    call_adapter,
    run_prompt_on_demand,
    run_prompt_once,
)

ANSWER = "Acme is the best and most trusted tool.\nSources:\n- https://acme.com/crm"


class FailingAdapter:
    name = "failing"

    async def run_prompt(self, prompt_text, context=None):
        raise RuntimeError("provider exploded")


class SlowAdapter:
    name = "slow"

    async def run_prompt(self, prompt_text, context=None):
        await asyncio.sleep(5)
        return ProviderResponse(raw_text="too late")


def _mock_factory(answer=ANSWER, cost=0.01):
    adapter = MockProviderAdapter(default_response=answer, cost_per_response=cost)
    return lambda provider, model: adapter


def _runner(factory=None, **kwargs):
    return PromptRunner(adapter_factory=factory or _mock_factory(), **kwargs)


@pytest.fixture
def prompt(repo, seeded):
    return repo.create_prompt(
        seeded.project.id, "Best CRM", "What is the best CRM?", schedule_enabled=True
    )


class TestRunPromptOnce:
    """Test suite for run_prompt_once()."""

    @pytest.mark.asyncio
    async def test_success_persists_run_citations_and_score(self, repo, seeded, prompt):
        result = await run_prompt_once(
            repo, prompt.id, "mock", "mock-model", adapter_factory=_mock_factory()
        )

        assert result.success is True
        run = result.prompt_run
        assert run.status == "completed"
        assert run.provider == "mock"
        assert run.model == "mock-model"
        assert run.raw_response == ANSWER
        assert run.cost == 0.01
        assert run.parsed_mentions["brandMentionCount"] == 2
        assert run.parsed_mentions["sentiment"] == "positive"
        assert run.parsed_mentions["extractionMethod"] == "regex"

        metadata = run.response_metadata
        assert metadata["usage"] == {
            "promptTokens": 50,
            "completionTokens": 50,
            "totalTokens": 100,
        }
        assert metadata["costEstimate"] == 0.01
        assert metadata["citationCount"] == 1
        assert isinstance(metadata["duration"], int)

        citations = repo.get_citations_by_run(run.id)
        assert [(c.position, c.domain) for c in citations] == [(1, "acme.com")]

        scores = repo.get_scores_by_run(run.id)
        assert len(scores) == 1
        assert scores[0].entity_id == seeded.brand.id
        assert scores[0].entity_type == "brand"
        assert scores[0].score == 80
        assert scores[0].mention_count == 2
        assert scores[0].sentiment_score == 0.5
        assert scores[0].citation_score == 20

    @pytest.mark.asyncio
    async def test_adapter_receives_brand_context(self, repo, seeded, prompt):
        adapter = MagicMock()
        adapter.name = "spy"

        async def run_prompt(text, context):
            adapter.seen = (text, context)
            return ProviderResponse(raw_text="nothing")

        adapter.run_prompt = run_prompt

        await run_prompt_once(
            repo, prompt.id, "spy", adapter_factory=lambda p, m: adapter
        )

        text, context = adapter.seen
        assert text == "What is the best CRM?"
        assert context == ProviderContext(
            brand_names=["Acme Corp", "Acme"],
            competitor_names=["Globex", "Globex Corp", "Initech"],
            locale="en",
        )

    @pytest.mark.asyncio
    async def test_no_brand_no_score(self, repo, seeded):
        project = repo.create_project(seeded.org.id, "No brands")
        bare = repo.create_prompt(project.id, "p", "t")

        result = await run_prompt_once(
            repo, bare.id, "mock", adapter_factory=_mock_factory()
        )

        assert result.success is True
        assert repo.get_scores_by_run(result.prompt_run.id) == []

    @pytest.mark.asyncio
    async def test_zero_cost_stored_as_none(self, repo, seeded, prompt):
        result = await run_prompt_once(
            repo, prompt.id, "mock", adapter_factory=_mock_factory(cost=0.0)
        )
        assert result.prompt_run.cost is None

    @pytest.mark.asyncio
    async def test_monthly_limit_creates_no_run(self, repo, seeded, prompt):
        """Test the tier gate returns limit_exceeded before creating a run."""
        tiers = {
            "starter": TierLimits(project_limit=1, prompts_per_project=1, runs_per_month=1)
        }
        repo.create_prompt_run(prompt.id, "mock", None)

        result = await run_prompt_once(
            repo, prompt.id, "mock", adapter_factory=_mock_factory(), tiers=tiers
        )

        assert result.success is False
        assert result.limit_exceeded is True
        assert result.prompt_run is None
        assert result.error == (
            "Monthly run limit reached. Your starter plan allows 1 runs per month."
        )
        assert len(repo.get_prompt_runs_by_project(seeded.project.id)) == 1

    @pytest.mark.asyncio
    async def test_unlimited_tier_never_gates(self, repo, seeded, prompt):
        tiers = {
            "starter": TierLimits(
                project_limit=1, prompts_per_project=1, runs_per_month=math.inf
            )
        }
        for _ in range(3):
            repo.create_prompt_run(prompt.id, "mock", None)

        result = await run_prompt_once(
            repo, prompt.id, "mock", adapter_factory=_mock_factory(), tiers=tiers
        )

        assert result.success is True

    @pytest.mark.asyncio
    async def test_provider_failure_is_recorded(self, repo, seeded, prompt, caplog):
        """Test an adapter exception fails the already-created run."""
        result = await run_prompt_once(
            repo, prompt.id, "failing", adapter_factory=lambda p, m: FailingAdapter()
        )

        assert result.success is False
        assert result.limit_exceeded is False
        assert result.error == "provider exploded"
        assert result.prompt_run.status == "failed"
        assert result.prompt_run.response_metadata == {"error": "provider exploded"}
        assert "Tracked error: RuntimeError" in caplog.text

    @pytest.mark.asyncio
    async def test_unsupported_provider_is_recorded(self, repo, seeded, prompt):
        result = await run_prompt_once(repo, prompt.id, "gemini")

        assert result.success is False
        assert result.error == "Unsupported provider: gemini"
        assert result.prompt_run.status == "failed"
        assert result.prompt_run.provider == "gemini"

    @pytest.mark.asyncio
    async def test_timeout_is_recorded(self, repo, seeded, prompt):
        result = await run_prompt_once(
            repo,
            prompt.id,
            "slow",
            adapter_factory=lambda p, m: SlowAdapter(),
            timeout=0.05,
        )

        assert result.success is False
        assert result.error == "slow call timed out after 0.05s"
        assert result.prompt_run.status == "failed"

    @pytest.mark.asyncio
    async def test_missing_prompt_raises(self, repo):
        with pytest.raises(NotFoundError, match="Prompt not found: nope"):
            await run_prompt_once(repo, "nope", "mock", adapter_factory=_mock_factory())


class TestCallAdapter:
    @pytest.mark.asyncio
    async def test_raises_provider_timeout(self):
        with pytest.raises(ProviderTimeoutError, match="timed out"):
            await call_adapter(SlowAdapter(), "x", ProviderContext(), timeout=0.01)

    @pytest.mark.asyncio
    async def test_no_timeout(self):
        response = await call_adapter(
            MockProviderAdapter(default_response="hi"), "x", ProviderContext(), None
        )
        assert response.raw_text == "hi"


class TestPromptRunnerFromConfig:
    def test_wires_providers_timeouts_and_extractor(self, tmp_path):
        config = RuntimeConfig(
            database_path=str(tmp_path / "v.db"),
            scheduler=SchedulerSettings(default_provider="mock"),
            providers={
                "mock": RuntimeProvider(
                    provider="mock", model_name="mock-model", request_timeout_seconds=7
                )
            },
            extraction=RuntimeExtractionSettings(
                method="lexical", model_name="gpt-4o-mini", max_tokens=500
            ),
            tiers={},
        )

        runner = PromptRunner.from_config(config)

        assert runner.timeout_for("mock") == 7
        assert runner.timeout_for("openai") == 120.0
        assert isinstance(runner.extractor, LexicalExtractionStrategy)
        adapter = runner.adapter_factory("mock", None)
        assert isinstance(adapter, MockProviderAdapter)
        assert adapter.model == "mock-model"


class TestRunPromptOnDemand:
    """Test suite for run_prompt_on_demand()."""

    @pytest.mark.asyncio
    async def test_hard_budget_raises_without_running(self, repo, seeded):
        project = repo.create_project(
            seeded.org.id, "Spent", monthly_budget_hard=5.0, current_month_usage=5.0
        )
        prompt = repo.create_prompt(project.id, "p", "t")

        with pytest.raises(BudgetExceededError, match="Monthly budget limit reached") as e:
            await run_prompt_on_demand(repo, _runner(), prompt.id, "mock", None)

        assert e.value.current_usage == 5.0
        assert e.value.budget_limit == 5.0
        assert repo.get_prompt_runs_by_project(project.id) == []

    @pytest.mark.asyncio
    async def test_success_updates_usage_and_audit_log(self, repo, seeded, prompt):
        result = await run_prompt_on_demand(
            repo, _runner(), prompt.id, "mock", "mock-model"
        )

        assert result.success is True
        assert repo.get_project(seeded.project.id).current_month_usage == pytest.approx(
            0.01
        )
        logs = repo.get_audit_logs(seeded.project.id)
        assert len(logs) == 1
        assert logs[0].entity_type == "prompt_run"
        assert logs[0].action == "create"
        assert logs[0].entity_id == result.prompt_run.id
        assert logs[0].new_value == {
            "promptId": prompt.id,
            "provider": "mock",
            "model": "mock-model",
        }

    @pytest.mark.asyncio
    async def test_failure_skips_usage_and_audit(self, repo, seeded, prompt):
        result = await run_prompt_on_demand(
            repo, _runner(lambda p, m: FailingAdapter()), prompt.id, "failing", None
        )

        assert result.success is False
        assert repo.get_project(seeded.project.id).current_month_usage == 0
        assert repo.get_audit_logs(seeded.project.id) == []

    @pytest.mark.asyncio
    async def test_soft_budget_alert(self, repo, seeded):
        project = repo.create_project(
            seeded.org.id, "Soft", monthly_budget_soft=0.5, current_month_usage=0.75
        )
        prompt = repo.create_prompt(project.id, "p", "t")
        rule = repo.create_alert_rule(project.id, "budget_exceeded")

        await run_prompt_on_demand(repo, _runner(), prompt.id, "mock", None)

        events = repo.get_alert_events_by_project(project.id)
        assert len(events) == 1
        assert events[0].alert_rule_id == rule.id
        assert events[0].message == (
            "Monthly budget soft limit reached: $0.76 of $0.50 spent"
        )
        assert events[0].metadata["softLimit"] == 0.5

    @pytest.mark.asyncio
    async def test_evaluate_alerts_flag(self, repo, seeded, prompt):
        repo.create_alert_rule(seeded.project.id, "new_domain_cited")

        await run_prompt_on_demand(repo, _runner(), prompt.id, "mock", None)
        assert repo.get_alert_events_by_project(seeded.project.id) == []

        await run_prompt_on_demand(
            repo, _runner(), prompt.id, "mock", None, evaluate_alerts=True
        )
        events = repo.get_alert_events_by_project(seeded.project.id)
        # acme.com was already cited by the first run
        assert events == []

    @pytest.mark.asyncio
    async def test_evaluate_alerts_fires_for_first_citation(self, repo, seeded, prompt):
        repo.create_alert_rule(seeded.project.id, "new_domain_cited")

        await run_prompt_on_demand(
            repo, _runner(), prompt.id, "mock", None, evaluate_alerts=True
        )

        events = repo.get_alert_events_by_project(seeded.project.id)
        assert [e.message for e in events] == ["New domain cited: acme.com"]


class TestApplyRunUsage:
    def test_no_cost_is_noop(self, repo, seeded, prompt):
        run = repo.create_prompt_run(prompt.id, "mock", None)

        assert apply_run_usage(repo, seeded.project, run) is None
        assert repo.get_project(seeded.project.id).current_month_usage == 0
