"""
Prompt runner for Answer Visibility.

Executes one prompt against one provider and records everything the run
produced:

1. Load prompt, project and organization (NotFoundError if missing)
2. Check the organization's monthly run quota for its tier
3. Create the PromptRun row (so a failure is still recorded)
4. Call the provider adapter, bounded by the provider timeout
5. Extract mentions, citations, sentiment and topics
6. Complete the PromptRun and store its citations
7. Score the project's primary brand

Provider and extraction failures are caught, recorded onto the run and
returned as success=False. Quota exhaustion is returned as
limit_exceeded=True without creating a run.

run_prompt_on_demand wraps this for the interactive path: hard budget
check, usage accounting, soft budget alert, audit log and optional alert
evaluation.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from answer_visibility.alerts.evaluator import (
    evaluate_alerts_for_run,
    evaluate_budget_alert,
)
from answer_visibility.config.constants import (
    DEFAULT_MODEL,
    DEFAULT_PROVIDER,
    DEFAULT_PROVIDER_TIMEOUT_SECONDS,
    FALLBACK_TIER,
)
from answer_visibility.config.schema import (
    RuntimeConfig,
    TierLimits,
    default_tiers,
    get_tier_limits,
)
from answer_visibility.exceptions import (
    BudgetExceededError,
    NotFoundError,
    ProviderTimeoutError,
)
from answer_visibility.extractor.lexical import entity_terms
from answer_visibility.extractor.models import ExtractionResult
from answer_visibility.extractor.strategies import (
    ExtractionStrategy,
    LexicalExtractionStrategy,
    build_extractor,
)
from answer_visibility.providers import get_provider_adapter
from answer_visibility.providers.models import (
    ProviderAdapter,
    ProviderContext,
    ProviderResponse,
)
from answer_visibility.scoring.visibility import compute_visibility_score
from answer_visibility.storage.models import Project, PromptRun
from answer_visibility.storage.repository import Repository
from answer_visibility.utils.logging import log_with_context, track_error

AdapterFactory = Callable[[str, str | None], ProviderAdapter]

logger = logging.getLogger(__name__)


@dataclass
class RunPromptResult:
    """
    Outcome of one prompt execution.

    Attributes:
        success: True when the run completed
        prompt_run: The run row (None when no run was created)
        error: Failure or limit message
        limit_exceeded: True when the monthly run quota blocked the run
    """

    success: bool
    prompt_run: PromptRun | None = None
    error: str | None = None
    limit_exceeded: bool = False


async def call_adapter(
    adapter: ProviderAdapter,
    prompt_text: str,
    context: ProviderContext,
    timeout: float | None,
) -> ProviderResponse:
    """Run the adapter, raising ProviderTimeoutError after timeout seconds."""
    try:
        return await asyncio.wait_for(
            adapter.run_prompt(prompt_text, context), timeout=timeout
        )
    except TimeoutError as e:
        raise ProviderTimeoutError(
            f"{adapter.name} call timed out after {timeout}s"
        ) from e


async def run_prompt_once(
    repo: Repository,
    prompt_id: str,
    provider: str,
    model: str | None = None,
    *,
    adapter_factory: AdapterFactory | None = None,
    extractor: ExtractionStrategy | None = None,
    tiers: dict[str, TierLimits] | None = None,
    timeout: float | None = DEFAULT_PROVIDER_TIMEOUT_SECONDS,
    now: datetime | None = None,
) -> RunPromptResult:
    """
    Execute a prompt once and persist the run, citations and score.

    Args:
        repo: Repository
        prompt_id: Prompt to run
        provider: Provider name (e.g., "openai")
        model: Model override recorded on the run
        adapter_factory: (provider, model) -> adapter; defaults to
            get_provider_adapter without settings
        extractor: Extraction strategy; defaults to lexical extraction
        tiers: Tier table; defaults to the built-in table
        timeout: Overall adapter timeout in seconds (None = unbounded)
        now: Reference time for the monthly quota (default: now)

    Returns:
        RunPromptResult

    Raises:
        NotFoundError: Prompt, project or organization does not exist
    """
    start = time.monotonic()
    adapter_factory = adapter_factory or (lambda p, m: get_provider_adapter(p, m))
    extractor = extractor or LexicalExtractionStrategy()

    prompt = repo.get_prompt(prompt_id)
    if prompt is None:
        raise NotFoundError("prompt", prompt_id)
    project = repo.get_project(prompt.project_id)
    if project is None:
        raise NotFoundError("project", prompt.project_id)
    org = repo.get_organization(project.organization_id)
    if org is None:
        raise NotFoundError("organization", project.organization_id)

    tier = org.subscription_tier or FALLBACK_TIER
    limits = get_tier_limits(tiers or default_tiers(), tier)
    if not limits.is_unlimited:
        month_runs = repo.get_monthly_run_count_by_org(org.id, now)
        if month_runs >= limits.runs_per_month:
            message = (
                f"Monthly run limit reached. Your {tier} plan allows "
                f"{limits.runs_per_month:g} runs per month."
            )
            logger.warning(f"{message} (organization={org.id}, runs={month_runs})")
            return RunPromptResult(success=False, error=message, limit_exceeded=True)

    brands = repo.get_brands_by_project(project.id)
    competitors = repo.get_competitors_by_project(project.id)

    run = repo.create_prompt_run(prompt_id, provider, model)

    try:
        adapter = adapter_factory(provider, model)
        context = ProviderContext(
            brand_names=entity_terms(brands),
            competitor_names=entity_terms(competitors),
            locale=prompt.locale or "en",
        )
        response = await call_adapter(adapter, prompt.template, context, timeout)

        extraction: ExtractionResult = await extractor.extract(
            response.raw_text, brands, competitors
        )

        duration_ms = int((time.monotonic() - start) * 1000)
        metadata = {
            "usage": response.usage.to_dict() if response.usage else None,
            "costEstimate": response.cost_estimate,
            "duration": duration_ms,
            "citationCount": len(response.citations),
        }
        completed = repo.complete_prompt_run(
            run.id,
            raw_response=response.raw_text,
            parsed_mentions=extraction.to_dict(),
            response_metadata=metadata,
            cost=response.cost_estimate or None,
        )

        if response.citations:
            repo.create_citations(run.id, response.citations)

        if brands:
            primary = brands[0]
            breakdown = compute_visibility_score(extraction, primary.domain)
            repo.create_score(
                project_id=project.id,
                prompt_run_id=run.id,
                entity_type="brand",
                entity_id=primary.id,
                provider=provider,
                score=breakdown.score,
                mention_count=extraction.brand_mention_count,
                sentiment_score=breakdown.sentiment_score,
                citation_score=breakdown.citation_bonus,
            )

        log_with_context(
            logger,
            logging.INFO,
            "Prompt run completed",
            context={
                "prompt_id": prompt_id,
                "provider": provider,
                "brand_mentions": extraction.brand_mention_count,
                "extraction_method": extraction.extraction_method,
                "duration_ms": duration_ms,
            },
            run_id=run.id,
        )
        return RunPromptResult(
            success=True, prompt_run=completed or repo.get_prompt_run(run.id)
        )

    except Exception as e:
        track_error(
            logger,
            e,
            {
                "prompt_id": prompt_id,
                "provider": provider,
                "model": model,
                "prompt_run_id": run.id,
            },
        )
        repo.fail_prompt_run(run.id, str(e))
        return RunPromptResult(
            success=False, prompt_run=repo.get_prompt_run(run.id), error=str(e)
        )


@dataclass
class PromptRunner:
    """
    run_prompt_once bound to its collaborators.

    Attributes:
        adapter_factory: (provider, model) -> adapter
        extractor: Extraction strategy
        tiers: Tier table
        timeouts: Per-provider adapter timeout in seconds
    """

    adapter_factory: AdapterFactory
    extractor: ExtractionStrategy = field(default_factory=LexicalExtractionStrategy)
    tiers: dict[str, TierLimits] = field(default_factory=default_tiers)
    timeouts: dict[str, float | None] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: RuntimeConfig) -> "PromptRunner":
        """Build adapters from the configured providers and their API keys."""

        def adapter_factory(provider: str, model: str | None) -> ProviderAdapter:
            return get_provider_adapter(provider, model, config.get_provider(provider))

        return cls(
            adapter_factory=adapter_factory,
            extractor=build_extractor(config.extraction),
            tiers=config.tiers,
            timeouts={
                name: p.request_timeout_seconds for name, p in config.providers.items()
            },
        )

    def timeout_for(self, provider: str) -> float | None:
        return self.timeouts.get(provider, DEFAULT_PROVIDER_TIMEOUT_SECONDS)

    async def run(
        self,
        repo: Repository,
        prompt_id: str,
        provider: str,
        model: str | None = None,
        now: datetime | None = None,
    ) -> RunPromptResult:
        return await run_prompt_once(
            repo,
            prompt_id,
            provider,
            model,
            adapter_factory=self.adapter_factory,
            extractor=self.extractor,
            tiers=self.tiers,
            timeout=self.timeout_for(provider),
            now=now,
        )


def apply_run_usage(
    repo: Repository, project: Project, prompt_run: PromptRun
) -> float | None:
    """
    Add a run's cost to its project's usage and check the soft budget.

    Returns:
        The new usage, or None when the run had no cost
    """
    if not prompt_run.cost:
        return None

    repo.increment_project_usage(project.id, prompt_run.cost)
    new_usage = (project.current_month_usage or 0) + prompt_run.cost
    evaluate_budget_alert(repo, project, new_usage, prompt_run.id)
    return new_usage


async def run_prompt_on_demand(
    repo: Repository,
    runner: PromptRunner,
    prompt_id: str,
    provider: str = DEFAULT_PROVIDER,
    model: str | None = DEFAULT_MODEL,
    *,
    evaluate_alerts: bool = False,
    now: datetime | None = None,
) -> RunPromptResult:
    """
    Run a prompt immediately, outside the job queue.

    Raises:
        NotFoundError: Prompt or project does not exist
        BudgetExceededError: Project's hard monthly budget is used up
    """
    prompt = repo.get_prompt(prompt_id)
    if prompt is None:
        raise NotFoundError("prompt", prompt_id)
    project = repo.get_project(prompt.project_id)
    if project is None:
        raise NotFoundError("project", prompt.project_id)

    hard_limit = project.monthly_budget_hard
    usage = project.current_month_usage or 0
    if hard_limit is not None and usage >= hard_limit:
        raise BudgetExceededError(
            "Monthly budget limit reached. Increase your budget limit in project "
            "settings to continue.",
            current_usage=usage,
            budget_limit=hard_limit,
        )

    result = await runner.run(repo, prompt_id, provider, model, now=now)
    if not result.success or result.prompt_run is None:
        return result

    apply_run_usage(repo, project, result.prompt_run)

    repo.create_audit_log(
        entity_type="prompt_run",
        action="create",
        project_id=project.id,
        entity_id=result.prompt_run.id,
        new_value={"promptId": prompt.id, "provider": provider, "model": model},
    )

    if evaluate_alerts:
        evaluate_alerts_for_run(repo, result.prompt_run, project, now)

    return result
