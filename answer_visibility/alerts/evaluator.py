"""
Alert evaluation for Answer Visibility.

After a successful run, compares its parsed mentions with the project's
runs from the trailing 7 days and records an AlertEvent for every active
rule whose threshold is crossed.

Rule types:
- brand_mention_drop: current brand mentions fell by threshold% (default 20)
  against the 7-day average; needs at least 3 historical runs
- competitor_spike: a competitor's mentions rose by threshold% (default 50)
  against its own 7-day average; needs at least 3 historical runs
- new_domain_cited: a cited domain absent (case-insensitively) from every
  historical run
- budget_exceeded: project usage reached the soft monthly budget (checked
  by evaluate_budget_alert after usage increments)

Each rule is evaluated independently; an exception in one rule is logged
and the remaining rules still run.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Any

from answer_visibility.storage.models import AlertEvent, AlertRule, Project, PromptRun
from answer_visibility.storage.repository import Repository
from answer_visibility.utils.time import utc_now

HISTORY_WINDOW = timedelta(days=7)
HISTORY_RUN_LIMIT = 50
MIN_HISTORICAL_RUNS = 3

DEFAULT_DROP_THRESHOLD = 20
DEFAULT_SPIKE_THRESHOLD = 50

logger = logging.getLogger(__name__)


def _round_percent(value: float) -> int:
    """Round half up, so -12.5 becomes -12 and 12.5 becomes 13."""
    return math.floor(value + 0.5)


def _brand_mention_count(mentions: dict[str, Any] | None) -> float:
    """Historical count: brandMentionCount, else 1/0 from brandMentioned."""
    if not mentions:
        return 0
    count = mentions.get("brandMentionCount")
    if count is None:
        count = 1 if mentions.get("brandMentioned") else 0
    if isinstance(count, bool) or not isinstance(count, (int, float)) or math.isnan(count):
        return 0
    return count


def get_historical_runs(
    repo: Repository, project_id: str, current_run_id: str, now: datetime | None = None
) -> list[PromptRun]:
    """The project's recent runs executed in the last 7 days, minus the current run."""
    week_ago = (now or utc_now()) - HISTORY_WINDOW
    return [
        run
        for run in repo.get_prompt_runs_by_project(project_id, HISTORY_RUN_LIMIT)
        if run.executed_at >= week_ago and run.id != current_run_id
    ]


def evaluate_brand_mention_drop(
    repo: Repository,
    rule: AlertRule,
    mentions: dict[str, Any],
    history: list[PromptRun],
    prompt_run_id: str,
) -> list[AlertEvent]:
    if len(history) < MIN_HISTORICAL_RUNS:
        return []

    counts = [_brand_mention_count(run.parsed_mentions) for run in history]
    avg_historical = sum(counts) / len(counts)
    if avg_historical == 0:
        return []

    current = mentions.get("brandMentionCount") or (
        1 if mentions.get("brandMentioned") else 0
    )
    threshold = rule.threshold or DEFAULT_DROP_THRESHOLD
    drop_percent = (avg_historical - current) / avg_historical * 100
    if drop_percent < threshold:
        return []

    event = repo.create_alert_event(
        rule.id,
        prompt_run_id,
        f"Brand mentions dropped by {_round_percent(drop_percent)}% "
        "compared to 7-day average",
        {
            "avgHistoricalMentions": avg_historical,
            "currentMentionCount": current,
            "dropPercent": drop_percent,
        },
    )
    return [event]


def evaluate_competitor_spike(
    repo: Repository,
    rule: AlertRule,
    mentions: dict[str, Any],
    history: list[PromptRun],
    prompt_run_id: str,
) -> list[AlertEvent]:
    current_mentions = mentions.get("competitorMentions") or []
    if not current_mentions or len(history) < MIN_HISTORICAL_RUNS:
        return []

    historical_counts: dict[str, list[float]] = {}
    for run in history:
        for mention in (run.parsed_mentions or {}).get("competitorMentions") or []:
            historical_counts.setdefault(mention["name"], []).append(mention["count"])

    threshold = rule.threshold or DEFAULT_SPIKE_THRESHOLD
    events = []
    for current in current_mentions:
        counts = historical_counts.get(current["name"])
        if not counts:
            continue
        avg_historical = sum(counts) / len(counts)
        if avg_historical == 0:
            continue

        spike_percent = (current["count"] - avg_historical) / avg_historical * 100
        if spike_percent >= threshold:
            events.append(
                repo.create_alert_event(
                    rule.id,
                    prompt_run_id,
                    f'Competitor "{current["name"]}" mentions spiked by '
                    f"{_round_percent(spike_percent)}%",
                    {
                        "competitor": current["name"],
                        "avgHistorical": avg_historical,
                        "currentCount": current["count"],
                        "spikePercent": spike_percent,
                    },
                )
            )
    return events


def evaluate_new_domain_cited(
    repo: Repository,
    rule: AlertRule,
    mentions: dict[str, Any],
    history: list[PromptRun],
    prompt_run_id: str,
) -> list[AlertEvent]:
    cited = mentions.get("citedDomains") or []
    if not cited:
        return []

    known = {
        d["domain"].lower()
        for run in history
        for d in (run.parsed_mentions or {}).get("citedDomains") or []
    }

    return [
        repo.create_alert_event(
            rule.id,
            prompt_run_id,
            f"New domain cited: {d['domain']}",
            {"domain": d["domain"], "count": d["count"]},
        )
        for d in cited
        if d["domain"].lower() not in known
    ]


RULE_EVALUATORS = {
    "brand_mention_drop": evaluate_brand_mention_drop,
    "competitor_spike": evaluate_competitor_spike,
    "new_domain_cited": evaluate_new_domain_cited,
}


def evaluate_alerts_for_run(
    repo: Repository,
    prompt_run: PromptRun,
    project: Project,
    now: datetime | None = None,
) -> list[AlertEvent]:
    """
    Evaluate the project's active alert rules against a completed run.

    Args:
        repo: Repository
        prompt_run: The run just completed (parsed_mentions set)
        project: The run's project
        now: Reference time for the 7-day window (default: now)

    Returns:
        Alert events created, in rule order
    """
    rules = repo.get_alert_rules_by_project(project.id)
    if not rules or not prompt_run.parsed_mentions:
        return []

    history = get_historical_runs(repo, project.id, prompt_run.id, now)
    events: list[AlertEvent] = []

    for rule in rules:
        if not rule.is_active:
            continue
        evaluator = RULE_EVALUATORS.get(rule.type)
        if evaluator is None:
            continue
        try:
            events.extend(
                evaluator(repo, rule, prompt_run.parsed_mentions, history, prompt_run.id)
            )
        except Exception as e:
            logger.error(
                f"Alert evaluation error for rule {rule.id} ({rule.type}): {e}",
                exc_info=True,
            )

    if events:
        logger.info(f"Created {len(events)} alert event(s) for run {prompt_run.id}")
    return events


def evaluate_budget_alert(
    repo: Repository, project: Project, new_usage: float, prompt_run_id: str | None
) -> AlertEvent | None:
    """
    Fire the project's active budget_exceeded rule when usage reached the soft limit.

    Args:
        repo: Repository
        project: Project as loaded before the usage increment
        new_usage: Usage after the increment
        prompt_run_id: Run that caused the increment

    Returns:
        The created AlertEvent, or None
    """
    soft_limit = project.monthly_budget_soft
    if not soft_limit or new_usage < soft_limit:
        return None

    rule = next(
        (
            r
            for r in repo.get_alert_rules_by_project(project.id)
            if r.type == "budget_exceeded" and r.is_active
        ),
        None,
    )
    if rule is None:
        return None

    logger.warning(
        f"Project {project.id} reached soft budget: {new_usage:.2f} of {soft_limit:.2f}"
    )
    return repo.create_alert_event(
        rule.id,
        prompt_run_id,
        f"Monthly budget soft limit reached: ${new_usage:.2f} of ${soft_limit:.2f} spent",
        {"currentUsage": new_usage, "softLimit": soft_limit},
    )
