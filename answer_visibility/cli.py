"""
CLI entrypoint for Answer Visibility.

Provides a dual-mode command-line interface with:
- Human-friendly output: Rich spinners, tables and colored text
- Agent-friendly output: Structured JSON for automation (--format json)

Commands:
    init-db: Create or migrate the SQLite database
    tick: One enqueue + drain cycle (run from cron)
    enqueue: Enqueue due prompts only
    drain: Process due jobs only
    run-prompt: Run one prompt immediately, outside the queue
    jobs: Inspect the job queue
    recommend: Competitor gaps and recommendations for a project
    demo: Seed a temporary database and run a tick with mock answers

Exit codes:
    0: Success
    1: Configuration error (invalid YAML, missing API keys)
    2: Database error (cannot create/access SQLite)
    3: Partial failure (jobs or the requested run failed)

Examples:
    # Cron entry, JSON output
    answer-visibility tick --config visibility.config.yaml --format json

    # Try it without API keys
    answer-visibility demo

Security:
    - API keys are loaded from environment variables only
    - Errors may contain file paths but never API keys
"""

import asyncio
import tempfile
from pathlib import Path

import typer

from answer_visibility import __version__
from answer_visibility.alerts.recommendations import generate_recommendations
from answer_visibility.config.loader import load_config
from answer_visibility.config.schema import RuntimeConfig, SchedulerSettings
from answer_visibility.exceptions import (
    APIKeyMissingError,
    BudgetExceededError,
    ConfigFileNotFoundError,
    ConfigValidationError,
    DatabaseError,
    NotFoundError,
)
from answer_visibility.extractor.strategies import LexicalExtractionStrategy
from answer_visibility.providers.mock_adapter import MockProviderAdapter
from answer_visibility.runner.prompt_runner import PromptRunner, run_prompt_on_demand
from answer_visibility.scheduler.scheduler import (
    enqueue_due_prompts,
    process_jobs,
    run_cron_tick,
)
from answer_visibility.scheduler.state import JobStatus
from answer_visibility.storage.db import init_db_if_needed
from answer_visibility.storage.repository import Repository
from answer_visibility.utils.console import (
    error,
    info,
    output_mode,
    print_jobs_table,
    print_recommendations,
    print_run_result,
    print_runs_table,
    print_tick_table,
    spinner,
    success,
    warning,
)
from answer_visibility.utils.logging import setup_logging

# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_DB_ERROR = 2
EXIT_PARTIAL_FAILURE = 3

DEFAULT_CONFIG_PATH = Path("visibility.config.yaml")

app = typer.Typer(
    name="answer-visibility",
    help="Track how AI answers mention your brand, on a schedule",
    add_completion=False,
)


ConfigOption = typer.Option(
    DEFAULT_CONFIG_PATH,
    "--config",
    "-c",
    help="Path to YAML configuration file",
    dir_okay=False,
)
FormatOption = typer.Option(
    "text",
    "--format",
    "-f",
    help="Output format: 'text' (human-friendly) or 'json' (machine-readable)",
)
VerboseOption = typer.Option(False, "--verbose", "-v", help="Enable debug logging")


def _setup(format: str, verbose: bool) -> None:
    if format not in ("text", "json"):
        output_mode.format = "text"
        error(f"Invalid format: {format}. Must be 'text' or 'json'")
        raise typer.Exit(EXIT_CONFIG_ERROR)
    output_mode.format = format
    setup_logging(verbose=verbose)


def _exit(code: int) -> None:
    output_mode.flush_json()
    raise typer.Exit(code)


def _load_config(config: Path) -> RuntimeConfig:
    try:
        with spinner("Loading configuration..."):
            return load_config(config)
    except ConfigFileNotFoundError as e:
        error(f"Configuration file not found: {e}")
    except APIKeyMissingError as e:
        error(f"API key missing: {e}")
    except ConfigValidationError as e:
        error(f"Configuration validation failed: {e}")
    _exit(EXIT_CONFIG_ERROR)


def _open_repository(db_path: str) -> Repository:
    try:
        init_db_if_needed(db_path)
        return Repository.open(db_path)
    except (DatabaseError, OSError) as e:
        error(f"Failed to open database {db_path}: {e}")
        _exit(EXIT_DB_ERROR)


@app.command("init-db")
def init_db(
    config: Path = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """Create the database or apply pending migrations."""
    _setup(format, verbose)
    runtime_config = _load_config(config)
    try:
        with spinner("Initializing database..."):
            init_db_if_needed(runtime_config.database_path)
    except (DatabaseError, OSError) as e:
        error(f"Failed to initialize database: {e}")
        _exit(EXIT_DB_ERROR)

    success(f"Database ready: {runtime_config.database_path}")
    _exit(EXIT_SUCCESS)


@app.command()
def tick(
    config: Path = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """
    Run one scheduler tick: enqueue due prompts, then drain the queue.

    Exit code 3 when any job failed terminally in this tick.
    """
    _setup(format, verbose)
    runtime_config = _load_config(config)
    runner = PromptRunner.from_config(runtime_config)

    with _open_repository(runtime_config.database_path) as repo:
        with spinner("Running tick..."):
            result = asyncio.run(run_cron_tick(repo, runner, runtime_config.scheduler))

    print_tick_table(result.to_dict())
    if result.process.failed:
        warning(f"{result.process.failed} job(s) failed")
        _exit(EXIT_PARTIAL_FAILURE)
    success("Tick complete")
    _exit(EXIT_SUCCESS)


@app.command()
def enqueue(
    config: Path = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """Enqueue jobs for due prompts without processing them."""
    _setup(format, verbose)
    runtime_config = _load_config(config)

    with _open_repository(runtime_config.database_path) as repo:
        result = enqueue_due_prompts(repo, runtime_config.scheduler)

    print_tick_table(result.to_dict(), title="Enqueue Summary")
    _exit(EXIT_SUCCESS)


@app.command()
def drain(
    limit: int = typer.Option(
        None, "--limit", "-n", min=1, help="Max jobs to process (default: max_jobs_per_tick)"
    ),
    config: Path = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """Process due jobs without enqueueing new ones."""
    _setup(format, verbose)
    runtime_config = _load_config(config)
    runner = PromptRunner.from_config(runtime_config)

    with _open_repository(runtime_config.database_path) as repo:
        with spinner("Processing jobs..."):
            result = asyncio.run(
                process_jobs(repo, runner, runtime_config.scheduler, limit=limit)
            )

    print_tick_table(result.to_dict(), title="Drain Summary")
    _exit(EXIT_PARTIAL_FAILURE if result.failed else EXIT_SUCCESS)


@app.command("run-prompt")
def run_prompt(
    prompt_id: str = typer.Argument(..., help="Prompt to run"),
    provider: str = typer.Option(
        None, "--provider", "-p", help="Provider (default: scheduler.default_provider)"
    ),
    model: str = typer.Option(None, "--model", "-m", help="Model override"),
    evaluate_alerts: bool = typer.Option(
        False, "--evaluate-alerts", help="Evaluate alert rules after the run"
    ),
    config: Path = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """Run one prompt now, subject to budget and tier limits."""
    _setup(format, verbose)
    runtime_config = _load_config(config)
    runner = PromptRunner.from_config(runtime_config)

    provider = provider or runtime_config.scheduler.default_provider
    provider_settings = runtime_config.get_provider(provider)
    if model is None and provider_settings is not None:
        model = provider_settings.model_name

    with _open_repository(runtime_config.database_path) as repo:
        try:
            with spinner(f"Running prompt with {provider}..."):
                result = asyncio.run(
                    run_prompt_on_demand(
                        repo,
                        runner,
                        prompt_id,
                        provider,
                        model,
                        evaluate_alerts=evaluate_alerts,
                    )
                )
        except NotFoundError as e:
            error(str(e))
            _exit(EXIT_PARTIAL_FAILURE)
        except BudgetExceededError as e:
            error(str(e))
            _exit(EXIT_PARTIAL_FAILURE)

        if not result.success:
            error(result.error or "Failed to run prompt")
            _exit(EXIT_PARTIAL_FAILURE)

        run = result.prompt_run
        mentions = run.parsed_mentions or {}
        print_run_result(
            {
                "id": run.id,
                "status": run.status,
                "provider": run.provider,
                "model": run.model,
                "brandMentionCount": mentions.get("brandMentionCount"),
                "sentiment": mentions.get("sentiment"),
                "extractionMethod": mentions.get("extractionMethod"),
                "cost": run.cost,
            }
        )

    success("Prompt run completed")
    _exit(EXIT_SUCCESS)


@app.command()
def jobs(
    status: str = typer.Option(
        None, "--status", "-s", help="Filter: pending, running, completed, failed"
    ),
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Max jobs to list"),
    config: Path = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """Show queued jobs and per-status totals."""
    _setup(format, verbose)
    if status is not None and status not in set(JobStatus):
        error(f"Invalid status: {status}. Must be one of {', '.join(JobStatus)}")
        _exit(EXIT_CONFIG_ERROR)

    runtime_config = _load_config(config)
    with _open_repository(runtime_config.database_path) as repo:
        print_jobs_table(repo.list_jobs(status, limit), repo.get_job_stats())
    _exit(EXIT_SUCCESS)


@app.command()
def recommend(
    project_id: str = typer.Argument(..., help="Project to analyse"),
    config: Path = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """Show competitor gaps and recommendations from the project's recent runs."""
    _setup(format, verbose)
    runtime_config = _load_config(config)
    with _open_repository(runtime_config.database_path) as repo:
        if repo.get_project(project_id) is None:
            error(str(NotFoundError("project", project_id)))
            _exit(EXIT_PARTIAL_FAILURE)
        print_recommendations(generate_recommendations(repo, project_id).to_dict())
    _exit(EXIT_SUCCESS)


DEMO_ANSWER = """Here are the leading project management tools in 2025:

1. **Acme Boards** - Acme is the best choice for growing teams, with excellent
   integrations and trusted, reliable support. Popular with agencies.
2. **Globex Planner** - Powerful features but expensive for small teams.
3. **Initech Tasks** - A simple alternative with limited reporting.

Sources:
- https://www.acme.com/pricing
- https://reviews.example.com/project-management
- https://globex.io/features
"""


@app.command()
def demo(
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """
    Run the whole pipeline against a temporary database with mock answers.

    No configuration file or API key needed.
    """
    _setup(format, verbose)
    info(f"Answer Visibility v{__version__} demo")

    with tempfile.TemporaryDirectory() as tmp_dir:
        db_path = str(Path(tmp_dir) / "demo.db")
        init_db_if_needed(db_path)

        with Repository.open(db_path) as repo:
            org = repo.create_organization("Demo Org", subscription_tier="starter")
            project = repo.create_project(
                org.id, "Demo Project", monthly_budget_soft=5.0, monthly_budget_hard=10.0
            )
            repo.create_brand(project.id, "Acme Boards", "acme.com", ["Acme"])
            repo.create_competitor(project.id, "Globex Planner", "globex.io", ["Globex"])
            repo.create_competitor(project.id, "Initech Tasks", None, ["Initech"])
            repo.create_alert_rule(project.id, "new_domain_cited")
            for name, template in (
                ("Best PM tools", "What are the best project management tools?"),
                ("PM for agencies", "Which project management tool suits agencies?"),
            ):
                repo.create_prompt(
                    project.id, name, template, schedule_enabled=True, schedule_cadence="daily"
                )

            runner = PromptRunner(
                adapter_factory=lambda provider, model: MockProviderAdapter(
                    default_response=DEMO_ANSWER, cost_per_response=0.0004
                ),
                extractor=LexicalExtractionStrategy(),
            )
            settings = SchedulerSettings(default_provider="mock")

            with spinner("Running demo tick..."):
                result = asyncio.run(run_cron_tick(repo, runner, settings))

            print_tick_table(result.to_dict(), title="Demo Tick")
            rows = []
            for run in repo.get_prompt_runs_by_project(project.id):
                mentions = run.parsed_mentions or {}
                scores = repo.get_scores_by_run(run.id)
                rows.append(
                    {
                        "id": run.id,
                        "status": run.status,
                        "brandMentionCount": mentions.get("brandMentionCount"),
                        "sentiment": mentions.get("sentiment"),
                        "topics": mentions.get("topics") or [],
                        "score": scores[0].score if scores else None,
                        "cost": run.cost,
                    }
                )
            print_runs_table(rows)
            events = repo.get_alert_events_by_project(project.id)
            info(f"{len(events)} alert event(s) raised")

    success("Demo complete")
    _exit(EXIT_SUCCESS)


if __name__ == "__main__":
    app()
