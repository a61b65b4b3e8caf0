"""
Rich console utilities for dual-mode CLI output.

Human mode (--format text) prints Rich tables and colored status lines.
Agent mode (--format json) buffers everything and prints one JSON object
to stdout when the command finishes.

Examples:
    >>> output_mode.format = "text"
    >>> with spinner("Running tick..."):
    ...     result = asyncio.run(run_cron_tick(repo, runner, settings))
    >>> print_tick_table(result.to_dict())

    >>> output_mode.format = "json"
    >>> success("Database ready")  # Buffers to JSON
    >>> output_mode.flush_json()   # Outputs JSON to stdout
"""

from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from typing import Any

from rich import box
from rich.console import Console
from rich.table import Table

from answer_visibility.storage.models import Job, JobStats


class OutputMode:
    """
    Output mode configuration for the CLI.

    Attributes:
        format: "text" (human) or "json" (agent)
        quiet: Suppress info messages in text mode
    """

    def __init__(self, format_type: str = "text", quiet: bool = False):
        if format_type not in ["text", "json"]:
            raise ValueError(f"Invalid format: {format_type}. Must be 'text' or 'json'")

        self.format = format_type
        self.quiet = quiet
        self._json_buffer: dict[str, Any] = {}

    def is_human(self) -> bool:
        return self.format == "text"

    def is_agent(self) -> bool:
        return self.format == "json"

    def add_json(self, key: str, value: Any) -> None:
        """Add a key to the JSON buffer flushed by flush_json()."""
        self._json_buffer[key] = value

    def flush_json(self) -> None:
        """Print the buffered JSON to stdout and clear it (agent mode only)."""
        if self.is_agent() and self._json_buffer:
            json.dump(self._json_buffer, sys.stdout, indent=2, default=str)
            sys.stdout.write("\n")
            sys.stdout.flush()
            self._json_buffer.clear()


# Global output mode instance (set by CLI flags)
output_mode = OutputMode()

console = Console()  # stdout
console_err = Console(stderr=True)  # stderr


@contextmanager
def spinner(message: str):
    """Show a spinner in human mode; silent otherwise."""
    if output_mode.is_human():
        with console.status(f"[bold blue]{message}", spinner="dots") as status:
            yield status
    else:
        yield None


def success(message: str) -> None:
    if output_mode.is_human():
        console.print(f"[green]✓[/green] {message}")
    elif output_mode.is_agent():
        output_mode.add_json("status", "success")
        output_mode.add_json("message", message)


def error(message: str) -> None:
    """Print an error to stderr (human) or buffer it (agent)."""
    if output_mode.is_human():
        console_err.print(f"[red]✗[/red] {message}", style="red")
    elif output_mode.is_agent():
        output_mode.add_json("status", "error")
        output_mode.add_json("error", message)


def warning(message: str) -> None:
    if output_mode.is_human():
        console.print(f"[yellow]⚠[/yellow] {message}", style="yellow")
    elif output_mode.is_agent():
        output_mode.add_json("warning", message)


def info(message: str) -> None:
    if output_mode.is_human() and not output_mode.quiet:
        console.print(f"[blue]ℹ[/blue] {message}")


def print_tick_table(counts: dict[str, int], title: str = "Tick Summary") -> None:
    """
    Print enqueue/drain counts.

    Human mode: two-column Rich table, non-zero failures in red
    Agent mode: buffered under "counts"
    """
    if output_mode.is_agent():
        output_mode.add_json("counts", counts)
        return

    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Counter", style="cyan", no_wrap=True)
    table.add_column("Value", justify="right")

    for key, value in counts.items():
        value_str = str(value)
        if key == "failed" and value:
            value_str = f"[red]{value}[/red]"
        elif key in ("enqueued", "processed") and value:
            value_str = f"[green]{value}[/green]"
        table.add_row(key, value_str)

    console.print(table)


def _status_markup(status: str) -> str:
    colors = {
        "completed": "green",
        "failed": "red",
        "running": "blue",
        "pending": "yellow",
    }
    color = colors.get(status)
    return f"[{color}]{status}[/{color}]" if color else status


def print_jobs_table(jobs: list[Job], stats: JobStats) -> None:
    """Print the job queue with per-status totals."""
    if output_mode.is_agent():
        output_mode.add_json("stats", stats.to_dict())
        output_mode.add_json(
            "jobs",
            [
                {
                    "id": job.id,
                    "type": job.type,
                    "status": job.status,
                    "attempts": job.attempts,
                    "maxAttempts": job.max_attempts,
                    "scheduledFor": job.scheduled_for.isoformat(),
                    "error": job.error,
                    "payload": job.payload,
                }
                for job in jobs
            ],
        )
        return

    table = Table(title="Job Queue", box=box.ROUNDED)
    table.add_column("Job", style="cyan", no_wrap=True)
    table.add_column("Type", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Attempts", justify="right")
    table.add_column("Scheduled For")
    table.add_column("Error", style="red")

    for job in jobs:
        table.add_row(
            job.id[:8],
            job.type,
            _status_markup(job.status),
            f"{job.attempts}/{job.max_attempts}",
            job.scheduled_for.strftime("%Y-%m-%d %H:%M:%S"),
            (job.error or "")[:60],
        )

    console.print(table)
    console.print(
        " ".join(
            f"{_status_markup(status)}={count}"
            for status, count in stats.to_dict().items()
        )
    )


def print_run_result(run: dict[str, Any]) -> None:
    """Print one prompt run (id, status, brand mentions, cost)."""
    if output_mode.is_agent():
        output_mode.add_json("promptRun", run)
        return

    table = Table(title="Prompt Run", box=box.ROUNDED, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in run.items():
        if isinstance(value, float):
            value = f"${value:.6f}" if key == "cost" else f"{value:g}"
        table.add_row(key, str(value) if value is not None else "-")
    console.print(table)


def print_runs_table(runs: list[dict[str, Any]]) -> None:
    """Print several runs, one row each (brand mentions, sentiment, score, cost)."""
    if output_mode.is_agent():
        output_mode.add_json("promptRuns", runs)
        return

    table = Table(title="Prompt Runs", box=box.ROUNDED)
    table.add_column("Run", style="cyan", no_wrap=True)
    table.add_column("Status", justify="center")
    table.add_column("Mentions", justify="right")
    table.add_column("Sentiment")
    table.add_column("Topics", style="magenta")
    table.add_column("Score", justify="right")
    table.add_column("Cost", justify="right", style="green")

    for run in runs:
        score = run.get("score")
        table.add_row(
            run["id"][:8],
            _status_markup(run.get("status", "")),
            str(run.get("brandMentionCount") or 0),
            run.get("sentiment") or "-",
            ", ".join(run.get("topics") or []),
            f"{score:g}" if score is not None else "-",
            f"${run.get('cost') or 0.0:.6f}",
        )

    console.print(table)


PRIORITY_STYLES = {"high": "red", "medium": "yellow", "low": "dim"}


def print_recommendations(result: dict[str, Any]) -> None:
    """Print competitor gaps, top cited domains and recommendations."""
    if output_mode.is_agent():
        output_mode.add_json("recommendations", result)
        return

    if result["gapAnalysis"]:
        table = Table(title="Competitor Gaps", box=box.ROUNDED)
        table.add_column("Competitor", style="cyan")
        table.add_column("Brand", justify="right")
        table.add_column("Competitor Mentions", justify="right")
        table.add_column("Gap", justify="right")
        table.add_column("Priority", justify="center")
        for gap in result["gapAnalysis"]:
            style = PRIORITY_STYLES.get(gap["priority"], "white")
            table.add_row(
                gap["topic"],
                str(gap["yourBrandScore"]),
                str(gap["competitorScore"]),
                str(gap["gap"]),
                f"[{style}]{gap['priority']}[/{style}]",
            )
        console.print(table)

    if result["topCitedDomains"]:
        table = Table(title="Top Cited Domains", box=box.ROUNDED)
        table.add_column("Domain", style="cyan")
        table.add_column("Citations", justify="right")
        table.add_column("Topics", style="magenta")
        for domain in result["topCitedDomains"]:
            table.add_row(
                domain["domain"], str(domain["count"]), ", ".join(domain["topics"])
            )
        console.print(table)

    for rec in result["recommendations"]:
        style = PRIORITY_STYLES.get(rec["priority"], "white")
        console.print(
            f"[{style}]\\[{rec['priority']}][/{style}] [bold]{rec['title']}[/bold]"
        )
        console.print(f"  {rec['description']}")
        for item in rec["actionItems"]:
            console.print(f"  - {item}")
