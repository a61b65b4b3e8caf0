"""
Tests for utils.console module - dual-mode CLI output utilities.

This module tests console output functions to ensure:
- OutputMode class correctly manages format/quiet state
- Status functions (success, error, warning, info) work in both modes
- Table functions buffer structured data in agent mode
- JSON buffering and flushing works correctly in agent mode
"""

import json
from datetime import UTC, datetime
from unittest.mock import patch

import pytest

from answer_visibility.storage.models import Job, JobStats
from answer_visibility.utils.console import (
    OutputMode,
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

NOW = datetime(2025, 11, 2, 8, 0, tzinfo=UTC)

# ========================================================================
# Fixtures
# ========================================================================


@pytest.fixture
def reset_output_mode():
    """Reset global output_mode to default state after each test."""
    original_format = output_mode.format
    original_quiet = output_mode.quiet
    output_mode._json_buffer.clear()

    yield

    output_mode.format = original_format
    output_mode.quiet = original_quiet
    output_mode._json_buffer.clear()


@pytest.fixture
def sample_job():
    return Job(
        id="0f8c2d1e-aaaa-bbbb-cccc-000000000001",
        type="prompt_run",
        payload={"promptId": "p1", "provider": "openai"},
        status="failed",
        attempts=5,
        max_attempts=5,
        error="upstream 503",
        scheduled_for=NOW,
        started_at=NOW,
        completed_at=NOW,
        project_id="proj-1",
        organization_id="org-1",
        locked_at=None,
        locked_by=None,
        created_at=NOW,
    )


# ========================================================================
# Test OutputMode Class
# ========================================================================


class TestOutputMode:
    """Test OutputMode initialization and JSON buffering."""

    def test_default_initialization(self):
        mode = OutputMode()

        assert mode.format == "text"
        assert mode.quiet is False
        assert mode.is_human() is True
        assert mode.is_agent() is False

    def test_json_format(self):
        mode = OutputMode(format_type="json")

        assert mode.is_agent() is True
        assert mode.is_human() is False

    def test_invalid_format_raises_error(self):
        with pytest.raises(ValueError, match="Invalid format: xml"):
            OutputMode(format_type="xml")

    def test_flush_json_outputs_and_clears_buffer(self, capsys):
        mode = OutputMode(format_type="json")
        mode.add_json("status", "success")
        mode.add_json("counts", {"enqueued": 1})

        mode.flush_json()

        assert json.loads(capsys.readouterr().out) == {
            "status": "success",
            "counts": {"enqueued": 1},
        }
        assert mode._json_buffer == {}

    def test_flush_json_serializes_datetimes(self, capsys):
        mode = OutputMode(format_type="json")
        mode.add_json("at", NOW)

        mode.flush_json()

        assert json.loads(capsys.readouterr().out) == {"at": "2025-11-02 08:00:00+00:00"}

    def test_flush_json_no_op_in_human_mode(self, capsys):
        mode = OutputMode(format_type="text")
        mode.add_json("status", "success")

        mode.flush_json()

        assert capsys.readouterr().out == ""

    def test_flush_json_empty_buffer(self, capsys):
        OutputMode(format_type="json").flush_json()
        assert capsys.readouterr().out == ""


# ========================================================================
# Test Status Functions
# ========================================================================


class TestStatusFunctions:
    @patch("answer_visibility.utils.console.console")
    def test_success_human_mode(self, mock_console, reset_output_mode):
        output_mode.format = "text"

        success("Tick complete")

        call_args = mock_console.print.call_args[0][0]
        assert "[green]" in call_args
        assert "Tick complete" in call_args

    def test_success_agent_mode(self, reset_output_mode):
        output_mode.format = "json"

        success("Tick complete")

        assert output_mode._json_buffer == {
            "status": "success",
            "message": "Tick complete",
        }

    @patch("answer_visibility.utils.console.console_err")
    def test_error_human_mode_goes_to_stderr(self, mock_console_err, reset_output_mode):
        output_mode.format = "text"

        error("Database locked")

        assert "Database locked" in mock_console_err.print.call_args[0][0]

    def test_error_agent_mode(self, reset_output_mode):
        output_mode.format = "json"

        error("Database locked")

        assert output_mode._json_buffer == {"status": "error", "error": "Database locked"}

    def test_warning_agent_mode(self, reset_output_mode):
        output_mode.format = "json"

        warning("1 job(s) failed")

        assert output_mode._json_buffer["warning"] == "1 job(s) failed"

    @patch("answer_visibility.utils.console.console")
    def test_info_quiet_mode_silent(self, mock_console, reset_output_mode):
        output_mode.format = "text"
        output_mode.quiet = True

        info("Should not appear")

        mock_console.print.assert_not_called()

    def test_info_agent_mode_silent(self, reset_output_mode):
        output_mode.format = "json"

        info("Should not appear")

        assert output_mode._json_buffer == {}

    def test_spinner_agent_mode_yields_none(self, reset_output_mode):
        output_mode.format = "json"

        with spinner("Working...") as status:
            assert status is None


# ========================================================================
# Test Table Functions
# ========================================================================


class TestTables:
    """Test table output in both modes."""

    def test_tick_table_agent_mode(self, reset_output_mode):
        output_mode.format = "json"

        print_tick_table({"enqueued": 2, "failed": 0})

        assert output_mode._json_buffer["counts"] == {"enqueued": 2, "failed": 0}

    @patch("answer_visibility.utils.console.console")
    def test_tick_table_human_mode(self, mock_console, reset_output_mode):
        output_mode.format = "text"

        print_tick_table({"enqueued": 2, "failed": 1}, title="Drain Summary")

        table = mock_console.print.call_args[0][0]
        assert table.title == "Drain Summary"
        assert table.row_count == 2

    def test_jobs_table_agent_mode(self, sample_job, reset_output_mode):
        output_mode.format = "json"

        print_jobs_table([sample_job], JobStats(failed=1))

        assert output_mode._json_buffer["stats"] == {
            "pending": 0,
            "running": 0,
            "completed": 0,
            "failed": 1,
        }
        [job] = output_mode._json_buffer["jobs"]
        assert job["status"] == "failed"
        assert job["maxAttempts"] == 5
        assert job["scheduledFor"] == "2025-11-02T08:00:00+00:00"
        assert job["error"] == "upstream 503"

    @patch("answer_visibility.utils.console.console")
    def test_jobs_table_human_mode(self, mock_console, sample_job, reset_output_mode):
        output_mode.format = "text"

        print_jobs_table([sample_job], JobStats(failed=1))

        table = mock_console.print.call_args_list[0][0][0]
        assert table.title == "Job Queue"
        assert table.row_count == 1
        totals = mock_console.print.call_args_list[1][0][0]
        assert "failed" in totals

    def test_run_result_agent_mode(self, reset_output_mode):
        output_mode.format = "json"

        print_run_result({"id": "r1", "status": "completed", "cost": 0.0004})

        assert output_mode._json_buffer["promptRun"]["cost"] == 0.0004

    def test_runs_table_agent_mode(self, reset_output_mode):
        output_mode.format = "json"
        runs = [{"id": "r1", "status": "completed", "score": 80, "cost": None}]

        print_runs_table(runs)

        assert output_mode._json_buffer["promptRuns"] == runs

    @patch("answer_visibility.utils.console.console")
    def test_runs_table_human_mode_handles_missing_values(
        self, mock_console, reset_output_mode
    ):
        output_mode.format = "text"

        print_runs_table(
            [{"id": "run-000000001", "status": "failed", "score": None, "cost": None}]
        )

        table = mock_console.print.call_args[0][0]
        assert table.title == "Prompt Runs"
        assert table.row_count == 1

    def test_recommendations_agent_mode(self, reset_output_mode):
        output_mode.format = "json"
        result = {"gapAnalysis": [], "recommendations": [], "topCitedDomains": []}

        print_recommendations(result)

        assert output_mode._json_buffer["recommendations"] == result

    @patch("answer_visibility.utils.console.console")
    def test_recommendations_human_mode(self, mock_console, reset_output_mode):
        output_mode.format = "text"

        print_recommendations(
            {
                "gapAnalysis": [
                    {
                        "topic": "Globex visibility",
                        "yourBrandScore": 1,
                        "competitorScore": 8,
                        "gap": 7,
                        "opportunity": "...",
                        "priority": "high",
                    }
                ],
                "recommendations": [
                    {
                        "type": "gap",
                        "title": "Close the gap with Globex",
                        "description": "Globex is mentioned 7 more times.",
                        "priority": "high",
                        "actionItems": ["Highlight unique differentiators"],
                    }
                ],
                "topCitedDomains": [],
            }
        )

        printed = [c.args[0] for c in mock_console.print.call_args_list]
        assert printed[0].title == "Competitor Gaps"
        assert printed[0].row_count == 1
        assert "Close the gap with Globex" in printed[1]
        assert printed[3] == "  - Highlight unique differentiators"
