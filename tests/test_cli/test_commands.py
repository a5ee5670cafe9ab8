"""Tests for CLI commands."""

import json
import uuid
from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from carebook.cli.commands import app
from carebook.config import get_settings
from carebook.observability.logger import get_event_logger
from carebook.scheduling.errors import TransientError
from carebook.scheduling.models import (
    BackfillResult,
    BatchReport,
    CleanupResult,
    ClinicianGenerationResult,
    DateRange,
    MaintenanceStats,
    OptimizationReport,
    SlotStats,
    Suggestion,
    SuggestionType,
)

runner = CliRunner()

CLINICIAN = uuid.UUID("dddddddd-dddd-dddd-dddd-dddddddddddd")
WEEK = DateRange(start_date=date(2026, 4, 6), end_date=date(2026, 4, 12))


def _json(output: str) -> dict:
    return json.loads(output[output.index("{"):])


@pytest.fixture
def batch_report():
    return BatchReport(
        total_clinicians=2,
        date_range=WEEK,
        results=[
            ClinicianGenerationResult(clinician_id=CLINICIAN, clinician_name="Sarah Chen", generated_count=80),
            ClinicianGenerationResult(clinician_id=uuid.uuid4(), clinician_name="Omar Haddad", generated_count=32),
        ],
    )


@pytest.fixture
def partial_report(batch_report):
    batch_report.results.append(
        ClinicianGenerationResult(
            clinician_id=uuid.uuid4(),
            clinician_name="Ana Alvarez",
            error="No active availability template for clinician",
        )
    )
    batch_report.total_clinicians = 3
    return batch_report


@pytest.fixture
def mock_scheduler():
    """Patch the CLI's scheduler factory with a mock."""
    scheduler = MagicMock()
    with patch("carebook.cli.commands.get_maintenance_scheduler", return_value=scheduler):
        yield scheduler


class TestVersionCommand:
    def test_version_command(self):
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert "Carebook" in result.stdout
        assert "0.1.0" in result.stdout


class TestGenerateAllCommand:
    def test_success(self, mock_scheduler, batch_report):
        mock_scheduler.generate_for_all_clinicians = AsyncMock(return_value=batch_report)

        result = runner.invoke(app, ["generate-all", "--days-ahead", "7"])

        assert result.exit_code == 0
        assert "Sarah Chen" in result.stdout
        assert "Total: 112 slots" in result.stdout
        mock_scheduler.generate_for_all_clinicians.assert_awaited_once_with(7)

    def test_partial_failure_exit_code(self, mock_scheduler, partial_report):
        mock_scheduler.generate_for_all_clinicians = AsyncMock(return_value=partial_report)

        result = runner.invoke(app, ["generate-all"])

        assert result.exit_code == 2
        assert "Ana Alvarez" in result.stdout
        assert "1 failed" in result.stdout

    def test_json_output(self, mock_scheduler, partial_report):
        mock_scheduler.generate_for_all_clinicians = AsyncMock(return_value=partial_report)

        result = runner.invoke(app, ["generate-all", "--json"])

        assert result.exit_code == 2
        data = _json(result.stdout)
        assert data["total_generated"] == 112
        assert data["failed_count"] == 1

    def test_transient_error_is_retried(self, mock_scheduler, batch_report, monkeypatch):
        monkeypatch.setenv("TRIGGER_MAX_RETRIES", "2")
        get_settings.cache_clear()
        mock_scheduler.generate_for_all_clinicians = AsyncMock(
            side_effect=[TransientError("database is locked"), batch_report]
        )

        result = runner.invoke(app, ["generate-all"])

        assert result.exit_code == 0
        assert mock_scheduler.generate_for_all_clinicians.await_count == 2

    def test_retries_exhausted(self, mock_scheduler, monkeypatch):
        monkeypatch.setenv("TRIGGER_MAX_RETRIES", "1")
        get_settings.cache_clear()
        mock_scheduler.generate_for_all_clinicians = AsyncMock(side_effect=TransientError("database is locked"))

        result = runner.invoke(app, ["generate-all"])

        assert result.exit_code == 1
        assert "database is locked" in result.stdout


class TestOtherMaintenanceCommands:
    def test_cleanup(self, mock_scheduler):
        mock_scheduler.cleanup_old_slots = AsyncMock(
            return_value=CleanupResult(deleted_count=42, cutoff_date=date(2026, 3, 7))
        )

        result = runner.invoke(app, ["cleanup", "-o", "30"])

        assert result.exit_code == 0
        assert "Deleted 42 slot(s)" in result.stdout
        mock_scheduler.cleanup_old_slots.assert_awaited_once_with(30)

    def test_backfill(self, mock_scheduler):
        mock_scheduler.generate_missing_slots = AsyncMock(
            return_value=BackfillResult(missing_dates=[date(2026, 4, 8)], total_generated=16, date_range=WEEK)
        )

        result = runner.invoke(app, ["backfill", str(CLINICIAN), "2026-04-06", "2026-04-12"])

        assert result.exit_code == 0
        assert "Backfilled 16 slot(s) on 2026-04-08" in result.stdout
        mock_scheduler.generate_missing_slots.assert_awaited_once_with(
            CLINICIAN, date(2026, 4, 6), date(2026, 4, 12)
        )

    def test_backfill_rejects_bad_date(self, mock_scheduler):
        result = runner.invoke(app, ["backfill", str(CLINICIAN), "April 6", "2026-04-12"])

        assert result.exit_code == 1
        assert "Invalid start date" in result.stdout

    def test_backfill_rejects_bad_clinician(self, mock_scheduler):
        result = runner.invoke(app, ["backfill", "dr-chen", "2026-04-06", "2026-04-12"])
        assert result.exit_code == 1

    def test_optimize(self, mock_scheduler):
        mock_scheduler.optimize_doctor_slots = AsyncMock(
            return_value=OptimizationReport(
                clinician_id=CLINICIAN,
                date=date(2026, 4, 6),
                total_slots=16,
                suggestions=[
                    Suggestion(
                        type=SuggestionType.ISOLATED,
                        slot_ids=[uuid.uuid4()],
                        suggestion="Consider blocking isolated slots to create larger available blocks",
                    )
                ],
            )
        )

        result = runner.invoke(app, ["optimize", str(CLINICIAN), "2026-04-06"])

        assert result.exit_code == 0
        assert "Monday 2026-04-06" in result.stdout
        assert "Suggestions" in result.stdout

    def test_stats_json(self, mock_scheduler):
        mock_scheduler.get_maintenance_stats = AsyncMock(
            return_value=MaintenanceStats(
                date_range=WEEK,
                slot_stats=SlotStats(total=80, available=70, booked=8, break_slots=2, utilization_rate=10.26),
                active_clinicians=1,
                average_slots_per_clinician=80.0,
                appointment_counts={"total": 8, "scheduled": 8},
            )
        )

        result = runner.invoke(app, ["stats", "--json"])

        assert result.exit_code == 0
        data = _json(result.stdout)
        assert data["slot_stats"]["total"] == 80
        assert data["appointment_counts"]["scheduled"] == 8


class TestEventsCommand:
    def test_no_events(self):
        result = runner.invoke(app, ["events", "bookings"])

        assert result.exit_code == 0
        assert "No bookings events recorded" in result.stdout

    def test_lists_recent_maintenance_events(self):
        with get_event_logger().maintenance_job("cleanup") as event:
            event.slots_deleted = 3

        result = runner.invoke(app, ["events", "maintenance"])

        assert result.exit_code == 0
        assert "maintenance_success" in result.stdout
        assert "cleanup" in result.stdout
