"""Tests for user data export."""

import csv
import io
import json
from datetime import date, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.core.exceptions import InvalidInputError
from health_analytics_server.services.export import ExportService, render_csv
from health_analytics_server.services.goals import GoalService
from health_analytics_server.services.prediction import PredictionEngine
from health_analytics_server.services.scoring import ScoreEngine


def _rows(content: bytes) -> list[list[str]]:
    return list(csv.reader(io.StringIO(content.decode("utf-8"))))


@pytest.fixture
async def exported_user(async_session: AsyncSession, today: date) -> str:
    """User with scores on two days, one prediction and one goal."""
    scores = ScoreEngine(async_session)
    await scores.calculate_health_scores("user_001", today)
    await scores.calculate_health_scores("user_001", today - timedelta(days=10))
    await PredictionEngine(async_session).generate_health_prediction(
        "user_001", "performance_optimization", today + timedelta(days=28)
    )
    await GoalService(async_session).create_health_goal(
        "user_001", "weight_loss", 72.5, today + timedelta(days=60)
    )
    return "user_001"


class TestRenderCsv:
    """Tests for CSV rendering."""

    def test_single_type_has_no_record_type_column(self) -> None:
        """One record type gives its own fields as the header."""
        payload = {"records": {"goals": [{"goal_type": "weight_loss", "target_value": 70.0}]}}

        rows = _rows(render_csv(payload))

        assert rows[0] == ["goal_type", "target_value"]
        assert rows[1] == ["weight_loss", "70.0"]

    def test_mixed_types_use_field_union(self) -> None:
        """Several record types share one header led by record_type."""
        payload = {
            "records": {
                "goals": [{"id": "g1", "status": "active"}],
                "predictions": [{"id": "p1", "is_active": True, "input_summary": {"b": 1, "a": 2}}],
            }
        }

        rows = _rows(render_csv(payload))

        assert rows[0] == ["record_type", "id", "status", "is_active", "input_summary"]
        assert rows[1] == ["goals", "g1", "active", "", ""]
        assert rows[2] == ["predictions", "p1", "", "true", '{"a": 2, "b": 1}']


class TestExportService:
    """Tests for ExportService."""

    async def test_json_export_all(self, async_session: AsyncSession, exported_user: str) -> None:
        """JSON export carries every record type."""
        result = await ExportService(async_session).export_user_data(exported_user, "json")

        payload = json.loads(result.content)
        assert result.media_type == "application/json"
        assert result.filename == "health_export_user_001_all.json"
        assert set(payload["records"]) == {"health_scores", "predictions", "reports", "goals"}
        assert len(payload["records"]["health_scores"]) == 10
        assert len(payload["records"]["predictions"]) == 1
        assert len(payload["records"]["goals"]) == 1
        assert payload["records"]["reports"] == []
        assert result.record_count == 12

    async def test_csv_export_all(self, async_session: AsyncSession, exported_user: str) -> None:
        """CSV export of everything has a record_type column."""
        result = await ExportService(async_session).export_user_data(exported_user, "csv")

        rows = _rows(result.content)
        assert result.media_type == "text/csv"
        assert rows[0][0] == "record_type"
        assert "score_type" in rows[0]
        assert "goal_type" in rows[0]
        assert len(rows) == 1 + result.record_count

    async def test_pdf_export(self, async_session: AsyncSession, exported_user: str) -> None:
        """PDF export renders a PDF document."""
        result = await ExportService(async_session).export_user_data(
            exported_user, "pdf", export_type="goals"
        )

        assert result.media_type == "application/pdf"
        assert result.content.startswith(b"%PDF")
        assert result.record_count == 1

    async def test_date_filter(
        self, async_session: AsyncSession, exported_user: str, today: date
    ) -> None:
        """Scores are filtered by calculation date."""
        result = await ExportService(async_session).export_user_data(
            exported_user, "json", export_type="health_scores", start=today - timedelta(days=1)
        )

        payload = json.loads(result.content)
        dates = {r["calculation_date"] for r in payload["records"]["health_scores"]}
        assert dates == {today.isoformat()}
        assert payload["period"]["start"] == (today - timedelta(days=1)).isoformat()

    async def test_other_users_excluded(
        self, async_session: AsyncSession, exported_user: str
    ) -> None:
        """Exports only contain the requested user's rows."""
        result = await ExportService(async_session).export_user_data("user_002", "json")
        assert result.record_count == 0

    async def test_invalid_requests(self, async_session: AsyncSession, today: date) -> None:
        """Bad format, bad type and inverted ranges raise InvalidInputError."""
        service = ExportService(async_session)
        with pytest.raises(InvalidInputError):
            await service.export_user_data("user_001", "xml")
        with pytest.raises(InvalidInputError):
            await service.export_user_data("user_001", "json", export_type="everything")
        with pytest.raises(InvalidInputError):
            await service.export_user_data(
                "user_001", "json", start=today, end=today - timedelta(days=1)
            )
