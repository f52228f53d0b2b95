"""API endpoint tests."""

from collections.abc import AsyncIterator
from datetime import UTC, date, datetime, timedelta

import pytest
from litestar import Litestar
from litestar.status_codes import (
    HTTP_200_OK,
    HTTP_201_CREATED,
    HTTP_204_NO_CONTENT,
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_404_NOT_FOUND,
)
from litestar.testing import AsyncTestClient
from sqlalchemy.ext.asyncio import AsyncEngine

from health_analytics_server.app import create_app
from health_analytics_server.core.config import Settings

API = "/api/v1"


@pytest.fixture
def app(test_settings: Settings, async_engine: AsyncEngine) -> Litestar:
    """App bound to the in-memory test database."""
    return create_app(settings=test_settings, engine=async_engine)


@pytest.fixture
async def client(app: Litestar) -> AsyncIterator[AsyncTestClient]:
    """Test client with the app lifespan running."""
    async with AsyncTestClient(app=app) as client:
        yield client


class TestHealthCheck:
    """Tests for the unversioned health endpoint."""

    async def test_health_check(self, client: AsyncTestClient) -> None:
        """Health check reports status, version and scheduler state."""
        response = await client.get("/health")

        assert response.status_code == HTTP_200_OK
        data = response.json()
        assert data["status"] == "ok"
        assert "version" in data
        assert data["monitoring_sessions"] == 0
        assert data["scheduler"]["enabled"] is False


class TestDataEndpoints:
    """Tests for raw metric and day-log endpoints."""

    async def test_append_and_list_metrics(self, client: AsyncTestClient) -> None:
        """Posted metrics are stored and listed back."""
        response = await client.post(
            f"{API}/users/user_001/metrics",
            json={
                "metrics": [
                    {"metric_type": "weight", "value": 82.4},
                    {"metric_type": "steps", "value": 9000},
                ]
            },
        )
        assert response.status_code == HTTP_201_CREATED
        assert response.json()["stored"] == 2

        response = await client.get(f"{API}/users/user_001/metrics?metric_type=weight")
        assert response.status_code == HTTP_200_OK
        data = response.json()
        assert data["count"] == 1
        assert data["metrics"][0]["unit"] == "kg"

    async def test_invalid_metric_batch_rejected(self, client: AsyncTestClient) -> None:
        """An unknown metric type rejects the whole batch."""
        response = await client.post(
            f"{API}/users/user_001/metrics",
            json={
                "metrics": [
                    {"metric_type": "steps", "value": 100},
                    {"metric_type": "mood_ring", "value": 3},
                ]
            },
        )
        assert response.status_code == HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "invalid_input"

        response = await client.get(f"{API}/users/user_001/metrics")
        assert response.json()["count"] == 0

    async def test_day_logs(self, client: AsyncTestClient) -> None:
        """Meals, workouts and sleep can be logged and listed."""
        now = datetime.now(UTC).isoformat()

        meal = await client.post(
            f"{API}/users/user_001/meals",
            json={"logged_at": now, "calories": 650, "protein_g": 40, "food_category": "grain"},
        )
        workout = await client.post(
            f"{API}/users/user_001/workouts",
            json={"logged_at": now, "duration_minutes": 45, "calories_burned": 400},
        )
        sleep = await client.post(
            f"{API}/users/user_001/sleep",
            json={"logged_at": now, "duration_hours": 7.5, "quality_score": 80},
        )

        assert meal.status_code == HTTP_201_CREATED
        assert workout.status_code == HTTP_201_CREATED
        assert sleep.status_code == HTTP_201_CREATED
        assert (await client.get(f"{API}/users/user_001/meals")).json()["count"] == 1
        assert (await client.get(f"{API}/users/user_001/workouts")).json()["count"] == 1
        assert (await client.get(f"{API}/users/user_001/sleep")).json()["count"] == 1

    async def test_erase_user_data(self, client: AsyncTestClient) -> None:
        """Erasing a user removes their rows and reports per-table counts."""
        await client.post(
            f"{API}/users/user_001/metrics",
            json={"metrics": [{"metric_type": "steps", "value": 100}]},
        )

        response = await client.delete(f"{API}/users/user_001/data")

        assert response.status_code == HTTP_200_OK
        assert response.json()["deleted"]["health_metrics"] == 1
        assert (await client.get(f"{API}/users/user_001/metrics")).json()["count"] == 0

    async def test_metric_statistics(self, client: AsyncTestClient) -> None:
        """Statistics summarise one metric over the requested window."""
        await client.post(
            f"{API}/users/user_001/metrics",
            json={
                "metrics": [
                    {"metric_type": "heart_rate", "value": 60},
                    {"metric_type": "heart_rate", "value": 80},
                    {"metric_type": "steps", "value": 5000},
                ]
            },
        )

        response = await client.get(
            f"{API}/users/user_001/metrics/statistics?metric_type=heart_rate&time_range=hour"
        )

        assert response.status_code == HTTP_200_OK
        data = response.json()
        assert data["count"] == 2
        assert data["avg"] == 70.0
        assert data["min"] == 60.0
        assert data["max"] == 80.0
        assert data["time_range"] == "hour"

        response = await client.get(
            f"{API}/users/user_001/metrics/statistics?metric_type=heart_rate&time_range=year"
        )
        assert response.status_code == HTTP_400_BAD_REQUEST

    async def test_invalid_user_id(self, client: AsyncTestClient) -> None:
        """Malformed user ids are rejected."""
        response = await client.get(f"{API}/users/bad$user/metrics")
        assert response.status_code == HTTP_400_BAD_REQUEST


class TestScoreEndpoints:
    """Tests for score calculation and listing."""

    async def test_calculate_and_list(self, client: AsyncTestClient) -> None:
        """Calculating a day stores five rows that can be filtered."""
        day = date.today().isoformat()

        response = await client.post(
            f"{API}/users/user_001/scores/calculate", json={"day": day}
        )
        assert response.status_code == HTTP_200_OK
        result = response.json()
        assert result["calculation_date"] == day
        assert 0 <= result["overall"] <= 100

        response = await client.get(f"{API}/users/user_001/scores")
        assert response.json()["count"] == 5

        response = await client.get(f"{API}/users/user_001/scores?score_type=overall")
        data = response.json()
        assert data["count"] == 1
        assert data["scores"][0]["score_type"] == "overall"
        assert data["scores"][0]["value"] == result["overall"]


class TestPredictionEndpoints:
    """Tests for prediction generation."""

    async def test_generate_and_list(self, client: AsyncTestClient) -> None:
        """A prediction without history is stored and flagged low quality."""
        target = (date.today() + timedelta(days=30)).isoformat()

        response = await client.post(
            f"{API}/users/user_001/predictions",
            json={"prediction_type": "weight_projection", "target_date": target},
        )
        assert response.status_code == HTTP_201_CREATED
        prediction = response.json()
        assert prediction["low_quality"] is True
        assert prediction["is_active"] is True

        response = await client.get(f"{API}/users/user_001/predictions")
        assert response.json()["count"] == 1

    async def test_unknown_type(self, client: AsyncTestClient) -> None:
        """Unknown prediction types are a 400."""
        response = await client.post(
            f"{API}/users/user_001/predictions",
            json={"prediction_type": "lottery", "target_date": date.today().isoformat()},
        )
        assert response.status_code == HTTP_400_BAD_REQUEST


class TestPatternEndpoints:
    """Tests for pattern analysis endpoints."""

    async def test_analyze_and_list(self, client: AsyncTestClient, health_user_30d) -> None:
        """Analyses run over seeded data and are listed back."""
        user_id, _ = health_user_30d

        response = await client.post(
            f"{API}/users/{user_id}/patterns/analyze",
            json={"pattern_type": "sleep_nutrition", "analysis_period": "weekly"},
        )
        assert response.status_code == HTTP_200_OK
        analysis = response.json()
        assert analysis["sample_count"] == 30
        assert analysis["significance"] == "high"

        response = await client.get(f"{API}/users/{user_id}/patterns")
        assert response.json()["count"] == 1


class TestReportEndpoints:
    """Tests for report endpoints."""

    async def test_report_lifecycle(self, client: AsyncTestClient) -> None:
        """Reports are created, fetched by id and deleted."""
        end = date.today()
        body = {
            "report_type": "weekly_summary",
            "period_start": (end - timedelta(days=6)).isoformat(),
            "period_end": end.isoformat(),
        }

        response = await client.post(f"{API}/users/user_001/reports", json=body)
        assert response.status_code == HTTP_201_CREATED
        report_id = response.json()["id"]

        response = await client.get(f"{API}/users/user_001/reports/{report_id}")
        assert response.status_code == HTTP_200_OK
        assert response.json()["report_type"] == "weekly_summary"

        response = await client.get(f"{API}/users/user_002/reports/{report_id}")
        assert response.status_code == HTTP_404_NOT_FOUND

        response = await client.delete(f"{API}/users/user_001/reports/{report_id}")
        assert response.status_code == HTTP_204_NO_CONTENT
        assert (await client.get(f"{API}/users/user_001/reports")).json()["count"] == 0


class TestGoalEndpoints:
    """Tests for goal CRUD endpoints."""

    async def test_goal_crud(self, client: AsyncTestClient) -> None:
        """Create, patch to completion and delete a goal."""
        target = (date.today() + timedelta(days=60)).isoformat()

        response = await client.post(
            f"{API}/users/user_001/goals",
            json={"goal_type": "fitness_improvement", "target_value": 50, "target_date": target},
        )
        assert response.status_code == HTTP_201_CREATED
        goal = response.json()
        assert goal["status"] == "active"
        assert goal["progress_percentage"] == 0.0

        response = await client.patch(
            f"{API}/users/user_001/goals/{goal['id']}", json={"progress_percentage": 100}
        )
        assert response.status_code == HTTP_200_OK
        assert response.json()["status"] == "completed"

        response = await client.get(f"{API}/users/user_001/goals?status=completed")
        assert response.json()["count"] == 1

        response = await client.delete(f"{API}/users/user_001/goals/{goal['id']}")
        assert response.status_code == HTTP_204_NO_CONTENT

        response = await client.get(f"{API}/users/user_001/goals/{goal['id']}")
        assert response.status_code == HTTP_404_NOT_FOUND
        assert response.json()["error"] == "not_found"

    async def test_invalid_goal_type(self, client: AsyncTestClient) -> None:
        """Unknown goal types are a 400 with the analytics error body."""
        response = await client.post(
            f"{API}/users/user_001/goals",
            json={
                "goal_type": "get_rich",
                "target_value": 1,
                "target_date": date.today().isoformat(),
            },
        )
        assert response.status_code == HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "invalid_input"


class TestMonitoringEndpoints:
    """Tests for the live monitoring flow."""

    async def test_monitoring_flow(self, client: AsyncTestClient, app: Litestar) -> None:
        """Session, samples, tick, alert, acknowledge and dashboard."""
        response = await client.post(
            f"{API}/users/user_001/monitoring/sessions",
            json={
                "device_id": "watch-1",
                "alert_thresholds": {"heart_rate": {"min": 45, "max": 110}},
            },
        )
        assert response.status_code == HTTP_201_CREATED
        session = response.json()
        assert session["status"] == "active"
        assert session["alert_thresholds"]["heart_rate"] == {"min": 45.0, "max": 110.0}

        response = await client.post(
            f"{API}/monitoring/sessions/{session['id']}/samples",
            json={"samples": [{"metric_type": "heart_rate", "value": 180}]},
        )
        assert response.status_code == HTTP_200_OK
        assert response.json()["accepted"] == 1

        await app.state.monitoring.tick(session["id"])

        response = await client.get(f"{API}/users/user_001/monitoring/alerts")
        alerts = response.json()["alerts"]
        assert len(alerts) == 1
        assert alerts[0]["severity"] == "critical"
        assert alerts[0]["title"] == "Heart Rate Alert"

        dashboard = (await client.get(f"{API}/users/user_001/monitoring/dashboard")).json()
        assert dashboard["summary"]["total_metrics"] == 1
        assert dashboard["summary"]["critical_alerts"] == 1
        assert dashboard["recent_metrics"][0]["value"] == 180

        response = await client.post(f"{API}/monitoring/alerts/{alerts[0]['id']}/acknowledge")
        assert response.status_code == HTTP_200_OK
        assert response.json()["acknowledged"] is True

        response = await client.get(f"{API}/users/user_001/monitoring/alerts")
        assert response.json()["count"] == 0
        response = await client.get(
            f"{API}/users/user_001/monitoring/alerts?include_acknowledged=true"
        )
        assert response.json()["count"] == 1

        response = await client.post(f"{API}/monitoring/sessions/{session['id']}/stop")
        assert response.json()["status"] == "completed"

    async def test_pause_resume_and_listing(self, client: AsyncTestClient) -> None:
        """Sessions pause and resume; active_only filters the listing."""
        first = (
            await client.post(
                f"{API}/users/user_001/monitoring/sessions", json={"device_id": "watch-1"}
            )
        ).json()
        await client.post(f"{API}/users/user_001/monitoring/sessions", json={"device_id": "ring"})

        response = await client.post(f"{API}/monitoring/sessions/{first['id']}/pause")
        assert response.json()["status"] == "paused"

        listing = (
            await client.get(f"{API}/users/user_001/monitoring/sessions?active_only=true")
        ).json()
        assert listing["count"] == 1

        response = await client.post(f"{API}/monitoring/sessions/{first['id']}/resume")
        assert response.json()["status"] == "active"

    async def test_stored_thresholds(self, client: AsyncTestClient) -> None:
        """Stored thresholds apply to sessions started afterwards."""
        response = await client.put(
            f"{API}/users/user_001/monitoring/thresholds/heart_rate",
            json={"min": 50, "max": 120},
        )
        assert response.status_code == HTTP_200_OK
        assert response.json()["min"] == 50.0
        assert response.json()["enabled"] is True
        await client.put(
            f"{API}/users/user_001/monitoring/thresholds/blood_oxygen", json={"enabled": False}
        )

        listing = (await client.get(f"{API}/users/user_001/monitoring/thresholds")).json()
        assert [t["metric_type"] for t in listing["thresholds"]] == ["blood_oxygen", "heart_rate"]

        session = (
            await client.post(
                f"{API}/users/user_001/monitoring/sessions", json={"device_id": "watch-1"}
            )
        ).json()
        assert session["alert_thresholds"]["heart_rate"] == {"min": 50.0, "max": 120.0}
        assert "blood_oxygen" not in session["alert_thresholds"]

        response = await client.delete(f"{API}/users/user_001/monitoring/thresholds/heart_rate")
        assert response.status_code == HTTP_204_NO_CONTENT
        response = await client.delete(f"{API}/users/user_001/monitoring/thresholds/heart_rate")
        assert response.status_code == HTTP_404_NOT_FOUND

    async def test_inverted_threshold_rejected(self, client: AsyncTestClient) -> None:
        """min above max is a 400."""
        response = await client.put(
            f"{API}/users/user_001/monitoring/thresholds/heart_rate",
            json={"min": 120, "max": 50},
        )
        assert response.status_code == HTTP_400_BAD_REQUEST

    async def test_unknown_session_and_metric(self, client: AsyncTestClient) -> None:
        """Unknown sessions are 404; disabled metrics are 400."""
        response = await client.get(f"{API}/monitoring/sessions/does-not-exist")
        assert response.status_code == HTTP_404_NOT_FOUND

        session = (
            await client.post(
                f"{API}/users/user_001/monitoring/sessions",
                json={"device_id": "watch-1", "enabled_metrics": ["steps"]},
            )
        ).json()
        response = await client.post(
            f"{API}/monitoring/sessions/{session['id']}/samples",
            json={"samples": [{"metric_type": "heart_rate", "value": 70}]},
        )
        assert response.status_code == HTTP_400_BAD_REQUEST


class TestInsightEndpoints:
    """Tests for insights and the dashboard overview."""

    async def test_insight_flow(self, client: AsyncTestClient) -> None:
        """Generate, list, read and bookmark insights; dashboard reflects them."""
        target = (date.today() + timedelta(days=60)).isoformat()
        goal = (
            await client.post(
                f"{API}/users/user_001/goals",
                json={"goal_type": "weight_loss", "target_value": 75, "target_date": target},
            )
        ).json()
        await client.patch(
            f"{API}/users/user_001/goals/{goal['id']}", json={"progress_percentage": 100}
        )

        response = await client.post(f"{API}/users/user_001/insights/generate")
        assert response.status_code == HTTP_201_CREATED
        assert response.json()["created"] == 1
        again = (await client.post(f"{API}/users/user_001/insights/generate")).json()
        assert again["created"] == 0

        listing = (await client.get(f"{API}/users/user_001/insights?insight_type=goal")).json()
        assert listing["count"] == 1
        insight = listing["insights"][0]
        assert insight["category"] == "positive"

        dashboard = (await client.get(f"{API}/users/user_001/dashboard?range=7d")).json()
        assert dashboard["summary"]["unread_insights"] == 1
        assert dashboard["period"]["range"] == "7d"

        response = await client.post(f"{API}/users/user_001/insights/{insight['id']}/read")
        assert response.json()["is_read"] is True
        response = await client.post(f"{API}/users/user_001/insights/{insight['id']}/bookmark")
        assert response.json()["is_bookmarked"] is True

        dashboard = (await client.get(f"{API}/users/user_001/dashboard")).json()
        assert dashboard["summary"]["unread_insights"] == 0
        assert dashboard["recent_insights"] == []

    async def test_unknown_insight(self, client: AsyncTestClient) -> None:
        """Unknown insight ids are 404."""
        response = await client.post(f"{API}/users/user_001/insights/missing/read")
        assert response.status_code == HTTP_404_NOT_FOUND

    async def test_invalid_dashboard_range(self, client: AsyncTestClient) -> None:
        """Ranges other than '<days>d' are 400."""
        response = await client.get(f"{API}/users/user_001/dashboard?range=1y")
        assert response.status_code == HTTP_400_BAD_REQUEST


class TestExportEndpoint:
    """Tests for the export endpoint."""

    async def test_csv_download(self, client: AsyncTestClient) -> None:
        """CSV exports are served as attachments."""
        await client.post(
            f"{API}/users/user_001/scores/calculate", json={"day": date.today().isoformat()}
        )

        response = await client.get(
            f"{API}/users/user_001/export?format=csv&type=health_scores"
        )

        assert response.status_code == HTTP_200_OK
        assert response.headers["content-type"].startswith("text/csv")
        assert (
            response.headers["content-disposition"]
            == "attachment; filename=health_export_user_001_health_scores.csv"
        )
        lines = response.text.strip().splitlines()
        assert len(lines) == 6

    async def test_invalid_format(self, client: AsyncTestClient) -> None:
        """Unsupported formats are a 400."""
        response = await client.get(f"{API}/users/user_001/export?format=xml")
        assert response.status_code == HTTP_400_BAD_REQUEST


class TestApiKeyGuard:
    """Tests for API key authentication."""

    @pytest.fixture
    def app(self, test_settings: Settings, async_engine: AsyncEngine) -> Litestar:
        """App with an API key configured."""
        settings = test_settings.model_copy(update={"api_key": "test-secret"})
        return create_app(settings=settings, engine=async_engine)

    async def test_missing_key_rejected(self, client: AsyncTestClient) -> None:
        """Requests without a key are refused."""
        response = await client.get(f"{API}/users/user_001/goals")
        assert response.status_code == HTTP_401_UNAUTHORIZED

    async def test_wrong_key_rejected(self, client: AsyncTestClient) -> None:
        """A wrong key is refused."""
        response = await client.get(
            f"{API}/users/user_001/goals", headers={"X-API-Key": "nope"}
        )
        assert response.status_code == HTTP_401_UNAUTHORIZED

    async def test_valid_key_accepted(self, client: AsyncTestClient) -> None:
        """Both header styles are accepted."""
        response = await client.get(
            f"{API}/users/user_001/goals", headers={"X-API-Key": "test-secret"}
        )
        assert response.status_code == HTTP_200_OK

        response = await client.get(
            f"{API}/users/user_001/goals", headers={"Authorization": "Bearer test-secret"}
        )
        assert response.status_code == HTTP_200_OK

    async def test_health_is_open(self, client: AsyncTestClient) -> None:
        """The health check needs no key."""
        response = await client.get("/health")
        assert response.status_code == HTTP_200_OK
