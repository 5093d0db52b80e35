# tests for the dashboard endpoint and response assembler
# GET /api/dashboard — full payload on success, error state on aggregation failure

import pytest

from serenity.main import app
from serenity.models.dashboard import RawSnapshot
from serenity.services.agents import AGENT_SPECS, AgentRole
from serenity.services.dashboard_service import GENERIC_ERROR, build_dashboard, build_payload
from serenity.services.db import get_db
from serenity.services.insights import generate_insights
from serenity.services.snapshot import EXTRACTORS
from tests.conftest import NOW, POPULATED_ROWS, FakeBackend, FakeGateway


class TestDashboardEndpoint:
    """dashboard payload over the populated fake store"""

    async def test_success(self, client, freeze_now):
        resp = await client.get("/api/dashboard")
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert "error" not in data

        stats = data["stats"]
        for key in (
            "userStats", "anxietyLevels", "depressionLevels", "ageDistribution", "genderDistribution",
            "monthlyActivity", "messageActivity", "correlationData", "effectiveness", "retention",
            "usagePatterns", "responseSamples", "chatAnalytics", "insights",
        ):
            assert key in stats

        assert stats["userStats"] == {"total": 2, "newThisMonth": 1, "totalTests": 4, "totalMessages": 9}
        assert stats["messageActivity"][0] == {"day": "Lun", "messages": 7, "botReplies": 3}
        assert stats["effectiveness"] == {"totalUsers": 1, "improved": 1, "improvementPercentage": 100.0}

    async def test_insights_shape(self, client, freeze_now):
        resp = await client.get("/api/dashboard")
        insights = resp.json()["stats"]["insights"]
        assert insights["effectiveness"] == {"insight": "Most long-term users improve", "score": 72.0}
        assert set(insights) == {
            "effectiveness", "significantPatterns", "correlations",
            "temporalTrends", "recommendations", "responseAnalysis",
        }
        assert set(insights["responseAnalysis"]) == {"commonPatterns", "keyInsights", "recommendedActions"}

    async def test_nullable_fields_are_kept(self, client, freeze_now):
        resp = await client.get("/api/dashboard")
        chats = resp.json()["stats"]["chatAnalytics"]
        assert chats[1]["userGender"] is None
        assert chats[1]["maxAnxiety"] is None

    async def test_malformed_recommendations_still_succeeds(self, client, fake_backend, freeze_now):
        fake_backend.replies[AgentRole.RECOMMENDATIONS] = "I think you should do better. {not json"
        resp = await client.get("/api/dashboard")
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        insights = data["stats"]["insights"]
        assert insights["recommendations"] == AGENT_SPECS[AgentRole.RECOMMENDATIONS].fallback_for()
        assert insights["correlations"] == ["Higher anxiety users send fewer messages"]
        assert insights["effectiveness"]["score"] == 72.0

    async def test_aggregation_failure_returns_500(self, client, freeze_now):
        failing = FakeGateway(POPULATED_ROWS, failing={"chat_rollups"})

        async def override_get_db():
            return failing

        app.dependency_overrides[get_db] = override_get_db
        resp = await client.get("/api/dashboard")
        assert resp.status_code == 500
        data = resp.json()
        assert data["success"] is False
        assert "chat_rollups" in data["error"]
        assert "stats" not in data

    async def test_empty_store(self, client, freeze_now):
        async def override_get_db():
            return FakeGateway()

        app.dependency_overrides[get_db] = override_get_db
        resp = await client.get("/api/dashboard")
        assert resp.status_code == 200
        stats = resp.json()["stats"]
        assert stats["userStats"] == {"total": 0, "newThisMonth": 0, "totalTests": 0, "totalMessages": 0}
        assert stats["anxietyLevels"] == []
        assert stats["genderDistribution"] == []
        assert stats["effectiveness"] == {"totalUsers": 0, "improved": 0, "improvementPercentage": 0.0}
        assert stats["retention"] == {
            "meanMonthsActive": 0.0, "activeThisMonth": 0, "activePriorMonth": 0, "retentionRate": 0.0,
        }


class TestBuildDashboard:
    """response assembler without http"""

    async def test_success_payload(self, populated_gateway):
        response = await build_dashboard(populated_gateway, FakeBackend(), now=NOW)
        assert response.success is True
        assert response.error is None
        assert response.stats.user_stats.total == 2
        assert response.stats.insights.recommendations == ["Add a bedtime breathing exercise"]

    async def test_all_agents_failing_is_still_success(self, populated_gateway):
        backend = FakeBackend({role: "nope" for role in AgentRole})
        response = await build_dashboard(populated_gateway, backend, now=NOW)
        assert response.success is True
        assert response.stats.insights.effectiveness.score == 0

    async def test_data_access_error(self):
        gateway = FakeGateway(failing={"test_spans"})
        response = await build_dashboard(gateway, FakeBackend(), now=NOW)
        assert response.success is False
        assert response.stats is None
        assert "test_spans" in response.error

    async def test_agents_not_run_when_aggregation_fails(self):
        backend = FakeBackend()
        await build_dashboard(FakeGateway(failing={"total_users"}), backend, now=NOW)
        assert backend.prompts == {}

    async def test_extractor_bug_fails_aggregation(self, empty_gateway, monkeypatch):
        async def broken(db, now):
            raise RuntimeError("boom")

        monkeypatch.setitem(EXTRACTORS, "retention", broken)
        response = await build_dashboard(empty_gateway, FakeBackend(), now=NOW)
        # non data-access errors inside extractors are still a failed aggregation
        assert response.success is False
        assert "retention" in response.error

    async def test_unexpected_error_outside_extractors(self, empty_gateway, monkeypatch):
        async def explode(db, now=None):
            raise RuntimeError("boom")

        monkeypatch.setattr("serenity.services.dashboard_service.collect_snapshot", explode)
        response = await build_dashboard(empty_gateway, FakeBackend(), now=NOW)
        assert response.success is False
        assert response.error == GENERIC_ERROR

    async def test_payload_merges_snapshot_and_insights(self):
        snapshot = RawSnapshot()
        insights = await generate_insights(snapshot, FakeBackend())
        payload = build_payload(snapshot, insights)
        assert payload.user_stats == snapshot.user_stats
        assert payload.insights == insights
