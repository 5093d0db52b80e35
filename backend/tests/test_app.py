# tests for the health check and app configuration
# basic app-level tests

import pytest


class TestHealthCheck:
    """app health and config"""

    async def test_health_check(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["service"] == "serenity-insights-api"

    async def test_openapi_schema(self, client):
        resp = await client.get("/openapi.json")
        assert resp.status_code == 200
        schema = resp.json()
        assert schema["info"]["title"] == "Serenity Insights API"
        assert "/api/dashboard" in schema["paths"]

    async def test_dashboard_documents_each_status(self, client):
        resp = await client.get("/openapi.json")
        schema = resp.json()
        responses = schema["paths"]["/api/dashboard"]["get"]["responses"]
        ok_ref = responses["200"]["content"]["application/json"]["schema"]["$ref"]
        error_ref = responses["500"]["content"]["application/json"]["schema"]["$ref"]
        assert ok_ref.endswith("/DashboardSuccessBody")
        assert error_ref.endswith("/DashboardErrorBody")

        components = schema["components"]["schemas"]
        assert "stats" in components["DashboardSuccessBody"]["required"]
        assert "error" not in components["DashboardSuccessBody"]["properties"]
        assert "error" in components["DashboardErrorBody"]["required"]
        assert "stats" not in components["DashboardErrorBody"]["properties"]

    async def test_docs_available(self, client):
        resp = await client.get("/docs")
        assert resp.status_code == 200
