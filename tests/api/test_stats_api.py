"""
Tests for the stats endpoints under /api/sites/{site_id}.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from quietstats.api.deps import get_stats_service
from quietstats.api.main import app as main_app
from quietstats.api.routes import collect, stats
from quietstats.app_shell.context import ServiceContext
from quietstats.core.entities import PageView

NOW = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)
CHROME = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0.0.0 Safari/537.36"

# --- Test Setup ---


@pytest.fixture
def client(test_ctx: ServiceContext) -> TestClient:
    """Stats router mounted as in the application, backed by the test context."""
    app = FastAPI()
    app.include_router(stats.router, prefix="/api/sites")
    app.dependency_overrides[get_stats_service] = lambda: test_ctx.stats_service
    return TestClient(app)


def seed(ctx: ServiceContext, minutes_ago: int, path: str, visitor: str, session: str) -> None:
    ctx.page_view_repo.save(
        PageView(
            site_id="site-1",
            visitor_id=visitor,
            session_id=session,
            path=path,
            timestamp=NOW - timedelta(minutes=minutes_ago),
        )
    )


# --- Time series ---


class TestTimeSeriesEndpoint:
    def test_shape(self, client: TestClient, test_ctx: ServiceContext) -> None:
        seed(test_ctx, 30, "/", "v1", "s1")
        response = client.get(
            "/api/sites/site-1/timeseries",
            params={"startDate": "2024-01-15T08:00:00Z", "endDate": "2024-01-15T12:00:00Z"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["period"] == "hour"
        assert len(body["timeSeries"]) == 5
        assert body["timeSeries"][3] == {
            "date": "2024-01-15T11:00:00",
            "views": 1,
            "visitors": 1,
            "sessions": 1,
        }

    def test_explicit_period(self, client: TestClient) -> None:
        response = client.get("/api/sites/site-1/timeseries", params={"period": "month"})
        assert response.status_code == 200
        assert response.json()["period"] == "month"

    def test_invalid_period(self, client: TestClient) -> None:
        response = client.get("/api/sites/site-1/timeseries", params={"period": "week"})
        assert response.status_code == 400
        assert response.json()["detail"]["errors"][0]["code"] == "invalid_period"

    def test_invalid_site_id(self, client: TestClient) -> None:
        response = client.get("/api/sites/bad site/timeseries")
        assert response.status_code == 400
        assert response.json()["detail"]["errors"][0]["code"] == "invalid_site_id"


# --- Totals ---


class TestStatsEndpoint:
    def test_totals(self, client: TestClient, test_ctx: ServiceContext) -> None:
        test_ctx.collect_service.collect(
            {"s": "site-1", "e": "pageview", "u": "https://example.com/", "sid": "a"},
            "203.0.113.7",
            CHROME,
        )
        response = client.get("/api/sites/site-1/stats")
        assert response.status_code == 200
        body = response.json()
        assert body["views"] == 1
        assert body["visitors"] == 1
        assert body["sessions"] == 1
        assert body["bounceRate"] == 100.0
        assert body["avgDurationFormatted"] == "00:00"
        assert body["change"]["views"] == 100
        assert body["endDate"].startswith("2024-01-15T12:00:00")


# --- Realtime ---


class TestRealtimeEndpoint:
    def test_realtime(self, client: TestClient, test_ctx: ServiceContext) -> None:
        test_ctx.collect_service.collect(
            {"s": "site-1", "e": "pageview", "u": "https://example.com/live"},
            "203.0.113.7",
            CHROME,
        )
        response = client.get("/api/sites/site-1/realtime")
        assert response.status_code == 200
        assert response.json() == {
            "minutes": 5,
            "activeVisitors": 1,
            "pageviews": 1,
            "topPages": [{"path": "/live", "views": 1}],
        }

    def test_minutes_bounds(self, client: TestClient) -> None:
        assert client.get("/api/sites/site-1/realtime", params={"minutes": 0}).status_code == 422
        assert client.get("/api/sites/site-1/realtime", params={"minutes": 30}).status_code == 200


# --- Funnels ---


class TestFunnelEndpoint:
    def test_funnel_report(self, client: TestClient, test_ctx: ServiceContext) -> None:
        seed(test_ctx, 20, "/", "v1", "a")
        seed(test_ctx, 19, "/pricing", "v1", "a")
        seed(test_ctx, 10, "/", "v2", "b")

        response = client.post(
            "/api/sites/site-1/funnel",
            json={
                "name": "Pricing",
                "steps": [
                    {"name": "Home", "pattern": "/"},
                    {"name": "Pricing", "pattern": "/pric", "matchType": "contains"},
                ],
            },
        )
        assert response.status_code == 200
        body = response.json()
        assert body["totalEntries"] == 2
        assert body["completions"] == 1
        assert body["conversionRate"] == 50.0
        assert body["steps"][0]["dropOffRate"] is None
        assert body["steps"][1]["dropOffRate"] == 50.0
        assert body["dropOffs"] == [
            {"from": "Home", "to": "Pricing", "droppedOff": 1, "dropOffRate": 50.0}
        ]

    def test_invalid_funnel(self, client: TestClient) -> None:
        response = client.post(
            "/api/sites/site-1/funnel",
            json={"name": "x", "steps": [{"name": "only", "pattern": "/"}]},
        )
        assert response.status_code == 400
        codes = [e["code"] for e in response.json()["detail"]["errors"]]
        assert codes == ["too_few_steps"]


# --- Application ---


class TestApplication:
    def test_health(self) -> None:
        response = TestClient(main_app).get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "api"}

    def test_routes_mounted(self) -> None:
        paths = set(main_app.openapi()["paths"])
        assert {
            "/collect",
            "/health",
            "/api/sites/{site_id}/timeseries",
            "/api/sites/{site_id}/stats",
            "/api/sites/{site_id}/realtime",
            "/api/sites/{site_id}/funnel",
        } <= paths
        # The short alias stays out of the schema
        assert "/t" not in paths
        assert "/t" in {route.path for route in collect.router.routes}
