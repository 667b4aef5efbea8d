"""
Tests for the collection endpoint (POST /collect, alias /t).

- 204 for recorded and intentionally dropped requests
- 400 with {"ok": false, "errors": [...]} for invalid payloads
- 503 with Retry-After when the store is unavailable
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from quietstats.adapters.clock import FixedClock
from quietstats.api.deps import get_collect_service
from quietstats.api.routes import collect
from quietstats.api.routes.collect import get_client_key
from quietstats.app_shell.context import ServiceContext
from quietstats.core.ports.storage import Item, StorageError
from quietstats.rules.models import Rules

CHROME = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0.0.0 Safari/537.36"
HEADERS = {"User-Agent": CHROME, "X-Forwarded-For": "203.0.113.7, 10.0.0.1"}


def pageview(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "s": "site-1",
        "e": "pageview",
        "u": "https://example.com/docs",
        "sid": "sess-1",
    }
    data.update(overrides)
    return data


class UnavailableStore:
    """KeyValueStorePort whose every call fails."""

    def put_item(self, item: Item) -> None:
        raise StorageError("connection refused")

    def get_item(self, pk: str, sk: str) -> Item | None:
        raise StorageError("connection refused")

    def delete_item(self, pk: str, sk: str) -> None:
        raise StorageError("connection refused")

    def query(self, pk: str, **kwargs: Any) -> list[Item]:
        raise StorageError("connection refused")

    def query_index(self, gsi1pk: str, sk_prefix: str | None = None) -> list[Item]:
        raise StorageError("connection refused")


# --- Test Setup ---


def make_client(ctx: ServiceContext) -> TestClient:
    app = FastAPI()
    app.include_router(collect.router)
    app.dependency_overrides[get_collect_service] = lambda: ctx.collect_service
    return TestClient(app)


@pytest.fixture
def client(test_ctx: ServiceContext) -> TestClient:
    """Test client backed by the in-memory context."""
    return make_client(test_ctx)


# --- Accepted ---


class TestCollectAccepted:
    """Recorded and not-tracked requests both return 204."""

    def test_pageview_returns_204(self, client: TestClient, test_ctx: ServiceContext) -> None:
        response = client.post("/collect", json=pageview(), headers=HEADERS)
        assert response.status_code == 204
        assert response.content == b""

        views = test_ctx.page_view_repo.list_range(
            "site-1", test_ctx.clock.now_utc() - timedelta(minutes=1), test_ctx.clock.now_utc()
        )
        assert [v.path for v in views] == ["/docs"]

    def test_short_alias(self, client: TestClient) -> None:
        response = client.post("/t", json=pageview(), headers=HEADERS)
        assert response.status_code == 204

    def test_text_plain_beacon(self, client: TestClient, test_ctx: ServiceContext) -> None:
        """sendBeacon bodies arrive as text/plain."""
        response = client.post(
            "/collect",
            content='{"s": "site-1", "e": "pageview", "u": "https://example.com/"}',
            headers={**HEADERS, "Content-Type": "text/plain"},
        )
        assert response.status_code == 204
        assert test_ctx.store.query("SITE#site-1", sk_prefix="PV#")

    def test_custom_event(self, client: TestClient) -> None:
        response = client.post(
            "/collect",
            json=pageview(e="event", p={"name": "signup", "plan": "pro"}),
            headers=HEADERS,
        )
        assert response.status_code == 204

    def test_dnt_is_silently_dropped(self, client: TestClient, test_ctx: ServiceContext) -> None:
        response = client.post("/collect", json=pageview(), headers={**HEADERS, "DNT": "1"})
        assert response.status_code == 204
        assert test_ctx.store.query("SITE#site-1") == []

    def test_bot_is_silently_dropped(self, client: TestClient, test_ctx: ServiceContext) -> None:
        response = client.post("/collect", json=pageview(), headers={"User-Agent": "curl/8.4.0"})
        assert response.status_code == 204
        assert test_ctx.store.query("SITE#site-1") == []

    def test_same_client_same_visitor(self, client: TestClient, test_ctx: ServiceContext) -> None:
        client.post("/collect", json=pageview(sid="a"), headers=HEADERS)
        client.post("/collect", json=pageview(sid="b"), headers=HEADERS)
        now = test_ctx.clock.now_utc()
        views = test_ctx.page_view_repo.list_range("site-1", now - timedelta(minutes=1), now)
        assert len({v.visitor_id for v in views}) == 1
        assert len({v.session_id for v in views}) == 2


# --- Rejected ---


class TestCollectRejected:
    """Invalid requests return 400 with structured errors."""

    def test_missing_fields(self, client: TestClient) -> None:
        response = client.post("/collect", json={}, headers=HEADERS)
        assert response.status_code == 400
        body = response.json()
        assert body["ok"] is False
        assert {e["field"] for e in body["errors"]} == {"s", "e", "u"}
        assert all(set(e) == {"code", "message", "field"} for e in body["errors"])

    def test_invalid_site_id(self, client: TestClient) -> None:
        response = client.post("/collect", json=pageview(s="../etc"), headers=HEADERS)
        assert response.status_code == 400
        assert response.json()["errors"][0]["code"] == "invalid_site_id"

    def test_unknown_event_type(self, client: TestClient) -> None:
        response = client.post("/collect", json=pageview(e="scroll"), headers=HEADERS)
        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "e"

    @pytest.mark.parametrize("body", ["not json", "[1, 2]", ""])
    def test_invalid_json(self, client: TestClient, body: str) -> None:
        response = client.post("/collect", content=body, headers=HEADERS)
        assert response.status_code == 400
        assert response.json()["errors"][0]["code"] == "invalid_json"

    def test_overflowing_screen_width(self, client: TestClient) -> None:
        """1e400 decodes to infinity."""
        body = '{"s": "site-1", "e": "pageview", "u": "https://example.com/", "sw": 1e400}'
        response = client.post("/collect", content=body, headers=HEADERS)
        assert response.status_code == 400
        assert response.json()["errors"] == [
            {"code": "invalid_field", "message": "sw must be a finite number", "field": "sw"}
        ]

    def test_nothing_written(self, client: TestClient, test_ctx: ServiceContext) -> None:
        client.post("/collect", json=pageview(u="nope"), headers=HEADERS)
        assert test_ctx.store.query("SITE#site-1") == []


# --- Storage failures ---


class TestCollectUnavailable:
    def test_storage_error_returns_503(self, rules: Rules, clock: FixedClock) -> None:
        ctx = ServiceContext.create(rules, store=UnavailableStore(), clock=clock)
        response = make_client(ctx).post("/collect", json=pageview(), headers=HEADERS)
        assert response.status_code == 503
        assert response.headers["Retry-After"] == "5"
        assert response.json() == {"ok": False, "errors": [{"code": "storage_unavailable"}]}


# --- Helpers ---


class TestClientKey:
    def test_forwarded_for_first_entry(self) -> None:
        app = FastAPI()
        seen: list[str] = []

        @app.get("/ip")
        def ip(request: Request) -> dict[str, str]:
            seen.append(get_client_key(request))
            return {}

        TestClient(app).get("/ip", headers={"X-Forwarded-For": "198.51.100.9, 10.0.0.1"})
        assert seen == ["198.51.100.9"]
