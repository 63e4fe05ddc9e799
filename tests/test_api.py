# tests/test_api.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from airtime import main
from airtime.config import settings


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "data_dir", tmp_path)
    monkeypatch.setattr(settings, "webhook_url", None)
    with TestClient(main.app) as c:
        yield c


def future_base() -> str:
    return (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()


def test_health_reports_scheduler(client: TestClient) -> None:
    resp = client.get("/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["scheduler"]["running"] is True
    assert body["scheduler"]["timers_live"] == 0


def test_subscribe_and_unsubscribe_flow(client: TestClient) -> None:
    resp = client.put(
        "/api/series/100",
        json={"name": "Frieren", "base_time": future_base(), "recurrence_period": "P7D", "total_episode_count": 28},
    )
    assert resp.status_code == 200
    assert resp.json()["precise_cadence"] is True

    resp = client.post("/api/subscriptions", json={"subscriber_id": "alice", "series_id": "100"})
    assert resp.status_code == 200
    sub = resp.json()
    assert sub["last_notified_episode"] == 0
    assert sub["next_notify_episode"] == 1
    assert sub["armed"] is True

    pending = client.get("/api/scheduler/pending").json()
    assert pending == {"count": 1, "ids": [sub["id"]]}

    resp = client.delete(f"/api/subscriptions/{sub['id']}")
    assert resp.status_code == 200
    assert client.get("/api/scheduler/pending").json()["count"] == 0
    assert client.get(f"/api/subscriptions/{sub['id']}").status_code == 404


def test_invalid_period_is_rejected(client: TestClient) -> None:
    resp = client.put("/api/series/1", json={"name": "X", "recurrence_period": "P1M"})

    assert resp.status_code == 400


def test_unknown_ids_return_404(client: TestClient) -> None:
    assert client.post("/api/subscriptions", json={"subscriber_id": "a", "series_id": "nope"}).status_code == 404
    assert client.delete("/api/subscriptions/nope").status_code == 404
    assert client.post("/api/subscriptions/nope/retrigger").status_code == 404


def test_retrigger_rearms_pending_subscription(client: TestClient) -> None:
    client.put("/api/series/7", json={"name": "Show", "base_time": future_base(), "recurrence_period": "P1D"})
    sub = client.post("/api/subscriptions", json={"subscriber_id": "bob", "series_id": "7"}).json()

    resp = client.post(f"/api/subscriptions/{sub['id']}/retrigger")

    assert resp.status_code == 200
    assert resp.json()["armed"] is True
    assert client.get("/api/scheduler/pending").json()["count"] == 1


def test_recent_events_endpoint(client: TestClient) -> None:
    client.put(
        "/api/series/100",
        json={"name": "Frieren", "base_time": future_base(), "recurrence_period": "P7D"},
    )
    sub = client.post("/api/subscriptions", json={"subscriber_id": "alice", "series_id": "100"}).json()

    events = client.get("/api/scheduler/events", params={"limit": 1}).json()["events"]

    assert len(events) == 1
    assert events[0]["type"] == "notification.scheduled"
    assert events[0]["subscription_id"] == sub["id"]


def test_list_subscriptions_filters_by_subscriber(client: TestClient) -> None:
    client.put(
        "/api/series/100",
        json={"name": "Frieren", "base_time": future_base(), "recurrence_period": "P7D"},
    )
    alice = client.post("/api/subscriptions", json={"subscriber_id": "alice", "series_id": "100"}).json()
    client.post("/api/subscriptions", json={"subscriber_id": "bob", "series_id": "100"})

    body = client.get("/api/subscriptions", params={"subscriber_id": "alice"}).json()

    assert body["total"] == 1
    assert body["subscriptions"][0]["id"] == alice["id"]
    assert body["subscriptions"][0]["armed"] is True
    assert client.get("/api/subscriptions").json()["total"] == 2
