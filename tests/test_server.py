"""HTTP front end tests through FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient

from server import create_app

from tests.helpers import confirm_token

HEADERS = {"X-API-Key": "test-key"}


@pytest.fixture
def client(gateway):
    return TestClient(create_app(gateway))


def test_requires_api_key(client):
    resp = client.get("/api/v1/health")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "UNAUTHORIZED"


def test_missing_api_key_config_is_unavailable(provider, clock):
    from notifygate import Gateway, Settings

    client = TestClient(create_app(Gateway(provider, Settings(), clock=clock)))
    assert client.get("/api/v1/health", headers=HEADERS).status_code == 503


def test_health(client):
    resp = client.get("/api/v1/health", headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.json()["topics"] == 0


def test_create_topic_idempotent(client):
    first = client.post("/api/v1/topics", json={"name": "alerts"}, headers=HEADERS)
    second = client.post("/api/v1/topics", json={"name": "alerts"}, headers=HEADERS)
    assert first.status_code == 200
    assert first.json()["topic_id"] == second.json()["topic_id"]
    listed = client.get("/api/v1/topics", headers=HEADERS).json()["topics"]
    assert [t["name"] for t in listed] == ["alerts"]


def test_invalid_topic_name(client):
    resp = client.post("/api/v1/topics", json={"name": "bad name"}, headers=HEADERS)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_INPUT"
    assert resp.json()["error"]["retryable"] is False


def test_subscribe_confirm_publish_flow(client, gateway, provider):
    resp = client.post("/api/v1/subscribe", json={"email": "a@x.com"}, headers=HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["state"] == "Pending"
    assert body["message"] == (
        "Successfully subscribed a@x.com. Please check your email to confirm subscription."
    )
    sub_id = body["subscription_id"]

    token = confirm_token(gateway, provider, sub_id)
    resp = client.get(
        f"/api/v1/subscriptions/{sub_id}/confirm", params={"token": token}, headers=HEADERS
    )
    assert resp.status_code == 200
    assert resp.json()["state"] == "Confirmed"
    assert "confirmation_token" not in resp.json()

    resp = client.post(
        "/api/v1/publish", json={"message": "hello", "subject": "hi"}, headers=HEADERS
    )
    assert resp.status_code == 200
    outcomes = resp.json()["outcomes"]
    assert outcomes == [{"subscription_id": sub_id, "delivered": True, "error": None}]


def test_confirm_errors(client, gateway):
    sub_id = gateway.subscribe_email("a@x.com")
    bad = client.post(
        f"/api/v1/subscriptions/{sub_id}/confirm", params={"token": "wrong"}, headers=HEADERS
    )
    assert bad.status_code == 400
    missing = client.post(
        "/api/v1/subscriptions/sub_missing/confirm", params={"token": "x"}, headers=HEADERS
    )
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "NOT_FOUND"

    client.post(f"/api/v1/subscriptions/{sub_id}/reject", json={"reason": "bounce"}, headers=HEADERS)
    conflict = client.post(
        f"/api/v1/subscriptions/{sub_id}/confirm", params={"token": "x"}, headers=HEADERS
    )
    assert conflict.status_code == 409
    assert conflict.json()["error"]["code"] == "CONFLICT"


def test_unsubscribe(client, gateway):
    sub_id = gateway.subscribe_email("a@x.com")
    assert client.delete(f"/api/v1/subscriptions/{sub_id}", headers=HEADERS).status_code == 200
    assert client.delete(f"/api/v1/subscriptions/{sub_id}", headers=HEADERS).status_code == 404
    resp = client.delete(
        f"/api/v1/subscriptions/{sub_id}", params={"missing_ok": "true"}, headers=HEADERS
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "not_subscribed"


def test_provider_outage_maps_to_bad_gateway(client, provider):
    provider.unreachable = True
    resp = client.post("/api/v1/topics", json={"name": "alerts"}, headers=HEADERS)
    assert resp.status_code == 502
    assert resp.json()["error"]["code"] == "DEPENDENCY_FAILURE"
    assert resp.json()["error"]["retryable"] is True


def test_topic_subscriptions_listing(client, gateway):
    sub_id = gateway.subscribe_email("a@x.com")
    topic_id = gateway.default_topic_id()
    resp = client.get(f"/api/v1/topics/{topic_id}/subscriptions", headers=HEADERS)
    assert [s["id"] for s in resp.json()["subscriptions"]] == [sub_id]
    assert client.get("/api/v1/topics/top_missing/subscriptions", headers=HEADERS).status_code == 404


def test_stats(client):
    client.post("/api/v1/topics", json={"name": "alerts"}, headers=HEADERS)
    body = client.get("/api/v1/stats", headers=HEADERS).json()
    assert body["counters"]["create_topic_ok"] == 1
    assert body["gauges"]["topics"] == 1


def test_shutdown_closes_provider_pool(gateway):
    with TestClient(create_app(gateway)) as client:
        assert client.post("/api/v1/topics", json={"name": "alerts"}, headers=HEADERS).status_code == 200
        assert not gateway.caller.closed
    assert gateway.caller.closed
