"""HTTP and WebSocket surface, exercised through FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient

from gamecloud.services.api_gateway.main import create_app

from conftest import sign_payload


@pytest.fixture
def client(config, session_factory, processor):
    app = create_app(config=config, session_factory=session_factory, processor=processor)
    with TestClient(app) as client:
        yield client


def _create(client, **overrides):
    body = {"user_id": "user-42", "game": "minecraft", "region": "fra", "tier": 2}
    body.update(overrides)
    return client.post("/servers", json=body)


def _deliver(client, body, signature):
    return client.post(
        "/webhooks/stripe",
        content=body,
        headers={"content-type": "application/json", "stripe-signature": signature},
    )


def test_create_server(client):
    resp = _create(client)

    assert resp.status_code == 201
    data = resp.json()
    assert data["server"]["status"] == "installing"
    assert data["server"]["tier"] == 2
    assert data["payment"]["status"] == "requires_payment_method"
    assert data["payment"]["amount_cents"] == 500
    assert data["client_token"]


def test_create_server_reports_bad_fields(client):
    resp = _create(client, game="pong", tier=9)

    assert resp.status_code == 422
    assert set(resp.json()["fields"]) == {"game", "tier"}


def test_wrongly_typed_field_is_reported_with_the_others(client):
    resp = _create(client, game="pong", tier="two")

    assert resp.status_code == 422
    assert resp.json()["detail"] == "validation failed"
    assert set(resp.json()["fields"]) == {"game", "tier"}


def test_missing_fields_are_all_reported(client):
    resp = client.post("/servers", json={"game": "minecraft"})

    assert resp.status_code == 422
    assert set(resp.json()["fields"]) == {"user_id", "region", "tier"}


def test_non_object_body_uses_the_same_error_shape(client):
    resp = client.post("/servers", json=["minecraft"])

    assert resp.status_code == 422
    assert resp.json()["detail"] == "validation failed"
    assert resp.json()["fields"]


def test_processor_failure_is_bad_gateway(config, session_factory):
    from conftest import FakeProcessor

    app = create_app(config=config, session_factory=session_factory, processor=FakeProcessor(fail=True))
    with TestClient(app) as client:
        resp = _create(client)

    assert resp.status_code == 502


def test_live_status_follows_webhooks(client, make_event):
    created = _create(client).json()
    server_id = created["server"]["server_id"]
    ref = created["payment"]["payment_intent_ref"]

    with client.websocket_connect("/ws/servers") as ws:
        ws.send_json({"server_id": server_id})
        assert ws.receive_json() == {"type": "status", "server_id": server_id, "status": "installing"}

        body, sig = make_event("payment_intent.succeeded", ref, server_id)
        resp = _deliver(client, body, sig)
        assert resp.status_code == 200
        assert resp.json()["outcome"] == "applied"
        assert ws.receive_json() == {"type": "status", "server_id": server_id, "status": "active"}

        resp = _deliver(client, body, sig)
        assert resp.status_code == 200
        assert resp.json()["outcome"] == "replayed"
        assert ws.receive_json()["status"] == "active"

    body, sig = make_event("payment_intent.payment_failed", ref, server_id)
    resp = _deliver(client, body, sig)
    assert resp.status_code == 200
    assert resp.json()["outcome"] == "conflict"

    snapshot = client.get(f"/servers/{server_id}").json()
    assert snapshot["server"]["status"] == "active"
    assert snapshot["payment"]["status"] == "succeeded"
    assert sorted(t["to_status"] for t in snapshot["history"]) == ["requires_payment_method", "succeeded"]


def test_invalid_signature_is_rejected(client, make_event):
    created = _create(client).json()
    server_id = created["server"]["server_id"]
    body, _ = make_event("payment_intent.succeeded", created["payment"]["payment_intent_ref"], server_id)

    resp = _deliver(client, body, sign_payload(body, secret="whsec_attacker"))

    assert resp.status_code == 400
    assert client.get(f"/servers/{server_id}").json()["server"]["status"] == "installing"


def test_missing_signature_header_is_rejected(client):
    resp = client.post("/webhooks/stripe", content=b"{}")

    assert resp.status_code == 400


def test_unbound_intent_asks_for_redelivery(client, make_event):
    store = client.app.state.store
    from gamecloud.services.ledger.models import Payment, Server

    server, _ = store.create_server_and_payment(
        Server(user_id="u-1", game="minecraft", region="fra", tier=2, status="installing"),
        Payment(amount_cents=500, currency="eur", status="requires_payment_method"),
    )
    body, sig = make_event("payment_intent.succeeded", "pi_racing", server.server_id)

    assert _deliver(client, body, sig).status_code == 503


def test_websocket_rejects_bad_messages(client):
    with client.websocket_connect("/ws/servers") as ws:
        ws.send_json({"nope": True})
        assert ws.receive_json()["type"] == "error"
        ws.send_json({"server_id": "missing"})
        assert ws.receive_json() == {"type": "error", "server_id": "missing", "detail": "unknown server"}


def test_websocket_unsubscribe(client):
    created = _create(client).json()
    server_id = created["server"]["server_id"]
    fanout = client.app.state.fanout

    with client.websocket_connect("/ws/servers") as ws:
        ws.send_json({"server_id": server_id})
        ws.receive_json()
        ws.send_json({"action": "unsubscribe", "server_id": server_id})
        ws.send_json({"server_id": "missing"})
        ws.receive_json()
        assert fanout.subscriber_count(server_id) == 0


def test_closing_websocket_drops_its_subscriptions(client):
    first = _create(client).json()["server"]["server_id"]
    second = _create(client).json()["server"]["server_id"]
    fanout = client.app.state.fanout

    with client.websocket_connect("/ws/servers") as ws:
        ws.send_json({"server_id": first})
        ws.receive_json()
        ws.send_json({"server_id": second})
        ws.receive_json()
        assert fanout.subscriber_count(first) == 1
        assert fanout.subscriber_count(second) == 1

    assert fanout.subscriber_count(first) == 0
    assert fanout.subscriber_count(second) == 0


def test_unknown_server_snapshot_is_404(client):
    assert client.get("/servers/nope").status_code == 404


def test_health_and_metrics(client):
    _create(client)

    assert client.get("/health").json() == {"ok": True}
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "provisioning_requests_total" in metrics.text
