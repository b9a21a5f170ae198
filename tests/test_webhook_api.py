"""Meta webhook HTTP contract"""
from whatsflow.core.config import DEFAULT_REPLY
from whatsflow.models.message import Message
from whatsflow.models.webhook import WebhookLog

from tests.conftest import CONTACT, USER_ID, text_message, webhook_payload


def verify_params(**overrides):
    params = {"hub.mode": "subscribe", "hub.verify_token": "test-verify-token", "hub.challenge": "1158201444"}
    params.update(overrides)
    return params


def test_verification_echoes_challenge(client):
    r = client.get("/webhooks/whatsapp", params=verify_params())
    assert r.status_code == 200
    assert r.text == "1158201444"


def test_verification_wrong_token(client):
    r = client.get("/webhooks/whatsapp", params=verify_params(**{"hub.verify_token": "nope"}))
    assert r.status_code == 403


def test_verification_wrong_mode(client):
    r = client.get("/webhooks/whatsapp", params=verify_params(**{"hub.mode": "unsubscribe"}))
    assert r.status_code == 403


def test_inbound_message_gets_default_reply(client, db, account, gateways):
    r = client.post("/webhooks/whatsapp", json=webhook_payload(text_message("hello")))

    assert r.status_code == 200
    assert r.json() == {"status": "success", "message": "Webhook processed"}
    assert gateways.texts == [DEFAULT_REPLY]
    db.expire_all()
    assert db.query(Message).count() == 2


def test_unknown_account_still_200(client, db, account):
    r = client.post("/webhooks/whatsapp", json=webhook_payload(text_message("hi"), phone_number_id="000"))
    assert r.status_code == 200
    assert r.json()["status"] == "error"


def test_invalid_json_still_200(client, db):
    r = client.post(
        "/webhooks/whatsapp", content=b"{not json", headers={"Content-Type": "application/json"}
    )
    assert r.status_code == 200
    assert r.json()["status"] == "error"
    assert r.json()["message"] == "Invalid JSON payload"


def test_non_object_body(client, db):
    r = client.post("/webhooks/whatsapp", json=[1, 2, 3])
    assert r.status_code == 200
    assert r.json()["status"] == "error"


def test_internal_error_is_enveloped(client, db, account, monkeypatch):
    from whatsflow.services.orchestrator import WebhookOrchestrator

    def explode(self, payload):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(WebhookOrchestrator, "process_payload", explode)
    r = client.post("/webhooks/whatsapp", json=webhook_payload(text_message("hello")))

    assert r.status_code == 200
    assert r.json() == {"status": "error", "message": "Internal server error", "details": "kaboom"}


# ────────────────────────────────────────────
# Audit log
# ────────────────────────────────────────────

def test_logs_are_scoped_to_user(client, db, account, auth_headers):
    client.post("/webhooks/whatsapp", json=webhook_payload(text_message("hello")))
    client.post("/webhooks/whatsapp", json=webhook_payload(text_message("hi"), phone_number_id="000"))

    r = client.get("/api/webhooks/logs", headers=auth_headers)
    assert r.status_code == 200
    logs = r.json()
    assert [entry["log_type"] for entry in logs] == ["message"]
    assert logs[0]["phone"] == CONTACT
    assert logs[0]["user_id"] == USER_ID

    db.expire_all()
    assert db.query(WebhookLog).count() == 2


def test_logs_require_auth(client, db):
    assert client.get("/api/webhooks/logs").status_code == 401


def test_logs_cleanup_keeps_recent(client, db, account, auth_headers):
    client.post("/webhooks/whatsapp", json=webhook_payload(text_message("hello")))

    r = client.delete("/api/webhooks/logs/cleanup", params={"days": 1}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["deleted"] == 0
