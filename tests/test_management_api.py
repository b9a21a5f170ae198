"""Rules, flows and conversations management API"""
import jwt
import pytest

from whatsflow.models.conversation import Conversation
from whatsflow.models.message import Message
from whatsflow.services.conversation_store import ConversationStore

from tests.conftest import CONTACT, USER_ID, text_message, webhook_payload

FLOW_DATA = {
    "nodes": [
        {"id": "start-node", "type": "input", "data": {"label": "Start"}, "position": {"x": 0, "y": 0}},
        {"id": "ask", "type": "buttonMessageNode", "data": {
            "message": "Confirm?", "buttons": [{"text": "Yes", "payload": "yes"}],
        }},
        {"id": "wait", "type": "incomingMessageNode", "data": {"expectedMessage": "yes"}},
        {"id": "done", "type": "messageNode", "data": {"message": "Done"}},
    ],
    "edges": [
        {"id": "e1", "source": "start-node", "target": "ask"},
        {"id": "e2", "source": "ask", "target": "wait"},
        {"id": "e3", "source": "wait", "target": "done"},
    ],
}


# ────────────────────────────────────────────
# Auth
# ────────────────────────────────────────────

def test_bearer_token(client, db):
    token = jwt.encode({"sub": USER_ID}, "test-jwt-secret", algorithm="HS256")
    r = client.get("/api/rules/", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200


def test_bad_bearer_token(client, db):
    token = jwt.encode({"sub": USER_ID}, "wrong-secret", algorithm="HS256")
    r = client.get("/api/rules/", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401
    assert r.json() == {"detail": "Invalid token"}


def test_no_credentials(client, db):
    assert client.get("/api/flows/").status_code == 401


# ────────────────────────────────────────────
# Rules
# ────────────────────────────────────────────

def test_rule_crud(client, db, account, auth_headers):
    r = client.post("/api/rules/", headers=auth_headers, json={
        "whatsapp_account_id": account.id,
        "trigger_type": "CONTAINS",
        "trigger_value": "price",
        "response_message": ["Our prices start at $10"],
        "buttons": [{"text": "Catalog", "payload": "catalog"}],
    })
    assert r.status_code == 201
    rule = r.json()
    assert rule["trigger_type"] == "CONTAINS"
    assert rule["buttons"] == [{"text": "Catalog", "payload": "catalog"}]

    r = client.put(f"/api/rules/{rule['id']}", headers=auth_headers, json={"trigger_value": "cost"})
    assert r.status_code == 200
    assert r.json()["trigger_value"] == "cost"
    assert r.json()["response_message"] == ["Our prices start at $10"]

    assert [x["id"] for x in client.get("/api/rules/", headers=auth_headers).json()] == [rule["id"]]

    r = client.delete(f"/api/rules/{rule['id']}", headers=auth_headers)
    assert r.json() == {"message": "Rule deleted", "rule_id": rule["id"]}
    assert client.get(f"/api/rules/{rule['id']}", headers=auth_headers).status_code == 404


@pytest.mark.parametrize("extra", [
    {},
    {"response_message": ["hi"], "use_ai_response": True},
    {"response_message": ["hi"], "buttons": [{"text": str(i), "payload": str(i)} for i in range(4)]},
    {"response_message": ["  "]},
])
def test_rule_needs_exactly_one_mode(client, db, account, auth_headers, extra):
    body = {"whatsapp_account_id": account.id, "trigger_value": "hi"}
    body.update(extra)
    assert client.post("/api/rules/", headers=auth_headers, json=body).status_code == 422


def test_rule_update_switching_mode(client, db, account, auth_headers):
    rule = client.post("/api/rules/", headers=auth_headers, json={
        "whatsapp_account_id": account.id, "trigger_value": "hi", "response_message": ["Hello"],
    }).json()

    r = client.put(f"/api/rules/{rule['id']}", headers=auth_headers, json={"use_ai_response": True})
    assert r.status_code == 422

    r = client.put(f"/api/rules/{rule['id']}", headers=auth_headers, json={
        "use_ai_response": True, "response_message": None,
    })
    assert r.status_code == 200
    assert r.json()["use_ai_response"] is True
    assert r.json()["response_message"] == []


def test_rule_for_foreign_account(client, db, account):
    r = client.post("/api/rules/", headers={"X-User-Id": "intruder"}, json={
        "whatsapp_account_id": account.id, "trigger_value": "hi", "response_message": ["Hello"],
    })
    assert r.status_code == 404
    assert r.json() == {"detail": "WhatsApp account not found"}


def test_rule_with_unknown_flow(client, db, account, auth_headers):
    r = client.post("/api/rules/", headers=auth_headers, json={
        "whatsapp_account_id": account.id, "trigger_value": "order", "flow_id": 4242,
    })
    assert r.status_code == 404
    assert r.json() == {"detail": "Flow not found"}


# ────────────────────────────────────────────
# Flows
# ────────────────────────────────────────────

def test_flow_crud_and_validation(client, db, auth_headers):
    r = client.post("/api/flows/", headers=auth_headers, json={"name": "Order", "flow_data": FLOW_DATA})
    assert r.status_code == 201
    flow = r.json()
    assert flow["flow_data"]["nodes"][0]["position"] == {"x": 0, "y": 0}

    r = client.post(f"/api/flows/{flow['id']}/validate", headers=auth_headers)
    assert r.json() == {"is_valid": True, "errors": [], "warnings": []}

    listing = client.get("/api/flows/", headers=auth_headers, params={"search": "ord"}).json()
    assert listing["total"] == 1
    assert listing["flows"][0]["id"] == flow["id"]

    broken = {"nodes": FLOW_DATA["nodes"][1:], "edges": FLOW_DATA["edges"]}
    r = client.put(f"/api/flows/{flow['id']}", headers=auth_headers, json={"flow_data": broken})
    assert r.status_code == 200

    result = client.post(f"/api/flows/{flow['id']}/validate", headers=auth_headers).json()
    assert result["is_valid"] is False
    assert any("start-node" in e for e in result["errors"])

    r = client.delete(f"/api/flows/{flow['id']}", headers=auth_headers)
    assert r.json() == {"message": "Flow deleted", "flow_id": flow["id"]}
    assert client.get(f"/api/flows/{flow['id']}", headers=auth_headers).status_code == 404


def test_new_flow_defaults_to_start_node(client, db, auth_headers):
    flow = client.post("/api/flows/", headers=auth_headers, json={"name": "Blank"}).json()
    assert flow["flow_data"]["nodes"] == [{"id": "start-node", "type": "input", "data": {"label": "Start"}}]
    assert flow["flow_data"]["edges"] == []


def test_multi_edge_flow_warns(client, db, auth_headers):
    data = {
        "nodes": FLOW_DATA["nodes"],
        "edges": FLOW_DATA["edges"] + [{"source": "ask", "target": "done"}],
    }
    flow = client.post("/api/flows/", headers=auth_headers, json={"name": "Branchy", "flow_data": data}).json()

    result = client.post(f"/api/flows/{flow['id']}/validate", headers=auth_headers).json()
    assert result["is_valid"] is True
    assert result["warnings"] == ["Node 'ask' has several outgoing edges; only the first is followed"]


def test_flow_in_use_cannot_be_deleted(client, db, account, auth_headers):
    flow = client.post("/api/flows/", headers=auth_headers, json={"name": "Order", "flow_data": FLOW_DATA}).json()
    client.post("/api/rules/", headers=auth_headers, json={
        "whatsapp_account_id": account.id, "trigger_value": "order", "flow_id": flow["id"],
    })

    assert client.delete(f"/api/flows/{flow['id']}", headers=auth_headers).status_code == 409


def test_flows_are_tenant_scoped(client, db, auth_headers):
    flow = client.post("/api/flows/", headers=auth_headers, json={"name": "Mine"}).json()
    assert client.get(f"/api/flows/{flow['id']}", headers={"X-User-Id": "intruder"}).status_code == 404


def test_flow_built_through_api_runs(client, db, account, auth_headers, gateways):
    flow = client.post("/api/flows/", headers=auth_headers, json={"name": "Order", "flow_data": FLOW_DATA}).json()
    client.post("/api/rules/", headers=auth_headers, json={
        "whatsapp_account_id": account.id, "trigger_value": "order", "flow_id": flow["id"],
    })

    client.post("/webhooks/whatsapp", json=webhook_payload(text_message("order")))

    assert gateways.sent[0]["kind"] == "buttons"
    assert gateways.sent[0]["buttons"] == [("Yes", "yes")]


# ────────────────────────────────────────────
# Conversations
# ────────────────────────────────────────────

def test_conversation_list_and_messages(client, db, account, auth_headers):
    client.post("/webhooks/whatsapp", json=webhook_payload(text_message("hello")))

    conversations = client.get("/api/conversations/", headers=auth_headers).json()
    assert len(conversations) == 1
    assert conversations[0]["contact_phone_number"] == CONTACT
    assert conversations[0]["contact_name"] == "Ada"

    detail = client.get(
        f"/api/conversations/{account.id}/{CONTACT.lstrip('+')}/messages", headers=auth_headers
    ).json()
    assert detail["conversation"]["contact_phone_number"] == CONTACT
    assert [m["direction"] for m in detail["messages"]] == ["incoming", "outgoing"]


def test_conversation_messages_returns_latest_page(client, db, account, auth_headers):
    for i in range(5):
        db.add(Message(
            user_id=USER_ID,
            whatsapp_account_id=account.id,
            from_phone_number=CONTACT,
            to_phone_number="+15550001111",
            message_body=f"m{i}",
            direction="incoming",
        ))
    db.commit()

    detail = client.get(
        f"/api/conversations/{account.id}/{CONTACT.lstrip('+')}/messages?limit=2", headers=auth_headers
    ).json()

    assert [m["message_body"] for m in detail["messages"]] == ["m3", "m4"]


def test_conversation_list_is_tenant_scoped(client, db, account):
    client.post("/webhooks/whatsapp", json=webhook_payload(text_message("hello")))
    assert client.get("/api/conversations/", headers={"X-User-Id": "intruder"}).json() == []


def test_reset_flow(client, db, account, auth_headers):
    ConversationStore(db).start_flow(account.id, USER_ID, CONTACT, flow_id=1, node_id="wait")

    r = client.post(f"/api/conversations/{account.id}/{CONTACT.lstrip('+')}/reset-flow", headers=auth_headers)
    assert r.json() == {"status": "success", "was_in_flow": True}

    db.expire_all()
    conversation = db.query(Conversation).one()
    assert conversation.current_flow_id is None and conversation.current_node_id is None

    r = client.post(f"/api/conversations/{account.id}/{CONTACT.lstrip('+')}/reset-flow", headers=auth_headers)
    assert r.json() == {"status": "success", "was_in_flow": False}


def test_reset_flow_foreign_account(client, db, account):
    r = client.post(f"/api/conversations/{account.id}/15551234567/reset-flow", headers={"X-User-Id": "intruder"})
    assert r.status_code == 404
