"""End-to-end routing: webhook payload in, gateway sends and state out"""
from whatsflow.core.config import (
    AI_ERROR_REPLY, AI_UNAVAILABLE_REPLY, BUTTONS_FALLBACK_BODY, DEFAULT_REPLY
)
from whatsflow.core.exceptions import AIResponderError
from whatsflow.models.message import Message
from whatsflow.models.rule import TriggerType
from whatsflow.models.webhook import WebhookLog
from whatsflow.services.conversation_store import ConversationStore

from tests.conftest import (
    CONTACT, USER_ID, button_reply, conversation_for, text_message, webhook_payload
)

START = {"id": "start-node", "type": "input", "data": {"label": "Start"}}
ASK = {"id": "ask", "type": "buttonMessageNode", "data": {
    "message": "Confirm your order?",
    "buttons": [{"text": "Yes", "payload": "yes"}, {"text": "No", "payload": "no"}],
}}
WAIT = {"id": "wait", "type": "incomingMessageNode", "data": {"expectedMessage": "yes"}}
DONE = {"id": "done", "type": "messageNode", "data": {"message": "Great, proceeding..."}}


def put_in_flow(db, account, flow, node_id):
    ConversationStore(db).start_flow(account.id, USER_ID, CONTACT, flow.id, node_id)


# ────────────────────────────────────────────
# Scenarios
# ────────────────────────────────────────────

def test_static_rule_reply(db, account, make_rule, orchestrator, gateways):
    make_rule("hello", response_message=["Hi! How can I help?"])

    result = orchestrator.process_payload(webhook_payload(text_message("hello")))

    assert result == {"status": "success", "message": "Webhook processed"}
    assert gateways.sent == [{"kind": "text", "to": CONTACT, "text": "Hi! How can I help?"}]
    conversation = conversation_for(db, account)
    assert conversation.current_flow_id is None
    assert conversation.current_node_id is None


def test_flow_continues_on_expected_reply(db, account, make_flow, orchestrator, gateways):
    flow = make_flow([START, WAIT, DONE], [
        {"source": "start-node", "target": "wait"},
        {"source": "wait", "target": "done"},
    ])
    put_in_flow(db, account, flow, "wait")

    orchestrator.process_payload(webhook_payload(text_message("Yes")))

    assert gateways.texts == ["Great, proceeding..."]
    conversation = conversation_for(db, account)
    assert (conversation.current_flow_id, conversation.current_node_id) == (flow.id, "done")


def test_flow_rule_with_empty_start_sends_nothing(db, account, make_flow, make_rule, orchestrator, gateways):
    flow = make_flow([START], [])
    make_rule("order", flow_id=flow.id)

    dispatch = orchestrator.dispatch(account, CONTACT, "order")

    assert dispatch.handled and dispatch.stage == "rule_flow"
    assert gateways.sent == []


def test_default_reply_when_nothing_matches(db, account, make_rule, orchestrator, gateways):
    make_rule("hello", response_message=["Hi!"])

    orchestrator.process_payload(webhook_payload(text_message("something else")))

    assert gateways.texts == [DEFAULT_REPLY]


def test_image_message_resolves_media(db, account, orchestrator, gateways):
    gateways.media_urls["media-1"] = "https://lookaside.example/media-1"
    image = {
        "from": CONTACT.lstrip("+"), "id": "wamid.img", "timestamp": "1700000000",
        "type": "image", "image": {"id": "media-1", "mime_type": "image/jpeg", "caption": "my receipt"},
    }

    orchestrator.process_payload(webhook_payload(image))

    incoming = db.query(Message).filter(Message.direction == "incoming").one()
    assert incoming.message_body == "[image message]"
    assert incoming.message_type == "image"
    assert incoming.media_url == "https://lookaside.example/media-1"
    assert incoming.media_caption == "my receipt"
    assert incoming.from_phone_number == CONTACT


def test_media_lookup_failure_still_routes(db, account, orchestrator, gateways):
    audio = {
        "from": CONTACT.lstrip("+"), "id": "wamid.aud", "timestamp": "1700000000",
        "type": "audio", "audio": {"id": "unknown-media"},
    }

    orchestrator.process_payload(webhook_payload(audio))

    incoming = db.query(Message).filter(Message.direction == "incoming").one()
    assert incoming.media_url is None
    assert gateways.texts == [DEFAULT_REPLY]


# ────────────────────────────────────────────
# Flows
# ────────────────────────────────────────────

def test_flow_rule_emits_first_node_and_enters_flow(db, account, make_flow, make_rule, orchestrator, gateways):
    flow = make_flow([START, ASK, WAIT, DONE], [
        {"source": "start-node", "target": "ask"},
        {"source": "ask", "target": "wait"},
        {"source": "wait", "target": "done"},
    ])
    make_rule("order", trigger_type=TriggerType.STARTS_WITH, flow_id=flow.id)

    orchestrator.process_payload(webhook_payload(text_message("Order please")))

    assert gateways.sent == [{
        "kind": "buttons", "to": CONTACT, "text": "Confirm your order?",
        "buttons": [("Yes", "yes"), ("No", "no")],
    }]
    conversation = conversation_for(db, account)
    assert (conversation.current_flow_id, conversation.current_node_id) == (flow.id, "ask")
    outgoing = db.query(Message).filter(Message.direction == "outgoing").one()
    assert outgoing.message_type == "interactive"


def test_wrong_reply_reprompts_and_stays(db, account, make_flow, orchestrator, gateways):
    flow = make_flow([START, WAIT, DONE], [{"source": "wait", "target": "done"}])
    put_in_flow(db, account, flow, "wait")

    orchestrator.process_payload(webhook_payload(text_message("no")))
    assert conversation_for(db, account).current_node_id == "wait"

    orchestrator.process_payload(webhook_payload(text_message("no", message_id="wamid.in.2")))
    assert conversation_for(db, account).current_node_id == "wait"

    reprompt = "Please reply with 'yes' to continue."
    assert gateways.texts == [reprompt, reprompt]


def test_button_reply_payload_drives_flow(db, account, make_flow, orchestrator, gateways):
    flow = make_flow([START, WAIT, DONE], [{"source": "wait", "target": "done"}])
    put_in_flow(db, account, flow, "wait")

    orchestrator.process_payload(webhook_payload(button_reply("YES", title="Sure")))

    assert gateways.texts == ["Great, proceeding..."]
    incoming = db.query(Message).filter(Message.direction == "incoming").one()
    assert incoming.message_body == "YES"


def test_stalled_flow_sends_nothing(db, account, make_flow, orchestrator, gateways):
    flow = make_flow([START, WAIT], [])
    put_in_flow(db, account, flow, "wait")

    dispatch = orchestrator.dispatch(account, CONTACT, "yes")

    assert dispatch.stage == "flow_stalled"
    assert gateways.sent == []
    assert conversation_for(db, account).current_node_id == "wait"


def test_non_waiting_node_leaves_flow_and_falls_through(db, account, make_flow, make_rule, orchestrator, gateways):
    flow = make_flow([START, DONE], [{"source": "start-node", "target": "done"}])
    put_in_flow(db, account, flow, "done")
    make_rule("hello", response_message=["Hi!"])

    dispatch = orchestrator.dispatch(account, CONTACT, "hello")

    assert dispatch.stage == "rule_static"
    assert gateways.texts == ["Hi!"]
    assert not conversation_for(db, account).is_in_flow


def test_deleted_flow_clears_state(db, account, orchestrator, gateways):
    ConversationStore(db).start_flow(account.id, USER_ID, CONTACT, flow_id=999, node_id="wait")

    dispatch = orchestrator.dispatch(account, CONTACT, "yes")

    assert dispatch.stage == "default"
    assert gateways.texts == [DEFAULT_REPLY]
    assert not conversation_for(db, account).is_in_flow


def test_lost_advance_sends_nothing(db, account, make_flow, orchestrator, gateways, monkeypatch):
    flow = make_flow([START, WAIT, DONE], [{"source": "wait", "target": "done"}])
    put_in_flow(db, account, flow, "wait")
    monkeypatch.setattr(orchestrator.store, "advance", lambda *args, **kwargs: False)

    dispatch = orchestrator.dispatch(account, CONTACT, "yes")

    assert dispatch.stage == "flow_advance_lost"
    assert gateways.sent == []


def test_flow_rule_with_missing_flow_falls_through(db, account, make_rule, orchestrator, gateways):
    make_rule("order", flow_id=12345)

    dispatch = orchestrator.dispatch(account, CONTACT, "order")

    assert dispatch.stage == "default"
    assert gateways.texts == [DEFAULT_REPLY]


# ────────────────────────────────────────────
# Static rules
# ────────────────────────────────────────────

def test_static_rule_texts_then_buttons(db, account, make_rule, orchestrator, gateways):
    make_rule(
        "menu",
        response_message=["Welcome!", "What do you need?"],
        buttons=[{"text": "Prices", "payload": "prices"}, {"text": "Hours", "payload": "hours"}],
    )

    orchestrator.dispatch(account, CONTACT, "MENU")

    assert [s["kind"] for s in gateways.sent] == ["text", "text", "buttons"]
    assert gateways.texts == ["Welcome!", "What do you need?", "What do you need?"]
    assert gateways.sent[-1]["buttons"] == [("Prices", "prices"), ("Hours", "hours")]


def test_buttons_only_rule_uses_fallback_body(db, account, make_rule, orchestrator, gateways):
    make_rule("menu", buttons=[{"text": "Prices", "payload": "prices"}])

    orchestrator.dispatch(account, CONTACT, "menu")

    assert gateways.sent == [{
        "kind": "buttons", "to": CONTACT, "text": BUTTONS_FALLBACK_BODY, "buttons": [("Prices", "prices")],
    }]


def test_reprompt_takes_precedence_over_rules(db, account, make_flow, make_rule, orchestrator, gateways):
    flow = make_flow([START, WAIT, DONE], [{"source": "wait", "target": "done"}])
    put_in_flow(db, account, flow, "wait")
    make_rule("help", trigger_type=TriggerType.CONTAINS, response_message=["Here to help"])

    orchestrator.dispatch(account, CONTACT, "help")
    assert gateways.texts == ["Please reply with 'yes' to continue."]

    ConversationStore(db).start_flow(account.id, USER_ID, CONTACT, flow.id, "done")
    orchestrator.dispatch(account, CONTACT, "help")
    assert gateways.texts[-1] == "Here to help"
    assert not conversation_for(db, account).is_in_flow


def test_rules_evaluated_in_creation_order(db, account, make_rule, orchestrator, gateways):
    make_rule("pri", trigger_type=TriggerType.STARTS_WITH, response_message=["first"])
    make_rule("price", response_message=["second"])

    orchestrator.dispatch(account, CONTACT, "price")

    assert gateways.texts == ["first"]


def test_rules_of_other_accounts_are_ignored(db, account, make_rule, orchestrator, gateways):
    from whatsflow.models.account import WhatsAppAccount

    other = WhatsAppAccount(user_id=USER_ID, account_name="Other", phone_number_id="999", access_token="t")
    db.add(other)
    db.commit()
    make_rule("hello", response_message=["Hi!"], whatsapp_account_id=other.id)

    orchestrator.dispatch(account, CONTACT, "hello")

    assert gateways.texts == [DEFAULT_REPLY]


# ────────────────────────────────────────────
# AI
# ────────────────────────────────────────────

def test_ai_rule_sends_completion(db, account, make_rule, gemini_key, orchestrator, gateways, ai_provider):
    make_rule("ask", trigger_type=TriggerType.STARTS_WITH, use_ai_response=True)
    ai_provider.reply = "Our shop opens at 9."

    orchestrator.process_payload(webhook_payload(text_message("Ask: when do you open?")))

    assert gateways.texts == ["Our shop opens at 9."]
    turns = ai_provider.calls[0]["messages"]
    assert turns == [{"role": "user", "content": "Ask: when do you open?"}]


def test_ai_rule_without_key_sends_apology(db, account, make_rule, orchestrator, gateways, ai_provider):
    make_rule("ask", trigger_type=TriggerType.STARTS_WITH, use_ai_response=True)

    dispatch = orchestrator.dispatch(account, CONTACT, "ask anything")

    assert dispatch.stage == "rule_ai"
    assert gateways.texts == [AI_UNAVAILABLE_REPLY]
    assert ai_provider.calls == []


def test_ai_provider_failure_sends_apology(db, account, make_rule, gemini_key, orchestrator, gateways, ai_provider):
    make_rule("ask", trigger_type=TriggerType.STARTS_WITH, use_ai_response=True)
    ai_provider.error = AIResponderError("Failed to get response from Google Gemini API")

    dispatch = orchestrator.dispatch(account, CONTACT, "ask anything")

    assert dispatch.stage == "rule_ai"
    assert gateways.texts == [AI_ERROR_REPLY]


def test_unexpected_ai_error_sends_apology(db, account, make_rule, gemini_key, orchestrator, gateways, ai_provider):
    make_rule("ask", trigger_type=TriggerType.STARTS_WITH, use_ai_response=True)
    ai_provider.error = AttributeError("'NoneType' object has no attribute 'get'")

    dispatch = orchestrator.dispatch(account, CONTACT, "ask anything")

    assert dispatch.stage == "rule_ai"
    assert gateways.texts == [AI_ERROR_REPLY]


def test_ai_fallback_when_enabled(db, account, gemini_key, orchestrator, gateways, ai_provider):
    account.ai_enabled = True
    db.commit()

    dispatch = orchestrator.dispatch(account, CONTACT, "random question")

    assert dispatch.stage == "ai_fallback"
    assert gateways.texts == ["AI says hi"]


def test_ai_fallback_needs_key(db, account, orchestrator, gateways):
    account.ai_enabled = True
    db.commit()

    orchestrator.dispatch(account, CONTACT, "random question")

    assert gateways.texts == [DEFAULT_REPLY]


# ────────────────────────────────────────────
# Persistence and payload handling
# ────────────────────────────────────────────

def test_inbound_and_outbound_are_logged(db, account, make_rule, orchestrator, gateways):
    make_rule("hello", response_message=["Hi!"])

    orchestrator.process_payload(webhook_payload(text_message("hello")))

    rows = db.query(Message).order_by(Message.id).all()
    assert [(m.direction, m.message_body, m.status) for m in rows] == [
        ("incoming", "hello", "received"),
        ("outgoing", "Hi!", "sent"),
    ]
    conversation = conversation_for(db, account)
    assert conversation.last_message_body == "Hi!"
    assert conversation.contact_name == "Ada"


def test_failed_send_is_logged_and_routing_completes(db, account, make_rule, orchestrator, gateways):
    make_rule("hello", response_message=["Hi!"])
    gateways.fail = True

    result = orchestrator.process_payload(webhook_payload(text_message("hello")))

    assert result["status"] == "success"
    outgoing = db.query(Message).filter(Message.direction == "outgoing").one()
    assert outgoing.status == "failed"
    assert outgoing.meta_message_id is None


def test_unknown_account(db, account, orchestrator, gateways):
    result = orchestrator.process_payload(webhook_payload(text_message("hello"), phone_number_id="nope"))

    assert result == {"status": "error", "message": "WhatsApp account not found or user_id missing."}
    assert gateways.sent == []
    assert db.query(WebhookLog).filter(WebhookLog.log_type == "error").count() == 1


def test_payload_without_message(db, account, orchestrator, gateways):
    result = orchestrator.process_payload({"object": "whatsapp_business_account", "entry": []})

    assert result == {"status": "success", "message": "No message or account info to process"}
    assert gateways.sent == []


def test_status_update_marks_outgoing_message(db, account, make_rule, orchestrator, gateways):
    make_rule("hello", response_message=["Hi!"])
    orchestrator.process_payload(webhook_payload(text_message("hello")))
    sent_id = db.query(Message).filter(Message.direction == "outgoing").one().meta_message_id

    result = orchestrator.process_payload(webhook_payload(statuses=[
        {"id": sent_id, "status": "read", "timestamp": "1700000100", "recipient_id": CONTACT.lstrip("+")},
    ]))

    assert result == {"status": "success", "message": "Status updates processed"}
    db.expire_all()
    assert db.query(Message).filter(Message.meta_message_id == sent_id).one().status == "read"
    assert len(gateways.sent) == 1
