"""
Pytest configuration and common fixtures for whatsflow tests.

The environment is set before any whatsflow import so config.py picks up
an in-memory SQLite database and a throwaway log directory.
"""
import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["VERIFY_TOKEN"] = "test-verify-token"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["LOG_DIR"] = tempfile.mkdtemp(prefix="whatsflow-logs-")
os.environ["OPENAI_API_KEY"] = ""
os.environ["GEMINI_API_KEY"] = ""
os.environ["GOOGLE_GEMINI_API_KEY"] = ""

import itertools
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from whatsflow.core.exceptions import GatewayError
from whatsflow.db.base import Base
from whatsflow.db.session import SessionLocal, engine
from whatsflow.models.account import WhatsAppAccount
from whatsflow.models.ai_integration import AIIntegration
from whatsflow.models.conversation import Conversation
from whatsflow.models.flow import ChatbotFlow
from whatsflow.models.rule import ChatbotRule, TriggerType
from whatsflow.services import set_ai_providers, set_gateway_factory
from whatsflow.services.ai_responder import AIResponder
from whatsflow.services.gateway import SendResult
from whatsflow.services.message_service import MessageService
from whatsflow.services.orchestrator import WebhookOrchestrator

USER_ID = "user-1"
PHONE_NUMBER_ID = "109876543210"
BUSINESS_NUMBER = "15550001111"
CONTACT = "+15551234567"


# ────────────────────────────────────────────
# Fakes
# ────────────────────────────────────────────

class FakeGateway:
    """Records sends instead of calling the WhatsApp Cloud API"""

    def __init__(self, factory: "FakeGatewayFactory", account):
        self.factory = factory
        self.account = account

    def _result(self) -> SendResult:
        if self.factory.fail:
            return SendResult(ok=False, error="(#131030) Recipient not in allowed list", details={"code": 131030})
        return SendResult(ok=True, message_id=f"wamid.out.{next(self.factory.ids)}")

    def send_text(self, to, text, reply_to_message_id=None):
        self.factory.sent.append({"kind": "text", "to": to, "text": text})
        return self._result()

    def send_buttons(self, to, body, buttons):
        self.factory.sent.append({"kind": "buttons", "to": to, "text": body, "buttons": list(buttons)})
        return self._result()

    def send_media(self, to, media_type, media, caption=None, reply_to_message_id=None):
        self.factory.sent.append({
            "kind": "media", "to": to, "media_type": media_type, "media": media, "caption": caption
        })
        return self._result()

    def get_media_url(self, media_id):
        if media_id not in self.factory.media_urls:
            raise GatewayError(f"Failed to resolve media {media_id}")
        return self.factory.media_urls[media_id]


class FakeGatewayFactory:
    def __init__(self):
        self.sent: List[Dict] = []
        self.media_urls: Dict[str, str] = {}
        self.fail = False
        self.ids = itertools.count(1)

    def __call__(self, account):
        return FakeGateway(self, account)

    @property
    def texts(self) -> List[str]:
        return [s["text"] for s in self.sent]


class FakeAIProvider:
    """Returns a canned completion and keeps what it was asked"""

    def __init__(self, reply: str = "AI says hi", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.calls = []

    def complete(self, ai_config, messages):
        self.calls.append({"config": ai_config, "messages": messages})
        if self.error is not None:
            raise self.error
        return self.reply


# ────────────────────────────────────────────
# Database
# ────────────────────────────────────────────

@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def account(db):
    account = WhatsAppAccount(
        user_id=USER_ID,
        account_name="Main line",
        phone_number_id=PHONE_NUMBER_ID,
        display_phone_number=BUSINESS_NUMBER,
        access_token="EAAG-test-token",
        ai_enabled=False,
        ai_provider="gemini",
    )
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


@pytest.fixture
def make_rule(db, account):
    def _make(trigger_value, trigger_type=TriggerType.EXACT_MATCH, **kwargs):
        rule = ChatbotRule(
            user_id=USER_ID,
            whatsapp_account_id=kwargs.pop("whatsapp_account_id", account.id),
            trigger_type=trigger_type,
            trigger_value=trigger_value,
            response_message=kwargs.pop("response_message", []),
            **kwargs,
        )
        db.add(rule)
        db.commit()
        db.refresh(rule)
        return rule
    return _make


@pytest.fixture
def make_flow(db):
    def _make(nodes, edges, name="Test flow"):
        flow = ChatbotFlow(user_id=USER_ID, name=name, flow_data={"nodes": nodes, "edges": edges})
        db.add(flow)
        db.commit()
        db.refresh(flow)
        return flow
    return _make


@pytest.fixture
def gemini_key(db):
    """Give the account owner a Gemini key in ai_integrations"""
    integration = AIIntegration(user_id=USER_ID, provider="gemini", secret_key="gemini-test-key")
    db.add(integration)
    db.commit()
    return integration


def conversation_for(db, account, contact=CONTACT) -> Optional[Conversation]:
    db.expire_all()
    return db.query(Conversation).filter(
        Conversation.whatsapp_account_id == account.id,
        Conversation.contact_phone_number == contact,
    ).first()


# ────────────────────────────────────────────
# Services
# ────────────────────────────────────────────

@pytest.fixture
def gateways():
    return FakeGatewayFactory()


@pytest.fixture
def ai_provider():
    return FakeAIProvider()


@pytest.fixture
def orchestrator(db, gateways, ai_provider):
    service = MessageService(gateways)
    responder = AIResponder(
        db,
        providers={"openai": ai_provider, "gemini": ai_provider},
        message_service=service,
    )
    return WebhookOrchestrator(db, message_service=service, ai_responder=responder)


@pytest.fixture
def client(db, gateways, ai_provider):
    from whatsflow.main import app

    set_gateway_factory(gateways)
    set_ai_providers({"openai": ai_provider, "gemini": ai_provider})
    try:
        yield TestClient(app)
    finally:
        set_gateway_factory(None)
        set_ai_providers(None)


@pytest.fixture
def auth_headers():
    return {"X-User-Id": USER_ID}


# ────────────────────────────────────────────
# Payload builders
# ────────────────────────────────────────────

def webhook_payload(message: Optional[dict] = None, statuses: Optional[list] = None,
                    phone_number_id: str = PHONE_NUMBER_ID) -> dict:
    value = {
        "messaging_product": "whatsapp",
        "metadata": {"display_phone_number": BUSINESS_NUMBER, "phone_number_id": phone_number_id},
    }
    if message is not None:
        value["contacts"] = [{"profile": {"name": "Ada"}, "wa_id": message["from"]}]
        value["messages"] = [message]
    if statuses is not None:
        value["statuses"] = statuses
    return {
        "object": "whatsapp_business_account",
        "entry": [{"id": "WABA-1", "changes": [{"field": "messages", "value": value}]}],
    }


def text_message(body: str, sender: str = CONTACT.lstrip("+"), message_id: str = "wamid.in.1") -> dict:
    return {"from": sender, "id": message_id, "timestamp": "1700000000", "type": "text", "text": {"body": body}}


def button_reply(payload: str, title: str = "Yes", sender: str = CONTACT.lstrip("+")) -> dict:
    return {
        "from": sender,
        "id": "wamid.in.btn",
        "timestamp": "1700000000",
        "type": "interactive",
        "interactive": {"type": "button_reply", "button_reply": {"id": payload, "title": title}},
    }
