# whatsflow/schemas/webhook.py
"""
Pydantic schemas for Meta WhatsApp webhook payloads and the
normalized inbound representation the router works on.
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List


# ────────────────────────────────────────────
# Meta payload (only the parts we read)
# ────────────────────────────────────────────

class WebhookMetadata(BaseModel):
    display_phone_number: Optional[str] = None
    phone_number_id: Optional[str] = None


class WebhookProfile(BaseModel):
    name: Optional[str] = None


class WebhookContact(BaseModel):
    wa_id: Optional[str] = None
    profile: Optional[WebhookProfile] = None


class WebhookMessage(BaseModel):
    """messages[] item; type-keyed payloads are kept as plain dicts"""
    from_: str = Field(..., alias="from")
    id: Optional[str] = None
    timestamp: Optional[str] = None
    type: str = "text"
    text: Optional[Dict[str, Any]] = None
    interactive: Optional[Dict[str, Any]] = None
    image: Optional[Dict[str, Any]] = None
    audio: Optional[Dict[str, Any]] = None
    video: Optional[Dict[str, Any]] = None
    document: Optional[Dict[str, Any]] = None
    context: Optional[Dict[str, Any]] = None

    class Config:
        populate_by_name = True
        extra = "allow"

    def type_payload(self) -> Dict[str, Any]:
        """Return the object keyed by this message's type (e.g. message['image'])"""
        value = getattr(self, self.type, None) if self.type in type(self).model_fields else None
        if value is None and self.model_extra:
            value = self.model_extra.get(self.type)
        return value if isinstance(value, dict) else {}


class WebhookStatus(BaseModel):
    """statuses[] item - delivery receipts for messages we sent"""
    id: Optional[str] = None
    status: Optional[str] = None
    timestamp: Optional[str] = None
    recipient_id: Optional[str] = None
    errors: Optional[List[Dict[str, Any]]] = None

    class Config:
        extra = "allow"


class WebhookValue(BaseModel):
    metadata: Optional[WebhookMetadata] = None
    contacts: List[WebhookContact] = Field(default_factory=list)
    messages: List[WebhookMessage] = Field(default_factory=list)
    statuses: List[WebhookStatus] = Field(default_factory=list)

    class Config:
        extra = "allow"


class WebhookChange(BaseModel):
    field: Optional[str] = None
    value: Optional[WebhookValue] = None


class WebhookEntry(BaseModel):
    id: Optional[str] = None
    changes: List[WebhookChange] = Field(default_factory=list)


class WebhookPayload(BaseModel):
    object: Optional[str] = None
    entry: List[WebhookEntry] = Field(default_factory=list)

    def first_value(self) -> Optional[WebhookValue]:
        """entry[0].changes[0].value, or None"""
        if not self.entry or not self.entry[0].changes:
            return None
        return self.entry[0].changes[0].value


# ────────────────────────────────────────────
# Normalized inbound representation
# ────────────────────────────────────────────

class InboundMessage(BaseModel):
    """One inbound message after text extraction"""
    sender: str
    phone_number_id: str
    display_phone_number: Optional[str] = None
    message_type: str
    text: str
    message_id: Optional[str] = None
    contact_name: Optional[str] = None
    media_id: Optional[str] = None
    media_caption: Optional[str] = None
    replied_to_message_id: Optional[str] = None
    timestamp: Optional[str] = None

    @property
    def is_media(self) -> bool:
        return self.media_id is not None


class StatusUpdate(BaseModel):
    """One delivery receipt"""
    phone_number_id: Optional[str] = None
    message_id: str
    status: str
    recipient_id: Optional[str] = None
    error: Optional[str] = None


class ParsedWebhook(BaseModel):
    """Everything actionable in one webhook POST"""
    phone_number_id: Optional[str] = None
    display_phone_number: Optional[str] = None
    message: Optional[InboundMessage] = None
    statuses: List[StatusUpdate] = Field(default_factory=list)
