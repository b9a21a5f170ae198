# whatsflow/schemas/message.py
"""
Pydantic schemas for outbound sends and the message/conversation API.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, Dict, Any, List
from datetime import datetime

MEDIA_TYPES = ("image", "video", "audio", "document")


# ────────────────────────────────────────────
# Request Schemas (Input)
# ────────────────────────────────────────────

class SendMessageRequest(BaseModel):
    """
    Manual send from the inbox.

    Field presence is checked by the service so that a missing field still
    gets a 200 with an error envelope.
    """
    to_phone_number: Optional[str] = Field(None, alias="toPhoneNumber")
    message_body: Optional[str] = Field(None, alias="messageBody", max_length=4096)
    whatsapp_account_id: Optional[int] = Field(None, alias="whatsappAccountId")
    user_id: Optional[str] = Field(None, alias="userId")
    media_url: Optional[str] = Field(None, alias="mediaUrl")
    media_type: Optional[str] = Field(None, alias="mediaType")
    media_caption: Optional[str] = Field(None, alias="mediaCaption", max_length=1024)
    replied_to_message_id: Optional[str] = Field(None, alias="repliedToMessageId")

    class Config:
        populate_by_name = True

    @field_validator('media_type')
    @classmethod
    def validate_media_type(cls, v):
        if v is not None and v not in MEDIA_TYPES:
            raise ValueError(f"mediaType must be one of: {', '.join(MEDIA_TYPES)}")
        return v


# ────────────────────────────────────────────
# Response Schemas (Output)
# ────────────────────────────────────────────

class MessageResponse(BaseModel):
    """Schema for message response"""
    id: int
    whatsapp_account_id: int
    from_phone_number: str
    to_phone_number: str
    message_body: Optional[str]
    message_type: str
    direction: str
    media_url: Optional[str] = None
    media_caption: Optional[str] = None
    meta_message_id: Optional[str] = None
    status: Optional[str] = None
    replied_to_message_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ConversationResponse(BaseModel):
    """Schema for an inbox row"""
    id: int
    whatsapp_account_id: int
    contact_phone_number: str
    contact_name: Optional[str] = None
    profile_picture_url: Optional[str] = None
    last_message_at: Optional[datetime] = None
    last_message_body: Optional[str] = None
    current_flow_id: Optional[int] = None
    current_node_id: Optional[str] = None

    class Config:
        from_attributes = True


class ConversationDetailResponse(BaseModel):
    """Conversation plus its message history"""
    conversation: Optional[ConversationResponse]
    messages: List[MessageResponse]


def envelope(status: str, message: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    """
    JSON body for endpoints that always answer 200.

    {"status": "success"|"error", "message": ..., ...extra}
    """
    body: Dict[str, Any] = {"status": status}
    if message is not None:
        body["message"] = message
    body.update({k: v for k, v in extra.items() if v is not None})
    return body
