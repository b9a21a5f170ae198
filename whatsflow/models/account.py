# whatsflow/models/account.py
"""
Connected WhatsApp Business phone numbers, one credential each.
"""
from sqlalchemy import Column, String, Text, Boolean
from whatsflow.models.base import BaseModel


class WhatsAppAccount(BaseModel):
    """
    A connected outbound-messaging identity owned by one tenant user.

    phone_number_id is the inbound routing key: Meta puts it in
    value.metadata.phone_number_id of every webhook event.
    """
    __tablename__ = "whatsapp_accounts"

    account_name = Column(String(255), nullable=False)
    phone_number_id = Column(String(255), unique=True, index=True, nullable=False)
    display_phone_number = Column(String(50), nullable=True)
    access_token = Column(Text, nullable=True)  # Long-lived access token

    # AI fallback
    ai_enabled = Column(Boolean, default=False, nullable=False)
    ai_provider = Column(String(20), default="gemini", nullable=False)  # 'openai' or 'gemini'
    system_instruction = Column(Text, nullable=True)

    def __repr__(self):
        return f"<WhatsAppAccount {self.account_name} ({self.phone_number_id})>"
