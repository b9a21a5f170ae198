# whatsflow/models/message.py
"""
Message log for WhatsApp messages (incoming and outgoing).
"""
from sqlalchemy import Column, String, Text, Integer, ForeignKey
from whatsflow.models.base import BaseModel


class Message(BaseModel):
    """Store all WhatsApp messages (incoming and outgoing)"""
    __tablename__ = "whatsapp_messages"

    whatsapp_account_id = Column(Integer, ForeignKey("whatsapp_accounts.id"), index=True, nullable=False)
    from_phone_number = Column(String(50), index=True, nullable=False)
    to_phone_number = Column(String(50), index=True, nullable=False)
    message_body = Column(Text, nullable=True)
    message_type = Column(String(50), nullable=False, default="text")
    direction = Column(String(20), nullable=False)  # 'incoming' or 'outgoing'

    media_url = Column(String(1000), nullable=True)
    media_caption = Column(Text, nullable=True)

    meta_message_id = Column(String(255), index=True, nullable=True)
    status = Column(String(20), nullable=True)  # 'received', 'sent', 'delivered', 'read', 'failed'
    replied_to_message_id = Column(String(255), nullable=True)

    @property
    def contact_phone_number(self) -> str:
        return self.from_phone_number if self.direction == "incoming" else self.to_phone_number

    def __repr__(self):
        return f"<Message {self.direction} {self.message_type} {self.contact_phone_number}>"
