# whatsflow/models/conversation.py
"""
Per-contact conversation row: last-message cache plus flow position.
"""
from sqlalchemy import Column, String, Text, Integer, DateTime, UniqueConstraint, ForeignKey
from whatsflow.models.base import BaseModel


class Conversation(BaseModel):
    """
    One row per (account, contact) pair.

    current_flow_id and current_node_id are both null (idle) or both set
    (in-flow). The routing engine is the only writer of those two columns.
    """
    __tablename__ = "whatsapp_conversations"
    __table_args__ = (
        UniqueConstraint('whatsapp_account_id', 'contact_phone_number', name='uq_account_contact'),
    )

    whatsapp_account_id = Column(Integer, ForeignKey("whatsapp_accounts.id"), index=True, nullable=False)
    contact_phone_number = Column(String(50), index=True, nullable=False)
    contact_name = Column(String(255), nullable=True)
    profile_picture_url = Column(String(500), nullable=True)

    last_message_at = Column(DateTime, nullable=True)
    last_message_body = Column(Text, nullable=True)

    # Flow position
    current_flow_id = Column(Integer, nullable=True)
    current_node_id = Column(String(100), nullable=True)

    @property
    def is_in_flow(self) -> bool:
        return self.current_flow_id is not None and self.current_node_id is not None

    def __repr__(self):
        state = f"flow={self.current_flow_id}/{self.current_node_id}" if self.is_in_flow else "idle"
        return f"<Conversation {self.contact_phone_number} {state}>"
