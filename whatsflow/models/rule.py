# whatsflow/models/rule.py
"""
Chatbot rules: trigger value to response mapping per account.
"""
import enum
from sqlalchemy import Column, String, Integer, Boolean, JSON, ForeignKey, Enum as SQLEnum
from whatsflow.models.base import BaseModel


class TriggerType(str, enum.Enum):
    """How a rule's trigger value is compared with inbound text"""
    EXACT_MATCH = "EXACT_MATCH"
    CONTAINS = "CONTAINS"
    STARTS_WITH = "STARTS_WITH"


class ChatbotRule(BaseModel):
    """
    A rule answers with exactly one of: static texts (+ up to 3 buttons),
    a flow, or an AI completion.
    """
    __tablename__ = "chatbot_rules"

    whatsapp_account_id = Column(Integer, ForeignKey("whatsapp_accounts.id"), index=True, nullable=False)
    trigger_type = Column(SQLEnum(TriggerType), nullable=False, default=TriggerType.EXACT_MATCH)
    trigger_value = Column(String(500), nullable=False)

    response_message = Column(JSON, nullable=True, default=list)  # ["text", ...]
    buttons = Column(JSON, nullable=True)  # [{"text": ..., "payload": ...}]
    flow_id = Column(Integer, ForeignKey("chatbot_flows.id"), nullable=True)
    use_ai_response = Column(Boolean, default=False, nullable=False)

    @property
    def response_mode(self) -> str:
        if self.use_ai_response:
            return "ai"
        if self.flow_id is not None:
            return "flow"
        return "static"

    def __repr__(self):
        return f"<ChatbotRule {self.trigger_type} '{self.trigger_value}' ({self.response_mode})>"
