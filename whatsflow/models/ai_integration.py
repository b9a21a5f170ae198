# whatsflow/models/ai_integration.py
"""
Per-user AI provider credentials and prompts.
"""
from sqlalchemy import Column, String, Text, UniqueConstraint
from whatsflow.models.base import BaseModel


class AIIntegration(BaseModel):
    """
    Store a user's AI provider configuration.
    Overrides the global .env keys when present.
    """
    __tablename__ = "ai_integrations"
    __table_args__ = (
        UniqueConstraint('user_id', 'provider', name='uq_user_provider'),
    )

    provider = Column(String(20), nullable=False)  # 'openai' or 'gemini'
    secret_key = Column(Text, nullable=True)
    prompt_model = Column(String(100), nullable=True)
    system_instruction = Column(Text, nullable=True)

    def __repr__(self):
        return f"<AIIntegration {self.provider} user={self.user_id}>"
