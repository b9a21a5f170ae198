# whatsflow/models/flow.py
"""Chatbot flow model: an authored graph of message and wait nodes"""
from sqlalchemy import Column, String, Text, JSON
from whatsflow.models.base import BaseModel


class ChatbotFlow(BaseModel):
    """
    Store chatbot flow graphs as drawn in the flow editor.

    flow_data holds {"nodes": [{id, type, data}], "edges": [{source, target}]}.
    """
    __tablename__ = "chatbot_flows"

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    flow_data = Column(JSON, nullable=False, default=dict)

    def __repr__(self):
        return f"<ChatbotFlow {self.name} ({self.id})>"
