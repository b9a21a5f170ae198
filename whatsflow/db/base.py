# whatsflow/db/base.py
"""Import all models so Base.metadata knows every table"""
from whatsflow.models.base import Base

from whatsflow.models.account import WhatsAppAccount
from whatsflow.models.conversation import Conversation
from whatsflow.models.message import Message
from whatsflow.models.flow import ChatbotFlow
from whatsflow.models.rule import ChatbotRule
from whatsflow.models.ai_integration import AIIntegration
from whatsflow.models.webhook import WebhookLog

__all__ = ["Base"]
