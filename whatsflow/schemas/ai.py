# whatsflow/schemas/ai.py
"""Pydantic schemas for the AI chat endpoints"""
from pydantic import BaseModel, Field
from typing import Optional


class AIChatRequest(BaseModel):
    """Prompt from the dashboard's AI test console"""
    message: Optional[str] = Field(None, description="User prompt")
    whatsapp_account_id: Optional[int] = Field(None, alias="whatsappAccountId")
    preferred_language: Optional[str] = Field(None, alias="preferredLanguage")

    class Config:
        populate_by_name = True
