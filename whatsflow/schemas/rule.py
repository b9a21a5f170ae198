# whatsflow/schemas/rule.py
"""Pydantic schemas for chatbot rule API"""
from pydantic import BaseModel, Field, model_validator
from typing import List, Optional
from datetime import datetime

from whatsflow.models.rule import TriggerType

MAX_BUTTONS = 3


class RuleButton(BaseModel):
    """Quick-reply button; payload comes back as the inbound text when tapped"""
    text: str = Field(..., min_length=1, max_length=20, description="Button title")
    payload: str = Field(..., min_length=1, max_length=256, description="Reply id sent back by WhatsApp")


def check_response_mode(response_message, buttons, flow_id, use_ai_response):
    """Exactly one response mode: static texts/buttons, a flow, or AI"""
    has_static = bool(response_message) or bool(buttons)
    modes = sum([has_static, flow_id is not None, bool(use_ai_response)])
    if modes != 1:
        raise ValueError(
            "A rule needs exactly one response mode: response_message/buttons, flow_id, or use_ai_response"
        )
    if response_message is not None and any(not str(m).strip() for m in response_message):
        raise ValueError("Response messages must not be empty")
    if buttons and len(buttons) > MAX_BUTTONS:
        raise ValueError(f"Maximum {MAX_BUTTONS} buttons are allowed.")


class RuleCreate(BaseModel):
    """Schema for creating a rule"""
    whatsapp_account_id: int
    trigger_type: TriggerType = TriggerType.EXACT_MATCH
    trigger_value: str = Field(..., min_length=1, max_length=500)
    response_message: List[str] = Field(default_factory=list)
    buttons: Optional[List[RuleButton]] = None
    flow_id: Optional[int] = None
    use_ai_response: bool = False

    @model_validator(mode="after")
    def validate_mode(self):
        check_response_mode(self.response_message, self.buttons, self.flow_id, self.use_ai_response)
        return self


class RuleUpdate(BaseModel):
    """Schema for updating a rule; mode is re-checked after merge"""
    trigger_type: Optional[TriggerType] = None
    trigger_value: Optional[str] = Field(None, min_length=1, max_length=500)
    response_message: Optional[List[str]] = None
    buttons: Optional[List[RuleButton]] = None
    flow_id: Optional[int] = None
    use_ai_response: Optional[bool] = None


class RuleResponse(BaseModel):
    """Schema for rule response"""
    id: int
    user_id: str
    whatsapp_account_id: int
    trigger_type: TriggerType
    trigger_value: str
    response_message: Optional[List[str]] = None
    buttons: Optional[List[RuleButton]] = None
    flow_id: Optional[int] = None
    use_ai_response: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
