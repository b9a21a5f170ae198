# whatsflow/api/v1/rules.py
"""Chatbot rule API endpoints"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from whatsflow.api.deps import get_current_user_id
from whatsflow.db.session import get_db
from whatsflow.models.account import WhatsAppAccount
from whatsflow.models.flow import ChatbotFlow
from whatsflow.models.rule import ChatbotRule
from whatsflow.schemas.rule import RuleCreate, RuleResponse, RuleUpdate, check_response_mode

router = APIRouter()


def _check_account(db: Session, user_id: str, account_id: int):
    account = db.query(WhatsAppAccount).filter(
        WhatsAppAccount.id == account_id,
        WhatsAppAccount.user_id == user_id
    ).first()
    if not account:
        raise HTTPException(status_code=404, detail="WhatsApp account not found")


def _check_flow(db: Session, user_id: str, flow_id: Optional[int]):
    if flow_id is None:
        return
    flow = db.query(ChatbotFlow).filter(
        ChatbotFlow.id == flow_id,
        ChatbotFlow.user_id == user_id
    ).first()
    if not flow:
        raise HTTPException(status_code=404, detail="Flow not found")


def _get_rule_or_404(db: Session, user_id: str, rule_id: int) -> ChatbotRule:
    rule = db.query(ChatbotRule).filter(
        ChatbotRule.id == rule_id,
        ChatbotRule.user_id == user_id
    ).first()
    if not rule:
        raise HTTPException(status_code=404, detail="Rule not found")
    return rule


@router.post("/", response_model=RuleResponse, status_code=201)
def create_rule(
    data: RuleCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """
    Create a chatbot rule

    Exactly one response mode: response_message/buttons, flow_id, or use_ai_response.
    """
    _check_account(db, user_id, data.whatsapp_account_id)
    _check_flow(db, user_id, data.flow_id)

    rule = ChatbotRule(
        user_id=user_id,
        whatsapp_account_id=data.whatsapp_account_id,
        trigger_type=data.trigger_type,
        trigger_value=data.trigger_value,
        response_message=data.response_message,
        buttons=[b.model_dump() for b in data.buttons] if data.buttons else None,
        flow_id=data.flow_id,
        use_ai_response=data.use_ai_response,
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


@router.get("/", response_model=List[RuleResponse])
def list_rules(
    whatsapp_account_id: Optional[int] = Query(None, description="Filter by account"),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """List rules in evaluation order (first match wins)"""
    query = db.query(ChatbotRule).filter(ChatbotRule.user_id == user_id)
    if whatsapp_account_id is not None:
        query = query.filter(ChatbotRule.whatsapp_account_id == whatsapp_account_id)
    return query.order_by(ChatbotRule.created_at, ChatbotRule.id).all()


@router.get("/{rule_id}", response_model=RuleResponse)
def get_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Get a specific rule"""
    return _get_rule_or_404(db, user_id, rule_id)


@router.put("/{rule_id}", response_model=RuleResponse)
def update_rule(
    rule_id: int,
    data: RuleUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """
    Update a rule

    - Only provided fields are changed; send null to clear a field
    - The merged rule must still have exactly one response mode
    """
    rule = _get_rule_or_404(db, user_id, rule_id)
    update_data = data.model_dump(exclude_unset=True)

    merged = {
        "response_message": rule.response_message,
        "buttons": rule.buttons,
        "flow_id": rule.flow_id,
        "use_ai_response": rule.use_ai_response,
    }
    for field in merged:
        if field in update_data:
            merged[field] = update_data[field]
    if merged["response_message"] is None:
        merged["response_message"] = []

    try:
        check_response_mode(**merged)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    _check_flow(db, user_id, merged["flow_id"])

    for field in ("trigger_type", "trigger_value"):
        if update_data.get(field) is not None:
            setattr(rule, field, update_data[field])
    for field, value in merged.items():
        setattr(rule, field, value)
    if merged["use_ai_response"] is None:
        rule.use_ai_response = False

    db.commit()
    db.refresh(rule)
    return rule


@router.delete("/{rule_id}")
def delete_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Delete a rule"""
    rule = _get_rule_or_404(db, user_id, rule_id)
    db.delete(rule)
    db.commit()
    return {"message": "Rule deleted", "rule_id": rule_id}
