# whatsflow/api/v1/conversations.py
"""Shared inbox: conversation list, message history, manual flow reset"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from whatsflow.api.deps import get_current_user_id
from whatsflow.db.session import get_db
from whatsflow.models.account import WhatsAppAccount
from whatsflow.schemas.message import ConversationDetailResponse, ConversationResponse
from whatsflow.services import get_message_service
from whatsflow.services.conversation_store import ConversationStore, contact_lock
from whatsflow.services.message_service import MessageService, normalize_phone

log = logging.getLogger("whatsflow.api.conversations")

router = APIRouter()


def _get_account_or_404(db: Session, user_id: str, account_id: int) -> WhatsAppAccount:
    account = db.query(WhatsAppAccount).filter(
        WhatsAppAccount.id == account_id,
        WhatsAppAccount.user_id == user_id
    ).first()
    if not account:
        raise HTTPException(status_code=404, detail="WhatsApp account not found")
    return account


@router.get("/", response_model=List[ConversationResponse])
def list_conversations(
    whatsapp_account_id: Optional[int] = Query(None, description="Filter by account"),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    service: MessageService = Depends(get_message_service)
):
    """List conversations, most recent first"""
    return service.get_conversations(db, user_id, whatsapp_account_id)


@router.get("/{account_id}/{contact}/messages", response_model=ConversationDetailResponse)
def get_conversation_messages(
    account_id: int,
    contact: str,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    service: MessageService = Depends(get_message_service)
):
    """Conversation row plus its messages, oldest first"""
    _get_account_or_404(db, user_id, account_id)
    contact = normalize_phone(contact)

    return {
        "conversation": ConversationStore(db).get(account_id, contact),
        "messages": service.get_messages(db, user_id, account_id, contact, limit=limit),
    }


@router.post("/{account_id}/{contact}/reset-flow")
def reset_flow(
    account_id: int,
    contact: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Take a contact out of its current flow"""
    _get_account_or_404(db, user_id, account_id)
    contact = normalize_phone(contact)

    with contact_lock(account_id, contact):
        was_in_flow = ConversationStore(db).clear_flow_state(account_id, contact)

    log.info(f"🔄 Manual flow reset for {contact} on account {account_id} (was_in_flow={was_in_flow})")
    return {"status": "success", "was_in_flow": was_in_flow}
