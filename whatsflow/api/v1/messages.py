# whatsflow/api/v1/messages.py
"""Outbound message endpoint used by the shared inbox"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError
from sqlalchemy.orm import Session

from whatsflow.db.session import get_db
from whatsflow.schemas.message import SendMessageRequest, envelope
from whatsflow.services import get_message_service
from whatsflow.services.message_service import MessageService

log = logging.getLogger("whatsflow.api.messages")

router = APIRouter()


@router.post("/send")
async def send_message(
    request: Request,
    db: Session = Depends(get_db),
    service: MessageService = Depends(get_message_service),
):
    """
    Send a text or media message to a contact.

    Always answers 200; failures are reported in the body:
    {"status": "error", "message": ..., "details": ...}
    """
    try:
        payload = await request.json()
        data = SendMessageRequest.model_validate(payload)
    except ValidationError as e:
        return envelope("error", "Invalid request", details=e.errors(include_url=False, include_context=False))
    except ValueError as e:
        return envelope("error", "Invalid JSON payload", details=str(e))

    log.info(f"📤 Manual send to {data.to_phone_number} from account {data.whatsapp_account_id}")
    try:
        return await run_in_threadpool(service.send_manual, db, data)
    except Exception as e:
        log.exception(f"❌ Failed to send message: {e}")
        return envelope("error", "Internal server error", details=str(e))
