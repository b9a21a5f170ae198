# whatsflow/api/v1/ai.py
"""AI chat endpoints for the dashboard's AI integration test console"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError
from sqlalchemy.orm import Session

from whatsflow.api.deps import get_ai_responder
from whatsflow.core.config_loader import provider_label
from whatsflow.core.exceptions import AIConfigError, AIResponderError
from whatsflow.db.session import get_db
from whatsflow.models.account import WhatsAppAccount
from whatsflow.schemas.ai import AIChatRequest
from whatsflow.schemas.message import envelope
from whatsflow.services.ai_responder import AIResponder

log = logging.getLogger("whatsflow.api.ai")

router = APIRouter()


def _load_account(db: Session, account_id: int) -> Optional[WhatsAppAccount]:
    return db.query(WhatsAppAccount).filter(WhatsAppAccount.id == account_id).first()


async def _chat(request: Request, provider: str, db: Session, responder: AIResponder):
    try:
        data = AIChatRequest.model_validate(await request.json())
    except ValidationError as e:
        return envelope("error", "Invalid request", details=e.errors(include_url=False, include_context=False))
    except ValueError as e:
        return envelope("error", "Invalid JSON payload", details=str(e))

    if not data.message:
        return envelope("error", "Missing message in payload.")

    try:
        account: Optional[WhatsAppAccount] = None
        if data.whatsapp_account_id is not None:
            account = await run_in_threadpool(_load_account, db, data.whatsapp_account_id)
        response = await run_in_threadpool(
            responder.respond_text, data.message, provider, account, data.preferred_language
        )
    except AIConfigError as e:
        log.error(f"❌ {e.message}")
        return envelope("error", e.message)
    except AIResponderError as e:
        log.error(f"❌ {provider_label(provider)} call failed: {e.message}")
        return envelope(
            "error",
            f"Failed to get response from {provider_label(provider)} API",
            details=e.details if e.details is not None else e.message,
        )
    except Exception as e:
        log.error(f"❌ {provider_label(provider)} chat error: {e}", exc_info=True)
        return envelope("error", "Internal server error", details=str(e))

    return envelope("success", response=response)


@router.post("/openai-chat")
async def openai_chat(
    request: Request,
    db: Session = Depends(get_db),
    responder: AIResponder = Depends(get_ai_responder),
):
    """Single-turn OpenAI completion; always answers 200"""
    return await _chat(request, "openai", db, responder)


@router.post("/gemini-chat")
async def gemini_chat(
    request: Request,
    db: Session = Depends(get_db),
    responder: AIResponder = Depends(get_ai_responder),
):
    """Single-turn Google Gemini completion; always answers 200"""
    return await _chat(request, "gemini", db, responder)
