# whatsflow/api/v1/webhooks.py
"""
Meta webhook endpoints (verification + events) and the webhook audit log.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from whatsflow.api.deps import get_current_user_id, get_orchestrator
from whatsflow.core.config import VERIFY_TOKEN
from whatsflow.db.session import get_db
from whatsflow.models.webhook import WebhookLog
from whatsflow.schemas.message import envelope
from whatsflow.services.orchestrator import WebhookOrchestrator

log = logging.getLogger("whatsflow.webhooks")

# Mounted at /webhooks (called by Meta, no auth)
meta_router = APIRouter()

# Mounted at /api/webhooks
router = APIRouter()


class WebhookLogResponse(BaseModel):
    id: int
    user_id: Optional[str]
    log_type: str
    phone: Optional[str]
    message_id: Optional[str]
    status: Optional[str]
    error_message: Optional[str]
    context: Optional[str]
    raw_data: Optional[dict]
    created_at: datetime

    class Config:
        from_attributes = True


# ────────────────────────────────────────────
# Meta-facing
# ────────────────────────────────────────────

@meta_router.get("/whatsapp", response_class=PlainTextResponse)
def verify_webhook(
    hub_mode: Optional[str] = Query(None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge"),
):
    """Subscription handshake: echo the challenge when the token matches"""
    if hub_mode == "subscribe" and VERIFY_TOKEN and hub_verify_token == VERIFY_TOKEN:
        log.info("✅ Webhook verified")
        return PlainTextResponse(hub_challenge or "", status_code=200)

    log.warning(f"⚠️ Webhook verification failed (mode={hub_mode})")
    return PlainTextResponse("Forbidden", status_code=403)


@meta_router.post("/whatsapp")
async def receive_webhook(
    request: Request,
    orchestrator: WebhookOrchestrator = Depends(get_orchestrator),
):
    """
    Inbound events. Always 200 so Meta does not retry; the body carries
    {status, message} or {status: "error", message, details}.
    """
    try:
        payload = await request.json()
    except ValueError as e:
        log.error(f"❌ Webhook body is not JSON: {e}")
        return envelope("error", "Invalid JSON payload", details=str(e))

    if not isinstance(payload, dict):
        return envelope("error", "Invalid JSON payload", details="Expected a JSON object")

    try:
        return await run_in_threadpool(orchestrator.process_payload, payload)
    except Exception as e:
        log.exception(f"❌ Webhook processing failed: {e}")
        return envelope("error", "Internal server error", details=str(e))


# ────────────────────────────────────────────
# Audit log
# ────────────────────────────────────────────

@router.get("/logs", response_model=List[WebhookLogResponse])
def get_webhook_logs(
    limit: int = Query(50, le=200),
    skip: int = 0,
    log_type: Optional[str] = None,
    phone: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Get webhook logs"""
    query = db.query(WebhookLog).filter(WebhookLog.user_id == user_id)

    if log_type:
        query = query.filter(WebhookLog.log_type == log_type)

    if phone:
        query = query.filter(WebhookLog.phone.ilike(f"%{phone}%"))

    # Get recent logs first
    return query.order_by(WebhookLog.created_at.desc(), WebhookLog.id.desc()).offset(skip).limit(limit).all()


@router.delete("/logs/cleanup")
def cleanup_old_logs(
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Clean up webhook logs older than specified days"""
    cutoff_date = datetime.utcnow() - timedelta(days=days)

    deleted_count = db.query(WebhookLog).filter(
        WebhookLog.user_id == user_id,
        WebhookLog.created_at < cutoff_date
    ).delete()

    db.commit()

    return {"deleted": deleted_count, "cutoff_date": cutoff_date}
