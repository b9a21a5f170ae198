# whatsflow/api/deps.py
"""
API dependencies for authentication, database access and routing services.
"""
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from whatsflow.db.session import get_db
from whatsflow.core.jwt_auth import JWTAuth
from whatsflow.services import get_ai_providers, get_message_service
from whatsflow.services.ai_responder import AIResponder
from whatsflow.services.message_service import MessageService
from whatsflow.services.orchestrator import WebhookOrchestrator

# Security scheme (optional so the development header also works)
security = HTTPBearer(auto_error=False)


# ────────────────────────────────────────────
# Authentication (JWT + development header)
# ────────────────────────────────────────────

async def get_current_user_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> str:
    """
    Resolve the tenant user for a management API call.

    Priority:
    1. JWT Bearer token (user_id / sub claim)
    2. X-User-Id header (for development)
    """
    if credentials and credentials.credentials:
        payload = JWTAuth.decode_token(credentials.credentials)
        user_id = JWTAuth.get_user_id(payload)
        if not user_id:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="User ID not found in token"
            )
        return user_id

    user_id = request.headers.get("x-user-id")
    if user_id:
        return user_id

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required. Provide a JWT token or X-User-Id header for development."
    )


# ────────────────────────────────────────────
# Services
# ────────────────────────────────────────────

def get_ai_responder(
    db: Session = Depends(get_db),
    service: MessageService = Depends(get_message_service),
) -> AIResponder:
    return AIResponder(db, providers=get_ai_providers(), message_service=service)


def get_orchestrator(
    db: Session = Depends(get_db),
    service: MessageService = Depends(get_message_service),
    ai_responder: AIResponder = Depends(get_ai_responder),
) -> WebhookOrchestrator:
    return WebhookOrchestrator(db, message_service=service, ai_responder=ai_responder)
