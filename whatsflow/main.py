# whatsflow/main.py
"""
FastAPI application: Meta webhook, inbox send, AI chat and the
management API for rules, flows and conversations.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from whatsflow.core.config import JWT_SECRET_KEY, LOG_DIR, LOG_LEVEL, VERIFY_TOKEN
from whatsflow.core.logging_config import setup_logging
from whatsflow.db.session import check_db_connection, init_db
from whatsflow.api.v1.router import api_router, webhook_router
from whatsflow.ws.manager import ws_manager

setup_logging("whatsflow", level=LOG_LEVEL, log_dir=LOG_DIR)
log = logging.getLogger("whatsflow")


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("=" * 80)
    log.info("🚀 whatsflow starting")
    log.info("=" * 80)
    try:
        init_db()
    except SQLAlchemyError as e:
        log.error(f"❌ Database error: {e}")
    if not VERIFY_TOKEN:
        log.warning("⚠️  VERIFY_TOKEN not set - webhook verification will always fail")
    yield
    log.info("👋 whatsflow stopped")


app = FastAPI(
    title="whatsflow - WhatsApp routing engine",
    description="Inbound routing, chatbot rules and conversational flows for WhatsApp Business accounts",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ────────────────────────────────────────────
# CORS Configuration
# ────────────────────────────────────────────
LOCAL_ORIGIN_RE = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=LOCAL_ORIGIN_RE,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    max_age=86400,
)

# Routes
app.include_router(webhook_router, prefix="/webhooks", tags=["Webhook"])
app.include_router(api_router, prefix="/api")


# ────────────────────────────────────────────
# Public routes
# ────────────────────────────────────────────

@app.get("/healthz", tags=["System"])
def health():
    """Health check endpoint"""
    db_ok = check_db_connection()
    return {
        "status": "ok" if db_ok else "degraded",
        "database_ok": db_ok,
        "verify_token_ok": bool(VERIFY_TOKEN),
        "jwt_enabled": bool(JWT_SECRET_KEY),
        "websocket_connections": ws_manager.connection_count(),
    }


# ────────────────────────────────────────────
# WebSocket Endpoint
# ────────────────────────────────────────────

@app.websocket("/ws/{user_id}")
async def websocket_endpoint(websocket: WebSocket, user_id: str):
    """Real-time inbox updates (message_incoming / message_outgoing)"""
    await ws_manager.connect(user_id, websocket)
    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        log.info(f"🔌 WebSocket disconnected for user: {user_id}")
    finally:
        ws_manager.disconnect(user_id, websocket)


# ────────────────────────────────────────────
# Exception Handlers
# ────────────────────────────────────────────

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions"""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8100)
