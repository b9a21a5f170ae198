# whatsflow/api/v1/router.py
"""Main API router combining all v1 endpoints"""
from fastapi import APIRouter

from whatsflow.api.v1 import messages, ai, rules, flows, conversations, webhooks

api_router = APIRouter()

# Include all routers
api_router.include_router(messages.router, prefix="/messages", tags=["Messages"])
api_router.include_router(ai.router, prefix="/ai", tags=["AI"])
api_router.include_router(rules.router, prefix="/rules", tags=["Chatbot Rules"])
api_router.include_router(flows.router, prefix="/flows", tags=["Flows"])
api_router.include_router(conversations.router, prefix="/conversations", tags=["Conversations"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])

# Meta calls this one directly (mounted at /webhooks, outside /api)
webhook_router = webhooks.meta_router
