# whatsflow/services/__init__.py
"""
Service layer initialization.
Holds the process-wide gateway factory and AI providers so tests can swap them.
"""
from typing import Callable, Dict, Optional

from whatsflow.services.gateway import WhatsAppGateway
from whatsflow.services.message_service import MessageService

# Global overrides (None -> real pywa gateway / real AI providers)
_gateway_factory: Optional[Callable] = None
_ai_providers: Optional[Dict] = None


def set_gateway_factory(factory: Optional[Callable]):
    """Set global gateway factory (account -> gateway)"""
    global _gateway_factory
    _gateway_factory = factory


def get_gateway_factory() -> Callable:
    """Get global gateway factory"""
    return _gateway_factory or WhatsAppGateway.for_account


def set_ai_providers(providers: Optional[Dict]):
    """Set global AI provider clients keyed by provider name"""
    global _ai_providers
    _ai_providers = providers


def get_ai_providers() -> Optional[Dict]:
    """Get global AI provider clients (None -> defaults)"""
    return _ai_providers


def get_message_service() -> MessageService:
    """Get MessageService instance with the current gateway factory"""
    return MessageService(get_gateway_factory())


__all__ = [
    'MessageService',
    'set_gateway_factory',
    'get_gateway_factory',
    'set_ai_providers',
    'get_ai_providers',
    'get_message_service',
]
