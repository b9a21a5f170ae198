# whatsflow/core/exceptions.py
"""Exception hierarchy raised at component seams and caught by the orchestrator."""
from typing import Any, Optional


class WhatsflowError(Exception):
    """Base error for the routing engine"""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class GatewayError(WhatsflowError):
    """WhatsApp platform call failed or was rejected"""


class FlowDataError(WhatsflowError):
    """Flow graph is missing, malformed or points at unknown nodes"""


class AIResponderError(WhatsflowError):
    """AI provider call failed"""


class AIConfigError(AIResponderError):
    """No usable AI provider configuration (missing key or unknown provider)"""
