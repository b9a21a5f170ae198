# whatsflow/core/config_loader.py
"""
Dynamic AI configuration loader that prioritizes database over .env.
Supports per-user AI provider keys, models and system prompts.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from whatsflow.core import config
from whatsflow.core.exceptions import AIConfigError
from whatsflow.models.account import WhatsAppAccount
from whatsflow.models.ai_integration import AIIntegration

PROVIDERS = ("openai", "gemini")

_PROVIDER_LABELS = {"openai": "OpenAI", "gemini": "Google Gemini"}


def provider_label(provider: str) -> str:
    return _PROVIDER_LABELS.get(provider, provider)


@dataclass
class AIConfig:
    """Everything needed for one completion call"""
    provider: str
    api_key: str
    model: str
    system_prompt: str
    max_tokens: int = config.AI_MAX_TOKENS
    timeout: float = config.AI_TIMEOUT


class AIConfigLoader:
    """
    AI configuration loader with database-first fallback to .env.

    Priority:
    1. The account owner's ai_integrations row for the provider
    2. Environment variables from .env file

    The system prompt prefers the account's own system_instruction.

    Usage:
        loader = AIConfigLoader(db, account)
        ai_config = loader.resolve()
    """

    def __init__(self, db: Optional[Session], account: Optional[WhatsAppAccount] = None):
        self.db = db
        self.account = account

    def _integration(self, provider: str) -> Optional[AIIntegration]:
        if self.db is None or self.account is None:
            return None
        return self.db.query(AIIntegration).filter(
            AIIntegration.user_id == self.account.user_id,
            AIIntegration.provider == provider,
        ).first()

    def default_provider(self) -> str:
        if self.account is not None and self.account.ai_provider:
            return self.account.ai_provider
        return "gemini"

    def get_api_key(self, provider: str) -> Optional[str]:
        integration = self._integration(provider)
        if integration and integration.secret_key:
            return integration.secret_key
        return config.OPENAI_API_KEY if provider == "openai" else config.GEMINI_API_KEY

    def get_model(self, provider: str) -> str:
        integration = self._integration(provider)
        if integration and integration.prompt_model:
            return integration.prompt_model
        return config.OPENAI_MODEL if provider == "openai" else config.GEMINI_MODEL

    def get_system_prompt(self, provider: str) -> str:
        if self.account is not None and self.account.system_instruction:
            return self.account.system_instruction
        integration = self._integration(provider)
        if integration and integration.system_instruction:
            return integration.system_instruction
        return config.DEFAULT_SYSTEM_PROMPT

    def resolve(self, provider: Optional[str] = None) -> AIConfig:
        """
        Build the AIConfig for provider (default: the account's).

        Raises:
            AIConfigError: unknown provider or no API key anywhere
        """
        provider = (provider or self.default_provider()).lower()
        if provider not in PROVIDERS:
            raise AIConfigError(f"Unsupported AI provider: {provider}")

        api_key = self.get_api_key(provider)
        if not api_key:
            raise AIConfigError(f"{provider_label(provider)} API key not configured.")

        return AIConfig(
            provider=provider,
            api_key=api_key,
            model=self.get_model(provider),
            system_prompt=self.get_system_prompt(provider),
        )

    def is_fallback_enabled(self) -> bool:
        """Account opted in to AI answers for unmatched messages and a key resolves"""
        if self.account is None or not self.account.ai_enabled:
            return False
        try:
            self.resolve()
        except AIConfigError:
            return False
        return True
