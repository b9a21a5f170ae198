# whatsflow/services/ai_responder.py
"""
AI responder - one completion path for AI rules, the account fallback and
the dashboard chat endpoints.

Context sent to the provider:
    system prompt
    + last AI_HISTORY_LIMIT messages with the contact, oldest first
      (incoming -> user, outgoing -> assistant)
    + the current text as the final user turn
"""
import logging
from typing import Dict, List, Optional, Protocol

import httpx
import openai
from openai import OpenAI
from sqlalchemy.orm import Session

from whatsflow.core.config import AI_HISTORY_LIMIT, GEMINI_API_BASE
from whatsflow.core.config_loader import AIConfig, AIConfigLoader, provider_label
from whatsflow.core.exceptions import AIResponderError
from whatsflow.models.account import WhatsAppAccount
from whatsflow.services.message_service import MessageService

log = logging.getLogger("whatsflow.ai")

ChatMessages = List[Dict[str, str]]


class AIProvider(Protocol):
    def complete(self, ai_config: AIConfig, messages: ChatMessages) -> str:
        ...


# ────────────────────────────────────────────
# Providers
# ────────────────────────────────────────────

class OpenAIProvider:
    """Chat Completions through the openai SDK"""

    def complete(self, ai_config: AIConfig, messages: ChatMessages) -> str:
        client = OpenAI(api_key=ai_config.api_key, timeout=ai_config.timeout, max_retries=0)
        try:
            r = client.chat.completions.create(
                model=ai_config.model,
                messages=[{"role": "system", "content": ai_config.system_prompt}] + messages,
                max_tokens=ai_config.max_tokens,
            )
        except openai.OpenAIError as e:
            raise AIResponderError("Failed to get response from OpenAI API", details=str(e)) from e

        content = r.choices[0].message.content if r.choices else None
        if not content:
            raise AIResponderError("OpenAI returned an empty completion")
        return content.strip()


class GeminiProvider:
    """generateContent over the Gemini REST API"""

    def __init__(self, base_url: str = GEMINI_API_BASE):
        self.base_url = base_url.rstrip("/")

    def complete(self, ai_config: AIConfig, messages: ChatMessages) -> str:
        url = f"{self.base_url}/models/{ai_config.model}:generateContent"
        body = {
            "system_instruction": {"parts": [{"text": ai_config.system_prompt}]},
            "contents": [
                {
                    "role": "model" if m["role"] == "assistant" else "user",
                    "parts": [{"text": m["content"]}],
                }
                for m in messages
            ],
            "generationConfig": {"maxOutputTokens": ai_config.max_tokens},
        }
        try:
            response = httpx.post(url, params={"key": ai_config.api_key}, json=body, timeout=ai_config.timeout)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise AIResponderError(
                "Failed to get response from Google Gemini API",
                details=e.response.text[:500],
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise AIResponderError("Failed to get response from Google Gemini API", details=str(e)) from e

        try:
            parts = data["candidates"][0]["content"]["parts"]
            text = "".join(part.get("text", "") for part in parts)
        except (KeyError, IndexError, TypeError) as e:
            raise AIResponderError("Unexpected Gemini response shape", details=data) from e
        if not text.strip():
            raise AIResponderError("Gemini returned an empty completion", details=data)
        return text.strip()


def default_providers() -> Dict[str, AIProvider]:
    return {"openai": OpenAIProvider(), "gemini": GeminiProvider()}


# ────────────────────────────────────────────
# Responder
# ────────────────────────────────────────────

def build_context(history, text: str, preferred_language: Optional[str] = None) -> ChatMessages:
    """Map logged messages to chat turns and append the current text"""
    messages: ChatMessages = []
    for message in history:
        if not message.message_body:
            continue
        role = "user" if message.direction == "incoming" else "assistant"
        messages.append({"role": role, "content": message.message_body})

    final = text
    if preferred_language:
        final = f"{text}\n\n(Please reply in {preferred_language}.)"
    messages.append({"role": "user", "content": final})
    return messages


class AIResponder:
    """Resolve config, build context, call the provider"""

    def __init__(
        self,
        db: Session,
        providers: Optional[Dict[str, AIProvider]] = None,
        message_service: Optional[MessageService] = None,
        history_limit: int = AI_HISTORY_LIMIT,
    ):
        self.db = db
        self.providers = providers if providers is not None else default_providers()
        self.message_service = message_service or MessageService()
        self.history_limit = history_limit

    def _complete(self, ai_config: AIConfig, messages: ChatMessages) -> str:
        provider = self.providers.get(ai_config.provider)
        if provider is None:
            raise AIResponderError(f"No client for provider {ai_config.provider}")
        log.info(
            f"🤖 Calling {provider_label(ai_config.provider)} ({ai_config.model}) "
            f"with {len(messages)} turns"
        )
        return provider.complete(ai_config, messages)

    def respond(
        self,
        account: WhatsAppAccount,
        contact: str,
        text: str,
        exclude_message_id: Optional[int] = None,
        preferred_language: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> str:
        """
        Completion for a contact's conversation on an account.

        Raises:
            AIConfigError: no provider/key resolvable
            AIResponderError: provider call failed
        """
        ai_config = AIConfigLoader(self.db, account).resolve(provider)
        history = self.message_service.get_history(
            self.db, account.id, contact, self.history_limit, exclude_message_id=exclude_message_id
        )
        messages = build_context(history, text, preferred_language)
        return self._complete(ai_config, messages)

    def respond_text(
        self,
        text: str,
        provider: str,
        account: Optional[WhatsAppAccount] = None,
        preferred_language: Optional[str] = None,
    ) -> str:
        """Single-turn completion (no conversation history)"""
        ai_config = AIConfigLoader(self.db, account).resolve(provider)
        return self._complete(ai_config, build_context([], text, preferred_language))
