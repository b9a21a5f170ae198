# whatsflow/services/gateway.py
"""
Message gateway adapter - the only place that talks to the WhatsApp Cloud API.

Outbound sends go through a pywa client built per account (one access
token per connected number). Sends never raise: they return a SendResult
so the outbound message is logged whatever happened upstream.

Inbound webhook payloads are parsed here into InboundMessage/StatusUpdate.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError
from pywa import WhatsApp
from pywa.errors import WhatsAppError
from pywa.types import Button

from whatsflow.core.config import WHATSAPP_HTTP_TIMEOUT
from whatsflow.core.exceptions import GatewayError
from whatsflow.schemas.webhook import (
    InboundMessage, ParsedWebhook, StatusUpdate, WebhookMessage, WebhookPayload
)

log = logging.getLogger("whatsflow.gateway")

MEDIA_MESSAGE_TYPES = ("image", "audio", "video", "document")


@dataclass
class SendResult:
    """Outcome of one platform call"""
    ok: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    details: Optional[Any] = None

    @property
    def status(self) -> str:
        return "sent" if self.ok else "failed"


def _api_phone(phone: str) -> str:
    """Cloud API wants digits only (no leading +)"""
    return str(phone).strip().lstrip("+")


def _message_id(response) -> Optional[str]:
    if response is None:
        return None
    if hasattr(response, "id"):
        return response.id
    if isinstance(response, str):
        return response
    return str(response)


def _error_details(error: Exception) -> Any:
    if isinstance(error, WhatsAppError):
        return {
            "code": getattr(error, "error_code", None),
            "message": getattr(error, "message", None) or str(error),
            "details": getattr(error, "details", None),
        }
    return str(error)


class WhatsAppGateway:
    """Per-account wrapper around the pywa client"""

    def __init__(
        self,
        phone_number_id: str,
        access_token: str,
        timeout: float = WHATSAPP_HTTP_TIMEOUT,
        client: Optional[WhatsApp] = None,
    ):
        self.phone_number_id = phone_number_id
        self.access_token = access_token
        self.timeout = timeout
        self._client = client

    @classmethod
    def for_account(cls, account) -> "WhatsAppGateway":
        return cls(account.phone_number_id, account.access_token)

    @property
    def client(self) -> WhatsApp:
        if self._client is None:
            if not self.phone_number_id or not self.access_token:
                raise GatewayError("WhatsApp access token or phone number ID not configured for this account.")
            self._client = WhatsApp(
                phone_id=self.phone_number_id,
                token=self.access_token,
                session=httpx.Client(timeout=self.timeout),
            )
        return self._client

    def _send(self, description: str, to: str, call) -> SendResult:
        try:
            response = call(self.client)
        except (WhatsAppError, httpx.HTTPError, GatewayError) as e:
            log.error(f"❌ Failed to send {description} to {to}: {e}")
            return SendResult(ok=False, error=str(e), details=_error_details(e))
        except Exception as e:
            log.error(f"❌ Unexpected error sending {description} to {to}: {e}", exc_info=True)
            return SendResult(ok=False, error=str(e), details={"type": type(e).__name__})

        message_id = _message_id(response)
        log.info(f"✅ {description.capitalize()} sent to {to}: {message_id}")
        return SendResult(ok=True, message_id=message_id)

    # ────────────────────────────────────────────
    # Outbound
    # ────────────────────────────────────────────

    def send_text(self, to: str, text: str, reply_to_message_id: Optional[str] = None) -> SendResult:
        return self._send(
            "text", to,
            lambda wa: wa.send_message(
                to=_api_phone(to),
                text=text,
                reply_to_message_id=reply_to_message_id,
            ),
        )

    def send_buttons(self, to: str, body: str, buttons: List[Tuple[str, str]]) -> SendResult:
        """Interactive reply-button message; buttons are (title, payload) pairs"""
        pywa_buttons = [Button(title=title, callback_data=payload) for title, payload in buttons]
        return self._send(
            "buttons", to,
            lambda wa: wa.send_message(to=_api_phone(to), text=body, buttons=pywa_buttons),
        )

    def send_media(
        self,
        to: str,
        media_type: str,
        media: str,
        caption: Optional[str] = None,
        reply_to_message_id: Optional[str] = None,
    ) -> SendResult:
        """Send image/video/audio/document by URL or uploaded media id"""
        common = {"to": _api_phone(to), "reply_to_message_id": reply_to_message_id}

        def call(wa: WhatsApp):
            if media_type == "image":
                return wa.send_image(**common, image=media, caption=caption)
            if media_type == "video":
                return wa.send_video(**common, video=media, caption=caption)
            if media_type == "audio":
                return wa.send_audio(**common, audio=media)
            if media_type == "document":
                return wa.send_document(**common, document=media, caption=caption)
            raise GatewayError(f"Invalid media type: {media_type}")

        return self._send(media_type, to, call)

    def get_media_url(self, media_id: str) -> str:
        """Resolve an inbound media id to a downloadable URL"""
        try:
            response = self.client.get_media_url(media_id)
        except (WhatsAppError, httpx.HTTPError) as e:
            raise GatewayError(f"Failed to resolve media {media_id}", details=_error_details(e)) from e
        return response.url if hasattr(response, "url") else str(response)


# ────────────────────────────────────────────
# Inbound
# ────────────────────────────────────────────

def extract_text(message: WebhookMessage) -> str:
    """Routing text for an inbound message"""
    if message.type == "text":
        return str((message.text or {}).get("body") or "")

    if message.type == "interactive":
        interactive = message.interactive or {}
        button_reply = interactive.get("button_reply")
        if isinstance(button_reply, dict):
            return str(button_reply.get("payload") or button_reply.get("id") or "")

    return f"[{message.type} message]"


def _normalize_message(message: WebhookMessage, value, phone_number_id: str) -> InboundMessage:
    contact_name = None
    for contact in value.contacts:
        if contact.profile and (contact.wa_id is None or contact.wa_id == message.from_):
            contact_name = contact.profile.name
            break

    media_id = None
    media_caption = None
    if message.type in MEDIA_MESSAGE_TYPES:
        payload = message.type_payload()
        media_id = payload.get("id")
        media_caption = payload.get("caption")

    return InboundMessage(
        sender=message.from_,
        phone_number_id=phone_number_id,
        display_phone_number=value.metadata.display_phone_number if value.metadata else None,
        message_type=message.type,
        text=extract_text(message),
        message_id=message.id,
        contact_name=contact_name,
        media_id=media_id,
        media_caption=media_caption,
        replied_to_message_id=(message.context or {}).get("id"),
        timestamp=message.timestamp,
    )


def parse_webhook(payload: Dict[str, Any]) -> ParsedWebhook:
    """
    Read entry[0].changes[0].value of a Meta webhook POST.

    Only messages[0] is routed; unparseable payloads yield an empty result.
    """
    try:
        parsed = WebhookPayload.model_validate(payload)
    except ValidationError as e:
        log.warning(f"⚠️ Unrecognized webhook payload: {e.error_count()} validation errors")
        return ParsedWebhook()

    value = parsed.first_value()
    if value is None:
        return ParsedWebhook()

    phone_number_id = value.metadata.phone_number_id if value.metadata else None
    result = ParsedWebhook(
        phone_number_id=phone_number_id,
        display_phone_number=value.metadata.display_phone_number if value.metadata else None,
    )

    if value.messages and phone_number_id:
        result.message = _normalize_message(value.messages[0], value, phone_number_id)

    for status in value.statuses:
        if not status.id or not status.status:
            continue
        error = None
        if status.errors:
            first = status.errors[0]
            error = first.get("title") or first.get("message") or str(first)
        result.statuses.append(StatusUpdate(
            phone_number_id=phone_number_id,
            message_id=status.id,
            status=status.status,
            recipient_id=status.recipient_id,
            error=error,
        ))

    return result
