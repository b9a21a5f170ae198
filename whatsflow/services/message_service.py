# whatsflow/services/message_service.py
"""
Message service - message log persistence, inbox cache and outbound sends.

Every message, incoming or outgoing, lands in whatsapp_messages and
refreshes the conversation's last-message cache. Outgoing messages are
logged after the platform call whether it succeeded or not.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import desc
from sqlalchemy.orm import Session

from whatsflow.models.account import WhatsAppAccount
from whatsflow.models.conversation import Conversation
from whatsflow.models.message import Message
from whatsflow.schemas.message import SendMessageRequest, envelope
from whatsflow.schemas.webhook import InboundMessage
from whatsflow.services.conversation_store import ConversationStore
from whatsflow.services.gateway import SendResult, WhatsAppGateway
from whatsflow.ws.manager import notify_clients_sync

log = logging.getLogger("whatsflow.message_service")

GatewayFactory = Callable[[WhatsAppAccount], WhatsAppGateway]

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    Store phone numbers as '+' followed by digits only.
    Incoming and outgoing rows must agree for a contact's history to line up.
    """
    if not phone:
        return phone
    digits = _NON_DIGITS.sub("", str(phone))
    return f"+{digits}" if digits else None


def business_number(account: WhatsAppAccount) -> str:
    """The account's own side of a conversation"""
    return normalize_phone(account.display_phone_number) or account.phone_number_id


def media_body(media_type: str, caption: Optional[str] = None) -> str:
    """Log text for a media message"""
    if caption and media_type in ("image", "video"):
        return f"[{media_type} message]: {caption}"
    return f"[{media_type} message]"


class MessageService:
    """Service for message operations"""

    def __init__(self, gateway_factory: Optional[GatewayFactory] = None):
        """
        Args:
            gateway_factory: builds a gateway for an account (tests inject fakes)
        """
        self.gateway_factory = gateway_factory or WhatsAppGateway.for_account

    def gateway(self, account: WhatsAppAccount) -> WhatsAppGateway:
        return self.gateway_factory(account)

    # ────────────────────────────────────────────
    # Persistence
    # ────────────────────────────────────────────

    def save_incoming(
        self,
        db: Session,
        account: WhatsAppAccount,
        inbound: InboundMessage,
        media_url: Optional[str] = None,
    ) -> Message:
        sender = normalize_phone(inbound.sender)
        message = Message(
            user_id=account.user_id,
            whatsapp_account_id=account.id,
            from_phone_number=sender,
            to_phone_number=normalize_phone(inbound.display_phone_number) or business_number(account),
            message_body=inbound.text,
            message_type=inbound.message_type,
            direction="incoming",
            media_url=media_url,
            media_caption=inbound.media_caption,
            meta_message_id=inbound.message_id,
            status="received",
            replied_to_message_id=inbound.replied_to_message_id,
        )
        db.add(message)
        db.commit()
        db.refresh(message)
        log.info(f"📥 Incoming {inbound.message_type} from {sender} saved (id={message.id})")

        ConversationStore(db).touch(
            account.id, account.user_id, sender, inbound.text,
            at=message.created_at, contact_name=inbound.contact_name,
        )
        self._notify(account.user_id, "message_incoming", message, inbound.contact_name)
        return message

    def save_outgoing(
        self,
        db: Session,
        account: WhatsAppAccount,
        to: str,
        body: Optional[str],
        result: SendResult,
        message_type: str = "text",
        media_url: Optional[str] = None,
        media_caption: Optional[str] = None,
        replied_to_message_id: Optional[str] = None,
    ) -> Message:
        contact = normalize_phone(to)
        message = Message(
            user_id=account.user_id,
            whatsapp_account_id=account.id,
            from_phone_number=business_number(account),
            to_phone_number=contact,
            message_body=body,
            message_type=message_type,
            direction="outgoing",
            media_url=media_url,
            media_caption=media_caption,
            meta_message_id=result.message_id,
            status=result.status,
            replied_to_message_id=replied_to_message_id,
        )
        db.add(message)
        db.commit()
        db.refresh(message)
        if not result.ok:
            log.warning(f"⚠️ Outgoing {message_type} to {contact} logged as failed: {result.error}")

        ConversationStore(db).touch(account.id, account.user_id, contact, body, at=message.created_at)
        self._notify(account.user_id, "message_outgoing", message)
        return message

    def _notify(self, user_id: str, event: str, message: Message, contact_name: Optional[str] = None):
        payload = {
            "event": event,
            "data": {
                "phone": message.contact_phone_number,
                "contact_name": contact_name,
                "whatsapp_account_id": message.whatsapp_account_id,
                "message": {
                    "id": message.id,
                    "message_id": message.meta_message_id,
                    "type": message.message_type,
                    "text": message.message_body,
                    "media_url": message.media_url,
                    "status": message.status,
                    "direction": message.direction,
                    "timestamp": message.created_at.isoformat() if message.created_at else datetime.utcnow().isoformat(),
                },
            },
        }
        try:
            notify_clients_sync(user_id, payload)
        except Exception as e:
            log.error(f"❌ WebSocket broadcast failed: {e}")

    # ────────────────────────────────────────────
    # Send + log
    # ────────────────────────────────────────────

    def send_text(self, db: Session, account: WhatsAppAccount, to: str, text: str) -> SendResult:
        result = self.gateway(account).send_text(to, text)
        self.save_outgoing(db, account, to, text, result)
        return result

    def send_buttons(
        self,
        db: Session,
        account: WhatsAppAccount,
        to: str,
        body: str,
        buttons: List[Tuple[str, str]],
    ) -> SendResult:
        result = self.gateway(account).send_buttons(to, body, buttons)
        self.save_outgoing(db, account, to, body, result, message_type="interactive")
        return result

    def send_manual(self, db: Session, data: SendMessageRequest) -> Dict[str, Any]:
        """Agent-initiated send from the inbox; always returns an envelope"""
        to = normalize_phone(data.to_phone_number)
        if not to or not data.whatsapp_account_id or not data.user_id:
            return envelope("error", "Missing required parameters: toPhoneNumber, whatsappAccountId, userId")
        if not data.media_url and not data.message_body:
            return envelope("error", "Either messageBody or mediaUrl must be provided.")

        account = db.query(WhatsAppAccount).filter(
            WhatsAppAccount.id == data.whatsapp_account_id,
            WhatsAppAccount.user_id == data.user_id,
        ).first()
        if account is None:
            return envelope("error", "WhatsApp account not found or access denied.")
        if not account.access_token or not account.phone_number_id:
            return envelope("error", "WhatsApp access token or phone number ID not configured for this account.")

        gateway = self.gateway(account)
        if data.media_url and data.media_type:
            caption = data.media_caption if data.media_type in ("image", "video", "document") else None
            result = gateway.send_media(
                to, data.media_type, data.media_url,
                caption=caption, reply_to_message_id=data.replied_to_message_id,
            )
            body = media_body(data.media_type, caption)
            message_type = data.media_type
        else:
            caption = None
            result = gateway.send_text(to, data.message_body or "", reply_to_message_id=data.replied_to_message_id)
            body = data.message_body
            message_type = "text"

        saved = self.save_outgoing(
            db, account, to, body, result,
            message_type=message_type,
            media_url=data.media_url if message_type != "text" else None,
            media_caption=caption,
            replied_to_message_id=data.replied_to_message_id,
        )

        if not result.ok:
            return envelope(
                "error",
                f"Failed to send message via WhatsApp API: {result.error}",
                details=result.details,
            )
        return envelope("success", data={"message_id": result.message_id, "id": saved.id})

    # ────────────────────────────────────────────
    # Reads
    # ────────────────────────────────────────────

    def get_history(
        self,
        db: Session,
        account_id: int,
        contact: str,
        limit: int,
        exclude_message_id: Optional[int] = None,
    ) -> List[Message]:
        """Last `limit` messages with a contact, oldest first"""
        contact = normalize_phone(contact)
        query = db.query(Message).filter(
            Message.whatsapp_account_id == account_id,
            (Message.from_phone_number == contact) | (Message.to_phone_number == contact),
        )
        if exclude_message_id is not None:
            query = query.filter(Message.id != exclude_message_id)
        recent = query.order_by(desc(Message.created_at), desc(Message.id)).limit(limit).all()
        return list(reversed(recent))

    def get_conversations(self, db: Session, user_id: str, account_id: Optional[int] = None) -> List[Conversation]:
        """Inbox rows, most recent first"""
        query = db.query(Conversation).filter(Conversation.user_id == user_id)
        if account_id is not None:
            query = query.filter(Conversation.whatsapp_account_id == account_id)
        return query.order_by(
            desc(Conversation.last_message_at), desc(Conversation.id)
        ).all()

    def get_messages(
        self,
        db: Session,
        user_id: str,
        account_id: int,
        contact: str,
        limit: int = 100,
    ) -> List[Message]:
        contact = normalize_phone(contact)
        recent = db.query(Message).filter(
            Message.user_id == user_id,
            Message.whatsapp_account_id == account_id,
            (Message.from_phone_number == contact) | (Message.to_phone_number == contact),
        ).order_by(desc(Message.created_at), desc(Message.id)).limit(limit).all()
        return list(reversed(recent))

    def update_status(self, db: Session, meta_message_id: str, status: str) -> Optional[Message]:
        """Apply a delivery receipt to the outgoing message it refers to"""
        message = db.query(Message).filter(
            Message.meta_message_id == meta_message_id,
            Message.direction == "outgoing",
        ).first()
        if message is None:
            log.debug(f"Status '{status}' for unknown message {meta_message_id}")
            return None
        message.status = status
        db.commit()
        log.info(f"📬 Message {meta_message_id} status → {status}")
        return message
