# whatsflow/services/orchestrator.py
"""
Webhook orchestrator - turns one inbound WhatsApp event into replies.

Dispatch runs four stages in order and stops at the first that handles
the message:

    1. active flow continuation
    2. rule matching (AI rule / flow rule / static rule)
    3. account-level AI fallback
    4. default reply

Each stage returns a DispatchResult instead of setting a shared flag.
Dispatch for one (account, contact) pair is serialized by contact_lock().
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from whatsflow.core.config import (
    AI_ERROR_REPLY, AI_UNAVAILABLE_REPLY, BUTTONS_FALLBACK_BODY, DEFAULT_REPLY, REPROMPT_TEMPLATE
)
from whatsflow.core.config_loader import AIConfigLoader
from whatsflow.core.exceptions import AIConfigError, AIResponderError, FlowDataError, GatewayError
from whatsflow.core.logging_config import get_routing_logger
from whatsflow.models.account import WhatsAppAccount
from whatsflow.models.conversation import Conversation
from whatsflow.models.flow import ChatbotFlow
from whatsflow.models.rule import ChatbotRule
from whatsflow.models.webhook import WebhookLog
from whatsflow.schemas.message import envelope
from whatsflow.schemas.webhook import InboundMessage, StatusUpdate
from whatsflow.services import flow_interpreter
from whatsflow.services.ai_responder import AIResponder
from whatsflow.services.conversation_store import ConversationStore, contact_lock
from whatsflow.services.flow_interpreter import FlowGraph, FlowNode, TransitionKind
from whatsflow.services.gateway import parse_webhook
from whatsflow.services.message_service import MessageService, normalize_phone
from whatsflow.services.rule_matcher import match_rule

log = logging.getLogger("whatsflow.orchestrator")
routing_log = get_routing_logger()


@dataclass(frozen=True)
class DispatchResult:
    """NoAction (handled=False) or Handled(stage)"""
    handled: bool
    stage: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def no_action(cls, reason: Optional[str] = None) -> "DispatchResult":
        return cls(handled=False, reason=reason)

    @classmethod
    def handled_by(cls, stage: str, reason: Optional[str] = None) -> "DispatchResult":
        return cls(handled=True, stage=stage, reason=reason)


@dataclass
class Turn:
    """One inbound message being dispatched"""
    account: WhatsAppAccount
    contact: str
    text: str
    message_id: Optional[int] = None
    conversation: Optional[Conversation] = None

    @property
    def in_flow(self) -> bool:
        return self.conversation is not None and self.conversation.is_in_flow


class WebhookOrchestrator:
    """Inbound routing for all connected accounts"""

    def __init__(
        self,
        db: Session,
        message_service: Optional[MessageService] = None,
        ai_responder: Optional[AIResponder] = None,
    ):
        self.db = db
        self.messages = message_service or MessageService()
        self.ai = ai_responder or AIResponder(db, message_service=self.messages)
        self.store = ConversationStore(db)

    # ────────────────────────────────────────────
    # Entry points
    # ────────────────────────────────────────────

    def process_payload(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Handle one Meta webhook POST body; always returns an envelope"""
        parsed = parse_webhook(payload)

        for status in parsed.statuses:
            self._apply_status(status, payload)

        if parsed.message is None:
            if parsed.statuses:
                return envelope("success", "Status updates processed")
            self._record(None, "ignored", raw=payload)
            return envelope("success", "No message or account info to process")

        return self.process_message(parsed.message, raw=payload)

    def process_message(self, inbound: InboundMessage, raw: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        account = self.db.query(WhatsAppAccount).filter(
            WhatsAppAccount.phone_number_id == inbound.phone_number_id
        ).first()
        if account is None:
            log.error(f"❌ No WhatsApp account for phone_number_id {inbound.phone_number_id}")
            self._record(
                None, "error", phone=inbound.sender, message_id=inbound.message_id,
                error="WhatsApp account not found", raw=raw,
            )
            return envelope("error", "WhatsApp account not found or user_id missing.")

        contact = normalize_phone(inbound.sender)
        log.info(f"📨 {inbound.message_type} from {contact} to account {account.id}: {inbound.text!r}")

        media_url = self._resolve_media(account, inbound) if inbound.is_media else None

        with contact_lock(account.id, contact):
            saved = self.messages.save_incoming(self.db, account, inbound, media_url=media_url)
            self._record(
                account.user_id, "message", phone=contact, message_id=inbound.message_id,
                status="received", raw=raw,
            )
            self.dispatch(account, contact, inbound.text, message_id=saved.id)

        return envelope("success", "Webhook processed")

    def _resolve_media(self, account: WhatsAppAccount, inbound: InboundMessage) -> Optional[str]:
        try:
            url = self.messages.gateway(account).get_media_url(inbound.media_id)
            log.info(f"🖼️ Resolved media {inbound.media_id}")
            return url
        except GatewayError as e:
            log.error(f"❌ Media URL lookup failed for {inbound.media_id}: {e.message} {e.details or ''}")
            return None

    def _apply_status(self, status: StatusUpdate, raw: Dict[str, Any]):
        try:
            message = self.messages.update_status(self.db, status.message_id, status.status)
        except SQLAlchemyError as e:
            self.db.rollback()
            log.error(f"❌ Failed to apply status {status.status} to {status.message_id}: {e}")
            return
        self._record(
            message.user_id if message else None, "status",
            phone=normalize_phone(status.recipient_id), message_id=status.message_id,
            status=status.status, error=status.error, raw=raw,
        )

    # ────────────────────────────────────────────
    # Dispatch
    # ────────────────────────────────────────────

    def dispatch(
        self,
        account: WhatsAppAccount,
        contact: str,
        text: str,
        message_id: Optional[int] = None,
    ) -> DispatchResult:
        """Run the stages until one handles the message"""
        turn = Turn(
            account=account,
            contact=contact,
            text=text,
            message_id=message_id,
            conversation=self.store.get(account.id, contact),
        )
        stages: List[Tuple[str, Callable[[Turn], DispatchResult]]] = [
            ("flow", self._continue_flow),
            ("rules", self._match_rules),
            ("ai_fallback", self._ai_fallback),
            ("default", self._default_reply),
        ]
        for name, stage in stages:
            try:
                result = stage(turn)
            except SQLAlchemyError as e:
                self.db.rollback()
                log.error(f"❌ Database error in {name} stage for {contact}: {e}")
                result = DispatchResult.no_action(f"database error: {e.__class__.__name__}")

            if result.handled:
                routing_log.info(
                    f"account={account.id} contact={contact} text={text!r} -> {result.stage}"
                    + (f" ({result.reason})" if result.reason else "")
                )
                return result
            if result.reason:
                routing_log.debug(f"account={account.id} contact={contact} {name}: {result.reason}")

        return DispatchResult.no_action("no stage handled the message")

    # ── Stage 1 ───────────────────────────────────

    def _continue_flow(self, turn: Turn) -> DispatchResult:
        if not turn.in_flow:
            return DispatchResult.no_action()

        conversation = turn.conversation
        flow_id = conversation.current_flow_id
        node_id = conversation.current_node_id

        try:
            graph = self._load_graph(turn.account, flow_id)
        except FlowDataError as e:
            log.error(f"❌ {e.message}; leaving flow")
            self.store.clear_flow_state(turn.account.id, turn.contact)
            return DispatchResult.no_action(f"flow {flow_id} unavailable")

        transition = flow_interpreter.advance(graph, node_id, turn.text)

        if transition.kind == TransitionKind.REPROMPT:
            self.messages.send_text(
                self.db, turn.account, turn.contact,
                REPROMPT_TEMPLATE.format(expected=transition.expected),
            )
            return DispatchResult.handled_by("flow_reprompt", f"waiting at '{node_id}'")

        if transition.kind == TransitionKind.STALLED:
            log.warning(f"⚠️ Flow {flow_id} stalled at '{node_id}' for {turn.contact}: {transition.reason}")
            return DispatchResult.handled_by("flow_stalled", transition.reason)

        if transition.kind in (TransitionKind.NOT_WAITING, TransitionKind.BROKEN):
            log.info(f"ℹ️ Leaving flow {flow_id} for {turn.contact}: {transition.reason}")
            self.store.clear_flow_state(turn.account.id, turn.contact)
            return DispatchResult.no_action(transition.reason)

        target = transition.target
        if not self.store.advance(turn.account.id, turn.contact, flow_id, node_id, target.id):
            return DispatchResult.handled_by("flow_advance_lost", f"'{node_id}' already advanced")

        self._emit(turn, target)
        return DispatchResult.handled_by("flow_advance", f"'{node_id}' -> '{target.id}'")

    # ── Stage 2 ───────────────────────────────────

    def _match_rules(self, turn: Turn) -> DispatchResult:
        rules = self.db.query(ChatbotRule).filter(
            ChatbotRule.whatsapp_account_id == turn.account.id
        ).order_by(ChatbotRule.created_at, ChatbotRule.id).all()

        rule = match_rule(turn.text, rules)
        if rule is None:
            return DispatchResult.no_action(f"no rule matched among {len(rules)}")

        log.info(f"🎯 Rule {rule.id} ({rule.trigger_type}, '{rule.trigger_value}') matched for {turn.contact}")

        if rule.response_mode == "ai":
            self.messages.send_text(self.db, turn.account, turn.contact, self._ai_reply(turn))
            self._leave_flow(turn)
            return DispatchResult.handled_by("rule_ai", f"rule {rule.id}")

        if rule.response_mode == "flow":
            return self._start_flow(turn, rule)

        return self._send_static(turn, rule)

    def _start_flow(self, turn: Turn, rule: ChatbotRule) -> DispatchResult:
        try:
            graph = self._load_graph(turn.account, rule.flow_id)
            entry = flow_interpreter.start(graph)
        except FlowDataError as e:
            log.error(f"❌ Rule {rule.id}: {e.message}")
            return DispatchResult.no_action(f"rule {rule.id} flow unusable")

        if entry.node is None:
            log.warning(f"⚠️ Flow {rule.flow_id} start node has no outgoing edge; nothing sent")
            return DispatchResult.handled_by("rule_flow", f"flow {rule.flow_id} is empty")

        self.store.start_flow(turn.account.id, turn.account.user_id, turn.contact, rule.flow_id, entry.node.id)
        self._emit(turn, entry.node)
        return DispatchResult.handled_by("rule_flow", f"flow {rule.flow_id} at '{entry.node.id}'")

    def _send_static(self, turn: Turn, rule: ChatbotRule) -> DispatchResult:
        texts = [str(t) for t in (rule.response_message or []) if t]
        buttons = [
            (str(b["text"]), str(b.get("payload") or b["text"]))
            for b in (rule.buttons or [])
            if isinstance(b, dict) and b.get("text")
        ][:flow_interpreter.MAX_BUTTONS]

        if not texts and not buttons:
            log.warning(f"⚠️ Rule {rule.id} has nothing to send")
            return DispatchResult.no_action(f"rule {rule.id} is empty")

        for text in texts:
            self.messages.send_text(self.db, turn.account, turn.contact, text)
        if buttons:
            body = texts[-1] if texts else BUTTONS_FALLBACK_BODY
            self.messages.send_buttons(self.db, turn.account, turn.contact, body, buttons)

        self._leave_flow(turn)
        return DispatchResult.handled_by("rule_static", f"rule {rule.id}")

    # ── Stage 3 ───────────────────────────────────

    def _ai_fallback(self, turn: Turn) -> DispatchResult:
        if not AIConfigLoader(self.db, turn.account).is_fallback_enabled():
            return DispatchResult.no_action("AI fallback disabled")

        self.messages.send_text(self.db, turn.account, turn.contact, self._ai_reply(turn))
        return DispatchResult.handled_by("ai_fallback")

    # ── Stage 4 ───────────────────────────────────

    def _default_reply(self, turn: Turn) -> DispatchResult:
        self.messages.send_text(self.db, turn.account, turn.contact, DEFAULT_REPLY)
        return DispatchResult.handled_by("default")

    # ────────────────────────────────────────────
    # Helpers
    # ────────────────────────────────────────────

    def _load_graph(self, account: WhatsAppAccount, flow_id: int) -> FlowGraph:
        flow = self.db.query(ChatbotFlow).filter(
            ChatbotFlow.id == flow_id,
            ChatbotFlow.user_id == account.user_id,
        ).first()
        if flow is None:
            raise FlowDataError(f"Flow {flow_id} not found")
        return FlowGraph.from_flow_data(flow.flow_data, flow_id=flow.id)

    def _emit(self, turn: Turn, node: FlowNode):
        emission = node.emission()
        if emission is None:
            return
        if emission.is_interactive:
            self.messages.send_buttons(
                self.db, turn.account, turn.contact,
                emission.body or BUTTONS_FALLBACK_BODY, emission.buttons,
            )
        elif emission.body:
            self.messages.send_text(self.db, turn.account, turn.contact, emission.body)
        else:
            log.warning(f"⚠️ Node '{node.id}' has no message text; nothing sent")

    def _ai_reply(self, turn: Turn) -> str:
        """Completion text, or a fixed apology when AI is unusable"""
        try:
            return self.ai.respond(
                turn.account, turn.contact, turn.text, exclude_message_id=turn.message_id
            )
        except AIConfigError as e:
            log.error(f"❌ AI not configured for account {turn.account.id}: {e.message}")
            return AI_UNAVAILABLE_REPLY
        except AIResponderError as e:
            log.error(f"❌ AI provider failed for account {turn.account.id}: {e.message} {e.details or ''}")
            return AI_ERROR_REPLY
        except Exception as e:
            log.error(f"❌ Unexpected AI error for account {turn.account.id}: {e}", exc_info=True)
            return AI_ERROR_REPLY

    def _leave_flow(self, turn: Turn):
        if turn.in_flow:
            self.store.clear_flow_state(turn.account.id, turn.contact)

    def _record(
        self,
        user_id: Optional[str],
        log_type: str,
        phone: Optional[str] = None,
        message_id: Optional[str] = None,
        status: Optional[str] = None,
        error: Optional[str] = None,
        raw: Optional[Dict[str, Any]] = None,
    ):
        """Write a webhook_logs audit row; failures never affect routing"""
        try:
            self.db.add(WebhookLog(
                user_id=user_id,
                log_type=log_type,
                phone=phone,
                message_id=message_id,
                status=status,
                error_message=error,
                raw_data=raw,
            ))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            log.error(f"❌ Failed to write webhook log: {e}")
