# whatsflow/services/conversation_store.py
"""
Conversation store - one row per (account, contact), holding the inbox
cache and the flow position.

Flow position writes are conditional on the node id the caller last read,
so two concurrent inbound messages for the same contact cannot both
advance the flow. Within one process, contact_lock() serializes dispatch
for a pair before the database is consulted at all.
"""
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from whatsflow.models.conversation import Conversation

log = logging.getLogger("whatsflow.conversations")


# ────────────────────────────────────────────
# Keyed lock registry
# ────────────────────────────────────────────

_locks: Dict[Tuple[int, str], List] = {}
_registry_lock = threading.Lock()


@contextmanager
def contact_lock(account_id: int, contact_phone_number: str):
    """Serialize dispatch for one (account, contact) pair"""
    key = (account_id, contact_phone_number)
    with _registry_lock:
        # entry is [lock, holders]; removed once the last holder leaves
        entry = _locks.setdefault(key, [threading.Lock(), 0])
        entry[1] += 1
    try:
        with entry[0]:
            yield
    finally:
        with _registry_lock:
            entry[1] -= 1
            if entry[1] == 0:
                del _locks[key]


class ConversationStore:
    """Reads and conditional writes of Conversation rows"""

    def __init__(self, db: Session):
        self.db = db

    def _query(self, account_id: int, contact_phone_number: str):
        return self.db.query(Conversation).filter(
            Conversation.whatsapp_account_id == account_id,
            Conversation.contact_phone_number == contact_phone_number,
        )

    def get(self, account_id: int, contact_phone_number: str) -> Optional[Conversation]:
        return self._query(account_id, contact_phone_number).first()

    def get_or_create(
        self,
        account_id: int,
        user_id: str,
        contact_phone_number: str,
        contact_name: Optional[str] = None,
    ) -> Conversation:
        """Upsert on (account, contact); a concurrent insert is re-read"""
        conversation = self.get(account_id, contact_phone_number)
        if conversation is not None:
            if contact_name and conversation.contact_name != contact_name:
                conversation.contact_name = contact_name
                self.db.commit()
            return conversation

        conversation = Conversation(
            user_id=user_id,
            whatsapp_account_id=account_id,
            contact_phone_number=contact_phone_number,
            contact_name=contact_name,
        )
        self.db.add(conversation)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            log.debug(f"Conversation {account_id}/{contact_phone_number} created concurrently, re-reading")
            return self._query(account_id, contact_phone_number).one()

        self.db.refresh(conversation)
        log.info(f"🆕 Conversation created: account={account_id} contact={contact_phone_number}")
        return conversation

    def touch(
        self,
        account_id: int,
        user_id: str,
        contact_phone_number: str,
        body: Optional[str],
        at: Optional[datetime] = None,
        contact_name: Optional[str] = None,
    ) -> Conversation:
        """Update the inbox last-message cache"""
        conversation = self.get_or_create(account_id, user_id, contact_phone_number, contact_name)
        conversation.last_message_at = at or datetime.utcnow()
        conversation.last_message_body = body
        self.db.commit()
        return conversation

    # ────────────────────────────────────────────
    # Flow position
    # ────────────────────────────────────────────

    def start_flow(
        self,
        account_id: int,
        user_id: str,
        contact_phone_number: str,
        flow_id: int,
        node_id: str,
    ) -> Conversation:
        """Enter a flow unconditionally (a rule matched, replacing any old position)"""
        conversation = self.get_or_create(account_id, user_id, contact_phone_number)
        conversation.current_flow_id = flow_id
        conversation.current_node_id = node_id
        self.db.commit()
        log.info(f"➡️ {contact_phone_number} entered flow {flow_id} at '{node_id}'")
        return conversation

    def advance(
        self,
        account_id: int,
        contact_phone_number: str,
        flow_id: int,
        expected_node_id: str,
        new_node_id: str,
    ) -> bool:
        """
        Move to new_node_id only if the stored position is still
        (flow_id, expected_node_id). Returns False when another writer won.
        """
        updated = self._query(account_id, contact_phone_number).filter(
            Conversation.current_flow_id == flow_id,
            Conversation.current_node_id == expected_node_id,
        ).update(
            {
                Conversation.current_node_id: new_node_id,
                Conversation.updated_at: datetime.utcnow(),
            },
            synchronize_session=False,
        )
        self.db.commit()

        if updated != 1:
            log.warning(
                f"⚠️ Flow advance lost for {contact_phone_number}: "
                f"expected '{expected_node_id}' in flow {flow_id}"
            )
            return False
        return True

    def clear_flow_state(self, account_id: int, contact_phone_number: str) -> bool:
        """Return the conversation to idle; True if it was in a flow"""
        updated = self._query(account_id, contact_phone_number).filter(
            Conversation.current_flow_id.isnot(None),
        ).update(
            {
                Conversation.current_flow_id: None,
                Conversation.current_node_id: None,
                Conversation.updated_at: datetime.utcnow(),
            },
            synchronize_session=False,
        )
        self.db.commit()
        if updated:
            log.info(f"🧹 Flow state cleared for {contact_phone_number}")
        return bool(updated)

