# whatsflow/ws/manager.py
"""
Connection manager for per-user inbox WebSocket broadcasting.

Usage:
- In FastAPI route: await ws_manager.connect(...) / ws_manager.disconnect(...)
- From async code: await ws_manager.notify_clients(user_id, payload_dict)
- From sync code (routing runs in a worker thread): ws_manager.notify_clients_sync(user_id, payload_dict)
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Dict, Set, Optional

import anyio
from fastapi import WebSocket

log = logging.getLogger("whatsflow.ws")


class WebSocketConnectionManager:
    def __init__(self) -> None:
        # Map user_id -> set of WebSocket connections
        self.active: Dict[str, Set[WebSocket]] = {}

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        """Accept and register a websocket under a user."""
        await websocket.accept()
        self.active.setdefault(user_id, set()).add(websocket)
        log.info("WS connected: user=%s total=%d", user_id, self.connection_count(user_id))

    def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        """Unregister a websocket from a user."""
        conns = self.active.get(user_id)
        if conns is not None:
            conns.discard(websocket)
            if not conns:
                self.active.pop(user_id, None)
        log.info("WS disconnected: user=%s total=%d", user_id, self.connection_count(user_id))

    async def notify_clients(self, user_id: str, message_data: dict) -> None:
        """Async: send JSON to all connected clients of a user."""
        connections = list(self.active.get(user_id, set()))
        if not connections:
            log.debug(f"No WebSocket connections for user {user_id}")
            return

        stale: Set[WebSocket] = set()
        sent_count = 0
        for ws in connections:
            try:
                await ws.send_json(message_data)
                sent_count += 1
            except Exception as e:
                log.warning(f"⚠️ WS send failed, marking stale: {e}")
                stale.add(ws)

        log.debug(f"🔔 Sent {message_data.get('event')} to {sent_count}/{len(connections)} clients of user {user_id}")

        if stale:
            alive = self.active.get(user_id, set())
            for ws in stale:
                alive.discard(ws)
            if not alive:
                self.active.pop(user_id, None)
            log.info(f"🧹 Removed {len(stale)} stale connections")

    def connection_count(self, user_id: Optional[str] = None) -> int:
        if user_id is None:
            return sum(len(s) for s in self.active.values())
        return len(self.active.get(user_id, set()))

    def notify_clients_sync(self, user_id: str, message_data: dict) -> None:
        """
        Sync-safe helper to dispatch async notify from non-async contexts.

        Strategy:
        - anyio.from_thread.run hops into the running loop (worker threads started by run_in_threadpool)
        - else, if we're on a running loop thread, create_task
        - else, run the coroutine in a new daemon thread
        """
        if not self.connection_count(user_id):
            return

        try:
            anyio.from_thread.run(self.notify_clients, user_id, message_data)
            return
        except RuntimeError as e:
            log.debug(f"anyio.from_thread.run unavailable: {e}")

        try:
            loop = asyncio.get_running_loop()
            loop.create_task(self.notify_clients(user_id, message_data))
            return
        except RuntimeError:
            pass

        def _runner():
            try:
                asyncio.run(self.notify_clients(user_id, message_data))
            except Exception as e:
                log.error(f"❌ Background notify failed: {e}")

        threading.Thread(target=_runner, daemon=True).start()


# Singleton manager instance
ws_manager = WebSocketConnectionManager()


def notify_clients_sync(user_id: str, message_data: dict) -> None:
    ws_manager.notify_clients_sync(user_id, message_data)
