"""
WebSocket Client Event Handlers

This module handles client→server WebSocket events: connection tracking
and channel subscriptions.

All handlers are registered with the Socket.IO server in main.py.
"""

import logging
import time
from typing import Any, Dict, Optional

from .emitter import WebSocketEmitter
from .events import ClientEvent, EVENT_CHANNELS, SubscribeRequest

logger = logging.getLogger(__name__)

AVAILABLE_CHANNELS = sorted(set(EVENT_CHANNELS.values()))


class WebSocketHandlers:
    """
    Centralized WebSocket event handlers

    Tracks connected dashboards and the channels they follow.
    """

    def __init__(self, sio, emitter: WebSocketEmitter):
        """
        Initialize handlers

        Args:
            sio: Socket.IO AsyncServer instance
            emitter: WebSocket emitter instance
        """
        self.sio = sio
        self.emitter = emitter

        # Track connected clients
        self._clients: Dict[str, Dict[str, Any]] = {}

        self._register_handlers()

    def _register_handlers(self):
        """Register all Socket.IO event handlers"""
        self.sio.on(ClientEvent.CONNECT.value, self.handle_connect)
        self.sio.on(ClientEvent.DISCONNECT.value, self.handle_disconnect)
        self.sio.on(ClientEvent.SUBSCRIBE_UPDATES.value, self.handle_subscribe)
        self.sio.on(ClientEvent.UNSUBSCRIBE_UPDATES.value, self.handle_unsubscribe)

    async def handle_connect(self, sid: str, environ: Dict):
        """Handle client connection"""
        self._clients[sid] = {
            "sid": sid,
            "connected_at": time.time(),
            "remote_addr": environ.get("REMOTE_ADDR", "unknown"),
            "subscriptions": []
        }

        logger.info("Client connected: %s from %s", sid, self._clients[sid]["remote_addr"])
        await self.emitter.emit_connection_success(sid)

    async def handle_disconnect(self, sid: str):
        """Handle client disconnection"""
        self._clients.pop(sid, None)
        logger.info("Client disconnected: %s", sid)

    async def handle_subscribe(self, sid: str, data: Dict):
        """
        Handle subscription request

        Args:
            sid: Session ID
            data: {channels: ['signals', 'missions', 'corridors']}
        """
        request = SubscribeRequest(**(data or {}))
        channels = [c for c in request.channels if c in AVAILABLE_CHANNELS]

        for channel in channels:
            await self.sio.enter_room(sid, f"channel:{channel}")

        if sid in self._clients:
            subscribed = self._clients[sid]["subscriptions"]
            subscribed.extend(c for c in channels if c not in subscribed)

        await self.sio.emit("subscribe:response", {
            "status": "success",
            "channels": channels,
            "timestamp": time.time()
        }, room=sid)

    async def handle_unsubscribe(self, sid: str, data: Dict):
        """Handle unsubscribe request"""
        request = SubscribeRequest(**(data or {}))

        for channel in request.channels:
            await self.sio.leave_room(sid, f"channel:{channel}")

        if sid in self._clients:
            self._clients[sid]["subscriptions"] = [
                c for c in self._clients[sid]["subscriptions"] if c not in request.channels
            ]

        await self.sio.emit("unsubscribe:response", {
            "status": "success",
            "channels": request.channels,
            "timestamp": time.time()
        }, room=sid)

    def get_connected_clients(self) -> Dict[str, Dict[str, Any]]:
        """Get all connected clients"""
        return self._clients.copy()

    def get_client_count(self) -> int:
        """Get number of connected clients"""
        return len(self._clients)


# Global handlers instance (initialized in main.py)
handlers: Optional[WebSocketHandlers] = None


def get_handlers() -> Optional[WebSocketHandlers]:
    """Get the global WebSocket handlers instance"""
    return handlers


def set_handlers(h: WebSocketHandlers):
    """Set the global WebSocket handlers instance"""
    global handlers
    handlers = h
