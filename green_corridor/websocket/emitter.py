"""
WebSocket Event Emitter

This module provides the WebSocketEmitter class for sending real-time
corridor updates to connected clients. All server→client events are
handled here.

The corridor engine is synchronous and never awaits network I/O. Its
listeners call the ``publish_*`` methods, which schedule the actual
Socket.IO emit on the event loop and return immediately.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional, Set

from .events import (
    EVENT_CHANNELS,
    ConnectionSuccessData,
    CorridorEventData,
    MissionEventData,
    ServerEvent,
    SignalChangeData,
)

logger = logging.getLogger(__name__)


class WebSocketEmitter:
    """
    Centralized WebSocket event emitter

    Each event is broadcast to every client and to the Socket.IO room of
    its channel ("channel:signals", "channel:missions", "channel:corridors").
    """

    def __init__(self, sio, loop: Optional[asyncio.AbstractEventLoop] = None):
        """
        Initialize the WebSocket emitter

        Args:
            sio: Socket.IO AsyncServer instance
            loop: Event loop used to schedule emits from engine callbacks
        """
        self.sio = sio
        self.loop = loop

        # Statistics
        self._emit_count = 0
        self._error_count = 0
        self._last_emit_time = 0.0

        # Emits scheduled on the loop and not yet finished
        self._pending: Set[asyncio.Task] = set()

    # ============================================
    # Engine callbacks (sync)
    # ============================================

    def publish_signal_change(self, signal):
        """Signal store listener"""
        data = SignalChangeData(
            signalId=signal.signal_id,
            newState=signal.state.value,
            ownerMissionId=signal.owner_mission_id,
            overrideExpiresAt=signal.override_expires_at,
            timestamp=signal.last_changed_at
        )
        self._schedule(ServerEvent.SIGNAL_CHANGE.value, data.model_dump())

    def publish_mission_event(self, event: str, mission: Dict[str, Any]):
        """Mission tracker listener"""
        data = MissionEventData(
            accidentId=mission['accidentId'],
            phase=mission['phase'],
            entityId=mission.get('entityId'),
            hospital=mission.get('hospital'),
            timestamp=time.time()
        )
        self._schedule(event, data.model_dump())

    def publish_corridor_event(self, event: str, corridor: Dict[str, Any]):
        """Corridor manager listener"""
        data = CorridorEventData(
            missionId=corridor['missionId'],
            signalIds=corridor.get('signalIds') or corridor.get('releasedSignalIds') or [],
            kind=corridor.get('kind'),
            timestamp=time.time()
        )
        self._schedule(event, data.model_dump())

    def _schedule(self, event: str, data: Dict[str, Any]):
        """Queue an emit on the bound loop without waiting for it"""
        loop = self.loop
        if loop is None or loop.is_closed():
            logger.debug("No event loop bound, %s not sent", event)
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            task = loop.create_task(self._emit(event, data))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        else:
            asyncio.run_coroutine_threadsafe(self._emit(event, data), loop)

    # ============================================
    # Connection Events
    # ============================================

    async def emit_connection_success(self, sid: str):
        """Emit connection success to specific client"""
        data = ConnectionSuccessData(timestamp=time.time())
        await self.sio.emit(ServerEvent.CONNECTION_SUCCESS.value, data.model_dump(), room=sid)
        self._emit_count += 1

    async def _emit(self, event: str, data: Any):
        """
        Internal emit with error handling and statistics

        Args:
            event: Event name
            data: Event data
        """
        try:
            await self.sio.emit(event, data)

            channel = EVENT_CHANNELS.get(event)
            if channel:
                await self.sio.emit(f"{channel}:{event}", data, room=f"channel:{channel}")

            self._emit_count += 1
            self._last_emit_time = time.time()

        except Exception as e:
            self._error_count += 1
            logger.warning("Failed to emit %s: %s", event, e)

    def get_stats(self) -> Dict[str, Any]:
        """Get emitter statistics"""
        return {
            "totalEmits": self._emit_count,
            "errorCount": self._error_count,
            "lastEmitTime": self._last_emit_time,
            "pendingEmits": len(self._pending),
            "loopBound": self.loop is not None
        }


# Global emitter instance (initialized in main.py)
emitter: Optional[WebSocketEmitter] = None


def get_emitter() -> Optional[WebSocketEmitter]:
    """Get the global WebSocket emitter instance"""
    return emitter


def set_emitter(e: WebSocketEmitter):
    """Set the global WebSocket emitter instance"""
    global emitter
    emitter = e
