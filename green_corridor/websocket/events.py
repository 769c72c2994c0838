"""
WebSocket Event Type Definitions

This module defines the corridor WebSocket event types and their data
structures.

Events are categorized as:
- Server → Client: Mission, corridor and signal updates
- Client → Server: Channel subscriptions
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


# ============================================
# Event Name Constants
# ============================================

class ServerEvent(str, Enum):
    """Events emitted from server to client"""

    # Connection
    CONNECTION_SUCCESS = "connection:success"

    # Signal updates
    SIGNAL_CHANGE = "signal:change"

    # Mission updates
    MISSION_CREATED = "mission:created"
    MISSION_PHASE = "mission:phase"
    MISSION_CANCELLED = "mission:cancelled"

    # Corridor updates
    CORRIDOR_ACTIVATED = "corridor:activated"
    CORRIDOR_RELEASED = "corridor:released"


class ClientEvent(str, Enum):
    """Events received from client"""

    # Connection
    CONNECT = "connect"
    DISCONNECT = "disconnect"

    # Subscriptions
    SUBSCRIBE_UPDATES = "subscribe:updates"
    UNSUBSCRIBE_UPDATES = "unsubscribe:updates"


# Subscription channel for each server event
EVENT_CHANNELS: Dict[str, str] = {
    ServerEvent.SIGNAL_CHANGE.value: "signals",
    ServerEvent.MISSION_CREATED.value: "missions",
    ServerEvent.MISSION_PHASE.value: "missions",
    ServerEvent.MISSION_CANCELLED.value: "missions",
    ServerEvent.CORRIDOR_ACTIVATED.value: "corridors",
    ServerEvent.CORRIDOR_RELEASED.value: "corridors",
}


# ============================================
# Server → Client Event Data Models
# ============================================

class ConnectionSuccessData(BaseModel):
    """Data for connection:success event"""
    message: str = "Connected to Green Corridor Service"
    timestamp: float
    serverVersion: str = "1.0.0"
    channels: List[str] = ["signals", "missions", "corridors"]


class SignalChangeData(BaseModel):
    """Data for signal:change event"""
    signalId: str
    newState: str                         # NORMAL / GREEN_OVERRIDE
    ownerMissionId: Optional[str] = None
    overrideExpiresAt: Optional[float] = None
    timestamp: float


class MissionEventData(BaseModel):
    """Data for mission:* events"""
    accidentId: str
    phase: str
    entityId: Optional[str] = None
    hospital: Optional[Dict[str, Any]] = None
    timestamp: float


class CorridorEventData(BaseModel):
    """Data for corridor:* events"""
    missionId: str
    signalIds: List[str] = []
    kind: Optional[str] = None
    timestamp: float


# ============================================
# Client → Server Event Data Models
# ============================================

class SubscribeRequest(BaseModel):
    """Data for subscribe:updates / unsubscribe:updates events"""
    channels: List[str] = []
