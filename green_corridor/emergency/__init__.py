"""
Emergency Green Corridor Engine

Mission tracking and signal control for ambulances travelling from an
accident scene to a hospital.

Components:
- MissionTracker: Per-accident phase state machine and hospital assignment
- GreenCorridorManager: Signal claims along each mission's route
- SignalStateStore: Per-signal override state with owner and expiry
- KeyedLock: Per-key locking used by all three
"""

from .keyed_lock import KeyedLock

from .signal_store import (
    SignalStateStore,
    TrafficSignal,
    SignalState,
    ClaimOutcome,
    DEMO_SIGNALS,
)

from .corridor_manager import (
    GreenCorridorManager,
    ActiveCorridor,
    CorridorKind,
    get_corridor_manager,
    init_corridor_manager,
)

from .mission_tracker import (
    MissionTracker,
    Mission,
    MissionPhase,
    PHASE_ORDER,
    LocationFix,
    LocationUpdateResult,
    get_mission_tracker,
    init_mission_tracker,
)


__all__ = [
    # Locking
    "KeyedLock",

    # Signals
    "SignalStateStore",
    "TrafficSignal",
    "SignalState",
    "ClaimOutcome",
    "DEMO_SIGNALS",

    # Corridor Manager
    "GreenCorridorManager",
    "ActiveCorridor",
    "CorridorKind",
    "get_corridor_manager",
    "init_corridor_manager",

    # Mission Tracker
    "MissionTracker",
    "Mission",
    "MissionPhase",
    "PHASE_ORDER",
    "LocationFix",
    "LocationUpdateResult",
    "get_mission_tracker",
    "init_mission_tracker",
]
