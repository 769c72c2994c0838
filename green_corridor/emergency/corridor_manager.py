"""
Green Corridor Manager - Emergency Signal Control

Derives which traffic signals lie on a mission's route and holds them in
GREEN_OVERRIDE while the ambulance travels. Each mission owns at most one
corridor at a time (towards the scene or towards the hospital).

Route geometry is a straight line from the vehicle to its destination, or
a caller-provided polyline. Road routing is outside this service.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from green_corridor.models import GeoPoint
from green_corridor.utils.geo import locate_on_path, path_length_m
from .keyed_lock import KeyedLock
from .signal_store import ClaimOutcome, SignalStateStore, TrafficSignal

logger = logging.getLogger(__name__)


class CorridorKind(str, Enum):
    """Destination type of a corridor"""
    SCENE = "SCENE"
    HOSPITAL = "HOSPITAL"


@dataclass
class ActiveCorridor:
    """
    Corridor state for one mission

    Tracks the route and the signals this mission currently holds.
    """
    mission_id: str
    kind: CorridorKind
    destination: GeoPoint
    path: Optional[List[GeoPoint]] = None      # Caller-provided polyline, if any
    signal_ids: List[str] = field(default_factory=list)  # Held signals, in route order
    contested_signal_ids: List[str] = field(default_factory=list)  # Held by other missions
    activated_at: float = field(default_factory=time.time)
    refreshed_at: float = field(default_factory=time.time)
    expires_at: float = 0.0
    route_length_m: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API response"""
        return {
            'missionId': self.mission_id,
            'kind': self.kind.value,
            'destination': self.destination.model_dump(),
            'signalIds': list(self.signal_ids),
            'contestedSignalIds': list(self.contested_signal_ids),
            'signalCount': len(self.signal_ids),
            'activatedAt': self.activated_at,
            'refreshedAt': self.refreshed_at,
            'expiresAt': self.expires_at,
            'routeLengthM': round(self.route_length_m, 1)
        }


class GreenCorridorManager:
    """
    Manage emergency green corridors

    Responsibilities:
    - Find signals within corridor_radius_m of a route
    - Claim them for the mission with a TTL
    - Refresh the TTL and advance the corridor on each location update
    - Release the mission's own claims on arrival or cancellation
    - Sweep expired overrides periodically

    Usage:
        manager = GreenCorridorManager(signal_store)
        manager.activate_corridor("ACC-1", ambulance_pos, hospital_pos, CorridorKind.HOSPITAL)
        manager.refresh_corridor("ACC-1", new_pos)
        manager.release_corridor("ACC-1")
    """

    def __init__(
        self,
        signal_store: SignalStateStore,
        corridor_radius_m: float = 200.0,
        override_ttl_s: float = 600.0,
        passed_margin_m: float = 50.0,
        sweep_interval_s: float = 30.0,
        clock: Optional[Callable[[], float]] = None
    ):
        """
        Initialize corridor manager

        Args:
            signal_store: SignalStateStore holding signal claims
            corridor_radius_m: Max distance of a signal from the route
            override_ttl_s: Override lifetime without a refresh
            passed_margin_m: Distance behind the vehicle after which a
                signal counts as passed and is released
            sweep_interval_s: Period of the background expiry sweep
            clock: Time source (defaults to the signal store's clock)
        """
        self.signal_store = signal_store
        self.corridor_radius_m = corridor_radius_m
        self.override_ttl_s = override_ttl_s
        self.passed_margin_m = passed_margin_m
        self.sweep_interval_s = sweep_interval_s
        self.clock = clock or signal_store.clock

        # mission_id -> ActiveCorridor
        self._corridors: Dict[str, ActiveCorridor] = {}
        self._locks = KeyedLock()
        self._listeners: List[Callable[[str, Dict[str, Any]], None]] = []

        # Sweep task
        self._sweep_task: Optional[asyncio.Task] = None

        # Statistics (counters shared across keys, guarded by _stats_lock)
        self._stats_lock = threading.Lock()
        self.corridors_activated = 0
        self.corridors_released = 0
        self.signals_expired = 0

    def add_listener(self, listener: Callable[[str, Dict[str, Any]], None]):
        """Register a callback(event, payload) for corridor activation/release"""
        self._listeners.append(listener)

    def _count(self, counter: str, amount: int = 1):
        with self._stats_lock:
            setattr(self, counter, getattr(self, counter) + amount)

    # ============================================
    # Route geometry
    # ============================================

    def signals_on_route(
        self,
        start: GeoPoint,
        end: GeoPoint,
        path: Optional[Sequence[GeoPoint]] = None,
        progress_m: float = 0.0
    ) -> List[TrafficSignal]:
        """
        Signals within the corridor radius of a route

        Args:
            start: Route start (vehicle position)
            end: Route end (destination)
            path: Optional polyline replacing the straight start -> end line
            progress_m: Distance already travelled along ``path``

        Returns:
            Signals ahead of the vehicle ordered by distance along the route
        """
        route = list(path) if path and len(path) >= 2 else [start, end]

        candidates = []
        for signal in self.signal_store.locations():
            cross_m, along_m = locate_on_path(signal.location, route)
            if cross_m > self.corridor_radius_m:
                continue
            if along_m - progress_m < -self.passed_margin_m:
                continue
            candidates.append((along_m, signal.signal_id, signal))

        candidates.sort(key=lambda c: (c[0], c[1]))
        return [c[2] for c in candidates]

    # ============================================
    # Corridor lifecycle
    # ============================================

    def activate_corridor(
        self,
        mission_id: str,
        start: GeoPoint,
        destination: GeoPoint,
        kind: CorridorKind,
        path: Optional[Sequence[GeoPoint]] = None
    ) -> ActiveCorridor:
        """
        Activate (or re-target) the corridor for a mission

        Claims every signal on the route. Signals held by another live
        mission are left alone and reported as contested. When the mission
        already had a corridor, its claims that are not on the new route
        are released after the new claims are in place.

        Returns:
            The mission's ActiveCorridor
        """
        with self._locks.hold(mission_id):
            now = self.clock()
            previous = self._corridors.get(mission_id)

            corridor = ActiveCorridor(
                mission_id=mission_id,
                kind=kind,
                destination=destination,
                path=list(path) if path and len(path) >= 2 else None,
                activated_at=now,
                refreshed_at=now
            )

            route = corridor.path or [start, destination]
            corridor.route_length_m = path_length_m(route)

            progress_m = 0.0
            if corridor.path:
                _, progress_m = locate_on_path(start, corridor.path)

            wanted = self.signals_on_route(start, destination, corridor.path, progress_m=progress_m)
            self._apply_claims(corridor, wanted, previous)
            self._corridors[mission_id] = corridor
            self._count('corridors_activated')

        logger.info(
            "Corridor activated for %s -> %s: %d signals (%d contested)",
            mission_id, kind.value, len(corridor.signal_ids), len(corridor.contested_signal_ids)
        )
        self._notify('corridor:activated', corridor.to_dict())
        return corridor

    def refresh_corridor(self, mission_id: str, current_location: GeoPoint) -> Optional[ActiveCorridor]:
        """
        Advance the corridor after a location update

        Extends the TTL of signals still ahead, claims signals that came
        into range and releases the mission's signals already passed.

        Returns:
            Updated corridor, or None if the mission has no corridor
        """
        with self._locks.hold(mission_id):
            corridor = self._corridors.get(mission_id)
            if corridor is None:
                return None

            progress_m = 0.0
            if corridor.path:
                _, progress_m = locate_on_path(current_location, corridor.path)

            wanted = self.signals_on_route(
                current_location,
                corridor.destination,
                corridor.path,
                progress_m=progress_m
            )
            self._apply_claims(corridor, wanted, corridor)
            corridor.refreshed_at = self.clock()

        return corridor

    def release_corridor(self, mission_id: str) -> List[str]:
        """
        Release every signal held by a mission

        Signals re-claimed by a different mission are never touched.

        Returns:
            IDs of signals reverted to NORMAL
        """
        with self._locks.hold(mission_id):
            corridor = self._corridors.pop(mission_id, None)
            released = self.signal_store.release_all(mission_id)

        if corridor is None and not released:
            return released

        self._count('corridors_released')
        logger.info("Corridor released for %s: %d signals back to NORMAL", mission_id, len(released))
        self._notify('corridor:released', {
            'missionId': mission_id,
            'releasedSignalIds': released,
            'timestamp': self.clock()
        })
        return released

    def _apply_claims(
        self,
        corridor: ActiveCorridor,
        wanted: List[TrafficSignal],
        previous: Optional[ActiveCorridor]
    ):
        # Caller holds the mission lock
        held: List[str] = []
        contested: List[str] = []

        for signal in wanted:
            outcome = self.signal_store.claim(signal.signal_id, corridor.mission_id, self.override_ttl_s)
            if outcome == ClaimOutcome.CONTESTED:
                contested.append(signal.signal_id)
            else:
                held.append(signal.signal_id)

        if previous is not None:
            for signal_id in previous.signal_ids:
                if signal_id not in held:
                    self.signal_store.release(signal_id, corridor.mission_id)

        corridor.signal_ids = held
        corridor.contested_signal_ids = contested
        corridor.expires_at = self.clock() + self.override_ttl_s

    # ============================================
    # Queries
    # ============================================

    def get_corridor(self, mission_id: str) -> Optional[ActiveCorridor]:
        """Get the corridor record for a mission"""
        return self._corridors.get(mission_id)

    def is_corridor_active(self, mission_id: str) -> bool:
        """Check if a mission holds at least one live override"""
        return bool(self.signal_store.owned_by(mission_id))

    def get_active_corridors(self) -> List[Dict[str, Any]]:
        """
        Corridors with at least one live override

        Expired claims are dropped lazily while reading the signal store.
        """
        active = []
        for mission_id, signal_ids in sorted(self.signal_store.active_owners().items()):
            corridor = self._corridors.get(mission_id)
            if corridor is not None:
                data = corridor.to_dict()
            else:
                data = {'missionId': mission_id}
            data['liveSignalIds'] = signal_ids
            active.append(data)
        return active

    # ============================================
    # Expiry sweep
    # ============================================

    def sweep_expired(self) -> List[str]:
        """Revert expired overrides to NORMAL"""
        expired = self.signal_store.sweep_expired()
        if expired:
            self._count('signals_expired', len(expired))
            logger.info("Sweep reverted %d expired overrides", len(expired))
        return expired

    async def start_sweeper(self):
        """Start the background expiry sweep"""
        if self._sweep_task and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop_sweeper(self):
        """Stop the background expiry sweep"""
        if not self._sweep_task:
            return

        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None

    async def _sweep_loop(self):
        logger.info("Corridor sweep started (every %.0fs)", self.sweep_interval_s)

        while True:
            await asyncio.sleep(self.sweep_interval_s)
            try:
                self.sweep_expired()
            except Exception:
                logger.exception("Corridor sweep failed")

    def _notify(self, event: str, payload: Dict[str, Any]):
        for listener in self._listeners:
            try:
                listener(event, payload)
            except Exception:
                logger.exception("Corridor listener failed for %s", event)

    def get_statistics(self) -> Dict[str, Any]:
        """Get corridor manager statistics"""
        return {
            'corridorsActivated': self.corridors_activated,
            'corridorsReleased': self.corridors_released,
            'signalsExpired': self.signals_expired,
            'activeCorridors': len(self.signal_store.active_owners()),
            'sweepRunning': bool(self._sweep_task and not self._sweep_task.done())
        }


# Global corridor manager instance
_corridor_manager: Optional[GreenCorridorManager] = None


def get_corridor_manager() -> Optional[GreenCorridorManager]:
    """Get global corridor manager instance"""
    return _corridor_manager


def init_corridor_manager(signal_store: SignalStateStore, **kwargs) -> GreenCorridorManager:
    """Initialize global corridor manager"""
    global _corridor_manager
    _corridor_manager = GreenCorridorManager(signal_store, **kwargs)
    return _corridor_manager
