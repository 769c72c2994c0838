"""
Mission Tracker

Per-accident mission state machine: scene reports, ambulance location
updates, arrival detection and hospital assignment.

Phases advance strictly in order and never regress:
    EN_ROUTE_TO_SCENE -> AT_SCENE -> ROUTING_TO_HOSPITAL -> ARRIVED

Concurrency:
    Every mutation of a mission runs under that accident's own lock.
    Mission records are replaced copy-on-write, so readers get a
    consistent snapshot without taking any lock.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from green_corridor.errors import (
    NoHospitalAvailableError,
    NotAvailableError,
    NotFoundError,
    ValidationError,
)
from green_corridor.models import GeoPoint, HospitalAssignment
from green_corridor.services.hospital_directory import HospitalDirectory
from green_corridor.utils.geo import distance_m, haversine_km, map_link, within_threshold
from .corridor_manager import CorridorKind, GreenCorridorManager
from .keyed_lock import KeyedLock

logger = logging.getLogger(__name__)


class MissionPhase(str, Enum):
    """Mission lifecycle phase"""
    EN_ROUTE_TO_SCENE = "EN_ROUTE_TO_SCENE"
    AT_SCENE = "AT_SCENE"
    ROUTING_TO_HOSPITAL = "ROUTING_TO_HOSPITAL"
    ARRIVED = "ARRIVED"

    @property
    def rank(self) -> int:
        return PHASE_ORDER.index(self)


PHASE_ORDER: List[MissionPhase] = [
    MissionPhase.EN_ROUTE_TO_SCENE,
    MissionPhase.AT_SCENE,
    MissionPhase.ROUTING_TO_HOSPITAL,
    MissionPhase.ARRIVED,
]


@dataclass
class LocationFix:
    """Accepted ambulance location update"""
    location: GeoPoint
    timestamp: float
    entity_id: str


@dataclass
class Mission:
    """
    Tracked lifecycle of one ambulance responding to one accident

    Invariants:
    - arrived_at_scene_at set => phase >= AT_SCENE
    - hospital set => phase >= ROUTING_TO_HOSPITAL
    - arrived_at_hospital_at set => phase == ARRIVED
    """
    accident_id: str
    scene_location: GeoPoint
    phase: MissionPhase = MissionPhase.EN_ROUTE_TO_SCENE
    entity_id: Optional[str] = None
    current_location: Optional[GeoPoint] = None
    last_update_time: Optional[float] = None
    hospital: Optional[HospitalAssignment] = None
    arrived_at_scene_at: Optional[float] = None
    arrived_at_hospital_at: Optional[float] = None
    specialty: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    cancelled_at: Optional[float] = None
    cancel_reason: Optional[str] = None
    location_history: List[LocationFix] = field(default_factory=list)
    phase_history: List[Tuple[MissionPhase, float]] = field(default_factory=list)

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None

    @property
    def is_active(self) -> bool:
        """Mission can still change phase"""
        return not self.is_cancelled and self.phase != MissionPhase.ARRIVED

    def copy(self) -> "Mission":
        """Working copy for copy-on-write updates"""
        return replace(
            self,
            location_history=list(self.location_history),
            phase_history=list(self.phase_history)
        )

    def to_dict(self) -> Dict[str, Any]:
        """Sanitized mission view for API responses"""
        hospital = None
        if self.hospital:
            hospital = self.hospital.to_dict()
            hospital['mapLink'] = map_link(self.hospital.location)

        return {
            'accidentId': self.accident_id,
            'entityId': self.entity_id,
            'phase': self.phase.value,
            'sceneLocation': self.scene_location.model_dump(),
            'currentLocation': self.current_location.model_dump() if self.current_location else None,
            'lastUpdateTime': self.last_update_time,
            'hospital': hospital,
            'arrivedAtSceneAt': self.arrived_at_scene_at,
            'arrivedAtHospitalAt': self.arrived_at_hospital_at,
            'specialty': self.specialty,
            'createdAt': self.created_at,
            'cancelledAt': self.cancelled_at,
            'cancelReason': self.cancel_reason,
            'phaseHistory': [
                {'phase': phase.value, 'at': at} for phase, at in self.phase_history
            ]
        }


@dataclass
class LocationUpdateResult:
    """Outcome of a location update"""
    accident_id: str
    accepted: bool
    phase: MissionPhase
    transitioned_to: Optional[MissionPhase] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'accidentId': self.accident_id,
            'accepted': self.accepted,
            'phase': self.phase.value,
            'transitionedTo': self.transitioned_to.value if self.transitioned_to else None,
            'reason': self.reason
        }


class MissionTracker:
    """
    Track ambulance missions and drive their corridors

    Responsibilities:
    - Create missions from scene reports
    - Ingest location updates, dropping stale ones
    - Detect scene and hospital arrival
    - Assign hospitals from the directory
    - Tell the corridor manager when to activate, refresh or release

    Usage:
        tracker = MissionTracker(directory, corridor_manager)
        tracker.report_scene("ACC-1", GeoPoint(lat=18.53, lng=73.87))
        tracker.report_location("ACC-1", "AMB-1", GeoPoint(lat=18.5301, lng=73.8701), time.time())
        tracker.start_hospital_routing("ACC-1")
    """

    def __init__(
        self,
        hospital_directory: HospitalDirectory,
        corridor_manager: Optional[GreenCorridorManager] = None,
        scene_arrival_m: float = 150.0,
        hospital_arrival_m: float = 150.0,
        history_limit: int = 50,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize mission tracker

        Args:
            hospital_directory: Directory used for hospital assignment
            corridor_manager: Corridor manager (None disables signal control)
            scene_arrival_m: Scene arrival threshold in meters
            hospital_arrival_m: Hospital arrival threshold in meters
            history_limit: Accepted location fixes kept per mission
            clock: Time source in epoch seconds (injectable for tests)
        """
        self.hospital_directory = hospital_directory
        self.corridor_manager = corridor_manager
        self.scene_arrival_m = scene_arrival_m
        self.hospital_arrival_m = hospital_arrival_m
        self.history_limit = history_limit
        self.clock = clock

        # accident_id -> Mission (replaced on every update)
        self._missions: Dict[str, Mission] = {}
        self._locks = KeyedLock()
        self._listeners: List[Callable[[str, Dict[str, Any]], None]] = []

        # Statistics (counters shared across keys, guarded by _stats_lock)
        self._stats_lock = threading.Lock()
        self.total_missions = 0
        self.location_updates = 0
        self.stale_updates_dropped = 0
        self.scene_arrivals = 0
        self.hospital_arrivals = 0
        self.cancelled_missions = 0

    def add_listener(self, listener: Callable[[str, Dict[str, Any]], None]):
        """Register a callback(event, payload) for mission changes"""
        self._listeners.append(listener)

    def _count(self, counter: str, amount: int = 1):
        with self._stats_lock:
            setattr(self, counter, getattr(self, counter) + amount)

    # ============================================
    # Scene reports
    # ============================================

    def report_scene(
        self,
        accident_id: str,
        scene_location: GeoPoint,
        specialty: Optional[str] = None
    ) -> Mission:
        """
        Create the mission for an accident, or update its scene

        The scene location may only move while the ambulance is still
        en route to it; afterwards re-reports are no-ops.

        Raises:
            ValidationError: If accident_id is missing
        """
        if not accident_id or not str(accident_id).strip():
            raise ValidationError("accidentId is required")

        with self._locks.hold(accident_id):
            current = self._missions.get(accident_id)

            if current is None:
                now = self.clock()
                mission = Mission(
                    accident_id=accident_id,
                    scene_location=scene_location,
                    specialty=specialty.strip().upper() if specialty else None,
                    created_at=now,
                    phase_history=[(MissionPhase.EN_ROUTE_TO_SCENE, now)]
                )
                self._missions[accident_id] = mission
                self._count('total_missions')
                logger.info(
                    "Mission created for %s at (%.5f, %.5f)",
                    accident_id, scene_location.lat, scene_location.lng
                )
                self._notify('mission:created', mission)
                return mission

            if current.phase != MissionPhase.EN_ROUTE_TO_SCENE or current.is_cancelled:
                logger.debug("Scene for %s is frozen in phase %s", accident_id, current.phase.value)
                return current

            mission = current.copy()
            mission.scene_location = scene_location
            if specialty:
                mission.specialty = specialty.strip().upper()
            self._missions[accident_id] = mission
            logger.info("Scene location updated for %s", accident_id)
            return mission

    # ============================================
    # Location updates
    # ============================================

    def report_location(
        self,
        accident_id: str,
        entity_id: str,
        location: GeoPoint,
        timestamp: Optional[float] = None
    ) -> LocationUpdateResult:
        """
        Ingest an ambulance location update

        Updates older than the mission's last accepted update are dropped
        without error. Arrival checks run only for accepted updates.

        Args:
            accident_id: Accident the ambulance is responding to
            entity_id: Ambulance ID
            location: Reported position
            timestamp: Fix time in epoch seconds (defaults to now)

        Returns:
            LocationUpdateResult

        Raises:
            NotFoundError: If no mission exists for accident_id
            ValidationError: If timestamp is not a finite number
        """
        if timestamp is None:
            timestamp = self.clock()
        elif not isinstance(timestamp, (int, float)) or not math.isfinite(timestamp):
            raise ValidationError(f"timestamp must be a finite number: {timestamp!r}")

        with self._locks.hold(accident_id):
            current = self._missions.get(accident_id)
            if current is None:
                raise NotFoundError(f"No mission for accident: {accident_id}")

            if current.last_update_time is not None and timestamp < current.last_update_time:
                self._count('stale_updates_dropped')
                logger.debug(
                    "Stale location for %s dropped (%.3f < %.3f)",
                    accident_id, timestamp, current.last_update_time
                )
                return LocationUpdateResult(
                    accident_id=accident_id,
                    accepted=False,
                    phase=current.phase,
                    reason="stale"
                )

            mission = current.copy()
            mission.entity_id = entity_id or mission.entity_id
            mission.current_location = location
            mission.last_update_time = timestamp
            mission.location_history.append(LocationFix(location, timestamp, entity_id))
            if len(mission.location_history) > self.history_limit:
                del mission.location_history[:-self.history_limit]

            self._count('location_updates')
            transitioned = None

            if not mission.is_active:
                self._missions[accident_id] = mission
            elif mission.phase == MissionPhase.EN_ROUTE_TO_SCENE:
                transitioned = self._handle_scene_approach(mission, timestamp)
            elif mission.phase == MissionPhase.ROUTING_TO_HOSPITAL:
                transitioned = self._handle_hospital_approach(mission, timestamp)
            else:
                self._missions[accident_id] = mission

            return LocationUpdateResult(
                accident_id=accident_id,
                accepted=True,
                phase=mission.phase,
                transitioned_to=transitioned
            )

    def _handle_scene_approach(self, mission: Mission, timestamp: float) -> Optional[MissionPhase]:
        # Caller holds the mission lock
        if within_threshold(mission.current_location, mission.scene_location, self.scene_arrival_m):
            distance = distance_m(mission.current_location, mission.scene_location)
            self._advance(mission, MissionPhase.AT_SCENE, timestamp)
            mission.arrived_at_scene_at = timestamp
            self._missions[mission.accident_id] = mission
            self._count('scene_arrivals')
            logger.info(
                "Ambulance %s arrived at scene of %s (%.0fm)",
                mission.entity_id, mission.accident_id, distance
            )
            if self.corridor_manager:
                self.corridor_manager.release_corridor(mission.accident_id)
            self._notify('mission:phase', mission)
            return MissionPhase.AT_SCENE

        self._missions[mission.accident_id] = mission
        self._drive_corridor(mission, CorridorKind.SCENE, mission.scene_location)
        return None

    def _handle_hospital_approach(self, mission: Mission, timestamp: float) -> Optional[MissionPhase]:
        # Caller holds the mission lock
        if within_threshold(mission.current_location, mission.hospital.location, self.hospital_arrival_m):
            distance = distance_m(mission.current_location, mission.hospital.location)
            self._advance(mission, MissionPhase.ARRIVED, timestamp)
            mission.arrived_at_hospital_at = timestamp
            self._missions[mission.accident_id] = mission
            self._count('hospital_arrivals')
            logger.info(
                "Ambulance %s arrived at %s for %s (%.0fm)",
                mission.entity_id, mission.hospital.name, mission.accident_id, distance
            )
            if self.corridor_manager:
                self.corridor_manager.release_corridor(mission.accident_id)
            self._notify('mission:phase', mission)
            return MissionPhase.ARRIVED

        self._missions[mission.accident_id] = mission
        self._drive_corridor(mission, CorridorKind.HOSPITAL, mission.hospital.location)
        return None

    def _drive_corridor(self, mission: Mission, kind: CorridorKind, destination: GeoPoint):
        """Refresh the mission's corridor, activating it if it is missing or stale"""
        if not self.corridor_manager:
            return

        corridor = self.corridor_manager.get_corridor(mission.accident_id)
        if corridor is not None and corridor.kind == kind and corridor.destination == destination:
            self.corridor_manager.refresh_corridor(mission.accident_id, mission.current_location)
        else:
            self.corridor_manager.activate_corridor(
                mission.accident_id, mission.current_location, destination, kind
            )

    # ============================================
    # Hospital routing
    # ============================================

    def start_hospital_routing(
        self,
        accident_id: str,
        hospital_id_hint: Optional[str] = None,
        specialty: Optional[str] = None
    ) -> Mission:
        """
        Assign a hospital and route the ambulance to it

        With a hint, the named hospital must be eligible. Without one, the
        nearest eligible hospital to the ambulance is chosen, preferring the
        accident's specialty and falling back to a general query.
        Re-invoking before arrival re-assigns and re-targets the corridor.

        Raises:
            NotFoundError: Unknown mission or hospital, or no location yet
            NotAvailableError: Hinted hospital ineligible, or mission finished
            NoHospitalAvailableError: No eligible hospital in the directory
        """
        with self._locks.hold(accident_id):
            current = self._missions.get(accident_id)
            if current is None:
                raise NotFoundError(f"No mission for accident: {accident_id}")
            if current.current_location is None:
                raise NotFoundError(
                    f"No location received for accident {accident_id}; "
                    "ambulance must send at least one location update"
                )
            if current.is_cancelled:
                raise NotAvailableError(f"Mission {accident_id} was cancelled")
            if current.phase == MissionPhase.ARRIVED:
                raise NotAvailableError(f"Mission {accident_id} already arrived at hospital")

            origin = current.current_location
            now = self.clock()

            if hospital_id_hint:
                hospital = self.hospital_directory.require(hospital_id_hint)
                if not self.hospital_directory.is_eligible(hospital):
                    raise NotAvailableError(f"Hospital not available: {hospital_id_hint}")
                distance_km = haversine_km(origin, hospital.location)
            else:
                wanted = specialty.strip().upper() if specialty else current.specialty
                matches = self.hospital_directory.nearest(origin, specialty=wanted, limit=1)
                if not matches and wanted:
                    logger.warning("No %s hospital for %s, trying general query", wanted, accident_id)
                    matches = self.hospital_directory.nearest(origin, limit=1)
                if not matches:
                    raise NoHospitalAvailableError("No available hospital found nearby")
                hospital = matches[0].hospital
                distance_km = matches[0].distance_km

            mission = current.copy()
            if mission.phase == MissionPhase.EN_ROUTE_TO_SCENE:
                # Operator routing stands in for the scene arrival
                self._advance(mission, MissionPhase.AT_SCENE, now)
                mission.arrived_at_scene_at = now
                self._count('scene_arrivals')

            reassigned = mission.hospital is not None
            mission.hospital = HospitalAssignment.from_hospital(hospital, distance_km, now)
            if specialty:
                mission.specialty = specialty.strip().upper()
            if mission.phase != MissionPhase.ROUTING_TO_HOSPITAL:
                self._advance(mission, MissionPhase.ROUTING_TO_HOSPITAL, now)

            self._missions[accident_id] = mission

            logger.info(
                "Mission %s %s to %s (%.2f km)",
                accident_id, "re-routed" if reassigned else "routing",
                hospital.name, distance_km
            )

            if self.corridor_manager:
                self.corridor_manager.activate_corridor(
                    accident_id, origin, hospital.location, CorridorKind.HOSPITAL
                )

            self._notify('mission:phase', mission)
            return mission

    # ============================================
    # Cancellation
    # ============================================

    def cancel_mission(self, accident_id: str, reason: str = "Manual cancellation") -> Mission:
        """
        Cancel a mission and release its corridor (idempotent)

        Raises:
            NotFoundError: If no mission exists for accident_id
        """
        with self._locks.hold(accident_id):
            current = self._missions.get(accident_id)
            if current is None:
                raise NotFoundError(f"No mission for accident: {accident_id}")
            if current.is_cancelled:
                return current

            mission = current.copy()
            mission.cancelled_at = self.clock()
            mission.cancel_reason = reason
            self._missions[accident_id] = mission
            self._count('cancelled_missions')

            logger.info("Mission %s cancelled: %s", accident_id, reason)

            if self.corridor_manager:
                self.corridor_manager.release_corridor(accident_id)

            self._notify('mission:cancelled', mission)
            return mission

    # ============================================
    # Queries
    # ============================================

    def get_mission(self, accident_id: str) -> Optional[Mission]:
        """Get mission snapshot by accident ID"""
        mission = self._missions.get(accident_id)
        return mission.copy() if mission else None

    def get_all_missions(self) -> List[Mission]:
        """Get snapshots of all missions, oldest first"""
        missions = [m.copy() for m in list(self._missions.values())]
        return sorted(missions, key=lambda m: (m.created_at, m.accident_id))

    def _advance(self, mission: Mission, phase: MissionPhase, at: float):
        """Move a working copy one phase forward"""
        if phase.rank != mission.phase.rank + 1:
            raise NotAvailableError(
                f"Invalid phase transition {mission.phase.value} -> {phase.value}"
            )
        mission.phase = phase
        mission.phase_history.append((phase, at))

    def _notify(self, event: str, mission: Mission):
        payload = mission.to_dict()
        for listener in self._listeners:
            try:
                listener(event, payload)
            except Exception:
                logger.exception("Mission listener failed for %s", event)

    def get_statistics(self) -> Dict[str, Any]:
        """Get mission statistics"""
        missions = list(self._missions.values())
        by_phase = {phase.value: 0 for phase in PHASE_ORDER}
        for mission in missions:
            by_phase[mission.phase.value] += 1

        return {
            'totalMissions': self.total_missions,
            'activeMissions': sum(1 for m in missions if m.is_active),
            'missionsByPhase': by_phase,
            'locationUpdates': self.location_updates,
            'staleUpdatesDropped': self.stale_updates_dropped,
            'sceneArrivals': self.scene_arrivals,
            'hospitalArrivals': self.hospital_arrivals,
            'cancelledMissions': self.cancelled_missions
        }


# Global tracker instance
_mission_tracker: Optional[MissionTracker] = None


def get_mission_tracker() -> Optional[MissionTracker]:
    """Get global mission tracker instance"""
    return _mission_tracker


def init_mission_tracker(
    hospital_directory: HospitalDirectory,
    corridor_manager: Optional[GreenCorridorManager] = None,
    **kwargs
) -> MissionTracker:
    """Initialize global mission tracker"""
    global _mission_tracker
    _mission_tracker = MissionTracker(hospital_directory, corridor_manager, **kwargs)
    return _mission_tracker
