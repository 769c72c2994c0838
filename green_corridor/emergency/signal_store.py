"""
Signal State Store

Per-signal override state for green corridors. An override is a tagged
claim (owner mission + expiry) rather than a bare flag, so two corridors
crossing at the same junction resolve by policy:

- first claimant wins: a live claim held by another mission is never
  overwritten
- release only your own claim: releasing is a no-op for signals that were
  re-claimed by a different mission

Expired claims revert to NORMAL lazily on the next read, or when
sweep_expired() runs.
"""

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Optional

from green_corridor.errors import NotFoundError
from green_corridor.models import GeoPoint
from .keyed_lock import KeyedLock

logger = logging.getLogger(__name__)


class SignalState(str, Enum):
    """Traffic signal corridor state"""
    NORMAL = "NORMAL"
    GREEN_OVERRIDE = "GREEN_OVERRIDE"


class ClaimOutcome(str, Enum):
    """Result of a claim attempt"""
    CLAIMED = "CLAIMED"         # Signal was NORMAL (or expired) and is now ours
    REFRESHED = "REFRESHED"     # Already ours, expiry extended
    CONTESTED = "CONTESTED"     # Held by another live mission, left untouched


@dataclass
class TrafficSignal:
    """
    Traffic signal corridor record

    state is GREEN_OVERRIDE iff owner_mission_id is set and the claim
    has not expired.
    """
    signal_id: str
    location: GeoPoint
    name: str = ""
    state: SignalState = SignalState.NORMAL
    override_expires_at: Optional[float] = None
    owner_mission_id: Optional[str] = None
    last_changed_at: float = field(default_factory=time.time)

    def is_overridden(self) -> bool:
        return self.state == SignalState.GREEN_OVERRIDE

    def is_expired(self, now: float) -> bool:
        """Check if an override has outlived its expiry"""
        return (
            self.state == SignalState.GREEN_OVERRIDE and
            self.override_expires_at is not None and
            self.override_expires_at <= now
        )

    def to_dict(self) -> Dict:
        """Convert to dictionary for API response"""
        return {
            'signalId': self.signal_id,
            'name': self.name,
            'location': self.location.model_dump(),
            'state': self.state.value,
            'overrideExpiresAt': self.override_expires_at,
            'ownerMissionId': self.owner_mission_id,
            'lastChangedAt': self.last_changed_at
        }


# Demo signals around Pune, India (same region as the demo hospitals)
DEMO_SIGNALS: List[Dict] = [
    {'signal_id': 'SIG-PUNE-001', 'name': 'Shivajinagar Junction', 'lat': 18.5308, 'lng': 73.8475},
    {'signal_id': 'SIG-PUNE-002', 'name': 'Deccan Gymkhana', 'lat': 18.5167, 'lng': 73.8415},
    {'signal_id': 'SIG-PUNE-003', 'name': 'Pune Station Chowk', 'lat': 18.5289, 'lng': 73.8744},
    {'signal_id': 'SIG-PUNE-004', 'name': 'Sassoon Road Junction', 'lat': 18.5255, 'lng': 73.8717},
    {'signal_id': 'SIG-PUNE-005', 'name': 'Swargate Chowk', 'lat': 18.5018, 'lng': 73.8580},
    {'signal_id': 'SIG-PUNE-006', 'name': 'Koregaon Park Junction', 'lat': 18.5362, 'lng': 73.8840},
    {'signal_id': 'SIG-PUNE-007', 'name': 'Camp MG Road', 'lat': 18.5150, 'lng': 73.8790},
    {'signal_id': 'SIG-PUNE-008', 'name': 'Nal Stop', 'lat': 18.5075, 'lng': 73.8330},
]


class SignalStateStore:
    """
    Store of traffic signals and their override claims

    Each signal is guarded by its own lock; claims on different signals
    never contend. Reads return copies.

    Usage:
        store = SignalStateStore()
        store.register("SIG-1", GeoPoint(lat=18.53, lng=73.87))
        store.claim("SIG-1", "ACC-1", ttl=600)
        store.release("SIG-1", "ACC-1")
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        """
        Initialize signal store

        Args:
            clock: Time source in epoch seconds (injectable for tests)
        """
        self.clock = clock
        self._signals: Dict[str, TrafficSignal] = {}
        self._locks = KeyedLock()
        self._listeners: List[Callable[[TrafficSignal], None]] = []

        # Statistics (counters shared across keys, guarded by _stats_lock)
        self._stats_lock = threading.Lock()
        self.claims_granted = 0
        self.claims_contested = 0
        self.releases = 0
        self.expirations = 0

    def add_listener(self, listener: Callable[[TrafficSignal], None]):
        """Register a callback invoked with a snapshot after every state change"""
        self._listeners.append(listener)

    def _count(self, counter: str, amount: int = 1):
        with self._stats_lock:
            setattr(self, counter, getattr(self, counter) + amount)

    # ============================================
    # Registration
    # ============================================

    def register(self, signal_id: str, location: GeoPoint, name: str = "") -> TrafficSignal:
        """Register a signal in NORMAL state (re-registering keeps current state)"""
        with self._locks.hold(signal_id):
            signal = self._signals.get(signal_id)
            if signal is None:
                signal = TrafficSignal(
                    signal_id=signal_id,
                    location=location,
                    name=name,
                    last_changed_at=self.clock()
                )
                self._signals[signal_id] = signal
            else:
                signal.location = location
                signal.name = name or signal.name
            return replace(signal)

    def seed_demo_signals(self) -> int:
        """Populate the store with the Pune demo signals"""
        for data in DEMO_SIGNALS:
            self.register(
                data['signal_id'],
                GeoPoint(lat=data['lat'], lng=data['lng']),
                name=data['name']
            )
        logger.info("Seeded %d demo signals", len(DEMO_SIGNALS))
        return len(DEMO_SIGNALS)

    # ============================================
    # Reads
    # ============================================

    def get(self, signal_id: str) -> Optional[TrafficSignal]:
        """Get a signal snapshot, applying lazy expiry"""
        if signal_id not in self._signals:
            return None
        with self._locks.hold(signal_id):
            signal = self._signals[signal_id]
            self._expire_if_due(signal, self.clock())
            return replace(signal)

    def require(self, signal_id: str) -> TrafficSignal:
        """Get a signal snapshot or raise NotFoundError"""
        signal = self.get(signal_id)
        if signal is None:
            raise NotFoundError(f"Signal not found: {signal_id}")
        return signal

    def get_all(self) -> List[TrafficSignal]:
        """Get snapshots of all signals"""
        return [s for s in (self.get(sid) for sid in list(self._signals)) if s is not None]

    def locations(self) -> List[TrafficSignal]:
        """Signals for route geometry (no expiry side effects needed)"""
        return [replace(s) for s in list(self._signals.values())]

    def owned_by(self, mission_id: str) -> List[str]:
        """IDs of signals currently overridden for a mission"""
        return [
            s.signal_id for s in self.get_all()
            if s.is_overridden() and s.owner_mission_id == mission_id
        ]

    def active_owners(self) -> Dict[str, List[str]]:
        """Mission ID -> IDs of signals with a live override"""
        owners: Dict[str, List[str]] = {}
        for signal in self.get_all():
            if signal.is_overridden() and signal.owner_mission_id:
                owners.setdefault(signal.owner_mission_id, []).append(signal.signal_id)
        return owners

    @property
    def count(self) -> int:
        return len(self._signals)

    # ============================================
    # Claims
    # ============================================

    def claim(self, signal_id: str, mission_id: str, ttl: float) -> ClaimOutcome:
        """
        Claim a signal for a mission's corridor

        Args:
            signal_id: Signal to override
            mission_id: Claiming mission (accident ID)
            ttl: Seconds until the override lapses without a refresh

        Returns:
            ClaimOutcome

        Raises:
            NotFoundError: If the signal is unknown
        """
        if signal_id not in self._signals:
            raise NotFoundError(f"Signal not found: {signal_id}")

        with self._locks.hold(signal_id):
            signal = self._signals[signal_id]
            now = self.clock()
            self._expire_if_due(signal, now)

            if signal.is_overridden() and signal.owner_mission_id != mission_id:
                self._count('claims_contested')
                logger.debug(
                    "Signal %s held by %s, claim by %s skipped",
                    signal_id, signal.owner_mission_id, mission_id
                )
                return ClaimOutcome.CONTESTED

            outcome = ClaimOutcome.REFRESHED if signal.is_overridden() else ClaimOutcome.CLAIMED

            signal.state = SignalState.GREEN_OVERRIDE
            signal.owner_mission_id = mission_id
            signal.override_expires_at = now + ttl

            if outcome == ClaimOutcome.CLAIMED:
                signal.last_changed_at = now
                self._count('claims_granted')
                logger.info("Signal %s -> GREEN_OVERRIDE for %s", signal_id, mission_id)
                self._notify(signal)

            return outcome

    def release(self, signal_id: str, mission_id: str) -> bool:
        """
        Release a mission's claim on a signal

        Returns:
            True if the signal reverted to NORMAL; False if it was not
            held by this mission (never overwrites another mission's claim)
        """
        if signal_id not in self._signals:
            return False

        with self._locks.hold(signal_id):
            signal = self._signals[signal_id]
            self._expire_if_due(signal, self.clock())

            if not signal.is_overridden() or signal.owner_mission_id != mission_id:
                return False

            self._reset(signal)
            self._count('releases')
            logger.info("Signal %s released by %s", signal_id, mission_id)
            self._notify(signal)
            return True

    def release_all(self, mission_id: str) -> List[str]:
        """Release every signal held by a mission, returning the released IDs"""
        return [sid for sid in list(self._signals) if self.release(sid, mission_id)]

    def sweep_expired(self) -> List[str]:
        """Revert every expired override to NORMAL, returning the affected IDs"""
        expired = []
        now = self.clock()
        for signal_id in list(self._signals):
            with self._locks.hold(signal_id):
                if self._expire_if_due(self._signals[signal_id], now):
                    expired.append(signal_id)
        return expired

    def _expire_if_due(self, signal: TrafficSignal, now: float) -> bool:
        # Caller holds the signal lock
        if not signal.is_expired(now):
            return False

        logger.info("Signal %s override by %s expired", signal.signal_id, signal.owner_mission_id)
        self._reset(signal)
        self._count('expirations')
        self._notify(signal)
        return True

    def _reset(self, signal: TrafficSignal):
        signal.state = SignalState.NORMAL
        signal.owner_mission_id = None
        signal.override_expires_at = None
        signal.last_changed_at = self.clock()

    def _notify(self, signal: TrafficSignal):
        snapshot = replace(signal)
        for listener in self._listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Signal listener failed for %s", signal.signal_id)

    def get_statistics(self) -> Dict[str, int]:
        signals = self.get_all()
        return {
            'totalSignals': len(signals),
            'overriddenSignals': sum(1 for s in signals if s.is_overridden()),
            'claimsGranted': self.claims_granted,
            'claimsContested': self.claims_contested,
            'releases': self.releases,
            'expirations': self.expirations
        }
