"""
Hospital Directory

In-memory catalog of hospitals with locations, specialties and bed
availability. Used by the mission tracker to route ambulances from the
accident scene to the nearest suitable hospital.

Concurrency:
    Writers serialize on a lock and replace records copy-on-write, so a
    reader iterating a snapshot never sees a half-updated hospital. Bed
    counts are advisory; no reservation or double-booking guarantee.
"""

import logging
import math
import threading
from typing import Dict, List, Optional

from green_corridor.errors import NotFoundError, ValidationError
from green_corridor.models import GeoPoint, Hospital, HospitalMatch
from green_corridor.utils.geo import haversine_km

logger = logging.getLogger(__name__)


# Seed hospitals around Pune, India (demo area, same region as the signals)
DEMO_HOSPITALS: List[Dict] = [
    {
        'hospital_id': 'HOSP-RUBY',
        'name': 'Ruby Hall Clinic',
        'location': {'lat': 18.5308, 'lng': 73.8774},
        'phone': '+912026163391',
        'specialties': ['TRAUMA', 'CARDIAC', 'GENERAL'],
        'beds_available': 12,
    },
    {
        'hospital_id': 'HOSP-KEM',
        'name': 'KEM Hospital Pune',
        'location': {'lat': 18.5018, 'lng': 73.8636},
        'phone': '+912026126000',
        'specialties': ['TRAUMA', 'BURN', 'GENERAL'],
        'beds_available': 8,
    },
    {
        'hospital_id': 'HOSP-SAHYADRI',
        'name': 'Sahyadri Hospital Deccan',
        'location': {'lat': 18.5128, 'lng': 73.8412},
        'phone': '+912067215000',
        'specialties': ['TRAUMA', 'CARDIAC', 'NEURO', 'GENERAL'],
        'beds_available': 15,
    },
    {
        'hospital_id': 'HOSP-JEHANGIR',
        'name': 'Jehangir Hospital',
        'location': {'lat': 18.5310, 'lng': 73.8760},
        'phone': '+912026053600',
        'specialties': ['TRAUMA', 'CARDIAC', 'GENERAL'],
        'beds_available': 10,
    },
    {
        'hospital_id': 'HOSP-SASSOON',
        'name': 'Sassoon General Hospital',
        'location': {'lat': 18.5165, 'lng': 73.8721},
        'phone': '+912026128000',
        'specialties': ['TRAUMA', 'BURN', 'GENERAL'],
        'beds_available': 20,
    },
    {
        'hospital_id': 'HOSP-ADITYA-BIRLA',
        'name': 'Aditya Birla Memorial Hospital',
        'location': {'lat': 18.6298, 'lng': 73.7997},
        'phone': '+912030717171',
        'specialties': ['TRAUMA', 'CARDIAC', 'NEURO', 'GENERAL'],
        'beds_available': 18,
    },
]


class HospitalDirectory:
    """
    Hospital catalog supporting constrained nearest-neighbour queries

    Filtering predicate for nearest():
    - active and emergency capable
    - beds_available >= min_beds
    - specialty in hospital.specialties (when given)

    Usage:
        directory = HospitalDirectory()
        directory.seed_demo_hospitals()
        matches = directory.nearest(GeoPoint(lat=18.52, lng=73.85), specialty="TRAUMA")
    """

    def __init__(self):
        # hospital_id -> Hospital; records are replaced, never mutated in place
        self._hospitals: Dict[str, Hospital] = {}
        self._write_lock = threading.Lock()

    # ============================================
    # Queries
    # ============================================

    def nearest(
        self,
        location: GeoPoint,
        specialty: Optional[str] = None,
        min_beds: int = 1,
        limit: int = 1
    ) -> List[HospitalMatch]:
        """
        Find the nearest eligible hospitals

        Args:
            location: Query point
            specialty: Required specialty tag (e.g. 'TRAUMA')
            min_beds: Minimum available beds
            limit: How many to return

        Returns:
            Matches ascending by distance; ties broken by more beds, then id.
            Empty list when nothing matches (caller decides the fallback).
        """
        if not math.isfinite(location.lat) or not math.isfinite(location.lng):
            return []
        if limit <= 0:
            return []

        matches = [
            HospitalMatch(hospital=h, distance_km=haversine_km(location, h.location))
            for h in self._snapshot()
            if self.is_eligible(h, min_beds=min_beds, specialty=specialty)
        ]

        matches.sort(key=lambda m: (
            m.distance_km,
            -m.hospital.beds_available,
            m.hospital.hospital_id
        ))

        return matches[:limit]

    @staticmethod
    def is_eligible(hospital: Hospital, min_beds: int = 1, specialty: Optional[str] = None) -> bool:
        """Check a hospital against the routing filter"""
        if not hospital.active or not hospital.emergency_capable:
            return False
        if hospital.beds_available < min_beds:
            return False
        if specialty and not hospital.has_specialty(specialty):
            return False
        return True

    def get(self, hospital_id: str) -> Optional[Hospital]:
        """Get hospital by ID"""
        return self._hospitals.get(hospital_id)

    def require(self, hospital_id: str) -> Hospital:
        """Get hospital by ID or raise NotFoundError"""
        hospital = self._hospitals.get(hospital_id)
        if hospital is None:
            raise NotFoundError(f"Hospital not found: {hospital_id}")
        return hospital

    def get_all(self) -> List[Hospital]:
        """Get all hospitals in registration order"""
        return self._snapshot()

    @property
    def count(self) -> int:
        return len(self._hospitals)

    def _snapshot(self) -> List[Hospital]:
        return list(self._hospitals.values())

    # ============================================
    # Updates
    # ============================================

    def register(self, hospital: Hospital) -> Hospital:
        """Insert or replace a hospital record"""
        with self._write_lock:
            self._hospitals[hospital.hospital_id] = hospital

        logger.info("Hospital registered: %s (%s)", hospital.hospital_id, hospital.name)
        return hospital

    def update_beds(self, hospital_id: str, beds_available: int) -> Hospital:
        """
        Update available beds

        Raises:
            ValidationError: If beds_available is negative or not an integer
            NotFoundError: If the hospital is unknown
        """
        if isinstance(beds_available, bool) or not isinstance(beds_available, int):
            raise ValidationError("bedsAvailable must be a non-negative integer")
        if beds_available < 0:
            raise ValidationError("bedsAvailable must be a non-negative integer")

        with self._write_lock:
            current = self.require(hospital_id)
            updated = current.model_copy(update={'beds_available': beds_available})
            self._hospitals[hospital_id] = updated

        logger.info("Beds updated: %s %d -> %d", hospital_id, current.beds_available, beds_available)
        return updated

    def set_active(self, hospital_id: str, active: bool) -> Hospital:
        """Activate or deactivate a hospital (idempotent)"""
        with self._write_lock:
            current = self.require(hospital_id)
            if current.active == active:
                return current
            updated = current.model_copy(update={'active': active})
            self._hospitals[hospital_id] = updated

        logger.info("Hospital %s %s", hospital_id, "activated" if active else "deactivated")
        return updated

    def seed_demo_hospitals(self) -> int:
        """Populate the directory with the Pune demo hospitals"""
        for data in DEMO_HOSPITALS:
            self.register(Hospital(**data))

        logger.info("Seeded %d demo hospitals", len(DEMO_HOSPITALS))
        return len(DEMO_HOSPITALS)

    def get_statistics(self) -> Dict[str, int]:
        hospitals = self._snapshot()
        return {
            'totalHospitals': len(hospitals),
            'activeHospitals': sum(1 for h in hospitals if h.active),
            'eligibleHospitals': sum(1 for h in hospitals if self.is_eligible(h)),
            'totalBedsAvailable': sum(h.beds_available for h in hospitals if h.active)
        }


# Global directory instance
_hospital_directory: Optional[HospitalDirectory] = None


def get_hospital_directory() -> Optional[HospitalDirectory]:
    """Get global hospital directory instance"""
    return _hospital_directory


def init_hospital_directory(seed_demo: bool = False) -> HospitalDirectory:
    """Initialize global hospital directory"""
    global _hospital_directory
    _hospital_directory = HospitalDirectory()
    if seed_demo:
        _hospital_directory.seed_demo_hospitals()
    return _hospital_directory
