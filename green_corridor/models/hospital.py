"""
Hospital Models

Directory records, nearest-match results and the hospital snapshot
stored on a mission at assignment time.
"""

from pydantic import BaseModel, Field, field_validator

from .coordinates import GeoPoint


class Hospital(BaseModel):
    """
    Hospital directory record

    Owned by the HospitalDirectory; mutated only through its update
    operations. Never deleted, only deactivated.
    """
    hospital_id: str
    name: str
    location: GeoPoint
    phone: str = ""
    specialties: list[str] = Field(default_factory=list)  # TRAUMA, BURN, CARDIAC, NEURO, GENERAL
    beds_available: int = Field(default=0, ge=0)
    emergency_capable: bool = True
    active: bool = True                   # Accepting patients

    class Config:
        json_schema_extra = {
            "example": {
                "hospital_id": "HOSP-RUBY",
                "name": "Ruby Hall Clinic",
                "location": {"lat": 18.5308, "lng": 73.8774},
                "phone": "+912026163391",
                "specialties": ["TRAUMA", "CARDIAC", "GENERAL"],
                "beds_available": 12,
                "emergency_capable": True,
                "active": True
            }
        }

    @field_validator('specialties')
    @classmethod
    def _normalize_specialties(cls, value: list[str]) -> list[str]:
        seen = []
        for tag in value:
            tag = tag.strip().upper()
            if tag and tag not in seen:
                seen.append(tag)
        return seen

    def has_specialty(self, specialty: str) -> bool:
        """Check specialty membership (case-insensitive)"""
        return specialty.strip().upper() in self.specialties

    def to_dict(self) -> dict:
        """Convert to dictionary for API response"""
        return {
            'hospitalId': self.hospital_id,
            'name': self.name,
            'location': self.location.model_dump(),
            'phone': self.phone,
            'specialties': list(self.specialties),
            'bedsAvailable': self.beds_available,
            'emergencyCapable': self.emergency_capable,
            'active': self.active
        }


class HospitalMatch(BaseModel):
    """Hospital annotated with its distance from a query point"""
    hospital: Hospital
    distance_km: float

    def to_dict(self) -> dict:
        data = self.hospital.to_dict()
        data['distanceKm'] = round(self.distance_km, 3)
        return data


class HospitalAssignment(BaseModel):
    """
    Hospital snapshot taken when a mission is routed

    Not live-updated: later bed or status changes in the directory
    do not touch an assignment already made.
    """
    hospital_id: str
    name: str
    location: GeoPoint
    phone: str = ""
    distance_km: float
    assigned_at: float

    class Config:
        frozen = True

    @classmethod
    def from_hospital(cls, hospital: Hospital, distance_km: float, assigned_at: float) -> "HospitalAssignment":
        return cls(
            hospital_id=hospital.hospital_id,
            name=hospital.name,
            location=hospital.location,
            phone=hospital.phone,
            distance_km=distance_km,
            assigned_at=assigned_at
        )

    def to_dict(self) -> dict:
        return {
            'hospitalId': self.hospital_id,
            'name': self.name,
            'location': self.location.model_dump(),
            'phone': self.phone,
            'distanceKm': round(self.distance_km, 3),
            'assignedAt': self.assigned_at
        }
