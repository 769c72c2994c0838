"""
Corridor Routes - Mission, hospital and signal endpoints

Endpoints:
- POST /corridor/init - Report an accident scene (creates the mission)
- POST /corridor/location - Ambulance location update
- GET /corridor/signals - All signal states
- GET /corridor/signals/{id} - One signal
- GET /corridor/active - Active corridors
- GET /corridor/hospitals - Hospital listing
- GET /corridor/hospitals/nearest - Nearest eligible hospitals
- GET /corridor/hospitals/{id} - One hospital
- PATCH /corridor/hospitals/{id}/beds - Update available beds
- PATCH /corridor/hospitals/{id}/active - Activate / deactivate a hospital
- GET /corridor/missions - All missions
- GET /corridor/missions/{id} - One mission
- POST /corridor/missions/{id}/go-to-hospital - Assign hospital and route
- POST /corridor/missions/{id}/cancel - Cancel a mission
- GET /corridor/statistics - Engine statistics

Request bodies are accepted either wrapped as ``{"payload": {...}}`` or flat.
"""

import math
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Body, HTTPException, Query
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from green_corridor.emergency import (
    GreenCorridorManager,
    MissionTracker,
    SignalStateStore,
    get_corridor_manager,
    get_mission_tracker,
)
from green_corridor.errors import CorridorError, NotFoundError
from green_corridor.models import GeoPoint
from green_corridor.services import HospitalDirectory, get_hospital_directory
from green_corridor.utils.geo import is_valid_coordinate, map_link, navigation_link

router = APIRouter(prefix="/corridor", tags=["corridor"])

API_VERSION = "1.0"

DEFAULT_NEAREST_LIMIT = 3
MAX_NEAREST_LIMIT = 50


# ============================================
# Request Models
# ============================================

class SceneReportRequest(BaseModel):
    """Accident scene report from the detection service"""
    accidentId: str = Field(..., min_length=1, description="Accident ID (mission key)")
    location: GeoPoint = Field(..., description="Accident scene coordinates")
    specialty: Optional[str] = Field(
        default=None,
        description="Injury specialty hint: TRAUMA, BURN, CARDIAC, NEURO"
    )


class LocationUpdateRequest(BaseModel):
    """Ambulance location ping"""
    accidentId: str = Field(..., min_length=1)
    entityId: str = Field(..., min_length=1, description="Ambulance ID")
    location: GeoPoint
    timestamp: Optional[Union[float, datetime]] = Field(
        default=None,
        description="Epoch seconds or ISO-8601 time of the fix (defaults to receipt time)"
    )

    @field_validator('timestamp')
    @classmethod
    def _check_timestamp(cls, value):
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError("timestamp must be a finite number")
        return value


class HospitalRoutingRequest(BaseModel):
    """Operator request to route a mission to a hospital"""
    hospitalId: Optional[str] = None
    specialty: Optional[str] = None


class BedsUpdateRequest(BaseModel):
    bedsAvailable: Any = None


class ActiveUpdateRequest(BaseModel):
    active: bool


class CancelRequest(BaseModel):
    """Request to cancel a mission"""
    reason: str = "Manual cancellation"


# ============================================
# Global component references
# ============================================

_mission_tracker: Optional[MissionTracker] = None
_hospital_directory: Optional[HospitalDirectory] = None
_corridor_manager: Optional[GreenCorridorManager] = None
_signal_store: Optional[SignalStateStore] = None
_reject_unknown_locations: bool = True


def set_corridor_components(
    tracker: MissionTracker,
    directory: HospitalDirectory,
    corridor_manager: GreenCorridorManager,
    signal_store: SignalStateStore,
    reject_unknown: bool = True
):
    """Set corridor component references for API routes"""
    global _mission_tracker, _hospital_directory, _corridor_manager, _signal_store
    global _reject_unknown_locations
    _mission_tracker = tracker
    _hospital_directory = directory
    _corridor_manager = corridor_manager
    _signal_store = signal_store
    _reject_unknown_locations = reject_unknown


def _get_tracker() -> MissionTracker:
    """Get mission tracker, falling back to global"""
    if _mission_tracker:
        return _mission_tracker
    tracker = get_mission_tracker()
    if not tracker:
        raise HTTPException(status_code=503, detail="Mission tracker not initialized")
    return tracker


def _get_directory() -> HospitalDirectory:
    """Get hospital directory, falling back to global"""
    if _hospital_directory:
        return _hospital_directory
    directory = get_hospital_directory()
    if not directory:
        raise HTTPException(status_code=503, detail="Hospital directory not initialized")
    return directory


def _get_corridor_manager() -> GreenCorridorManager:
    """Get corridor manager, falling back to global"""
    if _corridor_manager:
        return _corridor_manager
    manager = get_corridor_manager()
    if not manager:
        raise HTTPException(status_code=503, detail="Corridor manager not initialized")
    return manager


def _get_signal_store() -> SignalStateStore:
    if _signal_store:
        return _signal_store
    return _get_corridor_manager().signal_store


# ============================================
# Helpers
# ============================================

def _meta() -> Dict[str, Any]:
    return {
        'requestId': f"REQ-{uuid.uuid4()}",
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'env': os.getenv('APP_ENV', 'development'),
        'version': API_VERSION
    }


def _parse(model, body: Optional[Dict[str, Any]]):
    """Validate a wrapped or flat request body, mapping failures to 400"""
    data = body or {}
    if isinstance(data.get('payload'), dict):
        data = data['payload']
    try:
        return model(**data)
    except PydanticValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err['loc']) for err in e.errors())
        raise HTTPException(status_code=400, detail=f"Invalid request body: {fields}")


def _http_error(error: CorridorError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.message)


def _to_epoch(timestamp: Optional[Union[float, datetime]]) -> Optional[float]:
    if timestamp is None or isinstance(timestamp, float):
        return timestamp
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.timestamp()


def _parse_limit(raw: Optional[str]) -> int:
    """Result count for nearest queries; missing, non-numeric or non-positive means 3"""
    try:
        limit = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_NEAREST_LIMIT
    if limit <= 0:
        return DEFAULT_NEAREST_LIMIT
    return min(limit, MAX_NEAREST_LIMIT)


def _with_map_link(data: Dict[str, Any]) -> Dict[str, Any]:
    location = data['location']
    data['mapLink'] = map_link(GeoPoint(**location))
    return data


# ============================================
# Mission Endpoints
# ============================================

@router.post("/init")
async def init_corridor(body: Optional[Dict[str, Any]] = Body(default=None)):
    """
    Report an accident scene

    Called by the detection service when an SOS is received. Creates the
    mission, or moves its scene while the ambulance is still en route.

    Example:
    ```
    curl -X POST http://localhost:8000/corridor/init \\
      -H "Content-Type: application/json" \\
      -d '{"payload":{"accidentId":"ACC-1","location":{"lat":18.53,"lng":73.87}}}'
    ```
    """
    request = _parse(SceneReportRequest, body)
    tracker = _get_tracker()

    try:
        tracker.report_scene(request.accidentId, request.location, specialty=request.specialty)
    except CorridorError as e:
        raise _http_error(e)

    return {'payload': {'accidentId': request.accidentId, 'status': 'CORRIDOR_INITIALIZED'}}


@router.post("/location")
async def update_location(body: Optional[Dict[str, Any]] = Body(default=None)):
    """
    Ambulance location update

    Stale updates (older than the last accepted one) are acknowledged
    with accepted=false and change nothing.
    """
    request = _parse(LocationUpdateRequest, body)
    tracker = _get_tracker()

    try:
        result = tracker.report_location(
            request.accidentId,
            request.entityId,
            request.location,
            timestamp=_to_epoch(request.timestamp)
        )
    except NotFoundError as e:
        if _reject_unknown_locations:
            raise _http_error(e)
        return {'payload': {
            'status': 'PROCESSED',
            'accepted': False,
            'phase': None,
            'reason': 'unknown accident'
        }}
    except CorridorError as e:
        raise _http_error(e)

    payload = result.to_dict()
    payload['status'] = 'PROCESSED'
    return {'payload': payload}


@router.get("/missions")
async def list_missions():
    """All missions, oldest first"""
    missions = [m.to_dict() for m in _get_tracker().get_all_missions()]
    return {'meta': _meta(), 'payload': {'missions': missions, 'total': len(missions)}}


@router.get("/missions/{accident_id}")
async def get_mission(accident_id: str):
    """Mission for a specific accident"""
    mission = _get_tracker().get_mission(accident_id)
    if mission is None:
        raise HTTPException(status_code=404, detail="No active mission for this accident")
    return {'payload': mission.to_dict()}


@router.post("/missions/{accident_id}/go-to-hospital")
async def go_to_hospital(accident_id: str, body: Optional[Dict[str, Any]] = Body(default=None)):
    """
    Assign a hospital and start routing

    Without a hospitalId, the nearest eligible hospital to the ambulance's
    last reported location is chosen. Activates the green corridor towards it.
    """
    request = _parse(HospitalRoutingRequest, body)
    tracker = _get_tracker()

    try:
        mission = tracker.start_hospital_routing(
            accident_id,
            hospital_id_hint=request.hospitalId,
            specialty=request.specialty
        )
    except CorridorError as e:
        raise _http_error(e)

    hospital = mission.hospital.to_dict()
    hospital['mapLink'] = map_link(mission.hospital.location)
    hospital['navigationLink'] = navigation_link(mission.hospital.location)

    return {'payload': {
        'accidentId': mission.accident_id,
        'phase': mission.phase.value,
        'hospital': hospital,
        'message': f"Ambulance now routing to {mission.hospital.name}. Green corridor active."
    }}


@router.post("/missions/{accident_id}/cancel")
async def cancel_mission(accident_id: str, body: Optional[Dict[str, Any]] = Body(default=None)):
    """Cancel a mission and release its corridor"""
    request = _parse(CancelRequest, body)

    try:
        mission = _get_tracker().cancel_mission(accident_id, reason=request.reason)
    except CorridorError as e:
        raise _http_error(e)

    return {'payload': {
        'accidentId': mission.accident_id,
        'status': 'CANCELLED',
        'cancelledAt': mission.cancelled_at,
        'reason': mission.cancel_reason
    }}


# ============================================
# Signal Endpoints
# ============================================

@router.get("/signals")
async def list_signals():
    """All signal states"""
    signals = [s.to_dict() for s in _get_signal_store().get_all()]
    return {'meta': _meta(), 'payload': {'signals': signals, 'total': len(signals)}}


@router.get("/signals/{signal_id}")
async def get_signal(signal_id: str):
    signal = _get_signal_store().get(signal_id)
    if signal is None:
        raise HTTPException(status_code=404, detail="Signal not found")
    return {'payload': signal.to_dict()}


@router.get("/active")
async def get_active_corridors():
    """Corridors holding at least one live override"""
    return {'payload': _get_corridor_manager().get_active_corridors()}


# ============================================
# Hospital Endpoints
# ============================================

@router.get("/hospitals")
async def list_hospitals():
    """All hospitals in the directory"""
    hospitals = [h.to_dict() for h in _get_directory().get_all()]
    return {'meta': _meta(), 'payload': {'hospitals': hospitals, 'total': len(hospitals)}}


@router.get("/hospitals/nearest")
async def nearest_hospitals(
    lat: Optional[str] = Query(default=None),
    lng: Optional[str] = Query(default=None),
    limit: Optional[str] = Query(default=None),
    specialty: Optional[str] = Query(default=None)
):
    """
    Nearest eligible hospitals to a point

    Example:
    ```
    curl "http://localhost:8000/corridor/hospitals/nearest?lat=18.52&lng=73.85&specialty=TRAUMA"
    ```
    """
    if not is_valid_coordinate(lat, lng):
        raise HTTPException(status_code=400, detail="lat and lng query parameters required (numbers)")

    point = GeoPoint(lat=float(lat), lng=float(lng))

    matches = _get_directory().nearest(point, specialty=specialty, limit=_parse_limit(limit))
    hospitals = [_with_map_link(m.to_dict()) for m in matches]
    return {'payload': {'hospitals': hospitals, 'total': len(hospitals)}}


@router.get("/hospitals/{hospital_id}")
async def get_hospital(hospital_id: str):
    hospital = _get_directory().get(hospital_id)
    if hospital is None:
        raise HTTPException(status_code=404, detail="Hospital not found")
    return {'payload': _with_map_link(hospital.to_dict())}


@router.patch("/hospitals/{hospital_id}/beds")
async def update_beds(hospital_id: str, body: Optional[Dict[str, Any]] = Body(default=None)):
    """Update available beds (non-negative integer)"""
    request = _parse(BedsUpdateRequest, body)

    try:
        hospital = _get_directory().update_beds(hospital_id, request.bedsAvailable)
    except CorridorError as e:
        raise _http_error(e)

    return {'payload': {'hospitalId': hospital.hospital_id, 'bedsAvailable': hospital.beds_available}}


@router.patch("/hospitals/{hospital_id}/active")
async def set_hospital_active(hospital_id: str, body: Optional[Dict[str, Any]] = Body(default=None)):
    """Activate or deactivate a hospital"""
    request = _parse(ActiveUpdateRequest, body)

    try:
        hospital = _get_directory().set_active(hospital_id, request.active)
    except CorridorError as e:
        raise _http_error(e)

    return {'payload': {'hospitalId': hospital.hospital_id, 'active': hospital.active}}


# ============================================
# Statistics
# ============================================

@router.get("/statistics")
async def get_statistics():
    """Mission, corridor, signal and directory counters"""
    return {
        'meta': _meta(),
        'payload': {
            'missions': _get_tracker().get_statistics(),
            'corridors': _get_corridor_manager().get_statistics(),
            'signals': _get_signal_store().get_statistics(),
            'hospitals': _get_directory().get_statistics()
        }
    }
