"""
Corridor API Endpoint Tests

Tests the /corridor router against freshly built engine components.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from green_corridor.api import corridor_router, set_corridor_components
from green_corridor.emergency import GreenCorridorManager, MissionTracker, SignalStateStore
from green_corridor.services import HospitalDirectory

SCENE = {"lat": 18.53, "lng": 73.87}
NEAR_SCENE = {"lat": 18.5301, "lng": 73.8701}


def build_client(reject_unknown: bool = True, seed_hospitals: bool = True) -> TestClient:
    directory = HospitalDirectory()
    if seed_hospitals:
        directory.seed_demo_hospitals()
    store = SignalStateStore()
    store.seed_demo_signals()
    manager = GreenCorridorManager(store)
    tracker = MissionTracker(directory, manager)
    set_corridor_components(tracker, directory, manager, store, reject_unknown=reject_unknown)

    app = FastAPI()
    app.include_router(corridor_router)
    return TestClient(app)


@pytest.fixture
def client():
    return build_client()


def start_mission(client, accident_id="A1"):
    response = client.post("/corridor/init", json={"payload": {"accidentId": accident_id, "location": SCENE}})
    assert response.status_code == 200
    return response


# ============================================
# Mission Endpoints
# ============================================

class TestInitAndLocation:
    """Test scene reports and location updates"""

    def test_init(self, client):
        """Test scene report endpoint"""
        response = start_mission(client)
        assert response.json() == {"payload": {"accidentId": "A1", "status": "CORRIDOR_INITIALIZED"}}

    def test_init_accepts_flat_body(self, client):
        """Test unwrapped request body"""
        response = client.post("/corridor/init", json={"accidentId": "A2", "location": SCENE})
        assert response.status_code == 200

    def test_init_missing_fields(self, client):
        """Test missing fields return 400"""
        response = client.post("/corridor/init", json={"payload": {"accidentId": "A1"}})
        assert response.status_code == 400

        response = client.post("/corridor/init", json={"payload": {"location": SCENE}})
        assert response.status_code == 400

    def test_init_invalid_coordinates(self, client):
        """Test out-of-range coordinates return 400"""
        response = client.post("/corridor/init", json={"accidentId": "A1", "location": {"lat": 95, "lng": 73.87}})
        assert response.status_code == 400

    def test_location_reaches_scene(self, client):
        """Test location update reaching the scene"""
        start_mission(client)

        response = client.post("/corridor/location", json={
            "payload": {"accidentId": "A1", "entityId": "AMB1", "location": NEAR_SCENE}
        })

        assert response.status_code == 200
        payload = response.json()["payload"]
        assert payload["status"] == "PROCESSED"
        assert payload["accepted"] is True
        assert payload["phase"] == "AT_SCENE"

    def test_location_iso_timestamp_and_stale_drop(self, client):
        """Test ISO timestamps and stale update drop"""
        start_mission(client)
        client.post("/corridor/location", json={
            "accidentId": "A1", "entityId": "AMB1",
            "location": {"lat": 18.60, "lng": 73.87},
            "timestamp": "2026-10-18T10:00:00Z"
        })

        response = client.post("/corridor/location", json={
            "accidentId": "A1", "entityId": "AMB1",
            "location": NEAR_SCENE,
            "timestamp": "2026-10-18T09:59:00Z"
        })

        payload = response.json()["payload"]
        assert payload["accepted"] is False
        assert payload["phase"] == "EN_ROUTE_TO_SCENE"

    @pytest.mark.parametrize("bad", ["NaN", "Infinity", "-Infinity"])
    def test_location_non_finite_timestamp(self, client, bad):
        """Test non-finite timestamps are rejected and the mission stays readable"""
        start_mission(client)
        body = (
            '{"accidentId": "A1", "entityId": "AMB1", '
            '"location": {"lat": 18.5301, "lng": 73.8701}, '
            '"timestamp": %s}' % bad
        )

        response = client.post(
            "/corridor/location",
            content=body,
            headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400

        mission = client.get("/corridor/missions/A1")
        assert mission.status_code == 200
        assert mission.json()["payload"]["phase"] == "EN_ROUTE_TO_SCENE"

    def test_location_unknown_accident_rejected(self, client):
        """Test unknown accident returns 404"""
        response = client.post("/corridor/location", json={
            "accidentId": "NOPE", "entityId": "AMB1", "location": NEAR_SCENE
        })
        assert response.status_code == 404

    def test_location_unknown_accident_dropped_when_configured(self):
        """Test unknown accident is dropped when configured"""
        client = build_client(reject_unknown=False)

        response = client.post("/corridor/location", json={
            "accidentId": "NOPE", "entityId": "AMB1", "location": NEAR_SCENE
        })

        assert response.status_code == 200
        assert response.json()["payload"]["accepted"] is False

    def test_location_missing_entity(self, client):
        """Test missing entity ID returns 400"""
        start_mission(client)
        response = client.post("/corridor/location", json={"accidentId": "A1", "location": NEAR_SCENE})
        assert response.status_code == 400


class TestMissionEndpoints:
    """Test mission views, routing and cancellation"""

    def test_list_and_get_missions(self, client):
        """Test mission listing and lookup"""
        start_mission(client)

        listing = client.get("/corridor/missions").json()
        assert listing["payload"]["total"] == 1
        assert "requestId" in listing["meta"]
        assert listing["meta"]["requestId"].startswith("REQ-")

        mission = client.get("/corridor/missions/A1").json()["payload"]
        assert mission["accidentId"] == "A1"
        assert mission["phase"] == "EN_ROUTE_TO_SCENE"
        assert mission["hospital"] is None

    def test_get_unknown_mission(self, client):
        """Test unknown mission returns 404"""
        assert client.get("/corridor/missions/NOPE").status_code == 404

    def test_go_to_hospital(self, client):
        """Test hospital routing"""
        start_mission(client)
        client.post("/corridor/location", json={"accidentId": "A1", "entityId": "AMB1", "location": NEAR_SCENE})

        response = client.post("/corridor/missions/A1/go-to-hospital")

        assert response.status_code == 200
        payload = response.json()["payload"]
        assert payload["phase"] == "ROUTING_TO_HOSPITAL"
        assert payload["hospital"]["hospitalId"] == "HOSP-JEHANGIR"
        assert payload["hospital"]["mapLink"] == "https://www.google.com/maps?q=18.531,73.876"
        assert payload["hospital"]["navigationLink"] == (
            "https://www.google.com/maps/dir/?api=1&destination=18.531,73.876"
        )
        assert "Jehangir Hospital" in payload["message"]

        mission = client.get("/corridor/missions/A1").json()["payload"]
        assert mission["hospital"]["mapLink"].startswith("https://www.google.com/maps?q=")

    def test_go_to_hospital_with_hint(self, client):
        """Test hospital routing with a hospital hint"""
        start_mission(client)
        client.post("/corridor/location", json={"accidentId": "A1", "entityId": "AMB1", "location": NEAR_SCENE})

        response = client.post("/corridor/missions/A1/go-to-hospital", json={"hospitalId": "HOSP-KEM"})

        assert response.json()["payload"]["hospital"]["hospitalId"] == "HOSP-KEM"

    def test_go_to_hospital_without_location(self, client):
        """Test routing before any location fails"""
        start_mission(client)

        response = client.post("/corridor/missions/A1/go-to-hospital")

        assert response.status_code == 404
        assert client.get("/corridor/missions/A1").json()["payload"]["phase"] == "EN_ROUTE_TO_SCENE"

    def test_go_to_hospital_none_available(self):
        """Test routing with no eligible hospital"""
        client = build_client(seed_hospitals=False)
        start_mission(client)
        client.post("/corridor/location", json={"accidentId": "A1", "entityId": "AMB1", "location": NEAR_SCENE})

        response = client.post("/corridor/missions/A1/go-to-hospital")

        assert response.status_code == 500
        assert response.json()["detail"] == "No available hospital found nearby"

    def test_cancel_mission(self, client):
        """Test mission cancellation"""
        start_mission(client)
        client.post("/corridor/location", json={"accidentId": "A1", "entityId": "AMB1", "location": NEAR_SCENE})

        response = client.post("/corridor/missions/A1/cancel", json={"reason": "False alarm"})

        assert response.status_code == 200
        assert response.json()["payload"]["status"] == "CANCELLED"
        assert client.post("/corridor/missions/A1/go-to-hospital").status_code == 409

    def test_cancel_unknown_mission(self, client):
        """Test cancelling an unknown mission"""
        assert client.post("/corridor/missions/NOPE/cancel").status_code == 404


# ============================================
# Signal Endpoints
# ============================================

class TestSignalEndpoints:
    def test_list_signals(self, client):
        """Test signal listing"""
        data = client.get("/corridor/signals").json()
        assert data["payload"]["total"] == 8
        assert data["meta"]["version"] == "1.0"

    def test_get_signal(self, client):
        """Test signal lookup"""
        response = client.get("/corridor/signals/SIG-PUNE-001")
        assert response.status_code == 200
        assert response.json()["payload"]["state"] == "NORMAL"

    def test_get_unknown_signal(self, client):
        """Test unknown signal returns 404"""
        assert client.get("/corridor/signals/SIG-X").status_code == 404

    def test_active_corridors(self, client):
        """Test active corridor listing"""
        assert client.get("/corridor/active").json() == {"payload": []}

        start_mission(client)
        # Heading south towards the scene passes the Koregaon Park / Station junctions
        client.post("/corridor/location", json={
            "accidentId": "A1", "entityId": "AMB1", "location": {"lat": 18.5362, "lng": 73.8840}
        })

        active = client.get("/corridor/active").json()["payload"]
        assert [c["missionId"] for c in active] == ["A1"]
        assert "SIG-PUNE-006" in active[0]["liveSignalIds"]


# ============================================
# Hospital Endpoints
# ============================================

class TestHospitalEndpoints:
    def test_list_hospitals(self, client):
        """Test hospital listing"""
        data = client.get("/corridor/hospitals").json()
        assert data["payload"]["total"] == 6

    def test_nearest_defaults_to_three(self, client):
        """Test nearest returns three hospitals by default"""
        response = client.get("/corridor/hospitals/nearest", params={"lat": 18.52, "lng": 73.86})

        assert response.status_code == 200
        hospitals = response.json()["payload"]["hospitals"]
        assert len(hospitals) == 3
        distances = [h["distanceKm"] for h in hospitals]
        assert distances == sorted(distances)
        assert all(h["mapLink"].startswith("https://www.google.com/maps?q=") for h in hospitals)

    def test_nearest_with_specialty(self, client):
        """Test nearest with a specialty filter"""
        response = client.get("/corridor/hospitals/nearest", params={
            "lat": 18.52, "lng": 73.86, "specialty": "NEURO", "limit": 5
        })
        ids = [h["hospitalId"] for h in response.json()["payload"]["hospitals"]]
        assert sorted(ids) == ["HOSP-ADITYA-BIRLA", "HOSP-SAHYADRI"]

    @pytest.mark.parametrize("limit,expected", [("0", 3), ("abc", 3), ("-2", 3), ("2", 2)])
    def test_nearest_limit_fallback(self, client, limit, expected):
        """Test an unusable limit falls back to three results"""
        response = client.get("/corridor/hospitals/nearest", params={
            "lat": 18.52, "lng": 73.86, "limit": limit
        })

        assert response.status_code == 200
        assert len(response.json()["payload"]["hospitals"]) == expected

    def test_nearest_non_numeric(self, client):
        """Test non-numeric coordinates return 400"""
        response = client.get("/corridor/hospitals/nearest", params={"lat": "abc", "lng": 73.86})
        assert response.status_code == 400

        response = client.get("/corridor/hospitals/nearest", params={"lng": 73.86})
        assert response.status_code == 400

    def test_get_hospital(self, client):
        """Test hospital lookup"""
        payload = client.get("/corridor/hospitals/HOSP-RUBY").json()["payload"]
        assert payload["name"] == "Ruby Hall Clinic"
        assert payload["mapLink"] == "https://www.google.com/maps?q=18.5308,73.8774"

    def test_get_unknown_hospital(self, client):
        """Test unknown hospital returns 404"""
        assert client.get("/corridor/hospitals/HOSP-X").status_code == 404

    def test_update_beds(self, client):
        """Test bed count update"""
        response = client.patch("/corridor/hospitals/HOSP-KEM/beds", json={"bedsAvailable": 2})
        assert response.json() == {"payload": {"hospitalId": "HOSP-KEM", "bedsAvailable": 2}}

    def test_update_beds_invalid(self, client):
        """Test invalid bed counts return 400"""
        response = client.patch("/corridor/hospitals/HOSP-KEM/beds", json={"bedsAvailable": -1})
        assert response.status_code == 400
        assert client.get("/corridor/hospitals/HOSP-KEM").json()["payload"]["bedsAvailable"] == 8

        response = client.patch("/corridor/hospitals/HOSP-KEM/beds", json={})
        assert response.status_code == 400

    def test_update_beds_unknown_hospital(self, client):
        """Test bed update for an unknown hospital"""
        response = client.patch("/corridor/hospitals/HOSP-X/beds", json={"bedsAvailable": 3})
        assert response.status_code == 404

    def test_set_active(self, client):
        """Test hospital activation flag"""
        response = client.patch("/corridor/hospitals/HOSP-RUBY/active", json={"active": False})

        assert response.json() == {"payload": {"hospitalId": "HOSP-RUBY", "active": False}}
        assert client.patch("/corridor/hospitals/HOSP-X/active", json={"active": True}).status_code == 404


class TestStatistics:
    def test_statistics(self, client):
        """Test statistics endpoint"""
        start_mission(client)

        payload = client.get("/corridor/statistics").json()["payload"]

        assert payload["missions"]["totalMissions"] == 1
        assert payload["hospitals"]["totalHospitals"] == 6
        assert payload["signals"]["totalSignals"] == 8
        assert "corridorsActivated" in payload["corridors"]
