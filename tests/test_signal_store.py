"""
Signal State Store Tests

Tagged override claims: first claimant wins, release only your own,
expiry applied lazily and by sweep.
"""

import pytest

from green_corridor.emergency import ClaimOutcome, DEMO_SIGNALS, SignalState, SignalStateStore
from green_corridor.errors import NotFoundError
from green_corridor.models import GeoPoint


@pytest.fixture
def store(clock):
    s = SignalStateStore(clock=clock)
    s.register("SIG-1", GeoPoint(lat=18.51, lng=73.80), name="North")
    s.register("SIG-2", GeoPoint(lat=18.52, lng=73.80), name="South")
    return s


class TestClaims:
    """Test claim policy"""

    def test_claim_normal_signal(self, store, clock):
        """Test claiming a NORMAL signal"""
        outcome = store.claim("SIG-1", "ACC-1", ttl=60)
        signal = store.get("SIG-1")

        assert outcome == ClaimOutcome.CLAIMED
        assert signal.state == SignalState.GREEN_OVERRIDE
        assert signal.owner_mission_id == "ACC-1"
        assert signal.override_expires_at == clock.now + 60

    def test_reclaim_extends_expiry(self, store, clock):
        """Test re-claiming extends expiry"""
        store.claim("SIG-1", "ACC-1", ttl=60)
        clock.advance(30)

        outcome = store.claim("SIG-1", "ACC-1", ttl=60)

        assert outcome == ClaimOutcome.REFRESHED
        assert store.get("SIG-1").override_expires_at == clock.now + 60

    def test_first_claimant_wins(self, store):
        """Test first claimant wins"""
        store.claim("SIG-1", "ACC-1", ttl=60)

        outcome = store.claim("SIG-1", "ACC-2", ttl=60)

        assert outcome == ClaimOutcome.CONTESTED
        assert store.get("SIG-1").owner_mission_id == "ACC-1"

    def test_expired_claim_can_be_taken(self, store, clock):
        """Test an expired claim can be taken"""
        store.claim("SIG-1", "ACC-1", ttl=60)
        clock.advance(61)

        assert store.claim("SIG-1", "ACC-2", ttl=60) == ClaimOutcome.CLAIMED
        assert store.get("SIG-1").owner_mission_id == "ACC-2"

    def test_claim_unknown_signal(self, store):
        """Test claiming an unknown signal"""
        with pytest.raises(NotFoundError):
            store.claim("SIG-X", "ACC-1", ttl=60)


class TestRelease:
    """Test release only touches the caller's claims"""

    def test_release_own_claim(self, store):
        """Test releasing an own claim"""
        store.claim("SIG-1", "ACC-1", ttl=60)

        assert store.release("SIG-1", "ACC-1")

        signal = store.get("SIG-1")
        assert signal.state == SignalState.NORMAL
        assert signal.owner_mission_id is None
        assert signal.override_expires_at is None

    def test_release_never_clears_other_mission(self, store):
        """Test release never clears another mission's claim"""
        store.claim("SIG-1", "ACC-1", ttl=60)

        assert not store.release("SIG-1", "ACC-2")
        assert store.get("SIG-1").owner_mission_id == "ACC-1"

    def test_release_all(self, store):
        """Test releasing all claims of a mission"""
        store.claim("SIG-1", "ACC-1", ttl=60)
        store.claim("SIG-2", "ACC-2", ttl=60)

        released = store.release_all("ACC-1")

        assert released == ["SIG-1"]
        assert store.get("SIG-2").is_overridden()

    def test_release_unknown_signal(self, store):
        """Test releasing an unknown signal"""
        assert not store.release("SIG-X", "ACC-1")


class TestExpiry:
    """Test lazy expiry and sweep"""

    def test_lazy_expiry_on_read(self, store, clock):
        """Test expiry is applied on read"""
        store.claim("SIG-1", "ACC-1", ttl=60)
        clock.advance(60)

        signal = store.get("SIG-1")

        assert signal.state == SignalState.NORMAL
        assert signal.owner_mission_id is None
        assert store.expirations == 1

    def test_sweep_expired(self, store, clock):
        """Test expiry sweep"""
        store.claim("SIG-1", "ACC-1", ttl=10)
        store.claim("SIG-2", "ACC-1", ttl=100)
        clock.advance(50)

        assert store.sweep_expired() == ["SIG-1"]
        assert store.owned_by("ACC-1") == ["SIG-2"]

    def test_active_owners_drops_expired(self, store, clock):
        """Test active owners exclude expired claims"""
        store.claim("SIG-1", "ACC-1", ttl=10)
        store.claim("SIG-2", "ACC-2", ttl=100)
        clock.advance(20)

        assert store.active_owners() == {"ACC-2": ["SIG-2"]}


class TestListenersAndRegistry:
    def test_listener_receives_snapshots(self, store):
        """Test listeners receive snapshots"""
        seen = []
        store.add_listener(lambda s: seen.append((s.signal_id, s.state)))

        store.claim("SIG-1", "ACC-1", ttl=60)
        store.claim("SIG-1", "ACC-1", ttl=60)  # refresh is not a state change
        store.release("SIG-1", "ACC-1")

        assert seen == [
            ("SIG-1", SignalState.GREEN_OVERRIDE),
            ("SIG-1", SignalState.NORMAL),
        ]

    def test_failing_listener_does_not_break_claim(self, store):
        """Test a failing listener does not break a claim"""
        def broken(_signal):
            raise RuntimeError("boom")

        store.add_listener(broken)

        assert store.claim("SIG-1", "ACC-1", ttl=60) == ClaimOutcome.CLAIMED

    def test_reads_return_copies(self, store):
        """Test reads return copies"""
        snapshot = store.get("SIG-1")
        snapshot.owner_mission_id = "ACC-HACK"

        assert store.get("SIG-1").owner_mission_id is None

    def test_re_register_keeps_state(self, store):
        """Test re-registering keeps state"""
        store.claim("SIG-1", "ACC-1", ttl=60)
        store.register("SIG-1", GeoPoint(lat=18.511, lng=73.80))

        signal = store.get("SIG-1")
        assert signal.owner_mission_id == "ACC-1"
        assert signal.name == "North"

    def test_demo_seed(self, clock):
        """Test demo signal seeding"""
        s = SignalStateStore(clock=clock)
        assert s.seed_demo_signals() == len(DEMO_SIGNALS)
        assert s.count == 8
        assert s.require("SIG-PUNE-001").name == "Shivajinagar Junction"

    def test_require_unknown(self, store):
        """Test require on an unknown signal"""
        with pytest.raises(NotFoundError):
            store.require("SIG-X")

    def test_statistics(self, store):
        """Test signal statistics"""
        store.claim("SIG-1", "ACC-1", ttl=60)
        store.claim("SIG-1", "ACC-2", ttl=60)
        stats = store.get_statistics()

        assert stats['totalSignals'] == 2
        assert stats['overriddenSignals'] == 1
        assert stats['claimsGranted'] == 1
        assert stats['claimsContested'] == 1
