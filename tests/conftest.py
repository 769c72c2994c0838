"""
Shared test fixtures
"""

import pytest

from green_corridor.emergency import GreenCorridorManager, MissionTracker, SignalStateStore
from green_corridor.services import HospitalDirectory


class FakeClock:
    """Manually advanced time source"""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def directory():
    d = HospitalDirectory()
    d.seed_demo_hospitals()
    return d


@pytest.fixture
def signal_store(clock):
    store = SignalStateStore(clock=clock)
    store.seed_demo_signals()
    return store


@pytest.fixture
def corridor_manager(signal_store, clock):
    return GreenCorridorManager(signal_store, clock=clock)


@pytest.fixture
def tracker(directory, corridor_manager, clock):
    return MissionTracker(directory, corridor_manager, clock=clock)
