"""
WebSocket Tests

This module tests the WebSocket implementation including:
- Event definitions
- WebSocketEmitter scheduling of engine changes
- WebSocketHandlers event handling
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from green_corridor.emergency import ClaimOutcome, SignalStateStore
from green_corridor.models import GeoPoint
from green_corridor.websocket.emitter import WebSocketEmitter
from green_corridor.websocket.events import (
    EVENT_CHANNELS,
    ClientEvent,
    ServerEvent,
    SignalChangeData,
)
from green_corridor.websocket.handlers import WebSocketHandlers


@pytest.fixture
def sio():
    mock = MagicMock()
    mock.emit = AsyncMock()
    mock.enter_room = AsyncMock()
    mock.leave_room = AsyncMock()
    return mock


async def drain():
    for _ in range(3):
        await asyncio.sleep(0)


# ============================================
# Event Tests
# ============================================

class TestEvents:
    """Test event names and payload models"""

    def test_server_events(self):
        """Test server event names"""
        assert ServerEvent.CONNECTION_SUCCESS.value == "connection:success"
        assert ServerEvent.SIGNAL_CHANGE.value == "signal:change"
        assert ServerEvent.MISSION_PHASE.value == "mission:phase"
        assert ServerEvent.CORRIDOR_RELEASED.value == "corridor:released"

    def test_client_events(self):
        """Test client event names"""
        assert ClientEvent.SUBSCRIBE_UPDATES.value == "subscribe:updates"

    def test_every_server_update_has_a_channel(self):
        """Test every update event maps to a channel"""
        for event in ServerEvent:
            if event != ServerEvent.CONNECTION_SUCCESS:
                assert event.value in EVENT_CHANNELS

    def test_signal_change_model(self):
        """Test signal change payload model"""
        data = SignalChangeData(signalId="SIG-1", newState="GREEN_OVERRIDE", timestamp=1.0)
        assert data.model_dump()["ownerMissionId"] is None


# ============================================
# Emitter Tests
# ============================================

class TestEmitter:
    """Test emitter scheduling"""

    @pytest.mark.asyncio
    async def test_signal_listener_emits(self, sio):
        """Test signal changes are emitted"""
        emitter = WebSocketEmitter(sio, loop=asyncio.get_running_loop())
        store = SignalStateStore()
        store.register("SIG-1", GeoPoint(lat=18.5, lng=73.8))
        store.add_listener(emitter.publish_signal_change)

        assert store.claim("SIG-1", "ACC-1", ttl=60) == ClaimOutcome.CLAIMED
        await drain()

        event, data = sio.emit.call_args_list[0].args
        assert event == "signal:change"
        assert data["signalId"] == "SIG-1"
        assert data["newState"] == "GREEN_OVERRIDE"
        assert data["ownerMissionId"] == "ACC-1"

        # Channel subscribers get a copy in their room
        room_call = sio.emit.call_args_list[1]
        assert room_call.args[0] == "signals:signal:change"
        assert room_call.kwargs["room"] == "channel:signals"
        assert emitter.get_stats()["totalEmits"] == 1

    @pytest.mark.asyncio
    async def test_mission_and_corridor_events(self, sio):
        """Test mission and corridor events are emitted"""
        emitter = WebSocketEmitter(sio, loop=asyncio.get_running_loop())

        emitter.publish_mission_event("mission:phase", {"accidentId": "A1", "phase": "AT_SCENE"})
        emitter.publish_corridor_event("corridor:released", {"missionId": "A1", "releasedSignalIds": ["S1"]})
        await drain()

        events = [c.args[0] for c in sio.emit.call_args_list if "room" not in c.kwargs]
        assert events == ["mission:phase", "corridor:released"]
        released = sio.emit.call_args_list[-1].args[1]
        assert released["signalIds"] == ["S1"]

    @pytest.mark.asyncio
    async def test_scheduled_emits_are_tracked_until_done(self, sio):
        """Test scheduled emit tasks are held until they finish"""
        emitter = WebSocketEmitter(sio, loop=asyncio.get_running_loop())

        emitter.publish_mission_event("mission:created", {"accidentId": "A1", "phase": "EN_ROUTE_TO_SCENE"})
        assert emitter.get_stats()["pendingEmits"] == 1

        await drain()

        assert emitter.get_stats()["pendingEmits"] == 0
        assert emitter.get_stats()["totalEmits"] == 1

    def test_no_loop_bound_is_a_no_op(self, sio):
        """Test emits without a loop are skipped"""
        emitter = WebSocketEmitter(sio)
        emitter.publish_mission_event("mission:created", {"accidentId": "A1", "phase": "EN_ROUTE_TO_SCENE"})
        sio.emit.assert_not_called()

    @pytest.mark.asyncio
    async def test_emit_errors_are_counted(self, sio):
        """Test emit errors are counted"""
        sio.emit.side_effect = RuntimeError("socket closed")
        emitter = WebSocketEmitter(sio)

        await emitter._emit("signal:change", {})

        assert emitter.get_stats()["errorCount"] == 1


# ============================================
# Handler Tests
# ============================================

class TestHandlers:
    """Test client event handling"""

    @pytest.mark.asyncio
    async def test_connect_and_disconnect(self, sio):
        """Test connect and disconnect"""
        handlers = WebSocketHandlers(sio, WebSocketEmitter(sio))

        await handlers.handle_connect("sid-1", {"REMOTE_ADDR": "10.0.0.1"})

        assert handlers.get_client_count() == 1
        assert sio.emit.call_args.args[0] == "connection:success"
        assert sio.emit.call_args.kwargs["room"] == "sid-1"

        await handlers.handle_disconnect("sid-1")
        assert handlers.get_client_count() == 0

    @pytest.mark.asyncio
    async def test_subscribe_known_channels_only(self, sio):
        """Test only known channels are joined"""
        handlers = WebSocketHandlers(sio, WebSocketEmitter(sio))
        await handlers.handle_connect("sid-1", {})

        await handlers.handle_subscribe("sid-1", {"channels": ["signals", "bogus"]})

        sio.enter_room.assert_awaited_once_with("sid-1", "channel:signals")
        assert handlers.get_connected_clients()["sid-1"]["subscriptions"] == ["signals"]

        await handlers.handle_unsubscribe("sid-1", {"channels": ["signals"]})
        assert handlers.get_connected_clients()["sid-1"]["subscriptions"] == []

    def test_handlers_registered(self, sio):
        """Test handlers are registered"""
        WebSocketHandlers(sio, WebSocketEmitter(sio))
        registered = [c.args[0] for c in sio.on.call_args_list]
        assert registered == ["connect", "disconnect", "subscribe:updates", "unsubscribe:updates"]
