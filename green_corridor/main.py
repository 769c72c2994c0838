"""
Green Corridor Service
Main FastAPI Application Entry Point

This is the main entry point for the backend server.
It initializes FastAPI, Socket.IO, configuration and the corridor engine.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import socketio

from green_corridor import __version__
from green_corridor.config import get_config

logger = logging.getLogger(__name__)

# Create Socket.IO server
sio = socketio.AsyncServer(
    async_mode='asgi',
    cors_allowed_origins='*',
    logger=False,  # Reduce noise in production
    engineio_logger=False,
    ping_interval=25,
    ping_timeout=60
)

# Global instances for WebSocket
ws_emitter = None
ws_handlers = None

_started_at = time.time()


def configure_logging(logging_config: dict):
    """Configure the root logger from the logging config section"""
    level = getattr(logging, str(logging_config.get('level', 'INFO')).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format=logging_config.get('format', "%(asctime)s %(levelname)s [%(name)s] %(message)s")
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events - startup and shutdown"""
    global ws_emitter, ws_handlers

    # Initialize configuration
    cfg = get_config()
    configure_logging(cfg.get_logging_config())
    corridor_cfg = cfg.get_corridor_config()

    logger.info("Starting Green Corridor Service %s", __version__)

    # Initialize hospital directory and signal store
    from green_corridor.services import init_hospital_directory
    from green_corridor.emergency import (
        SignalStateStore,
        init_corridor_manager,
        init_mission_tracker,
    )

    seed_demo = bool(corridor_cfg['seedDemoData'])
    directory = init_hospital_directory(seed_demo=seed_demo)

    signal_store = SignalStateStore()
    if seed_demo:
        signal_store.seed_demo_signals()

    # Initialize corridor engine
    corridor_manager = init_corridor_manager(
        signal_store,
        corridor_radius_m=float(corridor_cfg['corridorRadiusMeters']),
        override_ttl_s=float(corridor_cfg['overrideTtlSeconds']),
        passed_margin_m=float(corridor_cfg['passedMarginMeters']),
        sweep_interval_s=float(corridor_cfg['sweepIntervalSeconds'])
    )
    tracker = init_mission_tracker(
        directory,
        corridor_manager,
        scene_arrival_m=float(corridor_cfg['sceneArrivalMeters']),
        hospital_arrival_m=float(corridor_cfg['hospitalArrivalMeters']),
        history_limit=int(corridor_cfg['locationHistoryLimit'])
    )

    from green_corridor.api import set_corridor_components
    set_corridor_components(
        tracker,
        directory,
        corridor_manager,
        signal_store,
        reject_unknown=bool(corridor_cfg['rejectUnknownLocationUpdates'])
    )
    logger.info(
        "Corridor engine ready: %d hospitals, %d signals",
        directory.count, signal_store.count
    )

    # Initialize WebSocket emitter and handlers
    from green_corridor.websocket import WebSocketEmitter, WebSocketHandlers, set_emitter, set_handlers

    ws_emitter = WebSocketEmitter(sio, loop=asyncio.get_running_loop())
    ws_handlers = WebSocketHandlers(sio, ws_emitter)

    # Set global instances
    set_emitter(ws_emitter)
    set_handlers(ws_handlers)

    # Engine changes -> Socket.IO events
    signal_store.add_listener(ws_emitter.publish_signal_change)
    corridor_manager.add_listener(ws_emitter.publish_corridor_event)
    tracker.add_listener(ws_emitter.publish_mission_event)

    logger.info("WebSocket emitter and handlers initialized")

    # Start expiry sweep
    await corridor_manager.start_sweeper()

    yield

    # Shutdown
    logger.info("Shutting down...")
    await corridor_manager.stop_sweeper()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Green Corridor Service API",
    description="Emergency-vehicle green corridor coordination",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().get_server_config().get('corsOrigins', ["*"]),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================
# Include API Routers
# ============================================

from green_corridor.api import corridor_router

# Corridor routes: /corridor/init, /corridor/location, /corridor/missions/*, ...
app.include_router(corridor_router)


# ============================================
# Root Endpoints
# ============================================

@app.get("/", tags=["root"])
async def root():
    """Root endpoint - API information"""
    return {
        "name": "Green Corridor Service",
        "version": __version__,
        "status": "operational",
        "documentation": "/docs",
        "endpoints": {
            "init": "/corridor/init",
            "location": "/corridor/location",
            "signals": "/corridor/signals",
            "active": "/corridor/active",
            "hospitals": "/corridor/hospitals",
            "missions": "/corridor/missions",
            "statistics": "/corridor/statistics"
        }
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint"""
    from green_corridor.websocket import get_handlers

    handlers = get_handlers()
    ws_clients = handlers.get_client_count() if handlers else 0

    return {
        "status": "healthy",
        "timestamp": time.time(),
        "uptime": time.time() - _started_at,
        "websocket": {
            "connected_clients": ws_clients,
            "status": "ready"
        }
    }


@app.get("/ws/stats", tags=["websocket"])
async def websocket_stats():
    """Get WebSocket statistics"""
    from green_corridor.websocket import get_emitter, get_handlers

    emitter = get_emitter()
    handlers = get_handlers()

    return {
        "emitter": emitter.get_stats() if emitter else None,
        "clients": {
            "count": handlers.get_client_count() if handlers else 0,
            "connected": list(handlers.get_connected_clients().keys()) if handlers else []
        },
        "timestamp": time.time()
    }


# ============================================
# Create Socket.IO ASGI app
# ============================================

sio_app = socketio.ASGIApp(sio, app)


# ============================================
# WebSocket Event Reference (handled by WebSocketHandlers)
# ============================================
#
# Server → Client Events:
#   - connection:success      : Connection established
#   - signal:change           : Signal entered or left GREEN_OVERRIDE
#   - mission:created         : Scene reported, mission created
#   - mission:phase           : Mission phase changed / hospital assigned
#   - mission:cancelled       : Mission cancelled
#   - corridor:activated      : Corridor activated or re-targeted
#   - corridor:released       : Corridor signals returned to NORMAL
#
# Client → Server Events:
#   - subscribe:updates       : Subscribe to channels (signals, missions, corridors)
#   - unsubscribe:updates     : Unsubscribe from channels


# ============================================
# Entry Point
# ============================================

if __name__ == "__main__":
    import uvicorn

    server_cfg = get_config().get_server_config()
    uvicorn.run(
        "green_corridor.main:sio_app",
        host=server_cfg.get('host', "0.0.0.0"),
        port=int(server_cfg.get('port', 8000)),
        reload=True,
        log_level="info"
    )
