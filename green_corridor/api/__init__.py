"""
API Routes Package

This module exports the FastAPI routers for the Green Corridor Service.
"""

from .corridor_routes import router as corridor_router, set_corridor_components

__all__ = [
    "corridor_router",
    "set_corridor_components",
]
