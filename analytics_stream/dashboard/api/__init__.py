"""Dashboard API layer.

Routes:
- routes/dashboards.py: Snapshot, listing and refresh endpoints

websocket.py: Snapshot push to connected renderers
"""

from fastapi import APIRouter

from .routes import dashboards
from .websocket import websocket_endpoint

# Create main API router
api_router = APIRouter()

# Include sub-routers
api_router.include_router(dashboards.router, prefix="/dashboards", tags=["dashboards"])

__all__ = [
    "api_router",
    "websocket_endpoint",
]
