"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Unlike a router-level auth dependency, ownership checks can't be
applied at include_router time: each handler knows which owner id it
targets only after parsing the path or body. So every data route calls
the gateway itself; only health is open.
"""

from fastapi import APIRouter

from ownergate.api.health import router as health_router
from ownergate.api.profiles import router as profiles_router

api_router = APIRouter(prefix="/api/v1")

# Open routes — no auth required
api_router.include_router(health_router, tags=["health"])

# Owner-scoped routes, each handler authorizes through the gateway
api_router.include_router(profiles_router, tags=["profiles"])
