"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Health and auth routes are open at the router level; individual
auth routes that need a signed-in caller (logout, me, password change)
declare Depends(get_current_user) themselves. Domain routers mounted by
an embedding application should use dependencies=[Depends(get_current_user)]
or require_role()/require_permission().
"""

from fastapi import APIRouter

from warden.api.auth import router as auth_router
from warden.api.health import router as health_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])
