"""API v1 router that aggregates all endpoint routers."""

from fastapi import APIRouter, Depends

from cart_recovery.api.v1 import admin, carts, health, recovery
from cart_recovery.api.v1.deps import require_admin

api_router = APIRouter()

# Include all routers
api_router.include_router(
    health.router,
    tags=["Health"],
)

api_router.include_router(
    carts.router,
    prefix="/carts",
    tags=["Carts"],
)

api_router.include_router(
    recovery.router,
    prefix="/recovery",
    tags=["Recovery"],
)

api_router.include_router(
    admin.router,
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(require_admin)],
)
