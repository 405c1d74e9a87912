"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from splitspace.app.api.v1.endpoints import (
    accounts, transfers, rooms, hourglass,
    admin, admin_ops
)

router = APIRouter()

# Accounts, wallet view and PIN
router.include_router(accounts.router)

# Money movement
router.include_router(transfers.router)

# Money Rooms (pooled escrow)
router.include_router(rooms.router)

# HourGlass recurring savings
router.include_router(hourglass.router)

# Admin and ops endpoints
router.include_router(admin.router)
router.include_router(admin_ops.router)
