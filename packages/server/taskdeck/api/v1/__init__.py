"""
API v1 Router

All endpoints are organization-scoped through the caller's session; the
organization is never taken from the URL or the request body.
"""

from fastapi import APIRouter

from . import auth, notifications, realtime, tasks, users

router = APIRouter()

router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
router.include_router(users.router, prefix="/users", tags=["Users"])
router.include_router(tasks.router, prefix="/tasks", tags=["Tasks"])
router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
router.include_router(realtime.router, tags=["Real-time"])
