"""API route modules for FastAPI endpoints."""

from fixit.routes.admin import router as admin_router
from fixit.routes.auth import router as auth_router
from fixit.routes.gamification import router as gamification_router
from fixit.routes.government import router as government_router
from fixit.routes.issues import router as issues_router
from fixit.routes.notifications import router as notifications_router

__all__ = [
    "admin_router",
    "auth_router",
    "gamification_router",
    "government_router",
    "issues_router",
    "notifications_router",
]
