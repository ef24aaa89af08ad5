# app/routers/__init__.py
"""
API routers for v1 endpoints.
"""

from app.routers.admin_retention import router as admin_retention_router
from app.routers.exports import router as exports_router

__all__ = [
    "exports_router",
    "admin_retention_router",
]
