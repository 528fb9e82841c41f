"""
app/api/routers package marker.
"""

from app.api.routers.identity_imports import router as identity_imports_router

__all__ = [
    "identity_imports_router",
]
