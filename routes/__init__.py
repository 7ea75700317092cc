"""
API route modules.

Each module defines routes for one domain area.
"""

from routes.posts import router as posts_router
from routes.sync import router as sync_router

__all__ = [
    "posts_router",
    "sync_router",
]
