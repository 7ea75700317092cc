"""
Live sync status routes.
"""

from fastapi import APIRouter, Request
import structlog

from models.sync import SyncStatusResponse
from routes.posts import handle_error

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(request: Request):
    """
    Live sync state for the UI's online indicator.

    online is false when live sync is not configured.
    """
    try:
        store = request.app.state.post_store
        live_sync = getattr(request.app.state, "live_sync", None)
        return SyncStatusResponse(
            online=bool(live_sync and live_sync.online),
            posts_count=len(store.posts),
            reconnect_attempts=live_sync.reconnect_attempts if live_sync else 0,
        )

    except Exception as e:
        return handle_error(e)


@router.post("/refresh", response_model=SyncStatusResponse)
async def refresh(request: Request):
    """Reload the working set from the remote store."""
    try:
        store = request.app.state.post_store
        await store.hydrate()
        live_sync = getattr(request.app.state, "live_sync", None)
        return SyncStatusResponse(
            online=bool(live_sync and live_sync.online),
            posts_count=len(store.posts),
            reconnect_attempts=live_sync.reconnect_attempts if live_sync else 0,
        )

    except Exception as e:
        return handle_error(e)
