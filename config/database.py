"""
Database connection management.

Provides a cached async Supabase client. The same client serves PostgREST
queries and the realtime change feed.
"""

from supabase import acreate_client, AsyncClient
from typing import Optional
import structlog

from config.settings import settings
from exceptions import RemoteStoreUnavailableError

logger = structlog.get_logger(__name__)


_client: Optional[AsyncClient] = None


async def get_supabase_client() -> AsyncClient:
    """
    Get cached async Supabase client instance.

    Only one client is created per process.
    Call reset_connection() to reconnect.

    Returns:
        AsyncClient: Supabase client

    Raises:
        RemoteStoreUnavailableError: If the client cannot be created
    """
    global _client
    if _client is not None:
        return _client

    try:
        logger.info(
            "connecting_to_supabase",
            url=settings.supabase_url[:30] + "..."  # Log partial URL only
        )

        _client = await acreate_client(
            settings.supabase_url,
            settings.supabase_key
        )

        logger.info(
            "supabase_connected",
            status="success"
        )

        return _client

    except Exception as e:
        logger.error(
            "supabase_connection_failed",
            error=str(e),
            error_type=type(e).__name__
        )
        raise RemoteStoreUnavailableError("connect", f"Failed to connect to Supabase: {e}") from e


# ===================
# HELPER FUNCTIONS
# ===================

async def check_connection() -> dict:
    """
    Check database connection health.

    Returns:
        dict: Connection status with details
    """
    try:
        client = await get_supabase_client()

        posts = await (
            client.schema(settings.posts_schema)
            .table(settings.posts_table)
            .select("id", count="exact")
            .limit(1)
            .execute()
        )

        return {
            "status": "healthy",
            "posts_count": posts.count
        }

    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e)
        }


def reset_connection():
    """
    Drop the cached database client.

    Call this if connection becomes stale or after config changes.
    """
    global _client
    _client = None
    logger.info("database_connection_reset")
