"""
Remote store for the posts table.

RemoteStore is the interface the post store and live sync depend on;
SupabaseRemoteStore implements it over PostgREST queries and the realtime
postgres_changes feed. Row-level security scopes every call to the signed-in
operator, so the interface carries no ownership logic of its own.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional
import structlog

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient

from config import get_supabase_client
from config.settings import settings
from exceptions import (
    AppError,
    DatabaseError,
    PermissionDeniedError,
    RemoteStoreUnavailableError,
)

logger = structlog.get_logger(__name__)


# Subscription states reported to on_state
SUBSCRIBED = "SUBSCRIBED"
CLOSED = "CLOSED"
CHANNEL_ERROR = "CHANNEL_ERROR"
TIMED_OUT = "TIMED_OUT"

# Postgres insufficient_privilege, raised when row-level security rejects a write
PERMISSION_DENIED_CODE = "42501"

EventCallback = Callable[[dict[str, Any]], None]
StateCallback = Callable[[str, Optional[Exception]], None]


class RemoteStore(ABC):
    """CRUD plus change feed, scoped to the posts table."""

    @abstractmethod
    async def insert(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Insert rows in one batch and return them as stored."""

    @abstractmethod
    async def update(self, post_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        """
        Update one row by id and return it as stored.

        Raises:
            PermissionDeniedError: No row was changed (missing, or hidden by
                row-level security)
        """

    @abstractmethod
    async def delete(self, filters: dict[str, Any]) -> int:
        """Delete matching rows and return how many were removed."""

    @abstractmethod
    async def select(
        self,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        """Select matching rows. List filter values match any of their items."""

    @abstractmethod
    async def subscribe(self, on_event: EventCallback, on_state: StateCallback) -> Any:
        """
        Open the change feed.

        on_event gets the raw change payload; on_state gets one of
        SUBSCRIBED / CLOSED / CHANNEL_ERROR / TIMED_OUT. Both are called from
        the transport and must not block.

        Returns:
            Handle for unsubscribe()
        """

    @abstractmethod
    async def unsubscribe(self, handle: Any) -> None:
        """Close a feed opened by subscribe()."""


def translate_error(operation: str, error: Exception) -> AppError:
    """
    Map a transport or PostgREST failure to a typed application error.

    - Authorization rejections -> PermissionDeniedError
    - Connectivity failures -> RemoteStoreUnavailableError
    - Anything else -> DatabaseError
    """
    if isinstance(error, AppError):
        return error

    if isinstance(error, APIError):
        message = error.message or str(error)
        lowered = message.lower()
        if (
            error.code == PERMISSION_DENIED_CODE
            or "permission denied" in lowered
            or "row-level security" in lowered
        ):
            return PermissionDeniedError(operation, message)
        return DatabaseError(operation, message, details={"code": error.code})

    if isinstance(error, (httpx.TransportError, OSError)):
        return RemoteStoreUnavailableError(operation, f"Remote store unreachable: {error}")

    return DatabaseError(operation, str(error))


class SupabaseRemoteStore(RemoteStore):
    """
    Supabase implementation of the remote store.

    The client is created lazily from config unless one is passed in.
    """

    def __init__(
        self,
        client: Optional[AsyncClient] = None,
        schema: Optional[str] = None,
        table: Optional[str] = None,
    ):
        self._client = client
        self.schema = schema or settings.posts_schema
        self.table = table or settings.posts_table

    async def _get_client(self) -> AsyncClient:
        if self._client is None:
            self._client = await get_supabase_client()
        return self._client

    async def _table(self):
        client = await self._get_client()
        return client.schema(self.schema).table(self.table)

    @staticmethod
    def _apply_filters(query, filters: Optional[dict[str, Any]]):
        for column, value in (filters or {}).items():
            if isinstance(value, (list, tuple, set)):
                query = query.in_(column, list(value))
            elif value is None:
                query = query.is_(column, "null")
            else:
                query = query.eq(column, value)
        return query

    # ===================
    # CRUD
    # ===================

    async def insert(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if not rows:
            return []
        try:
            table = await self._table()
            result = await table.insert(rows).execute()
        except Exception as e:
            logger.error("remote_insert_failed", count=len(rows), error=str(e), error_type=type(e).__name__)
            raise translate_error("insert", e) from e

        logger.info("remote_rows_inserted", count=len(result.data or []))
        return result.data or []

    async def update(self, post_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        try:
            table = await self._table()
            result = await table.update(fields).eq("id", post_id).execute()
        except Exception as e:
            logger.error("remote_update_failed", post_id=post_id, error=str(e), error_type=type(e).__name__)
            raise translate_error("update", e) from e

        if not result.data:
            # RLS hides rows the operator does not own; an empty result is how that shows up
            logger.warning("remote_update_matched_nothing", post_id=post_id)
            raise PermissionDeniedError(
                "update",
                f"Update of post {post_id} was not applied: the row is missing or not writable"
            )
        return result.data[0]

    async def delete(self, filters: dict[str, Any]) -> int:
        try:
            table = await self._table()
            query = self._apply_filters(table.delete(), filters)
            result = await query.execute()
        except Exception as e:
            logger.error("remote_delete_failed", filters=list(filters), error=str(e), error_type=type(e).__name__)
            raise translate_error("delete", e) from e

        deleted = len(result.data or [])
        logger.info("remote_rows_deleted", count=deleted)
        return deleted

    async def select(
        self,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        try:
            table = await self._table()
            query = self._apply_filters(table.select("*"), filters)
            if order_by:
                query = query.order(order_by, desc=descending)
            result = await query.execute()
        except Exception as e:
            logger.error("remote_select_failed", error=str(e), error_type=type(e).__name__)
            raise translate_error("select", e) from e

        return result.data or []

    # ===================
    # CHANGE FEED
    # ===================

    async def subscribe(self, on_event: EventCallback, on_state: StateCallback) -> Any:
        client = await self._get_client()
        channel = client.channel(f"{self.schema}:{self.table}")

        def handle_state(state, error: Optional[Exception] = None):
            on_state(str(getattr(state, "value", state)), error)

        try:
            channel.on_postgres_changes(
                "*",
                schema=self.schema,
                table=self.table,
                callback=on_event
            )
            await channel.subscribe(handle_state)
        except Exception as e:
            logger.error("realtime_subscribe_failed", error=str(e), error_type=type(e).__name__)
            raise RemoteStoreUnavailableError("subscribe", f"Realtime subscribe failed: {e}") from e

        logger.info("realtime_channel_opened", schema=self.schema, table=self.table)
        return channel

    async def unsubscribe(self, handle: Any) -> None:
        if handle is None:
            return
        client = await self._get_client()
        try:
            await client.remove_channel(handle)
        except Exception as e:
            # Channel may already be gone after a transport failure
            logger.warning("realtime_unsubscribe_failed", error=str(e))
        else:
            logger.info("realtime_channel_closed")
