"""
Live sync subscriber for the posts table.

Transport callbacks only put events on a queue; one consumer task applies
them to the post store in arrival order, each to completion before the
next. A bad event is logged and skipped, never fatal to the feed.

When the channel reports closed/error/timeout the subscriber goes offline
and resubscribes at once, then with capped exponential backoff (tenacity)
between failed attempts. After a successful resubscribe the post store is
re-hydrated to pick up changes missed while offline.
"""

import asyncio
from typing import Any, Callable, Optional
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type

from config import settings
from models.sync import ChangeEvent
from exceptions import AppError
from services.post_store import PostStore
from services.remote_store import (
    RemoteStore,
    SUBSCRIBED,
    CLOSED,
    CHANNEL_ERROR,
    TIMED_OUT,
)

logger = structlog.get_logger(__name__)

OnlineListener = Callable[[bool], None]

# Queue item asking the consumer to resubscribe
_RECONNECT = object()


class LiveSyncSubscriber:
    """Keeps a PostStore in step with the remote change feed."""

    def __init__(
        self,
        store: PostStore,
        remote: RemoteStore,
        initial_backoff: Optional[float] = None,
        max_backoff: Optional[float] = None,
    ):
        self.store = store
        self.remote = remote
        self.initial_backoff = initial_backoff or settings.sync_reconnect_initial_seconds
        self.max_backoff = max_backoff or settings.sync_reconnect_max_seconds

        self.online = False
        self.reconnect_attempts = 0
        self.events_applied = 0
        self.events_skipped = 0

        self._queue: asyncio.Queue = asyncio.Queue()
        self._handle: Any = None
        self._consumer: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._listeners: list[OnlineListener] = []
        self._stopping = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # ===================
    # LIFECYCLE
    # ===================

    async def start(self) -> None:
        """Start consuming and open the feed (once)."""
        if self._consumer is not None:
            return
        self._stopping = False
        self._loop = asyncio.get_running_loop()
        self._consumer = asyncio.ensure_future(self._consume())
        try:
            await self._subscribe()
        except AppError as e:
            logger.warning("live_sync_start_offline", error=e.message)
            self._schedule_reconnect()
        logger.info("live_sync_started")

    async def stop(self) -> None:
        """Close the feed and stop consuming."""
        self._stopping = True
        for task in (self._reconnect_task, self._consumer):
            if task is not None and not task.done():
                task.cancel()
        for task in (self._reconnect_task, self._consumer):
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._reconnect_task = None
        self._consumer = None

        handle, self._handle = self._handle, None
        await self.remote.unsubscribe(handle)
        self._set_online(False)
        logger.info("live_sync_stopped", applied=self.events_applied, skipped=self.events_skipped)

    async def _subscribe(self) -> None:
        self._handle = await self.remote.subscribe(self._on_payload, self._on_state)

    # ===================
    # TRANSPORT CALLBACKS
    # ===================

    def _on_payload(self, payload: dict[str, Any]) -> None:
        """Enqueue a raw change payload. Called by the transport."""
        self._enqueue(payload)

    def _on_state(self, state: str, error: Optional[Exception] = None) -> None:
        """Track subscription state. Called by the transport."""
        if state == SUBSCRIBED:
            self._set_online(True)
            return

        if state in (CLOSED, CHANNEL_ERROR, TIMED_OUT):
            logger.warning(
                "live_sync_channel_down",
                state=state,
                error=str(error) if error else None
            )
            self._set_online(False)
            if not self._stopping:
                self._enqueue(_RECONNECT)

    def _enqueue(self, item: Any) -> None:
        # Transports may call back from their own thread
        loop = self._loop
        if loop is not None and loop.is_running():
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is not loop:
                loop.call_soon_threadsafe(self._queue.put_nowait, item)
                return
        self._queue.put_nowait(item)

    # ===================
    # CONSUMER
    # ===================

    async def _consume(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is _RECONNECT:
                    self._schedule_reconnect()
                else:
                    self.handle_payload(item)
            finally:
                self._queue.task_done()

    def handle_payload(self, payload: Any) -> bool:
        """
        Apply one change payload to the post store.

        Returns:
            True if the store changed; False for no-ops and skipped events
        """
        try:
            event = ChangeEvent.from_payload(payload)
            changed = self.store.apply_change(event)
        except Exception as e:
            self.events_skipped += 1
            logger.warning(
                "realtime_event_skipped",
                error=str(e),
                error_type=type(e).__name__
            )
            return False

        self.events_applied += 1
        logger.debug("realtime_event_applied", type=event.type.value, post_id=event.row_id, changed=changed)
        return changed

    async def wait_idle(self) -> None:
        """Wait until every queued event has been applied."""
        await self._queue.join()

    # ===================
    # RECONNECT
    # ===================

    def backoff_delay(self, attempt: int) -> float:
        """Delay after failed reconnect attempt n (0-based): initial * 2^n, capped."""
        return min(self.initial_backoff * (2 ** attempt), self.max_backoff)

    def _schedule_reconnect(self) -> None:
        if self._stopping:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.ensure_future(self._reconnect())

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "live_sync_reconnect_failed",
            attempt=retry_state.attempt_number,
            delay=retry_state.next_action.sleep if retry_state.next_action else None,
            error=getattr(error, "message", str(error))
        )

    async def _resubscribe(self) -> None:
        self.reconnect_attempts += 1
        logger.info("live_sync_reconnecting", attempt=self.reconnect_attempts)
        handle, self._handle = self._handle, None
        await self.remote.unsubscribe(handle)
        await self._subscribe()

    async def _reconnect(self) -> None:
        retrying = AsyncRetrying(
            wait=lambda state: self.backoff_delay(state.attempt_number - 1),
            retry=retry_if_exception_type(AppError),
            stop=lambda state: self._stopping,
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._resubscribe()
        except AppError as e:
            # Only reached once stop() has been called
            logger.info("live_sync_reconnect_abandoned", error=e.message)
            return

        try:
            await self.store.hydrate()
        except AppError as e:
            logger.warning("live_sync_rehydrate_failed", error=e.message)
        logger.info("live_sync_reconnected", attempts=self.reconnect_attempts)

    # ===================
    # ONLINE SIGNAL
    # ===================

    def add_listener(self, listener: OnlineListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _set_online(self, online: bool) -> None:
        if online == self.online:
            return
        self.online = online
        logger.info("live_sync_online_changed", online=online)
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception as e:
                logger.error("live_sync_listener_failed", error=str(e), error_type=type(e).__name__)
