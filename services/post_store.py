"""
Post store: the in-memory working set of imported posts.

Every mutating action follows the same pattern:

1. Apply the change to the local post (optimistic)
2. Write it through to the remote store
3. Roll the local change back if the write fails, unless a live event has
   already replaced the post in the meantime

Live sync feeds every remote change (our own echoes included) back through
apply_change(), which is idempotent: an echo identical to local state is a
no-op and does not bump the revision.

All methods run on one event loop; each one mutates local state without
awaiting in between, so no locking is needed.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Optional
import structlog

from pydantic import ValidationError as PydanticValidationError

from config import settings
from models.post import (
    ImageImportResult,
    ImageImportRow,
    ImageItem,
    ParsedPost,
    Post,
    PostChanges,
    PostImportEntry,
    PostImportResult,
    PostStatus,
    StepCompleted,
    WorkflowStep,
    ensure_single_main,
)
from models.pricing import PricingBreakdown, PricingInputs
from models.sync import ChangeEvent, ChangeType
from exceptions import (
    AnalysisInProgressError,
    EmptyRawContentError,
    ExtractionCancelledError,
    OperatorRequiredError,
    PostNotFoundError,
    PostRejectedError,
    RecordMappingError,
    ValidationError,
)
from services.extraction_client import ExtractionClient
from services.record_mapper import (
    apply_changes,
    changes_to_update_row,
    entry_to_insert_row,
    parsed_post_is_empty,
    row_to_post,
)
from services.remote_store import RemoteStore
from services.pricing_service import calculate_pricing, default_pricing_inputs
from services.workflow_service import back_transition, next_transition, should_auto_advance
from utils.cancellation import CancellationToken
from utils.urls import normalize_url

logger = structlog.get_logger(__name__)

Listener = Callable[[int], None]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def reconcile(local: Post, incoming: Post) -> Post:
    """
    Merge an incoming remote version into the local post.

    The incoming version wins on every field, except that locally held
    parsed_json survives an incoming version without one. The extraction
    write and a slower concurrent metadata write can land out of order.
    """
    if not parsed_post_is_empty(local.parsed_json) and parsed_post_is_empty(incoming.parsed_json):
        return incoming.model_copy(update={"parsed_json": local.parsed_json})
    return incoming


class PostStore:
    """
    Owns the post collection and is the only writer to the remote store.

    Collaborators and timings are passed in; settings only supply defaults.
    """

    def __init__(
        self,
        remote: RemoteStore,
        extractor: ExtractionClient,
        owner_id: Optional[str] = None,
        extraction_timeout: Optional[float] = None,
        autosave_delay: Optional[float] = None,
        auto_advance_delay: Optional[float] = None,
    ):
        self.remote = remote
        self.extractor = extractor
        self.owner_id = owner_id
        self.extraction_timeout = extraction_timeout or settings.extraction_timeout_seconds
        self.autosave_delay = (
            settings.pricing_autosave_delay_seconds if autosave_delay is None else autosave_delay
        )
        self.auto_advance_delay = (
            settings.auto_advance_delay_seconds if auto_advance_delay is None else auto_advance_delay
        )

        self._posts: list[Post] = []
        self._active_id: Optional[str] = None
        self._search: str = ""
        self._inflight: dict[str, CancellationToken] = {}
        self._autosaves: dict[str, asyncio.Task] = {}
        self._advances: dict[str, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[Listener] = []
        self.revision = 0

    # ===================
    # STATE ACCESS
    # ===================

    @property
    def posts(self) -> list[Post]:
        return list(self._posts)

    @property
    def active_id(self) -> Optional[str]:
        return self._active_id

    @property
    def search(self) -> str:
        return self._search

    @property
    def analyzing_ids(self) -> list[str]:
        return list(self._inflight)

    def get(self, post_id: str) -> Optional[Post]:
        return next((post for post in self._posts if post.id == post_id), None)

    def require(self, post_id: str) -> Post:
        post = self.get(post_id)
        if post is None:
            raise PostNotFoundError(post_id)
        return post

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """
        Register a callback run with the new revision after every change.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _touch(self) -> None:
        self.revision += 1
        for listener in list(self._listeners):
            try:
                listener(self.revision)
            except Exception as e:
                logger.error("post_store_listener_failed", error=str(e), error_type=type(e).__name__)

    def _put(self, post: Post) -> None:
        """Replace the post with the same id, or prepend it."""
        for index, existing in enumerate(self._posts):
            if existing.id == post.id:
                self._posts[index] = post
                break
        else:
            self._posts.insert(0, post)
        self._touch()

    def _remove(self, post_id: str) -> bool:
        before = len(self._posts)
        self._posts = [post for post in self._posts if post.id != post_id]
        if len(self._posts) == before:
            return False
        if self._active_id == post_id:
            self._active_id = None
        self._touch()
        return True

    # ===================
    # WRITE-THROUGH
    # ===================

    async def _commit(self, post_id: str, **fields: Any) -> Post:
        """
        Apply changes locally, then write them to the remote store.

        Raises:
            PostNotFoundError: Post is not in the working set
            AppError: Remote write failed (local change rolled back)
        """
        previous = self.require(post_id)
        changes = PostChanges(**fields, last_updated_at=_now())
        updated = apply_changes(previous, changes)
        self._put(updated)

        try:
            await self.remote.update(post_id, changes_to_update_row(changes))
        except Exception as e:
            current = self.get(post_id)
            if current is updated:
                self._put(previous)
            logger.warning(
                "post_write_rolled_back",
                post_id=post_id,
                fields=sorted(fields),
                rolled_back=current is updated,
                error=str(e),
                error_type=type(e).__name__
            )
            raise

        return self.get(post_id) or updated

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ===================
    # LOADING & IMPORT
    # ===================

    async def hydrate(self) -> list[Post]:
        """
        Load the operator's posts from the remote store, newest first.

        Rows that cannot be mapped are skipped. Locally held parsed_json
        survives the reload the same way it survives a live update.
        """
        filters = {"admin_id": self.owner_id} if self.owner_id else None
        rows = await self.remote.select(filters=filters, order_by="created_at", descending=True)

        local = {post.id: post for post in self._posts}
        posts = []
        for row in rows:
            try:
                incoming = row_to_post(row)
            except RecordMappingError as e:
                logger.warning("hydrate_row_skipped", error=e.message, details=e.details)
                continue
            existing = local.get(incoming.id)
            posts.append(reconcile(existing, incoming) if existing else incoming)

        self._posts = posts
        if self._active_id and self.get(self._active_id) is None:
            self._active_id = None
        self._touch()

        logger.info("posts_hydrated", count=len(posts), skipped=len(rows) - len(posts))
        return self.posts

    async def import_posts(self, entries: list[PostImportEntry]) -> PostImportResult:
        """
        Import listing URLs as new pending posts.

        Duplicates are dropped within the batch, against the working set,
        and then against the remote store (authoritative, shared by every
        session). The remaining entries are inserted in one batch; if that
        write fails nothing is imported.

        Returns:
            PostImportResult with created posts and skipped URLs
        """
        logger.info("post_import_started", count=len(entries))

        skipped: list[str] = []
        batch: dict[str, PostImportEntry] = {}
        for entry in entries:
            key = normalize_url(entry.url)
            if key in batch:
                skipped.append(entry.url)
            else:
                batch[key] = entry

        local_urls = {normalize_url(post.url) for post in self._posts}
        for key in [key for key in batch if key in local_urls]:
            skipped.append(batch.pop(key).url)

        if batch:
            # Stored URLs keep their original form, so compare normalized URLs
            # across the whole scope rather than filtering on exact values
            filters = {"admin_id": self.owner_id} if self.owner_id else None
            existing = await self.remote.select(filters=filters)
            for row in existing:
                entry = batch.pop(normalize_url(row.get("url") or ""), None)
                if entry is not None:
                    skipped.append(entry.url)

        if not batch:
            logger.info("post_import_completed", created=0, skipped=len(skipped))
            return PostImportResult(created=[], skipped=skipped)

        rows = await self.remote.insert([
            entry_to_insert_row(entry, self.owner_id)
            for entry in batch.values()
        ])

        created = []
        for row in rows:
            post = row_to_post(row)
            created.append(post)
            # A fast live echo may already have added it
            if self.get(post.id) is None:
                self._posts.insert(0, post)
        if created:
            self._touch()

        logger.info("post_import_completed", created=len(created), skipped=len(skipped))
        return PostImportResult(created=created, skipped=skipped)

    # ===================
    # SELECTION & SEARCH
    # ===================

    def set_active(self, post_id: Optional[str]) -> Optional[Post]:
        """Select a post. Extractions running on other posts keep running."""
        post = self.require(post_id) if post_id is not None else None
        if post_id != self._active_id:
            self._active_id = post_id
            self._touch()
        return post

    def set_search(self, search: Optional[str]) -> None:
        self._search = (search or "").strip()
        self._touch()

    def visible_posts(self) -> list[Post]:
        """Posts matching the search on URL, source or note."""
        if not self._search:
            return self.posts
        needle = self._search.lower()
        return [
            post for post in self._posts
            if needle in post.url.lower()
            or needle in (post.source or "").lower()
            or needle in (post.note or "").lower()
        ]

    def _step_selection(self, offset: int) -> Optional[Post]:
        posts = self.visible_posts()
        if not posts:
            return None
        ids = [post.id for post in posts]
        if self._active_id in ids:
            index = (ids.index(self._active_id) + offset) % len(ids)
        else:
            index = 0 if offset > 0 else len(ids) - 1
        return self.set_active(ids[index])

    def select_next(self) -> Optional[Post]:
        """Select the next visible post, wrapping to the first."""
        return self._step_selection(1)

    def select_previous(self) -> Optional[Post]:
        """Select the previous visible post, wrapping to the last."""
        return self._step_selection(-1)

    # ===================
    # STATUS
    # ===================

    async def reject(self, post_id: str, reason: Optional[str] = None) -> Post:
        """Reject a post. Rejecting a rejected post is a no-op."""
        post = self.require(post_id)
        if post.status == PostStatus.REJECTED:
            return post

        self.cancel_analysis(post_id, reason="rejected")
        updated = await self._commit(post_id, status=PostStatus.REJECTED, rejection_reason=reason)
        logger.info("post_rejected", post_id=post_id, reason=reason)
        return updated

    async def undo_reject(self, post_id: str) -> Post:
        post = self.require(post_id)
        if post.status != PostStatus.REJECTED:
            return post

        updated = await self._commit(post_id, status=PostStatus.PENDING, rejection_reason=None)
        logger.info("post_reject_undone", post_id=post_id)
        return updated

    async def save_raw(self, post_id: str, text: str) -> Post:
        """
        Save pasted page content.

        Does not mark the raw step complete; only a successful analysis does.
        """
        updated = await self._commit(post_id, raw_content=text)
        logger.info("raw_content_saved", post_id=post_id, length=len(text or ""))
        return updated

    # ===================
    # ANALYSIS
    # ===================

    def is_analyzing(self, post_id: str) -> bool:
        return post_id in self._inflight

    def cancel_analysis(self, post_id: str, reason: str = "cancelled by operator") -> bool:
        """
        Cancel the extraction running for a post.

        Returns:
            False if nothing was running
        """
        token = self._inflight.get(post_id)
        if token is None:
            return False
        cancelled = token.cancel(reason)
        if cancelled:
            logger.info("analysis_cancel_requested", post_id=post_id, reason=reason)
        return cancelled

    async def analyze(self, post_id: str) -> Optional[Post]:
        """
        Run the extraction service on a post's raw content.

        Preconditions are checked before any network call. Only one analysis
        per post runs at a time; a second call while one is outstanding is
        rejected.

        Returns:
            The parsed post, or None if the analysis was cancelled

        Raises:
            PostNotFoundError: Unknown post
            PostRejectedError: Post is rejected
            EmptyRawContentError: No raw content to analyze
            AnalysisInProgressError: Analysis already running for the post
            ExtractionTimeoutError: Extraction timed out (status reverted)
            ExtractionError: Extraction failed (status reverted)
            AppError: Remote write failed
        """
        post = self.require(post_id)
        if post.status == PostStatus.REJECTED:
            raise PostRejectedError(post_id, "analyze")
        if not post.has_raw_content:
            raise EmptyRawContentError(post_id)
        if post_id in self._inflight:
            raise AnalysisInProgressError(post_id)

        token = CancellationToken()
        self._inflight[post_id] = token
        self._touch()
        logger.info("analysis_started", post_id=post_id, raw_length=len(post.raw_content))

        try:
            await self._commit(post_id, status=PostStatus.ANALYZING)

            try:
                parsed = await self.extractor.extract(
                    post.url,
                    post.raw_content,
                    timeout=self.extraction_timeout,
                    token=token
                )
                if token.cancelled:
                    raise ExtractionCancelledError(post_id)
            except ExtractionCancelledError:
                logger.info("analysis_cancelled", post_id=post_id, reason=token.reason)
                await self._revert_analysis(post_id)
                return None
            except Exception as e:
                logger.warning(
                    "analysis_failed",
                    post_id=post_id,
                    error=str(e),
                    error_type=type(e).__name__
                )
                await self._revert_analysis(post_id)
                raise

            current = self.require(post_id)
            try:
                updated = await self._commit(
                    post_id,
                    status=PostStatus.PARSED,
                    parsed_json=parsed,
                    step_completed=current.step_completed.model_copy(update={"raw": True}),
                    last_analyzed_at=_now(),
                )
            except Exception:
                await self._revert_analysis(post_id)
                raise
        finally:
            if self._inflight.get(post_id) is token:
                del self._inflight[post_id]
                self._touch()

        logger.info("analysis_completed", post_id=post_id, title=parsed.title)
        self._schedule_auto_advance(post_id)
        return updated

    async def _revert_analysis(self, post_id: str) -> None:
        """Put an analyzing post back to pending. Other statuses are left alone."""
        post = self.get(post_id)
        if post is None or post.status != PostStatus.ANALYZING:
            return
        try:
            await self._commit(post_id, status=PostStatus.PENDING)
        except Exception as e:
            # The caller is already handling the original failure
            logger.error(
                "analysis_revert_failed",
                post_id=post_id,
                error=str(e),
                error_type=type(e).__name__
            )

    def _schedule_auto_advance(self, post_id: str) -> None:
        if post_id in self._advances:
            return
        task = self._spawn(self._auto_advance(post_id))
        self._advances[post_id] = task

        def forget(done: asyncio.Task):
            if self._advances.get(post_id) is done:
                del self._advances[post_id]

        task.add_done_callback(forget)

    async def _auto_advance(self, post_id: str) -> None:
        await asyncio.sleep(self.auto_advance_delay)
        post = self.get(post_id)
        if post is None or not should_auto_advance(post):
            return
        try:
            await self.advance_step(post_id, from_step=WorkflowStep.RAW)
        except Exception as e:
            logger.warning(
                "auto_advance_failed",
                post_id=post_id,
                error=str(e),
                error_type=type(e).__name__
            )

    # ===================
    # DETAILS & IMAGES
    # ===================

    async def save_details(self, post_id: str, fields: dict[str, Any]) -> Post:
        """
        Merge manual edits into parsed_json and mark the details step complete.

        Raises:
            ValidationError: Merged fields do not form a valid listing
        """
        post = self.require(post_id)
        current = post.parsed_json.model_dump() if post.parsed_json else {}
        try:
            parsed = ParsedPost.model_validate({**current, **fields})
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid listing details",
                code="INVALID_DETAILS",
                details={"errors": e.errors(include_url=False, include_context=False)}
            ) from e

        updated = await self._commit(
            post_id,
            parsed_json=parsed,
            step_completed=post.step_completed.model_copy(update={"details": True}),
        )
        logger.info("details_saved", post_id=post_id, fields=sorted(fields))
        return updated

    async def set_images(self, post_id: str, images: list[ImageItem]) -> Post:
        """Replace the image list, repairing the single-main invariant first."""
        repaired = ensure_single_main(images)
        updated = await self._commit(post_id, images=repaired)
        logger.info("images_saved", post_id=post_id, count=len(repaired))
        return updated

    def _image_at(self, post: Post, index: int) -> ImageItem:
        if index < 0 or index >= len(post.images):
            raise ValidationError(
                "Image index out of range",
                code="IMAGE_INDEX_OUT_OF_RANGE",
                details={"id": post.id, "index": index, "count": len(post.images)}
            )
        return post.images[index]

    async def toggle_image_keep(self, post_id: str, index: int) -> Post:
        post = self.require(post_id)
        image = self._image_at(post, index)
        images = list(post.images)
        images[index] = image.model_copy(update={"keep": not image.keep})
        return await self.set_images(post_id, images)

    async def set_main_image(self, post_id: str, index: int) -> Post:
        """Make one image the cover photo. The image is kept if it was not."""
        post = self.require(post_id)
        self._image_at(post, index)
        images = [
            image.model_copy(update={
                "is_main": position == index,
                "keep": image.keep or position == index,
            })
            for position, image in enumerate(post.images)
        ]
        return await self.set_images(post_id, images)

    async def import_images(self, rows: list[ImageImportRow]) -> ImageImportResult:
        """
        Append imported images to the posts whose URL they name.

        Image URLs already on the post are not added twice.
        """
        by_url = {normalize_url(post.url): post for post in self._posts}
        grouped: dict[str, list[ImageImportRow]] = {}
        unmatched: list[str] = []
        for row in rows:
            key = normalize_url(row.post_url)
            if key not in by_url:
                if row.post_url not in unmatched:
                    unmatched.append(row.post_url)
                continue
            grouped.setdefault(key, []).append(row)

        result = ImageImportResult(unmatched_urls=unmatched)
        for key, post_rows in grouped.items():
            post = by_url[key]
            known = {image.url for image in post.images}
            images = list(post.images)
            for row in post_rows:
                if row.image_url in known:
                    continue
                known.add(row.image_url)
                images.append(ImageItem(url=row.image_url, caption=row.caption))
            added = len(images) - len(post.images)
            if added:
                await self.set_images(post.id, images)
                result.updated_posts += 1
                result.added_images += added

        logger.info(
            "images_imported",
            updated_posts=result.updated_posts,
            added_images=result.added_images,
            unmatched=len(unmatched)
        )
        return result

    async def accept_images(self, post_id: str) -> Post:
        post = self.require(post_id)
        return await self._commit(
            post_id,
            step_completed=post.step_completed.model_copy(update={"images": True}),
        )

    # ===================
    # PRICING
    # ===================

    def calculate_pricing(self, post_id: str, inputs: Optional[PricingInputs] = None) -> PricingBreakdown:
        """Preview the breakdown without saving. Defaults seed missing inputs."""
        post = self.require(post_id)
        return calculate_pricing(inputs or default_pricing_inputs(post))

    async def save_pricing(self, post_id: str, inputs: PricingInputs) -> Post:
        """Save pricing now, superseding any pending auto-save."""
        pending = self._autosaves.pop(post_id, None)
        if pending is not None:
            pending.cancel()
        return await self._save_pricing(post_id, inputs)

    async def _save_pricing(self, post_id: str, inputs: PricingInputs) -> Post:
        post = self.require(post_id)
        breakdown = calculate_pricing(inputs)
        updated = await self._commit(
            post_id,
            pricing=breakdown,
            step_completed=post.step_completed.model_copy(update={"pricing": True}),
        )
        logger.info("pricing_saved", post_id=post_id, total=str(breakdown.total))
        return updated

    def schedule_pricing_save(self, post_id: str, inputs: PricingInputs) -> bool:
        """
        Debounced auto-save while the operator is typing.

        Each call restarts the delay. Nothing is saved until a car price
        has been entered.

        Returns:
            True if a save was scheduled
        """
        self.require(post_id)
        pending = self._autosaves.pop(post_id, None)
        if pending is not None:
            pending.cancel()
        if inputs.car_price <= 0:
            return False
        self._autosaves[post_id] = self._spawn(self._autosave(post_id, inputs))
        return True

    async def _autosave(self, post_id: str, inputs: PricingInputs) -> None:
        await asyncio.sleep(self.autosave_delay)
        if self._autosaves.get(post_id) is asyncio.current_task():
            del self._autosaves[post_id]
        try:
            await self._save_pricing(post_id, inputs)
        except Exception as e:
            logger.warning(
                "pricing_autosave_failed",
                post_id=post_id,
                error=str(e),
                error_type=type(e).__name__
            )

    # ===================
    # WORKFLOW
    # ===================

    async def advance_step(self, post_id: str, from_step: Optional[WorkflowStep] = None) -> Post:
        """
        Move the post one step forward.

        With from_step, does nothing unless the post is still at that step.

        Raises:
            StepNotReadyError: Gate for the next step does not hold
        """
        post = self.require(post_id)
        target = next_transition(post, from_step)
        if target is None:
            return post
        updated = await self._commit(post_id, workflow_step=target)
        logger.info("workflow_step_advanced", post_id=post_id, from_step=post.workflow_step.value, to_step=target.value)
        return updated

    async def go_back(self, post_id: str, target: Optional[WorkflowStep] = None) -> Post:
        """Move back to an earlier step. Later steps keep their data."""
        post = self.require(post_id)
        step = back_transition(post, target)
        updated = await self._commit(post_id, workflow_step=step)
        logger.info("workflow_step_back", post_id=post_id, from_step=post.workflow_step.value, to_step=step.value)
        return updated

    async def reset_workflow(self, post_id: str) -> Post:
        """Restart the workflow at raw and clear every completion flag."""
        updated = await self._commit(
            post_id,
            workflow_step=WorkflowStep.RAW,
            step_completed=StepCompleted(),
        )
        logger.info("workflow_reset", post_id=post_id)
        return updated

    async def finalize_post(self, post_id: str) -> Post:
        """
        Mark a post ready.

        Raises:
            PostRejectedError: Post is rejected
            AppError: Remote write failed
        """
        post = self.require(post_id)
        if post.status == PostStatus.REJECTED:
            raise PostRejectedError(post_id, "finalize")

        now = _now()
        updated = await self._commit(
            post_id,
            status=PostStatus.READY,
            workflow_step=WorkflowStep.COMPLETE,
            step_completed=post.step_completed.model_copy(update={"images": True, "pricing": True}),
            completed_at=now,
        )
        logger.info("post_finalized", post_id=post_id)
        return updated

    # ===================
    # RESET
    # ===================

    async def reset(self) -> int:
        """
        Delete every post the operator owns, locally and remotely.

        Irreversible. In-flight analyses and pending background saves are
        cancelled first.

        Returns:
            Number of remote rows deleted

        Raises:
            OperatorRequiredError: No operator identity to scope the delete
        """
        if not self.owner_id:
            raise OperatorRequiredError("reset the working set")

        for post_id in list(self._inflight):
            self.cancel_analysis(post_id, reason="reset")
        self._cancel_background()

        deleted = await self.remote.delete({"admin_id": self.owner_id})

        self._posts = []
        self._active_id = None
        self._search = ""
        self._touch()

        logger.info("working_set_reset", deleted=deleted)
        return deleted

    # ===================
    # LIVE SYNC
    # ===================

    def apply_change(self, event: ChangeEvent) -> bool:
        """
        Reconcile one remote change into the working set.

        Returns:
            True if local state changed

        Raises:
            RecordMappingError: Event row cannot be mapped
        """
        if event.type == ChangeType.DELETE:
            post_id = event.row_id
            if not post_id:
                raise RecordMappingError("Delete event carries no id")
            token = self._inflight.get(post_id)
            if token is not None:
                token.cancel("deleted remotely")
            return self._remove(post_id)

        incoming = row_to_post(event.record or {})
        local = self.get(incoming.id)

        if event.type == ChangeType.INSERT:
            if local is not None:
                return False
            self._posts.insert(0, incoming)
            self._touch()
            return True

        if local is None:
            self._posts.insert(0, incoming)
            self._touch()
            return True

        merged = reconcile(local, incoming)
        if merged == local:
            return False
        self._put(merged)
        return True

    # ===================
    # BACKGROUND TASKS
    # ===================

    def _cancel_background(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._autosaves.clear()
        self._advances.clear()

    async def drain(self) -> None:
        """Wait for pending auto-saves and auto-advances to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel background work and in-flight analyses."""
        for token in list(self._inflight.values()):
            token.cancel("shutdown")
        self._cancel_background()
        await self.drain()
