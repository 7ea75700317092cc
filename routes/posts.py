"""
Post API routes.

Thin layer over the PostStore held on app.state; every action and its
errors come from the store.
"""

from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from models.post import (
    ActivePostUpdate,
    AnalyzeResponse,
    DetailsUpdate,
    ImageImportRequest,
    ImageImportResult,
    ImageImportRow,
    ImagesUpdate,
    Post,
    PostImportEntry,
    PostImportRequest,
    PostImportResult,
    PostListResponse,
    RawContentUpdate,
    RejectRequest,
    SearchUpdate,
    StepBackRequest,
    TextImportRequest,
    WorkflowStateResponse,
)
from models.pricing import PricingBreakdown, PricingInputs
from services.post_store import PostStore
from services.workflow_service import workflow_state
from parsers.excel_parser import error_dicts, parse_images_excel, parse_posts_excel
from parsers.post_list_parser import parse_image_items_from_text, parse_post_urls_from_text
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter()

EXCEL_EXTENSIONS = (".xlsx", ".xls")


def get_post_store(request: Request) -> PostStore:
    """The application's post store (created in the lifespan)."""
    return request.app.state.post_store


def _is_online(request: Request) -> bool:
    live_sync = getattr(request.app.state, "live_sync", None)
    return bool(live_sync and live_sync.online)


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    # Unexpected error
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


def invalid_file_type() -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "error": {
                "code": "INVALID_FILE_TYPE",
                "message": "File must be an Excel file (.xlsx or .xls)"
            }
        }
    )


# ===================
# LIST & SELECTION
# ===================

@router.get("", response_model=PostListResponse)
async def list_posts(request: Request, store: PostStore = Depends(get_post_store)):
    """
    List the working set, filtered by the current search.

    Also reports the active post, posts being analyzed and the live sync
    online flag.
    """
    try:
        posts = store.visible_posts()
        return PostListResponse(
            data=posts,
            total=len(posts),
            active_id=store.active_id,
            analyzing=store.analyzing_ids,
            online=_is_online(request),
        )

    except Exception as e:
        return handle_error(e)


@router.put("/search")
async def set_search(data: SearchUpdate, store: PostStore = Depends(get_post_store)):
    try:
        store.set_search(data.search)
        return {"search": store.search, "total": len(store.visible_posts())}

    except Exception as e:
        return handle_error(e)


@router.put("/active", response_model=Optional[Post])
async def set_active(data: ActivePostUpdate, store: PostStore = Depends(get_post_store)):
    """Select a post (or clear the selection with null)."""
    try:
        return store.set_active(data.id)

    except Exception as e:
        return handle_error(e)


@router.post("/active/next", response_model=Optional[Post])
async def select_next(store: PostStore = Depends(get_post_store)):
    try:
        return store.select_next()

    except Exception as e:
        return handle_error(e)


@router.post("/active/previous", response_model=Optional[Post])
async def select_previous(store: PostStore = Depends(get_post_store)):
    try:
        return store.select_previous()

    except Exception as e:
        return handle_error(e)


# ===================
# IMPORT
# ===================

@router.post("/import", response_model=PostImportResult, status_code=201)
async def import_posts(data: PostImportRequest, store: PostStore = Depends(get_post_store)):
    """
    Import listing URLs.

    Duplicates (within the batch, or already imported) are returned in
    `skipped` instead of failing the request.
    """
    try:
        return await store.import_posts(data.entries)

    except Exception as e:
        return handle_error(e)


@router.post("/import/text", response_model=PostImportResult, status_code=201)
async def import_posts_from_text(data: TextImportRequest, store: PostStore = Depends(get_post_store)):
    """Import URLs pasted one per line."""
    try:
        parsed = parse_post_urls_from_text(data.text)
        result = await store.import_posts([PostImportEntry(url=url) for url in parsed.urls])
        result.invalid = parsed.skipped
        return result

    except Exception as e:
        return handle_error(e)


@router.post("/import/file", response_model=PostImportResult, status_code=201)
async def import_posts_from_file(
    file: UploadFile = File(...),
    store: PostStore = Depends(get_post_store),
):
    """Import posts from an Excel sheet with url, source and note columns."""
    try:
        if not (file.filename or "").lower().endswith(EXCEL_EXTENSIONS):
            return invalid_file_type()

        content = await file.read()
        parsed = parse_posts_excel(content)
        result = await store.import_posts(parsed.entries)
        result.invalid = len(parsed.errors)
        result.errors = error_dicts(parsed.errors)
        return result

    except Exception as e:
        return handle_error(e)


@router.post("/images/import", response_model=ImageImportResult)
async def import_images(data: ImageImportRequest, store: PostStore = Depends(get_post_store)):
    """Attach images to posts by post URL."""
    try:
        return await store.import_images(data.rows)

    except Exception as e:
        return handle_error(e)


@router.post("/images/import/file", response_model=ImageImportResult)
async def import_images_from_file(
    file: UploadFile = File(...),
    store: PostStore = Depends(get_post_store),
):
    """Attach images from an Excel sheet with post_url, image_url and caption columns."""
    try:
        if not (file.filename or "").lower().endswith(EXCEL_EXTENSIONS):
            return invalid_file_type()

        content = await file.read()
        parsed = parse_images_excel(content)
        result = await store.import_images(parsed.rows)
        result.invalid = len(parsed.errors)
        result.errors = error_dicts(parsed.errors)
        return result

    except Exception as e:
        return handle_error(e)


# ===================
# RESET
# ===================

@router.delete("")
async def reset_posts(store: PostStore = Depends(get_post_store)):
    """
    Delete every post the operator owns.

    Irreversible; confirmation is up to the client.
    """
    try:
        deleted = await store.reset()
        return {"deleted": deleted}

    except Exception as e:
        return handle_error(e)


# ===================
# SINGLE POST
# ===================

@router.get("/{post_id}", response_model=Post)
async def get_post(post_id: str, store: PostStore = Depends(get_post_store)):
    try:
        return store.require(post_id)

    except Exception as e:
        return handle_error(e)


@router.post("/{post_id}/reject", response_model=Post)
async def reject_post(post_id: str, data: RejectRequest, store: PostStore = Depends(get_post_store)):
    try:
        return await store.reject(post_id, data.reason)

    except Exception as e:
        return handle_error(e)


@router.post("/{post_id}/undo-reject", response_model=Post)
async def undo_reject_post(post_id: str, store: PostStore = Depends(get_post_store)):
    try:
        return await store.undo_reject(post_id)

    except Exception as e:
        return handle_error(e)


@router.put("/{post_id}/raw", response_model=Post)
async def save_raw(post_id: str, data: RawContentUpdate, store: PostStore = Depends(get_post_store)):
    try:
        return await store.save_raw(post_id, data.text)

    except Exception as e:
        return handle_error(e)


@router.post("/{post_id}/analyze", response_model=AnalyzeResponse)
async def analyze_post(post_id: str, store: PostStore = Depends(get_post_store)):
    """
    Run AI extraction on the pasted raw content.

    Waits for the result. A cancelled analysis answers with
    cancelled=true rather than an error.
    """
    try:
        post = await store.analyze(post_id)
        if post is None:
            return AnalyzeResponse(cancelled=True, post=store.get(post_id))
        return AnalyzeResponse(post=post)

    except Exception as e:
        return handle_error(e)


@router.delete("/{post_id}/analyze")
async def cancel_analysis(post_id: str, store: PostStore = Depends(get_post_store)):
    try:
        store.require(post_id)
        return {"cancelled": store.cancel_analysis(post_id)}

    except Exception as e:
        return handle_error(e)


@router.put("/{post_id}/details", response_model=Post)
async def save_details(post_id: str, data: DetailsUpdate, store: PostStore = Depends(get_post_store)):
    try:
        return await store.save_details(post_id, data.fields)

    except Exception as e:
        return handle_error(e)


# ===================
# IMAGES
# ===================

@router.put("/{post_id}/images", response_model=Post)
async def set_images(post_id: str, data: ImagesUpdate, store: PostStore = Depends(get_post_store)):
    """Replace the image list. At most one kept image ends up as main."""
    try:
        return await store.set_images(post_id, data.images)

    except Exception as e:
        return handle_error(e)


@router.post("/{post_id}/images/text", response_model=ImageImportResult)
async def add_images_from_text(post_id: str, data: TextImportRequest, store: PostStore = Depends(get_post_store)):
    """Append pasted image URLs ("url" or "url,caption" per line) to one post."""
    try:
        post = store.require(post_id)
        parsed = parse_image_items_from_text(data.text)
        rows = [
            ImageImportRow(post_url=post.url, image_url=item.url, caption=item.caption)
            for item in parsed.items
        ]
        result = await store.import_images(rows) if rows else ImageImportResult()
        result.invalid = parsed.skipped
        return result

    except Exception as e:
        return handle_error(e)


@router.post("/{post_id}/images/{index}/toggle-keep", response_model=Post)
async def toggle_image_keep(post_id: str, index: int, store: PostStore = Depends(get_post_store)):
    try:
        return await store.toggle_image_keep(post_id, index)

    except Exception as e:
        return handle_error(e)


@router.post("/{post_id}/images/{index}/main", response_model=Post)
async def set_main_image(post_id: str, index: int, store: PostStore = Depends(get_post_store)):
    try:
        return await store.set_main_image(post_id, index)

    except Exception as e:
        return handle_error(e)


@router.post("/{post_id}/images/accept", response_model=Post)
async def accept_images(post_id: str, store: PostStore = Depends(get_post_store)):
    try:
        return await store.accept_images(post_id)

    except Exception as e:
        return handle_error(e)


# ===================
# PRICING
# ===================

@router.get("/{post_id}/pricing", response_model=PricingBreakdown)
async def preview_pricing(post_id: str, store: PostStore = Depends(get_post_store)):
    """Breakdown for the saved inputs, or the defaults if nothing is saved."""
    try:
        return store.calculate_pricing(post_id)

    except Exception as e:
        return handle_error(e)


@router.post("/{post_id}/pricing/calculate", response_model=PricingBreakdown)
async def calculate_pricing(post_id: str, data: PricingInputs, store: PostStore = Depends(get_post_store)):
    try:
        return store.calculate_pricing(post_id, data)

    except Exception as e:
        return handle_error(e)


@router.put("/{post_id}/pricing", response_model=Post)
async def save_pricing(post_id: str, data: PricingInputs, store: PostStore = Depends(get_post_store)):
    """Save pricing immediately, replacing any pending auto-save."""
    try:
        return await store.save_pricing(post_id, data)

    except Exception as e:
        return handle_error(e)


@router.post("/{post_id}/pricing/draft", status_code=202)
async def save_pricing_draft(post_id: str, data: PricingInputs, store: PostStore = Depends(get_post_store)):
    """Debounced auto-save while typing."""
    try:
        scheduled = store.schedule_pricing_save(post_id, data)
        return {"scheduled": scheduled}

    except Exception as e:
        return handle_error(e)


@router.post("/{post_id}/finalize", response_model=Post)
async def finalize_post(post_id: str, store: PostStore = Depends(get_post_store)):
    try:
        return await store.finalize_post(post_id)

    except Exception as e:
        return handle_error(e)


# ===================
# WORKFLOW
# ===================

@router.get("/{post_id}/workflow", response_model=WorkflowStateResponse)
async def get_workflow(post_id: str, store: PostStore = Depends(get_post_store)):
    try:
        return workflow_state(store.require(post_id))

    except Exception as e:
        return handle_error(e)


@router.post("/{post_id}/workflow/next", response_model=Post)
async def advance_step(post_id: str, store: PostStore = Depends(get_post_store)):
    try:
        return await store.advance_step(post_id)

    except Exception as e:
        return handle_error(e)


@router.post("/{post_id}/workflow/back", response_model=Post)
async def go_back(post_id: str, data: StepBackRequest, store: PostStore = Depends(get_post_store)):
    try:
        return await store.go_back(post_id, data.step)

    except Exception as e:
        return handle_error(e)


@router.post("/{post_id}/workflow/reset", response_model=Post)
async def reset_workflow(post_id: str, store: PostStore = Depends(get_post_store)):
    try:
        return await store.reset_workflow(post_id)

    except Exception as e:
        return handle_error(e)
