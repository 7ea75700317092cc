"""
Record mapper between remote rows and in-memory posts.

The remote table speaks its own status vocabulary and snake_case columns;
the portal speaks the Post model. Everything crossing the boundary goes
through here, so unknown or malformed fields are dropped or defaulted once.
"""

from datetime import datetime, timezone
from typing import Any, Optional
import structlog

from pydantic import ValidationError as PydanticValidationError

from models.post import (
    ImageItem,
    ParsedPost,
    Post,
    PostChanges,
    PostImportEntry,
    PostStatus,
    StepCompleted,
    WorkflowStep,
)
from models.pricing import PricingBreakdown
from exceptions import RecordMappingError

logger = structlog.get_logger(__name__)


# Local status -> remote column value
STATUS_TO_REMOTE = {
    PostStatus.PENDING: "pending",
    PostStatus.ANALYZING: "analyzing",
    PostStatus.PARSED: "analyzed",
    PostStatus.REJECTED: "rejected",
    PostStatus.READY: "completed",
}

# Remote column value -> local status (includes values older clients wrote)
STATUS_FROM_REMOTE = {
    "pending": PostStatus.PENDING,
    "analyzing": PostStatus.ANALYZING,
    "analyzed": PostStatus.PARSED,
    "parsed": PostStatus.PARSED,
    "rejected": PostStatus.REJECTED,
    "completed": PostStatus.READY,
    "ready": PostStatus.READY,
    "inserted": PostStatus.READY,
}

# Pricing keys as stored: labelled keys first, legacy keys as fallback
_PRICING_KEYS = {
    "car_price": ("carPriceUSD", "carPrice"),
    "shipping": ("shippingUSD", "shipping"),
    "broker_fee": ("brokerFeeUSD", "brokerFee"),
    "platform_fee": ("platformFeeSAR", "platformFee"),
    "car_price_sar": ("carPriceSAR",),
    "shipping_sar": ("shippingSAR",),
    "broker_fee_sar": ("brokerFeeSAR",),
    "customs_fees": ("customsFeesSAR", "customsFees"),
    "vat": ("vatSAR", "vat"),
    "total": ("totalSAR", "total"),
}


def status_from_remote(value: Optional[str]) -> PostStatus:
    """Translate a remote status value, defaulting unknown values to pending."""
    status = STATUS_FROM_REMOTE.get((value or "").lower())
    if status is None:
        logger.warning("unknown_remote_status", status=value)
        return PostStatus.PENDING
    return status


def status_to_remote(status: PostStatus) -> str:
    return STATUS_TO_REMOTE[status]


# ===================
# REMOTE -> LOCAL
# ===================

def parsed_post_is_empty(parsed: Optional[ParsedPost]) -> bool:
    """An absent blob and a blob with no field values are both empty."""
    return parsed is None or parsed.is_empty()


def parsed_post_from_json(value: Any) -> Optional[ParsedPost]:
    """
    Map a stored parsed_json blob.

    Returns None for absent, empty or unreadable blobs.
    """
    if not value or not isinstance(value, dict):
        return None
    try:
        parsed = ParsedPost.model_validate(value)
    except PydanticValidationError as e:
        logger.warning("parsed_json_invalid", error=str(e))
        return None
    return None if parsed_post_is_empty(parsed) else parsed


def images_from_json(value: Any) -> list[ImageItem]:
    """Map stored images, skipping entries that are not valid images."""
    if not isinstance(value, list):
        return []
    images = []
    for index, item in enumerate(value):
        try:
            images.append(ImageItem.model_validate(item))
        except PydanticValidationError:
            logger.warning("image_skipped", index=index)
    return images


def pricing_from_json(value: Any) -> Optional[PricingBreakdown]:
    if not value or not isinstance(value, dict):
        return None
    fields = {}
    for field_name, keys in _PRICING_KEYS.items():
        for key in keys:
            if value.get(key) is not None:
                fields[field_name] = value[key]
                break
    return PricingBreakdown(**fields)


def step_completed_from_json(value: Any) -> StepCompleted:
    if not isinstance(value, dict):
        return StepCompleted()
    return StepCompleted(**{
        step: bool(value.get(step))
        for step in ("raw", "details", "images", "pricing")
    })


def row_to_post(row: dict[str, Any]) -> Post:
    """
    Convert a remote row to a Post.

    Args:
        row: Row as returned by the remote store or carried by a change event

    Returns:
        Post with defaults filled in

    Raises:
        RecordMappingError: If the row has no id or url
    """
    if not isinstance(row, dict) or not row.get("id") or not row.get("url"):
        raise RecordMappingError(
            "Row is missing id or url",
            details={"keys": sorted(row.keys()) if isinstance(row, dict) else None}
        )

    workflow_step = row.get("workflow_step") or WorkflowStep.RAW.value
    try:
        step = WorkflowStep(workflow_step)
    except ValueError:
        logger.warning("unknown_workflow_step", post_id=row["id"], step=workflow_step)
        step = WorkflowStep.RAW

    try:
        return Post(
            id=str(row["id"]),
            url=row["url"],
            source=row.get("source"),
            note=row.get("note"),
            status=status_from_remote(row.get("status")),
            rejection_reason=row.get("rejection_reason"),
            raw_content=row.get("raw_content"),
            # Inserts historically wrote the extraction blob to raw_analysis
            parsed_json=parsed_post_from_json(row.get("parsed_json") or row.get("raw_analysis")),
            images=images_from_json(row.get("images")),
            pricing=pricing_from_json(row.get("pricing")),
            workflow_step=step,
            step_completed=step_completed_from_json(row.get("step_completed")),
            last_updated_at=row.get("updated_at"),
            created_at=row.get("created_at"),
        )
    except PydanticValidationError as e:
        raise RecordMappingError(
            "Row could not be mapped to a post",
            details={"id": row.get("id"), "error": str(e)}
        ) from e


# ===================
# LOCAL -> REMOTE
# ===================

def pricing_to_json(pricing: PricingBreakdown) -> dict[str, float]:
    """Store pricing with currency-labelled keys plus the legacy keys."""
    stored = {}
    for field_name, keys in _PRICING_KEYS.items():
        amount = float(getattr(pricing, field_name))
        for key in keys:
            stored[key] = amount
    return stored


def images_to_json(images: list[ImageItem]) -> list[dict[str, Any]]:
    return [image.model_dump(by_alias=True, exclude_none=True) for image in images]


def entry_to_insert_row(entry: PostImportEntry, owner_id: Optional[str]) -> dict[str, Any]:
    """Build the insert row for a newly imported post."""
    return {
        "admin_id": owner_id,
        "url": entry.url,
        "source": entry.source,
        "note": entry.note,
        "status": status_to_remote(PostStatus.PENDING),
        "raw_content": None,
        "raw_analysis": None,
        "images": [],
        "workflow_step": WorkflowStep.RAW.value,
        "step_completed": {},
    }


def changes_to_update_row(changes: PostChanges) -> dict[str, Any]:
    """
    Convert explicitly set change fields to remote columns.

    updated_at is always written so every mutation moves the timestamp.
    """
    fields = changes.set_fields()
    row: dict[str, Any] = {}

    if "status" in fields:
        row["status"] = status_to_remote(fields["status"])
    if "rejection_reason" in fields:
        row["rejection_reason"] = fields["rejection_reason"]
    if "raw_content" in fields:
        row["raw_content"] = fields["raw_content"]
    if "parsed_json" in fields:
        parsed = fields["parsed_json"]
        row["parsed_json"] = parsed.model_dump(mode="json") if parsed else None
    if "images" in fields:
        row["images"] = images_to_json(fields["images"] or [])
    if "pricing" in fields:
        pricing = fields["pricing"]
        row["pricing"] = pricing_to_json(pricing) if pricing else None
    if "workflow_step" in fields:
        row["workflow_step"] = fields["workflow_step"].value
    if "step_completed" in fields:
        row["step_completed"] = fields["step_completed"].model_dump()
    if fields.get("last_analyzed_at"):
        row["last_analyzed_at"] = fields["last_analyzed_at"].isoformat()
    if fields.get("completed_at"):
        row["completed_at"] = fields["completed_at"].isoformat()

    updated_at = fields.get("last_updated_at") or datetime.now(timezone.utc)
    row["updated_at"] = updated_at.isoformat()
    return row


def apply_changes(post: Post, changes: PostChanges) -> Post:
    """
    Return a validated copy of the post with the change fields applied.

    Validating here keeps the local copy identical to what row_to_post
    produces from the stored row, so the live-sync echo compares equal.
    """
    data = post.model_dump()
    data.update({
        name: value
        for name, value in changes.set_fields().items()
        if name in Post.model_fields
    })
    return Post.model_validate(data)
