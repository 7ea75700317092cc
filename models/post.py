"""
Post schemas for validation and serialization.

A Post is one imported vehicle listing moving through the import workflow.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Optional
from enum import Enum
from datetime import datetime

from models.base import BaseSchema
from models.pricing import PricingBreakdown
from utils.urls import is_valid_url


class PostStatus(str, Enum):
    """Lifecycle status of a post."""
    PENDING = "pending"
    ANALYZING = "analyzing"
    PARSED = "parsed"
    REJECTED = "rejected"
    READY = "ready"


class WorkflowStep(str, Enum):
    """Cursor into the guided editing workflow. Independent of status."""
    RAW = "raw"
    DETAILS = "details"
    IMAGES = "images"
    PRICING = "pricing"
    COMPLETE = "complete"


# ===================
# IMAGES
# ===================

class ImageItem(BaseSchema):
    """
    One photo of the listing.

    Stored camelCase (isMain) for the web frontend.
    """
    model_config = ConfigDict(populate_by_name=True)

    url: str = Field(..., min_length=1, description="Image URL")
    keep: bool = Field(default=True, description="Include the image in the listing")
    is_main: bool = Field(default=False, alias="isMain", description="Cover photo")
    caption: Optional[str] = Field(None, description="Optional caption")
    width: Optional[int] = Field(None, ge=0)
    height: Optional[int] = Field(None, ge=0)


def ensure_single_main(images: list[ImageItem]) -> list[ImageItem]:
    """
    Repair the main-image invariant.

    - Unkept images are never main
    - Among kept images the first flagged main stays main, others are cleared
    - If images are kept but none is main, the first kept image becomes main

    Returns a new list; order is preserved.
    """
    repaired = []
    main_taken = False
    for image in images:
        is_main = image.keep and image.is_main and not main_taken
        main_taken = main_taken or is_main
        repaired.append(image.model_copy(update={"is_main": is_main}))

    if not main_taken:
        for index, image in enumerate(repaired):
            if image.keep:
                repaired[index] = image.model_copy(update={"is_main": True})
                break

    return repaired


# ===================
# PARSED LISTING DATA
# ===================

class VehicleInfo(BaseSchema):
    """Core vehicle attributes."""
    year: Optional[int] = None
    make: Optional[str] = None
    model: Optional[str] = None
    vin: Optional[str] = None
    condition: Optional[str] = None
    mileage: Optional[int] = None
    drivetrain: Optional[str] = None
    fuel_type: Optional[str] = None
    engine: Optional[str] = None


class VehicleSpecs(BaseSchema):
    """Colours and feature lists."""
    exterior_color: Optional[str] = None
    interior_color: Optional[str] = None
    exterior_features: list[str] = Field(default_factory=list)
    interior_features: list[str] = Field(default_factory=list)
    safety_and_tech: list[str] = Field(default_factory=list)


class CarHistory(BaseSchema):
    single_owner: bool = False
    no_accident_history: bool = False
    full_service_history: bool = False


class ListingExtras(BaseSchema):
    car_history: Optional[CarHistory] = None
    raw: Optional[Any] = Field(None, description="Extraction item as returned")


class ListingTranslations(BaseSchema):
    """Arabic labels."""
    title_ar: Optional[str] = None
    make_ar: Optional[str] = None
    model_ar: Optional[str] = None
    fuel_ar: Optional[str] = None
    drivetrain_ar: Optional[str] = None
    engine_ar: Optional[str] = None
    exterior_color_ar: Optional[str] = None
    interior_color_ar: Optional[str] = None
    exterior_features_ar: list[str] = Field(default_factory=list)
    interior_features_ar: list[str] = Field(default_factory=list)
    safety_tech_ar: list[str] = Field(default_factory=list)


class ParsedPost(BaseSchema):
    """
    Structured extraction result, also edited manually in the details step.

    Unknown keys are dropped.
    """
    title: Optional[str] = None
    notes: Optional[str] = None
    vehicle: Optional[VehicleInfo] = None
    specs: Optional[VehicleSpecs] = None
    extras: Optional[ListingExtras] = None
    translations: Optional[ListingTranslations] = None
    mileage_unit: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    price: Optional[int] = None
    exterior_features: list[str] = Field(default_factory=list)
    interior_features: list[str] = Field(default_factory=list)
    safety_tech: list[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        """True when no field carries a value."""
        return not any(
            value not in (None, [], {}, "")
            for value in self.model_dump(exclude_none=True).values()
        )


class StepCompleted(BaseSchema):
    """Per-step completion flags. Only set, never auto-unset."""
    raw: bool = False
    details: bool = False
    images: bool = False
    pricing: bool = False


# ===================
# POST
# ===================

class Post(BaseSchema):
    """In-memory post, mapped from one remote row."""

    id: str = Field(..., description="Post UUID")
    url: str = Field(..., description="Source listing URL")
    source: Optional[str] = Field(None, description="Where the URL came from")
    note: Optional[str] = Field(None, description="Operator note")
    status: PostStatus = Field(default=PostStatus.PENDING)
    rejection_reason: Optional[str] = None
    raw_content: Optional[str] = Field(None, description="Pasted page content")
    parsed_json: Optional[ParsedPost] = None
    images: list[ImageItem] = Field(default_factory=list)
    pricing: Optional[PricingBreakdown] = None
    workflow_step: WorkflowStep = Field(default=WorkflowStep.RAW)
    step_completed: StepCompleted = Field(default_factory=StepCompleted)
    last_updated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def has_raw_content(self) -> bool:
        return bool(self.raw_content and self.raw_content.strip())

    @property
    def has_parsed_json(self) -> bool:
        return self.parsed_json is not None and not self.parsed_json.is_empty()

    @property
    def main_image(self) -> Optional[ImageItem]:
        return next((image for image in self.images if image.is_main), None)


class PostChanges(BaseModel):
    """
    Partial update of a post.

    Only explicitly set fields are written, so None can clear a column.
    """

    status: Optional[PostStatus] = None
    rejection_reason: Optional[str] = None
    raw_content: Optional[str] = None
    parsed_json: Optional[ParsedPost] = None
    images: Optional[list[ImageItem]] = None
    pricing: Optional[PricingBreakdown] = None
    workflow_step: Optional[WorkflowStep] = None
    step_completed: Optional[StepCompleted] = None
    last_updated_at: Optional[datetime] = None
    last_analyzed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def set_fields(self) -> dict[str, Any]:
        """Explicitly set fields with their (model, not dumped) values."""
        return {name: getattr(self, name) for name in self.model_fields_set}


# ===================
# IMPORT SCHEMAS
# ===================

class PostImportEntry(BaseSchema):
    """One listing URL to import."""

    url: str = Field(..., min_length=1, max_length=2048, description="Listing URL")
    source: Optional[str] = Field(None, max_length=100)
    note: Optional[str] = Field(None, max_length=500)

    @field_validator("url")
    @classmethod
    def valid_url(cls, v: str) -> str:
        if not is_valid_url(v):
            raise ValueError("URL must be an absolute http(s) URL")
        return v


class PostImportResult(BaseSchema):
    """Outcome of a batch import."""

    created: list[Post] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list, description="Duplicate URLs not imported")
    invalid: int = Field(default=0, ge=0, description="Input lines or rows that were not valid URLs")
    errors: list[dict[str, Any]] = Field(default_factory=list, description="Row errors from a file upload")


class ImageImportRow(BaseSchema):
    """Image row from a paste or spreadsheet, matched to a post by URL."""

    post_url: str = Field(..., min_length=1)
    image_url: str = Field(..., min_length=1)
    caption: Optional[str] = None


class ImageImportResult(BaseSchema):
    """Outcome of an image import."""

    updated_posts: int = 0
    added_images: int = 0
    unmatched_urls: list[str] = Field(default_factory=list, description="Post URLs with no matching post")
    invalid: int = Field(default=0, ge=0)
    errors: list[dict[str, Any]] = Field(default_factory=list)


# ===================
# REQUEST / RESPONSE SCHEMAS
# ===================

class PostImportRequest(BaseSchema):
    entries: list[PostImportEntry] = Field(..., min_length=1)


class TextImportRequest(BaseSchema):
    text: str = Field(..., description="Pasted multi-line text")


class ImageImportRequest(BaseSchema):
    rows: list[ImageImportRow] = Field(..., min_length=1)


class RejectRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)


class RawContentUpdate(BaseSchema):
    text: str = Field(..., description="Raw page content")


class ImagesUpdate(BaseSchema):
    images: list[ImageItem]


class DetailsUpdate(BaseSchema):
    """Manual edits merged into parsed_json (top-level keys)."""
    fields: dict[str, Any] = Field(..., min_length=1)


class ActivePostUpdate(BaseSchema):
    id: Optional[str] = None


class SearchUpdate(BaseSchema):
    search: Optional[str] = Field(None, max_length=200)


class StepBackRequest(BaseSchema):
    step: Optional[WorkflowStep] = Field(None, description="Target step, defaults to previous")


class PostListResponse(BaseSchema):
    data: list[Post]
    total: int
    active_id: Optional[str] = None
    analyzing: list[str] = Field(default_factory=list)
    online: bool = False


class AnalyzeResponse(BaseSchema):
    cancelled: bool = False
    post: Optional[Post] = None


class WorkflowStateResponse(BaseSchema):
    post_id: str
    current_step: WorkflowStep
    step_completed: StepCompleted
    can_proceed_to_details: bool
    can_proceed_to_images: bool
    can_proceed_to_pricing: bool
    can_complete: bool

