"""
Pydantic models for validation and serialization.
"""

from models.base import BaseSchema
from models.pricing import (
    PricingInputs,
    PricingBreakdown,
    coerce_amount,
)
from models.post import (
    PostStatus,
    WorkflowStep,
    ImageItem,
    ensure_single_main,
    VehicleInfo,
    VehicleSpecs,
    CarHistory,
    ListingExtras,
    ListingTranslations,
    ParsedPost,
    StepCompleted,
    Post,
    PostChanges,
    PostImportEntry,
    PostImportResult,
    ImageImportRow,
    ImageImportResult,
    PostImportRequest,
    TextImportRequest,
    ImageImportRequest,
    RejectRequest,
    RawContentUpdate,
    ImagesUpdate,
    DetailsUpdate,
    ActivePostUpdate,
    SearchUpdate,
    StepBackRequest,
    PostListResponse,
    AnalyzeResponse,
    WorkflowStateResponse,
)
from models.sync import ChangeType, ChangeEvent, SyncStatusResponse

__all__ = [
    # Base
    "BaseSchema",

    # Pricing
    "PricingInputs",
    "PricingBreakdown",
    "coerce_amount",

    # Posts
    "PostStatus",
    "WorkflowStep",
    "ImageItem",
    "ensure_single_main",
    "VehicleInfo",
    "VehicleSpecs",
    "CarHistory",
    "ListingExtras",
    "ListingTranslations",
    "ParsedPost",
    "StepCompleted",
    "Post",
    "PostChanges",
    "PostImportEntry",
    "PostImportResult",
    "ImageImportRow",
    "ImageImportResult",

    # Requests / responses
    "PostImportRequest",
    "TextImportRequest",
    "ImageImportRequest",
    "RejectRequest",
    "RawContentUpdate",
    "ImagesUpdate",
    "DetailsUpdate",
    "ActivePostUpdate",
    "SearchUpdate",
    "StepBackRequest",
    "PostListResponse",
    "AnalyzeResponse",
    "WorkflowStateResponse",

    # Sync
    "ChangeType",
    "ChangeEvent",
    "SyncStatusResponse",
]
