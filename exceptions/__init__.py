"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    ExternalServiceError,
    DatabaseError,

    # Posts
    PostNotFoundError,
    EmptyRawContentError,
    PostRejectedError,
    AnalysisInProgressError,
    InvalidStepTransitionError,
    StepNotReadyError,
    RecordMappingError,
    OperatorRequiredError,

    # Extraction
    ExtractionError,
    ExtractionTimeoutError,
    ExtractionCancelledError,

    # Remote store
    PermissionDeniedError,
    RemoteStoreUnavailableError,

    # Excel parser
    ExcelParseError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "ExternalServiceError",
    "DatabaseError",

    # Posts
    "PostNotFoundError",
    "EmptyRawContentError",
    "PostRejectedError",
    "AnalysisInProgressError",
    "InvalidStepTransitionError",
    "StepNotReadyError",
    "RecordMappingError",
    "OperatorRequiredError",

    # Extraction
    "ExtractionError",
    "ExtractionTimeoutError",
    "ExtractionCancelledError",

    # Remote store
    "PermissionDeniedError",
    "RemoteStoreUnavailableError",

    # Excel parser
    "ExcelParseError",
]
