"""
Excel parser for post and image uploads.

Reads the first sheet of an .xlsx file. The first row is the header.

Posts sheet:   url (required), source, note
Images sheet:  post_url, image_url (required), caption
"""

from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Any, Optional, Union
import structlog

import pandas as pd
from pydantic import ValidationError as PydanticValidationError

from models.post import ImageImportRow, PostImportEntry
from exceptions import ExcelParseError
from utils.urls import is_valid_url

logger = structlog.get_logger(__name__)

ExcelSource = Union[str, Path, BytesIO, bytes]


@dataclass
class ParseError:
    """Single validation error from parsing."""
    row: int
    field: str
    error: str


@dataclass
class PostsExcelParseResult:
    entries: list[PostImportEntry] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """True if no errors occurred."""
        return len(self.errors) == 0


@dataclass
class ImagesExcelParseResult:
    rows: list[ImageImportRow] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


def error_dicts(errors: list[ParseError]) -> list[dict]:
    """Convert parse errors for an API response."""
    return [
        {"row": e.row, "field": e.field, "error": e.error}
        for e in errors
    ]


def parse_posts_excel(file: ExcelSource) -> PostsExcelParseResult:
    """
    Parse a posts upload.

    Rows without a URL are skipped; rows with an invalid URL are reported
    as errors and the rest of the sheet is still parsed.

    Args:
        file: File path or bytes / file-like object

    Returns:
        PostsExcelParseResult with entries and row errors

    Raises:
        ExcelParseError: Unreadable file, no data rows, or no url column
    """
    df = _read_first_sheet(file)
    _require_columns(df, ["url"])

    result = PostsExcelParseResult()
    for idx, row in df.iterrows():
        row_num = idx + 2  # Excel row (1-indexed + header)

        url = _cell_text(row.get("url"))
        if url is None:
            continue
        if not is_valid_url(url):
            result.errors.append(ParseError(row=row_num, field="url", error="Invalid URL"))
            continue

        try:
            result.entries.append(PostImportEntry(
                url=url,
                source=_cell_text(row.get("source")),
                note=_cell_text(row.get("note")),
            ))
        except PydanticValidationError as e:
            result.errors.append(ParseError(
                row=row_num,
                field="row",
                error=e.errors()[0]["msg"]
            ))

    logger.info(
        "posts_excel_parsed",
        entry_count=len(result.entries),
        error_count=len(result.errors)
    )
    return result


def parse_images_excel(file: ExcelSource) -> ImagesExcelParseResult:
    """
    Parse an images upload.

    Raises:
        ExcelParseError: Unreadable file, no data rows, or missing
            post_url / image_url columns
    """
    df = _read_first_sheet(file)
    _require_columns(df, ["post_url", "image_url"])

    result = ImagesExcelParseResult()
    for idx, row in df.iterrows():
        row_num = idx + 2

        post_url = _cell_text(row.get("post_url"))
        image_url = _cell_text(row.get("image_url"))
        if post_url is None or image_url is None:
            continue
        if not is_valid_url(image_url):
            result.errors.append(ParseError(row=row_num, field="image_url", error="Invalid URL"))
            continue

        result.rows.append(ImageImportRow(
            post_url=post_url,
            image_url=image_url,
            caption=_cell_text(row.get("caption")),
        ))

    logger.info(
        "images_excel_parsed",
        row_count=len(result.rows),
        error_count=len(result.errors)
    )
    return result


# ===================
# HELPER FUNCTIONS
# ===================

def _read_first_sheet(file: ExcelSource) -> pd.DataFrame:
    logger.info("parsing_excel", file_type=type(file).__name__)

    if isinstance(file, bytes):
        file = BytesIO(file)

    try:
        excel = pd.ExcelFile(file, engine="openpyxl")
    except Exception as e:
        logger.error("excel_read_failed", error=str(e))
        raise ExcelParseError(
            message="Failed to read Excel file",
            details={"original_error": str(e)}
        )

    if not excel.sheet_names:
        raise ExcelParseError(message="No sheets found in the file")

    try:
        df = excel.parse(excel.sheet_names[0], dtype=object)
    except Exception as e:
        raise ExcelParseError(
            message="Failed to read sheet",
            details={"sheet": excel.sheet_names[0], "original_error": str(e)}
        )

    df.columns = [_normalize_column(col) for col in df.columns]
    if df.dropna(how="all").empty:
        raise ExcelParseError(message="File must have at least a header row and one data row")
    return df


def _require_columns(df: pd.DataFrame, required: list[str]) -> None:
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise ExcelParseError(
            message=f"Required columns not found: {', '.join(missing)}",
            details={"missing": missing, "found": list(df.columns)}
        )


def _normalize_column(col: Any) -> str:
    """
    Normalize column name for consistent matching.

    "Post URL" -> "post_url"
    " Image_URL " -> "image_url"
    """
    return str(col).strip().lower().replace(" ", "_")


def _cell_text(value: Any) -> Optional[str]:
    """Cell value as trimmed text; None for empty cells."""
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    text = str(value).strip()
    return text or None
