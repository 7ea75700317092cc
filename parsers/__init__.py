"""
Import parsers for pasted text and Excel uploads.
"""

from parsers.excel_parser import (
    parse_posts_excel,
    parse_images_excel,
    PostsExcelParseResult,
    ImagesExcelParseResult,
)
from parsers.post_list_parser import (
    parse_post_urls_from_text,
    parse_image_items_from_text,
    PostListParseResult,
    ImageListParseResult,
)

__all__ = [
    "parse_posts_excel",
    "parse_images_excel",
    "PostsExcelParseResult",
    "ImagesExcelParseResult",
    "parse_post_urls_from_text",
    "parse_image_items_from_text",
    "PostListParseResult",
    "ImageListParseResult",
]
