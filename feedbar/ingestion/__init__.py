"""
FeedBar Ingestion Module
========================

Feed retrieval and entry normalization components.

This module handles:
- Timeout-bounded feed fetching and parsing
- Fetch failure classification
- Entry normalization and image resolution
- Site icon resolution
"""

from .classifier import FailureClass, FetchErrorCode, classify
from .fetcher import FeedFetcher, FetchResult
from .icon_resolver import IconResolver
from .image_resolver import ENTRY_IMAGE_EXTRACTORS, resolve_entry_image, scrape_page_image
from .normalizer import normalize_entry

__all__ = [
    "FailureClass",
    "FetchErrorCode",
    "classify",
    "FeedFetcher",
    "FetchResult",
    "IconResolver",
    "ENTRY_IMAGE_EXTRACTORS",
    "resolve_entry_image",
    "scrape_page_image",
    "normalize_entry",
]
