"""
FeedBar - Feed Ingestion Worker
===============================

Periodically pulls RSS/Atom/RDF feeds, normalizes entries into a canonical
item schema, deduplicates and stores them, and quarantines feeds that are
permanently broken.
"""

__version__ = "1.0.0"
__author__ = "FeedBar Team"

from .processing.orchestrator import BatchOrchestrator, BatchResult
from .processing.icon_backfill import IconBackfill
from .ingestion.fetcher import FeedFetcher, FetchResult

__all__ = [
    "BatchOrchestrator",
    "BatchResult",
    "IconBackfill",
    "FeedFetcher",
    "FetchResult",
]
