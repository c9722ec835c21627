"""
FeedBar Processing Module
=========================

Batch ingestion and the maintenance sub-pipelines around it.

This module handles:
- Batch orchestration with per-feed isolation
- Feed health transitions
- Item retention
- Icon backfill and the read-side manifest
"""

from .health import FeedHealth, HealthEvent, HealthTransition, transition
from .orchestrator import BatchOrchestrator, BatchResult, FeedOutcome
from .retention import RetentionCleaner
from .icon_backfill import IconBackfill, IconBackfillResult
from .manifest import build_manifest, load_manifest

__all__ = [
    "FeedHealth",
    "HealthEvent",
    "HealthTransition",
    "transition",
    "BatchOrchestrator",
    "BatchResult",
    "FeedOutcome",
    "RetentionCleaner",
    "IconBackfill",
    "IconBackfillResult",
    "build_manifest",
    "load_manifest",
]
