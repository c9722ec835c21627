"""
FeedBar Storage Layer
=====================

Repository implementations over the SQLite store.

This module provides:
- Feed repository for rotation selection and health bookkeeping
- Item repository for deduplicated writes and retention
- Feed error repository for the disablement audit trail
"""

from .feed_repository import FeedRepository
from .item_repository import ItemRepository
from .feed_error_repository import FeedErrorRepository

__all__ = [
    "FeedRepository",
    "ItemRepository",
    "FeedErrorRepository",
]
