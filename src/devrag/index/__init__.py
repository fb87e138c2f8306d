"""Persistent chunk storage."""

from devrag.index.storage import SQLiteChunkStore

__all__ = ["SQLiteChunkStore"]
