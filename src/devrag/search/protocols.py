"""Collaborator contracts consumed by the search layer."""

from __future__ import annotations

from typing import Protocol, runtime_checkable
from uuid import UUID

import numpy as np

from devrag.models import (
    Chunk,
    SearchFilter,
    SearchResult,
    SummaryFilter,
    SummarySearchResult,
)


@runtime_checkable
class Embedder(Protocol):
    """Maps query text to a fixed-size vector."""

    def embed_query(self, text: str) -> np.ndarray:
        ...


@runtime_checkable
class SimilarityStore(Protocol):
    """Nearest-neighbour search scoped to a product or a source."""

    def search_by_product(
        self,
        product_id: UUID,
        vector: np.ndarray,
        limit: int,
        filters: SearchFilter,
    ) -> list[SearchResult]:
        """Return hits ordered by similarity, already limited and filtered."""
        ...

    def search_by_source(
        self,
        source_id: UUID,
        vector: np.ndarray,
        limit: int,
        filters: SearchFilter,
    ) -> list[SearchResult]:
        ...

    def get_chunk_context(self, chunk_id: UUID, before: int, after: int) -> list[Chunk]:
        """Return sibling chunks within ``[ordinal-before, ordinal+after]``, target included."""
        ...


@runtime_checkable
class ChunkHierarchyStore(Protocol):
    """Parent/child lookups between chunks."""

    def get_parent_chunk(self, chunk_id: UUID) -> Chunk | None:
        ...

    def get_child_chunks(self, chunk_id: UUID) -> list[Chunk]:
        """Children in hierarchy ordinal order."""
        ...

    def get_chunk_tree(self, root_id: UUID, max_depth: int) -> list[Chunk]:
        ...


@runtime_checkable
class SummaryStore(Protocol):
    """Search over stored summaries, plus chunk search pinned to one snapshot."""

    def search_summaries_by_product(
        self,
        product_id: UUID,
        vector: np.ndarray,
        limit: int,
        filters: SummaryFilter,
    ) -> list[SummarySearchResult]:
        ...

    def search_summaries_by_snapshot(
        self,
        snapshot_id: UUID,
        vector: np.ndarray,
        limit: int,
        filters: SummaryFilter,
    ) -> list[SummarySearchResult]:
        ...

    def search_by_snapshot(
        self,
        snapshot_id: UUID,
        vector: np.ndarray,
        limit: int,
        filters: SearchFilter,
    ) -> list[SearchResult]:
        ...
