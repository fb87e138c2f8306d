"""Parent/child/ancestor enrichment of flat search results."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence
from uuid import UUID

from devrag.cancellation import RequestContext, check_context
from devrag.errors import InvalidInputError, UpstreamError
from devrag.models import Chunk, ResultView, SearchResult
from devrag.search.protocols import ChunkHierarchyStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class HierarchicalSearchOptions:
    """Which structural context to attach to each result.

    ``max_depth`` bounds the ancestor walk only; 0 means unlimited.
    """

    include_parent: bool = False
    include_children: bool = False
    include_ancestors: bool = False
    max_depth: int = 0

    @property
    def enabled(self) -> bool:
        return self.include_parent or self.include_children or self.include_ancestors


@dataclass(slots=True)
class HierarchicalSearchResult(ResultView):
    """A search result with its structural neighbours.

    ``ancestors`` is stored nearest-first: ``[parent, grandparent, ...]``.
    """

    result: SearchResult
    parent: Chunk | None = None
    children: list[Chunk] = field(default_factory=list)
    ancestors: list[Chunk] = field(default_factory=list)

    @property
    def is_latest(self) -> bool | None:
        """Latest flag of a ranked inner result; None when it was never ranked."""
        return getattr(self.result, "is_latest", None)


def chunk_label(chunk: Chunk) -> str:
    """Short label for a chunk based on its type and name."""
    if chunk.name:
        if chunk.type:
            return f"{chunk.type} {chunk.name}"
        return chunk.name
    if chunk.type:
        return chunk.type
    return f"Chunk L{chunk.start_line}-L{chunk.end_line}"


class HierarchicalSearcher:
    """Attaches parent, children and ancestor chunks to search results."""

    def __init__(self, store: ChunkHierarchyStore) -> None:
        if store is None:
            raise InvalidInputError("HierarchicalSearcher requires a chunk hierarchy store")
        self.store = store

    def enrich_with_hierarchy(
        self,
        results: Sequence[SearchResult],
        options: HierarchicalSearchOptions,
        ctx: RequestContext | None = None,
    ) -> list[HierarchicalSearchResult]:
        if not results:
            return []
        if not options.enabled:
            return [HierarchicalSearchResult(result=result) for result in results]

        enriched: list[HierarchicalSearchResult] = []
        for result in results:
            item = HierarchicalSearchResult(result=result)

            if options.include_parent or options.include_ancestors:
                item.parent = self.get_parent_chunk(result.chunk_id, ctx)

            if options.include_children:
                item.children = self.get_child_chunks(result.chunk_id, ctx)

            if options.include_ancestors:
                item.ancestors = self.get_ancestors(result.chunk_id, options.max_depth, ctx)

            enriched.append(item)

        logger.debug(f"Enriched {len(enriched)} results with hierarchy")
        return enriched

    def get_parent_chunk(self, chunk_id: UUID, ctx: RequestContext | None = None) -> Chunk | None:
        check_context(ctx, "parent lookup")
        try:
            return self.store.get_parent_chunk(chunk_id)
        except Exception as exc:
            raise UpstreamError(f"failed to get parent chunk for {chunk_id}: {exc}") from exc

    def get_child_chunks(self, chunk_id: UUID, ctx: RequestContext | None = None) -> list[Chunk]:
        check_context(ctx, "children lookup")
        try:
            return list(self.store.get_child_chunks(chunk_id))
        except Exception as exc:
            raise UpstreamError(f"failed to get child chunks for {chunk_id}: {exc}") from exc

    def get_ancestors(
        self,
        chunk_id: UUID,
        max_depth: int = 0,
        ctx: RequestContext | None = None,
    ) -> list[Chunk]:
        """Walk parent links upwards, nearest ancestor first.

        Stops after ``max_depth`` hops (0 = unlimited), at the root, or when a
        chunk id repeats.
        """
        ancestors: list[Chunk] = []
        visited: set[UUID] = set()
        current = chunk_id

        while max_depth <= 0 or len(ancestors) < max_depth:
            if current in visited:
                logger.warning(f"Circular reference detected in chunk hierarchy at {current}")
                break
            visited.add(current)

            parent = self.get_parent_chunk(current, ctx)
            if parent is None:
                break
            ancestors.append(parent)
            current = parent.id

        return ancestors

    def get_chunk_tree(
        self,
        root_id: UUID,
        max_depth: int,
        ctx: RequestContext | None = None,
    ) -> list[Chunk]:
        """Subtree rooted at ``root_id`` in depth-first pre-order."""
        check_context(ctx, "chunk tree lookup")
        try:
            return list(self.store.get_chunk_tree(root_id, max_depth))
        except Exception as exc:
            raise UpstreamError(f"failed to get chunk tree for {root_id}: {exc}") from exc

    def build_context_from_hierarchy(self, result: HierarchicalSearchResult) -> str:
        """Render ancestors (or parent), the result, then its children."""
        parts: list[str] = []

        if result.ancestors:
            parts.append("=== Higher-level context ===\n\n")
            for ancestor in reversed(result.ancestors):
                parts.append(f"--- Level {ancestor.level}: {chunk_label(ancestor)} ---\n")
                parts.append(ancestor.content + "\n\n")
        elif result.parent is not None:
            parts.append("=== Parent context ===\n\n")
            parts.append(f"--- Level {result.parent.level}: {chunk_label(result.parent)} ---\n")
            parts.append(result.parent.content + "\n\n")

        parts.append("=== Main content ===\n\n")
        parts.append(result.content + "\n\n")

        if result.children:
            total = len(result.children)
            parts.append("=== Detail content (child chunks) ===\n\n")
            for i, child in enumerate(result.children, 1):
                parts.append(f"--- Level {child.level} ({i}/{total}): {chunk_label(child)} ---\n")
                parts.append(child.content + "\n\n")

        return "".join(parts)
