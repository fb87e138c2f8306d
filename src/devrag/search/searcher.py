"""Scoped semantic search over indexed chunks."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Sequence, TypeVar
from uuid import UUID

import numpy as np

from devrag.cancellation import RequestContext, check_context
from devrag.errors import DevRagError, InvalidInputError, UpstreamError
from devrag.models import (
    SUMMARY_TYPES,
    SearchFilter,
    SearchResult,
    SummaryFilter,
    SummarySearchResult,
)
from devrag.search.hierarchy import (
    HierarchicalSearcher,
    HierarchicalSearchOptions,
    HierarchicalSearchResult,
)
from devrag.search.protocols import (
    ChunkHierarchyStore,
    Embedder,
    SimilarityStore,
    SummaryStore,
)

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 10
DEFAULT_HYBRID_SUMMARY_LIMIT = 5
MAX_SEARCH_LIMIT = 50
MAX_CONTEXT_WINDOW = 3

_NIL_UUID = UUID(int=0)

T = TypeVar("T")
SearchExecutor = Callable[[np.ndarray, int, SearchFilter], List[SearchResult]]


@dataclass(slots=True)
class SearchParams:
    query: str
    product_id: UUID | None = None
    source_id: UUID | None = None
    limit: int = DEFAULT_SEARCH_LIMIT
    path_prefix: str = ""
    content_type: str = ""
    context_before: int = 0
    context_after: int = 0


@dataclass(slots=True)
class SearchResponse:
    """Search hits plus elapsed wall-clock seconds."""

    results: list[SearchResult] = field(default_factory=list)
    duration: float = 0.0


@dataclass(slots=True)
class HierarchicalSearchResponse:
    results: list[HierarchicalSearchResult] = field(default_factory=list)
    duration: float = 0.0


@dataclass(slots=True)
class SummarySearchParams:
    query: str
    snapshot_id: UUID | None = None
    limit: int = DEFAULT_SEARCH_LIMIT
    summary_types: Sequence[str] = ()
    path_prefix: str = ""


@dataclass(slots=True)
class SummarySearchResponse:
    results: list[SummarySearchResult] = field(default_factory=list)
    duration: float = 0.0


@dataclass(slots=True)
class HybridSearchParams:
    """Chunk and summary search over one query; ``summary_*`` filters apply to summaries."""

    query: str
    product_id: UUID | None = None
    snapshot_id: UUID | None = None
    chunk_limit: int = DEFAULT_SEARCH_LIMIT
    summary_limit: int = DEFAULT_HYBRID_SUMMARY_LIMIT
    path_prefix: str = ""
    content_type: str = ""
    summary_types: Sequence[str] = ()
    summary_path_prefix: str = ""


@dataclass(slots=True)
class HybridSearchResponse:
    chunks: list[SearchResult] = field(default_factory=list)
    summaries: list[SummarySearchResult] = field(default_factory=list)
    duration: float = 0.0


def _summary_filter(summary_types: Sequence[str], path_prefix: str | None) -> SummaryFilter:
    types = tuple(t.strip() for t in summary_types if t and t.strip())
    unknown = [t for t in types if t not in SUMMARY_TYPES]
    if unknown:
        raise InvalidInputError(f"unknown summary type: {', '.join(unknown)}")
    return SummaryFilter(summary_types=types, path_prefix=normalize_optional(path_prefix))


def normalize_limit(limit: int) -> int:
    if limit <= 0:
        return DEFAULT_SEARCH_LIMIT
    return min(limit, MAX_SEARCH_LIMIT)


def normalize_context_window(value: int) -> int:
    if value < 0:
        raise InvalidInputError("context window must be >= 0")
    return min(value, MAX_CONTEXT_WINDOW)


def normalize_optional(value: str | None) -> str | None:
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


class Searcher:
    """Embeds a query, runs a scoped similarity search and adds sibling context."""

    def __init__(
        self,
        embedder: Embedder,
        store: SimilarityStore,
        *,
        hierarchy_store: ChunkHierarchyStore | None = None,
        summary_store: SummaryStore | None = None,
    ) -> None:
        self.embedder = embedder
        self.store = store
        if summary_store is None and isinstance(store, SummaryStore):
            summary_store = store
        self.summary_store = summary_store
        self._hierarchical = HierarchicalSearcher(hierarchy_store or store)

    @property
    def hierarchical_searcher(self) -> HierarchicalSearcher:
        return self._hierarchical

    def search_by_product(
        self, params: SearchParams, ctx: RequestContext | None = None
    ) -> SearchResponse:
        product_id = params.product_id
        if product_id is None or product_id == _NIL_UUID:
            raise InvalidInputError("product ID is required")

        def execute(vector: np.ndarray, limit: int, filters: SearchFilter) -> list[SearchResult]:
            return self.store.search_by_product(product_id, vector, limit, filters)

        return self._search("product", params, execute, ctx)

    def search_by_source(
        self, params: SearchParams, ctx: RequestContext | None = None
    ) -> SearchResponse:
        source_id = params.source_id
        if source_id is None or source_id == _NIL_UUID:
            raise InvalidInputError("source ID is required")

        def execute(vector: np.ndarray, limit: int, filters: SearchFilter) -> list[SearchResult]:
            return self.store.search_by_source(source_id, vector, limit, filters)

        return self._search("source", params, execute, ctx)

    def search_by_product_with_hierarchy(
        self,
        params: SearchParams,
        options: HierarchicalSearchOptions,
        ctx: RequestContext | None = None,
    ) -> HierarchicalSearchResponse:
        return self._with_hierarchy(self.search_by_product(params, ctx), options, ctx)

    def search_by_source_with_hierarchy(
        self,
        params: SearchParams,
        options: HierarchicalSearchOptions,
        ctx: RequestContext | None = None,
    ) -> HierarchicalSearchResponse:
        return self._with_hierarchy(self.search_by_source(params, ctx), options, ctx)

    def _with_hierarchy(
        self,
        response: SearchResponse,
        options: HierarchicalSearchOptions,
        ctx: RequestContext | None,
    ) -> HierarchicalSearchResponse:
        start = time.perf_counter()
        enriched = self._hierarchical.enrich_with_hierarchy(response.results, options, ctx)
        return HierarchicalSearchResponse(
            results=enriched,
            duration=response.duration + (time.perf_counter() - start),
        )

    def _search(
        self,
        scope: str,
        params: SearchParams,
        execute: SearchExecutor,
        ctx: RequestContext | None,
    ) -> SearchResponse:
        query = (params.query or "").strip()
        if not query:
            raise InvalidInputError("query is required")

        before = normalize_context_window(params.context_before)
        after = normalize_context_window(params.context_after)
        limit = normalize_limit(params.limit)
        filters = SearchFilter(
            path_prefix=normalize_optional(params.path_prefix),
            content_type=normalize_optional(params.content_type),
        )

        logger.info(f"Searching {scope} for '{query[:50]}' (limit={limit})")
        start = time.perf_counter()

        vector = self._embed(query, ctx)

        check_context(ctx, f"{scope} search")
        try:
            results = list(execute(vector, limit, filters))
        except DevRagError:
            raise
        except Exception as exc:
            raise UpstreamError(f"failed to execute {scope} search: {exc}") from exc

        if results and (before > 0 or after > 0):
            self._populate_context(results, before, after, ctx)

        duration = time.perf_counter() - start
        logger.info(f"Search {scope}: {len(results)} results in {duration:.3f}s")
        return SearchResponse(results=results, duration=duration)

    def search_summaries(
        self, params: SummarySearchParams, ctx: RequestContext | None = None
    ) -> SummarySearchResponse:
        """Search the file, directory and architecture summaries of one snapshot."""
        query = (params.query or "").strip()
        if not query:
            raise InvalidInputError("query is required")
        snapshot_id = params.snapshot_id
        if snapshot_id is None or snapshot_id == _NIL_UUID:
            raise InvalidInputError("snapshot ID is required")
        store = self._require_summary_store()

        limit = normalize_limit(params.limit)
        filters = _summary_filter(params.summary_types, params.path_prefix)
        start = time.perf_counter()

        vector = self._embed(query, ctx)
        check_context(ctx, "summary search")
        summaries = self._run(
            "summary search",
            lambda: store.search_summaries_by_snapshot(snapshot_id, vector, limit, filters),
        )

        duration = time.perf_counter() - start
        logger.info(f"Summary search: {len(summaries)} results in {duration:.3f}s")
        return SummarySearchResponse(results=summaries, duration=duration)

    def hybrid_search(
        self, params: HybridSearchParams, ctx: RequestContext | None = None
    ) -> HybridSearchResponse:
        """Run chunk and summary search for one query embedding.

        Scoped to either a product (every source, newest summaries) or a single
        snapshot. The two scopes are mutually exclusive.
        """
        query = (params.query or "").strip()
        if not query:
            raise InvalidInputError("query is required")
        product_id = params.product_id
        snapshot_id = params.snapshot_id
        has_product = product_id is not None and product_id != _NIL_UUID
        has_snapshot = snapshot_id is not None and snapshot_id != _NIL_UUID
        if has_product and has_snapshot:
            raise InvalidInputError("product ID and snapshot ID are mutually exclusive")
        if not has_product and not has_snapshot:
            raise InvalidInputError("either product ID or snapshot ID is required")
        store = self._require_summary_store()

        chunk_limit = normalize_limit(params.chunk_limit)
        summary_limit = (
            min(params.summary_limit, MAX_SEARCH_LIMIT)
            if params.summary_limit > 0
            else DEFAULT_HYBRID_SUMMARY_LIMIT
        )
        chunk_filters = SearchFilter(
            path_prefix=normalize_optional(params.path_prefix),
            content_type=normalize_optional(params.content_type),
        )
        summary_filters = _summary_filter(params.summary_types, params.summary_path_prefix)
        start = time.perf_counter()

        vector = self._embed(query, ctx)

        check_context(ctx, "hybrid chunk search")
        if has_product:
            chunks = self._run(
                "chunk search",
                lambda: self.store.search_by_product(product_id, vector, chunk_limit, chunk_filters),
            )
        else:
            chunks = self._run(
                "chunk search",
                lambda: store.search_by_snapshot(snapshot_id, vector, chunk_limit, chunk_filters),
            )

        check_context(ctx, "hybrid summary search")
        if has_product:
            summaries = self._run(
                "summary search",
                lambda: store.search_summaries_by_product(
                    product_id, vector, summary_limit, summary_filters
                ),
            )
        else:
            summaries = self._run(
                "summary search",
                lambda: store.search_summaries_by_snapshot(
                    snapshot_id, vector, summary_limit, summary_filters
                ),
            )

        duration = time.perf_counter() - start
        logger.info(
            f"Hybrid search: {len(chunks)} chunks and {len(summaries)} summaries "
            f"in {duration:.3f}s"
        )
        return HybridSearchResponse(chunks=chunks, summaries=summaries, duration=duration)

    def _require_summary_store(self) -> SummaryStore:
        if self.summary_store is None:
            raise InvalidInputError("summary search requires a summary store")
        return self.summary_store

    def _embed(self, query: str, ctx: RequestContext | None) -> np.ndarray:
        check_context(ctx, "query embedding")
        try:
            return self.embedder.embed_query(query)
        except DevRagError:
            raise
        except Exception as exc:
            raise UpstreamError(f"failed to build query embedding: {exc}") from exc

    @staticmethod
    def _run(stage: str, call: Callable[[], list[T]]) -> list[T]:
        try:
            return list(call())
        except DevRagError:
            raise
        except Exception as exc:
            raise UpstreamError(f"{stage} failed: {exc}") from exc

    def _populate_context(
        self,
        results: list[SearchResult],
        before: int,
        after: int,
        ctx: RequestContext | None,
    ) -> None:
        """Fill ``prev_content``/``next_content`` from sibling chunks of the same file."""
        for result in results:
            check_context(ctx, "context lookup")
            try:
                siblings = self.store.get_chunk_context(result.chunk_id, before, after)
            except Exception as exc:
                raise UpstreamError(
                    f"failed to get chunk context for {result.chunk_id}: {exc}"
                ) from exc

            if not siblings:
                logger.warning(f"Context chunks not found for {result.chunk_id}")
                continue

            target = next((c for c in siblings if c.id == result.chunk_id), None)
            if target is None:
                logger.warning(f"Target chunk {result.chunk_id} missing in context result")
                continue

            siblings = sorted(siblings, key=lambda c: c.ordinal)
            prev_parts = [c.content for c in siblings if c.ordinal < target.ordinal]
            next_parts = [c.content for c in siblings if c.ordinal > target.ordinal]
            if prev_parts:
                result.prev_content = "\n".join(prev_parts)
            if next_parts:
                result.next_content = "\n".join(next_parts)
