"""Query-time retrieval: search, hierarchy enrichment and context assembly."""

from devrag.search.context_builder import ContextBuilder, ContextFormat
from devrag.search.hierarchy import (
    HierarchicalSearcher,
    HierarchicalSearchOptions,
    HierarchicalSearchResult,
)
from devrag.search.retrieval import RetrievalOptions, RetrievalPayload, RetrievalService
from devrag.search.searcher import (
    HierarchicalSearchResponse,
    HybridSearchParams,
    HybridSearchResponse,
    Searcher,
    SearchParams,
    SearchResponse,
    SummarySearchParams,
    SummarySearchResponse,
)

__all__ = [
    "ContextBuilder",
    "ContextFormat",
    "HierarchicalSearchOptions",
    "HierarchicalSearchResponse",
    "HierarchicalSearchResult",
    "HierarchicalSearcher",
    "HybridSearchParams",
    "HybridSearchResponse",
    "RetrievalOptions",
    "RetrievalPayload",
    "RetrievalService",
    "SearchParams",
    "SearchResponse",
    "Searcher",
    "SummarySearchParams",
    "SummarySearchResponse",
]
