"""End-to-end retrieval: search, rank, enrich and render."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from devrag.cancellation import RequestContext, check_context
from devrag.errors import InvalidInputError
from devrag.provenance.ranker import Ranker
from devrag.search.context_builder import ContextBuilder, ContextFormat
from devrag.search.hierarchy import HierarchicalSearchOptions
from devrag.search.searcher import Searcher, SearchParams, SearchResponse

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RetrievalOptions:
    latest_only: bool = False
    rank: bool = True
    deduplicate: bool = True
    hierarchy: HierarchicalSearchOptions = field(default_factory=HierarchicalSearchOptions)
    context_format: ContextFormat = ContextFormat.HIERARCHY


@dataclass(slots=True)
class RetrievalPayload:
    """Final results and the rendered, budgeted context text."""

    results: list[Any]
    context: str
    token_count: int
    truncated: bool
    duration: float


class RetrievalService:
    """Runs search, provenance ranking, hierarchy enrichment and rendering in order."""

    def __init__(
        self,
        searcher: Searcher,
        context_builder: ContextBuilder,
        ranker: Ranker | None = None,
    ) -> None:
        self.searcher = searcher
        self.context_builder = context_builder
        self.ranker = ranker

    def retrieve(
        self,
        params: SearchParams,
        options: RetrievalOptions | None = None,
        ctx: RequestContext | None = None,
    ) -> RetrievalPayload:
        options = options or RetrievalOptions()
        start = time.perf_counter()

        response = self._search(params, ctx)
        results: list[Any] = list(response.results)

        if self.ranker is None:
            if options.latest_only or options.rank or options.deduplicate:
                logger.debug("No ranker configured, skipping provenance ranking")
        else:
            if options.latest_only:
                results = self.ranker.filter_by_latest_only(results)
            if options.rank:
                results = self.ranker.adjust_ranking(results)
                if options.deduplicate:
                    results = self.ranker.deduplicate_by_latest(results)

        if options.hierarchy.enabled:
            results = self.searcher.hierarchical_searcher.enrich_with_hierarchy(
                results, options.hierarchy, ctx
            )

        check_context(ctx, "context assembly")
        rendered = self.context_builder.build(results, options.context_format)
        context = self.context_builder.truncate_to_token_limit(rendered)
        truncated = context != rendered
        if truncated:
            logger.info(
                f"Context truncated to {self.context_builder.max_tokens} tokens "
                f"(estimated {self.context_builder.estimate_token_count(rendered)})"
            )

        return RetrievalPayload(
            results=results,
            context=context,
            token_count=self.context_builder.estimate_token_count(context),
            truncated=truncated,
            duration=time.perf_counter() - start,
        )

    def _search(self, params: SearchParams, ctx: RequestContext | None) -> SearchResponse:
        if params.product_id is not None:
            return self.searcher.search_by_product(params, ctx)
        if params.source_id is not None:
            return self.searcher.search_by_source(params, ctx)
        raise InvalidInputError("either product ID or source ID is required")
