"""Tests for scoped semantic search."""

from __future__ import annotations

from unittest.mock import MagicMock
from uuid import UUID, uuid4

import pytest

from conftest import FakeChunkStore, FakeEmbedder, make_chunk, make_result, make_summary
from devrag.cancellation import RequestContext
from devrag.errors import InvalidInputError, SearchCancelledError, UpstreamError
from devrag.search import (
    HierarchicalSearchOptions,
    HybridSearchParams,
    Searcher,
    SearchParams,
    SummarySearchParams,
)
from devrag.search.searcher import (
    DEFAULT_HYBRID_SUMMARY_LIMIT,
    DEFAULT_SEARCH_LIMIT,
    MAX_SEARCH_LIMIT,
    normalize_context_window,
    normalize_limit,
    normalize_optional,
)


class TestNormalization:
    """Tests for parameter normalisation helpers."""

    @pytest.mark.parametrize(
        "limit,expected",
        [(0, DEFAULT_SEARCH_LIMIT), (-5, DEFAULT_SEARCH_LIMIT), (7, 7), (500, MAX_SEARCH_LIMIT)],
    )
    def test_normalize_limit(self, limit: int, expected: int) -> None:
        assert normalize_limit(limit) == expected

    def test_normalize_context_window(self) -> None:
        assert normalize_context_window(0) == 0
        assert normalize_context_window(2) == 2
        assert normalize_context_window(10) == 3

    def test_negative_context_window(self) -> None:
        with pytest.raises(InvalidInputError, match="context window"):
            normalize_context_window(-1)

    def test_normalize_optional(self) -> None:
        assert normalize_optional(None) is None
        assert normalize_optional("   ") is None
        assert normalize_optional(" src/ ") == "src/"


class TestSearchByProduct:
    """Tests for Searcher.search_by_product."""

    def test_search_simple(self, fake_embedder: FakeEmbedder, fake_store: FakeChunkStore) -> None:
        """Embeds the trimmed query and returns store results."""
        fake_store.results = [make_result(0.9), make_result(0.8)]
        product_id = uuid4()

        response = Searcher(fake_embedder, fake_store).search_by_product(
            SearchParams(query="  parse config  ", product_id=product_id)
        )

        assert len(response.results) == 2
        assert response.duration >= 0.0
        assert fake_embedder.queries == ["parse config"]
        scope, scope_id, limit, filters = fake_store.calls[0]
        assert (scope, scope_id, limit) == ("product", product_id, DEFAULT_SEARCH_LIMIT)
        assert filters.path_prefix is None
        assert filters.content_type is None

    def test_filters_and_limit_forwarded(
        self, fake_embedder: FakeEmbedder, fake_store: FakeChunkStore
    ) -> None:
        params = SearchParams(
            query="q",
            product_id=uuid4(),
            limit=999,
            path_prefix=" internal/ ",
            content_type="code",
        )
        Searcher(fake_embedder, fake_store).search_by_product(params)

        _, _, limit, filters = fake_store.calls[0]
        assert limit == MAX_SEARCH_LIMIT
        assert filters.path_prefix == "internal/"
        assert filters.content_type == "code"

    @pytest.mark.parametrize("product_id", [None, UUID(int=0)])
    def test_missing_product(
        self, fake_embedder: FakeEmbedder, fake_store: FakeChunkStore, product_id
    ) -> None:
        with pytest.raises(InvalidInputError, match="product ID is required"):
            Searcher(fake_embedder, fake_store).search_by_product(
                SearchParams(query="q", product_id=product_id)
            )

    def test_empty_query(self, fake_embedder: FakeEmbedder, fake_store: FakeChunkStore) -> None:
        """A blank query is rejected before the embedder is called."""
        with pytest.raises(InvalidInputError, match="query is required"):
            Searcher(fake_embedder, fake_store).search_by_product(
                SearchParams(query="   ", product_id=uuid4())
            )
        assert fake_embedder.queries == []

    def test_negative_window_rejected(
        self, fake_embedder: FakeEmbedder, fake_store: FakeChunkStore
    ) -> None:
        with pytest.raises(InvalidInputError):
            Searcher(fake_embedder, fake_store).search_by_product(
                SearchParams(query="q", product_id=uuid4(), context_before=-1)
            )

    def test_embedding_failure(self, fake_store: FakeChunkStore) -> None:
        embedder = MagicMock()
        embedder.embed_query.side_effect = RuntimeError("model offline")

        with pytest.raises(UpstreamError, match="failed to build query embedding") as excinfo:
            Searcher(embedder, fake_store).search_by_product(
                SearchParams(query="q", product_id=uuid4())
            )
        assert isinstance(excinfo.value.__cause__, RuntimeError)

    def test_store_failure(self, fake_embedder: FakeEmbedder) -> None:
        store = MagicMock()
        store.search_by_product.side_effect = RuntimeError("db locked")

        with pytest.raises(UpstreamError, match="failed to execute product search"):
            Searcher(fake_embedder, store).search_by_product(
                SearchParams(query="q", product_id=uuid4())
            )

    def test_empty_results(self, fake_embedder: FakeEmbedder, fake_store: FakeChunkStore) -> None:
        response = Searcher(fake_embedder, fake_store).search_by_product(
            SearchParams(query="q", product_id=uuid4(), context_before=1)
        )
        assert response.results == []

    def test_cancelled_before_embedding(
        self, fake_embedder: FakeEmbedder, fake_store: FakeChunkStore
    ) -> None:
        ctx = RequestContext()
        ctx.cancel()
        with pytest.raises(SearchCancelledError):
            Searcher(fake_embedder, fake_store).search_by_product(
                SearchParams(query="q", product_id=uuid4()), ctx
            )
        assert fake_embedder.queries == []

    def test_expired_deadline(self, fake_embedder: FakeEmbedder, fake_store: FakeChunkStore) -> None:
        ctx = RequestContext.with_timeout(-1.0)
        with pytest.raises(SearchCancelledError, match="deadline exceeded"):
            Searcher(fake_embedder, fake_store).search_by_product(
                SearchParams(query="q", product_id=uuid4()), ctx
            )


class TestSearchBySource:
    def test_search_by_source(self, fake_embedder: FakeEmbedder, fake_store: FakeChunkStore) -> None:
        source_id = uuid4()
        fake_store.results = [make_result(0.7)]

        response = Searcher(fake_embedder, fake_store).search_by_source(
            SearchParams(query="q", source_id=source_id, limit=3)
        )

        assert len(response.results) == 1
        assert fake_store.calls[0][:3] == ("source", source_id, 3)

    def test_missing_source(self, fake_embedder: FakeEmbedder, fake_store: FakeChunkStore) -> None:
        with pytest.raises(InvalidInputError, match="source ID is required"):
            Searcher(fake_embedder, fake_store).search_by_source(SearchParams(query="q"))


class TestContextWindow:
    """Tests for sibling context population."""

    def test_prev_and_next_content(
        self, fake_embedder: FakeEmbedder, fake_store: FakeChunkStore
    ) -> None:
        file_id = uuid4()
        chunks = [make_chunk(i, f"c{i}", file_id=file_id) for i in range(5)]
        for chunk in chunks:
            fake_store.add_chunk(chunk)
        fake_store.results = [make_result(0.9, chunk_id=chunks[2].id)]

        response = Searcher(fake_embedder, fake_store).search_by_product(
            SearchParams(query="q", product_id=uuid4(), context_before=2, context_after=1)
        )

        result = response.results[0]
        assert result.prev_content == "c0\nc1"
        assert result.next_content == "c3"

    def test_window_clamped_at_file_start(
        self, fake_embedder: FakeEmbedder, fake_store: FakeChunkStore
    ) -> None:
        file_id = uuid4()
        first = fake_store.add_chunk(make_chunk(0, "first", file_id=file_id))
        fake_store.add_chunk(make_chunk(1, "second", file_id=file_id))
        fake_store.results = [make_result(chunk_id=first.id)]

        result = Searcher(fake_embedder, fake_store).search_by_product(
            SearchParams(query="q", product_id=uuid4(), context_before=3, context_after=3)
        ).results[0]

        assert result.prev_content is None
        assert result.next_content == "second"

    def test_missing_target_is_skipped(self, fake_embedder: FakeEmbedder, caplog) -> None:
        store = MagicMock()
        store.search_by_product.return_value = [make_result()]
        store.get_chunk_context.return_value = [make_chunk(0, "other")]

        result = Searcher(fake_embedder, store).search_by_product(
            SearchParams(query="q", product_id=uuid4(), context_after=1)
        ).results[0]

        assert result.prev_content is None
        assert result.next_content is None
        assert "missing in context result" in caplog.text

    def test_context_failure(self, fake_embedder: FakeEmbedder) -> None:
        store = MagicMock()
        store.search_by_product.return_value = [make_result()]
        store.get_chunk_context.side_effect = RuntimeError("gone")

        with pytest.raises(UpstreamError, match="failed to get chunk context"):
            Searcher(fake_embedder, store).search_by_product(
                SearchParams(query="q", product_id=uuid4(), context_before=1)
            )


class TestWithHierarchy:
    def test_search_by_product_with_hierarchy(
        self, fake_embedder: FakeEmbedder, fake_store: FakeChunkStore
    ) -> None:
        parent = make_chunk(0, "type Server struct{}", level=1)
        child = make_chunk(1, "func (s *Server) Start() {}", level=2)
        fake_store.link(parent, child)
        fake_store.results = [make_result(0.8, chunk_id=child.id)]

        response = Searcher(fake_embedder, fake_store).search_by_product_with_hierarchy(
            SearchParams(query="start server", product_id=uuid4()),
            HierarchicalSearchOptions(include_parent=True),
        )

        assert response.results[0].parent == parent
        assert response.results[0].chunk_id == child.id
        assert response.duration >= 0.0

    def test_separate_hierarchy_store(self, fake_embedder: FakeEmbedder, fake_store) -> None:
        hierarchy_store = MagicMock()
        hierarchy_store.get_parent_chunk.return_value = None
        fake_store.results = [make_result()]

        searcher = Searcher(fake_embedder, fake_store, hierarchy_store=hierarchy_store)
        searcher.search_by_source_with_hierarchy(
            SearchParams(query="q", source_id=uuid4()),
            HierarchicalSearchOptions(include_parent=True),
        )

        hierarchy_store.get_parent_chunk.assert_called_once()
        assert searcher.hierarchical_searcher.store is hierarchy_store


class TestSummarySearch:
    """Tests for Searcher.search_summaries."""

    def test_search_summaries(self, fake_embedder: FakeEmbedder, fake_store: FakeChunkStore) -> None:
        fake_store.summaries = [make_summary(0.9, summary_type="directory", target_path="pkg/")]
        snapshot_id = uuid4()

        response = Searcher(fake_embedder, fake_store).search_summaries(
            SummarySearchParams(
                query=" cart module ",
                snapshot_id=snapshot_id,
                summary_types=["directory", " file "],
                path_prefix=" pkg/ ",
            )
        )

        assert [s.target_path for s in response.results] == ["pkg/"]
        assert fake_embedder.queries == ["cart module"]
        scope, called_id, limit, filters = fake_store.calls[0]
        assert (scope, called_id, limit) == ("summaries:snapshot", snapshot_id, DEFAULT_SEARCH_LIMIT)
        assert filters.summary_types == ("directory", "file")
        assert filters.path_prefix == "pkg/"

    def test_snapshot_required(self, fake_embedder: FakeEmbedder, fake_store: FakeChunkStore) -> None:
        with pytest.raises(InvalidInputError, match="snapshot ID is required"):
            Searcher(fake_embedder, fake_store).search_summaries(
                SummarySearchParams(query="q", snapshot_id=UUID(int=0))
            )

    def test_unknown_summary_type(self, fake_embedder: FakeEmbedder, fake_store: FakeChunkStore) -> None:
        with pytest.raises(InvalidInputError, match="unknown summary type: module"):
            Searcher(fake_embedder, fake_store).search_summaries(
                SummarySearchParams(query="q", snapshot_id=uuid4(), summary_types=["module"])
            )

    def test_store_without_summaries(self, fake_embedder: FakeEmbedder) -> None:
        """A similarity-only store cannot serve summary search."""
        store = MagicMock(spec=["search_by_product", "search_by_source", "get_chunk_context"])
        searcher = Searcher(fake_embedder, store, hierarchy_store=MagicMock())

        assert searcher.summary_store is None
        with pytest.raises(InvalidInputError, match="requires a summary store"):
            searcher.search_summaries(SummarySearchParams(query="q", snapshot_id=uuid4()))


class TestHybridSearch:
    """Tests for Searcher.hybrid_search."""

    def test_product_scope(self, fake_embedder: FakeEmbedder, fake_store: FakeChunkStore) -> None:
        """One embedding feeds both searches; summaries default to five."""
        fake_store.results = [make_result(0.8)]
        fake_store.summaries = [make_summary(0.7) for _ in range(8)]
        product_id = uuid4()

        response = Searcher(fake_embedder, fake_store).hybrid_search(
            HybridSearchParams(query="checkout", product_id=product_id, summary_limit=0)
        )

        assert len(fake_embedder.queries) == 1
        assert len(response.chunks) == 1
        assert len(response.summaries) == DEFAULT_HYBRID_SUMMARY_LIMIT
        assert [call[0] for call in fake_store.calls] == ["product", "summaries:product"]
        assert fake_store.calls[1][2] == DEFAULT_HYBRID_SUMMARY_LIMIT

    def test_snapshot_scope(self, fake_embedder: FakeEmbedder, fake_store: FakeChunkStore) -> None:
        fake_store.results = [make_result()]
        fake_store.summaries = [make_summary(summary_type="architecture", target_path="")]
        snapshot_id = uuid4()

        response = Searcher(fake_embedder, fake_store).hybrid_search(
            HybridSearchParams(
                query="overview",
                snapshot_id=snapshot_id,
                path_prefix="pkg/",
                summary_types=["architecture"],
            )
        )

        assert response.summaries[0].summary_type == "architecture"
        chunk_call, summary_call = fake_store.calls
        assert chunk_call[:2] == ("snapshot", snapshot_id)
        assert chunk_call[3].path_prefix == "pkg/"
        assert summary_call[:2] == ("summaries:snapshot", snapshot_id)
        assert summary_call[3].summary_types == ("architecture",)
        assert summary_call[3].path_prefix is None

    def test_scopes_are_exclusive(self, fake_embedder: FakeEmbedder, fake_store: FakeChunkStore) -> None:
        searcher = Searcher(fake_embedder, fake_store)
        with pytest.raises(InvalidInputError, match="mutually exclusive"):
            searcher.hybrid_search(
                HybridSearchParams(query="q", product_id=uuid4(), snapshot_id=uuid4())
            )
        with pytest.raises(InvalidInputError, match="either product ID or snapshot ID"):
            searcher.hybrid_search(HybridSearchParams(query="q"))

    def test_summary_failure(self, fake_embedder: FakeEmbedder, fake_store: FakeChunkStore) -> None:
        summary_store = MagicMock()
        summary_store.search_summaries_by_product.side_effect = RuntimeError("db gone")

        searcher = Searcher(fake_embedder, fake_store, summary_store=summary_store)
        with pytest.raises(UpstreamError, match="summary search failed"):
            searcher.hybrid_search(HybridSearchParams(query="q", product_id=uuid4()))

    def test_cancelled_between_searches(
        self, fake_embedder: FakeEmbedder, fake_store: FakeChunkStore
    ) -> None:
        ctx = RequestContext()
        fake_store.search_by_product = MagicMock(side_effect=lambda *args: ctx.cancel() or [])

        with pytest.raises(SearchCancelledError):
            Searcher(fake_embedder, fake_store).hybrid_search(
                HybridSearchParams(query="q", product_id=uuid4()), ctx
            )
        assert not any(call[0].startswith("summaries") for call in fake_store.calls)
