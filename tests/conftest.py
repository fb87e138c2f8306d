"""Shared fixtures and fakes for the devrag test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import numpy as np
import pytest

from devrag.models import Chunk, SearchFilter, SearchResult, SummaryFilter, SummarySearchResult
from devrag.provenance.graph import ChunkProvenance

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_chunk(
    ordinal: int = 0,
    content: str = "chunk",
    *,
    file_id: UUID | None = None,
    chunk_id: UUID | None = None,
    level: int = 2,
    type: str | None = "function",
    name: str | None = None,
) -> Chunk:
    return Chunk(
        id=chunk_id or uuid4(),
        file_id=file_id or uuid4(),
        ordinal=ordinal,
        start_line=ordinal * 10 + 1,
        end_line=ordinal * 10 + 10,
        content=content,
        level=level,
        type=type,
        name=name,
    )


def make_result(
    score: float = 0.5,
    *,
    chunk_id: UUID | None = None,
    path: str = "src/main.go",
    content: str = "func main() {}",
) -> SearchResult:
    return SearchResult(
        chunk_id=chunk_id or uuid4(),
        file_path=path,
        start_line=1,
        end_line=10,
        content=content,
        score=score,
    )


def make_provenance(
    chunk_id: UUID | None = None,
    *,
    chunk_key: str = "p/s/main.go#L1-L10@abc",
    is_latest: bool = True,
    file_path: str = "main.go",
    commit_hash: str = "abc",
    minutes: int = 0,
    author: str | None = None,
) -> ChunkProvenance:
    return ChunkProvenance(
        chunk_id=chunk_id or uuid4(),
        snapshot_id=uuid4(),
        file_path=file_path,
        commit_hash=commit_hash,
        chunk_key=chunk_key,
        is_latest=is_latest,
        indexed_at=BASE_TIME + timedelta(minutes=minutes),
        author=author,
    )


class FakeChunkStore:
    """In-memory stand-in for the similarity and hierarchy stores."""

    def __init__(self) -> None:
        self.results: list[SearchResult] = []
        self.summaries: list[SummarySearchResult] = []
        self.chunks: dict[UUID, Chunk] = {}
        self.parents: dict[UUID, UUID] = {}
        self.children: dict[UUID, list[UUID]] = {}
        self.calls: list[tuple] = []

    def add_chunk(self, chunk: Chunk) -> Chunk:
        self.chunks[chunk.id] = chunk
        return chunk

    def link(self, parent: Chunk, child: Chunk) -> None:
        self.add_chunk(parent)
        self.add_chunk(child)
        self.parents[child.id] = parent.id
        self.children.setdefault(parent.id, []).append(child.id)

    def search_by_product(
        self, product_id: UUID, vector: np.ndarray, limit: int, filters: SearchFilter
    ) -> list[SearchResult]:
        self.calls.append(("product", product_id, limit, filters))
        return list(self.results[:limit])

    def search_by_source(
        self, source_id: UUID, vector: np.ndarray, limit: int, filters: SearchFilter
    ) -> list[SearchResult]:
        self.calls.append(("source", source_id, limit, filters))
        return list(self.results[:limit])

    def search_by_snapshot(
        self, snapshot_id: UUID, vector: np.ndarray, limit: int, filters: SearchFilter
    ) -> list[SearchResult]:
        self.calls.append(("snapshot", snapshot_id, limit, filters))
        return list(self.results[:limit])

    def search_summaries_by_product(
        self, product_id: UUID, vector: np.ndarray, limit: int, filters: SummaryFilter
    ) -> list[SummarySearchResult]:
        self.calls.append(("summaries:product", product_id, limit, filters))
        return list(self.summaries[:limit])

    def search_summaries_by_snapshot(
        self, snapshot_id: UUID, vector: np.ndarray, limit: int, filters: SummaryFilter
    ) -> list[SummarySearchResult]:
        self.calls.append(("summaries:snapshot", snapshot_id, limit, filters))
        return list(self.summaries[:limit])

    def get_chunk_context(self, chunk_id: UUID, before: int, after: int) -> list[Chunk]:
        target = self.chunks[chunk_id]
        low = max(target.ordinal - before, 0)
        high = target.ordinal + after
        return [
            c
            for c in self.chunks.values()
            if c.file_id == target.file_id and low <= c.ordinal <= high
        ]

    def get_parent_chunk(self, chunk_id: UUID) -> Chunk | None:
        parent_id = self.parents.get(chunk_id)
        return self.chunks[parent_id] if parent_id is not None else None

    def get_child_chunks(self, chunk_id: UUID) -> list[Chunk]:
        return [self.chunks[cid] for cid in self.children.get(chunk_id, [])]

    def get_chunk_tree(self, root_id: UUID, max_depth: int) -> list[Chunk]:
        tree: list[Chunk] = []

        def walk(chunk_id: UUID, depth: int) -> None:
            if depth > max_depth:
                return
            tree.append(self.chunks[chunk_id])
            for child_id in self.children.get(chunk_id, []):
                walk(child_id, depth + 1)

        walk(root_id, 1)
        return tree


class FakeEmbedder:
    def __init__(self) -> None:
        self.queries: list[str] = []

    def embed_query(self, text: str) -> np.ndarray:
        self.queries.append(text)
        return np.array([0.1, 0.2, 0.3], dtype="float32")


@pytest.fixture
def fake_store() -> FakeChunkStore:
    return FakeChunkStore()


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


def make_summary(
    score: float = 0.5,
    *,
    summary_type: str = "file",
    target_path: str = "src/main.go",
    content: str = "Entry point of the service.",
) -> SummarySearchResult:
    return SummarySearchResult(
        summary_id=uuid4(),
        snapshot_id=uuid4(),
        summary_type=summary_type,
        target_path=target_path,
        content=content,
        score=score,
    )
