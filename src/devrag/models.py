"""Core devrag data models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(slots=True)
class FileRecord:
    """A source file captured in one snapshot of a source."""

    id: UUID
    source_id: UUID
    snapshot_id: UUID
    path: str
    content_hash: str
    content_type: str = "code"
    language: str | None = None
    size: int = 0


@dataclass(slots=True)
class Chunk:
    """Contiguous slice of a source file at indexing time.

    ``level`` is the depth in the structural hierarchy (1 = file summary,
    2 = function/class, 3 = logic block). ``chunk_key`` follows the form
    ``{product}/{source}/{path}#L{start}-L{end}@{commit}``.
    """

    id: UUID
    file_id: UUID
    ordinal: int
    start_line: int
    end_line: int
    content: str
    content_hash: str = ""
    token_count: int | None = None
    type: str | None = None
    name: str | None = None
    parent_name: str | None = None
    signature: str | None = None
    doc_comment: str | None = None
    level: int = 0
    importance_score: float | None = None
    snapshot_id: UUID | None = None
    commit_hash: str | None = None
    author: str | None = None
    updated_at: datetime | None = None
    indexed_at: datetime | None = None
    file_version: str | None = None
    is_latest: bool = False
    chunk_key: str | None = None


@dataclass(slots=True)
class SearchFilter:
    """Optional store-side filters for a similarity search."""

    path_prefix: str | None = None
    content_type: str | None = None


SUMMARY_TYPES = ("file", "directory", "architecture")


@dataclass(slots=True)
class SummaryFilter:
    """Store-side filters for a summary search; empty ``summary_types`` matches all."""

    summary_types: tuple[str, ...] = ()
    path_prefix: str | None = None


@dataclass(slots=True)
class SummarySearchResult:
    """A file, directory or architecture summary matched by similarity."""

    summary_id: UUID
    snapshot_id: UUID
    summary_type: str
    target_path: str
    content: str
    score: float
    arch_type: str | None = None


@dataclass(slots=True)
class SearchResult:
    """A raw similarity hit."""

    chunk_id: UUID
    file_path: str
    start_line: int
    end_line: int
    content: str
    score: float
    prev_content: str | None = None
    next_content: str | None = None

    @property
    def relevance_score(self) -> float:
        return self.score


class ResultView:
    """Read-only access to the fields of a wrapped search result."""

    __slots__ = ()

    result: SearchResult

    @property
    def chunk_id(self) -> UUID:
        return self.result.chunk_id

    @property
    def file_path(self) -> str:
        return self.result.file_path

    @property
    def start_line(self) -> int:
        return self.result.start_line

    @property
    def end_line(self) -> int:
        return self.result.end_line

    @property
    def content(self) -> str:
        return self.result.content

    @property
    def score(self) -> float:
        return self.result.score

    @property
    def prev_content(self) -> str | None:
        return self.result.prev_content

    @property
    def next_content(self) -> str | None:
        return self.result.next_content

    @property
    def relevance_score(self) -> float:
        return self.result.relevance_score
