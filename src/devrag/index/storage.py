"""SQLite chunk store with numpy similarity search and a chunk hierarchy."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Sequence
from uuid import UUID, uuid4

import numpy as np

from devrag.errors import InvalidInputError, NotFoundError
from devrag.models import (
    SUMMARY_TYPES,
    Chunk,
    FileRecord,
    SearchFilter,
    SearchResult,
    SummaryFilter,
    SummarySearchResult,
)
from devrag.provenance.graph import ChunkProvenance
from devrag.provenance.keys import extract_base_chunk_key

logger = logging.getLogger(__name__)

_CHUNK_FIELDS = (
    "id",
    "file_id",
    "ordinal",
    "start_line",
    "end_line",
    "content",
    "content_hash",
    "token_count",
    "chunk_type",
    "chunk_name",
    "parent_name",
    "signature",
    "doc_comment",
    "level",
    "importance_score",
    "snapshot_id",
    "commit_hash",
    "author",
    "updated_at",
    "indexed_at",
    "file_version",
    "is_latest",
    "chunk_key",
)
_CHUNK_COLUMNS = ", ".join(f"c.{name}" for name in _CHUNK_FIELDS)


def _uuid(value: str | None) -> UUID | None:
    return UUID(value) if value else None


def _text(value: UUID | None) -> str | None:
    return str(value) if value is not None else None


def _timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=UUID(row["id"]),
        file_id=UUID(row["file_id"]),
        ordinal=row["ordinal"],
        start_line=row["start_line"],
        end_line=row["end_line"],
        content=row["content"],
        content_hash=row["content_hash"] or "",
        token_count=row["token_count"],
        type=row["chunk_type"],
        name=row["chunk_name"],
        parent_name=row["parent_name"],
        signature=row["signature"],
        doc_comment=row["doc_comment"],
        level=row["level"],
        importance_score=row["importance_score"],
        snapshot_id=_uuid(row["snapshot_id"]),
        commit_hash=row["commit_hash"],
        author=row["author"],
        updated_at=_datetime(row["updated_at"]),
        indexed_at=_datetime(row["indexed_at"]),
        file_version=row["file_version"],
        is_latest=bool(row["is_latest"]),
        chunk_key=row["chunk_key"],
    )


class SQLiteChunkStore:
    """Persistence layer for products, sources, files, chunks and their embeddings.

    Implements both the similarity-store and the chunk-hierarchy contracts used
    by :class:`devrag.search.Searcher`. Vectors are stored as float32 blobs and
    scored with a dot product, so they are expected to be normalised.
    """

    def __init__(self, db_path: Path, *, dimension: int | None = None) -> None:
        self.db_path = Path(db_path)
        self.dimension = dimension
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS products (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sources (
                    id TEXT PRIMARY KEY,
                    product_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    source_type TEXT NOT NULL DEFAULT 'git',
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY(product_id) REFERENCES products(id) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS files (
                    id TEXT PRIMARY KEY,
                    source_id TEXT NOT NULL,
                    snapshot_id TEXT NOT NULL,
                    path TEXT NOT NULL,
                    content_hash TEXT NOT NULL,
                    content_type TEXT NOT NULL DEFAULT 'code',
                    language TEXT,
                    size INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(snapshot_id, path),
                    FOREIGN KEY(source_id) REFERENCES sources(id) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chunks (
                    id TEXT PRIMARY KEY,
                    file_id TEXT NOT NULL,
                    ordinal INTEGER NOT NULL,
                    start_line INTEGER NOT NULL,
                    end_line INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    content_hash TEXT,
                    token_count INTEGER,
                    chunk_type TEXT,
                    chunk_name TEXT,
                    parent_name TEXT,
                    signature TEXT,
                    doc_comment TEXT,
                    level INTEGER NOT NULL DEFAULT 0,
                    importance_score REAL,
                    snapshot_id TEXT,
                    commit_hash TEXT,
                    author TEXT,
                    updated_at TEXT,
                    indexed_at TEXT,
                    file_version TEXT,
                    is_latest INTEGER NOT NULL DEFAULT 1,
                    chunk_key TEXT,
                    base_chunk_key TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY(file_id) REFERENCES files(id) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_chunks_file_ordinal ON chunks(file_id, ordinal)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_chunks_base_key ON chunks(base_chunk_key)"
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chunk_hierarchy (
                    parent_id TEXT NOT NULL,
                    child_id TEXT NOT NULL,
                    ordinal INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY(parent_id, child_id),
                    FOREIGN KEY(parent_id) REFERENCES chunks(id) ON DELETE CASCADE,
                    FOREIGN KEY(child_id) REFERENCES chunks(id) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_chunk_hierarchy_child ON chunk_hierarchy(child_id)"
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS embeddings (
                    chunk_id TEXT PRIMARY KEY,
                    vector BLOB NOT NULL,
                    FOREIGN KEY(chunk_id) REFERENCES chunks(id) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS summaries (
                    id TEXT PRIMARY KEY,
                    source_id TEXT NOT NULL,
                    snapshot_id TEXT NOT NULL,
                    summary_type TEXT NOT NULL
                        CHECK (summary_type IN ('file', 'directory', 'architecture')),
                    target_path TEXT NOT NULL DEFAULT '',
                    arch_type TEXT,
                    content TEXT NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY(source_id) REFERENCES sources(id) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_summaries_snapshot ON summaries(snapshot_id)"
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS summary_embeddings (
                    summary_id TEXT PRIMARY KEY,
                    vector BLOB NOT NULL,
                    FOREIGN KEY(summary_id) REFERENCES summaries(id) ON DELETE CASCADE
                )
                """
            )

    # -- write side -------------------------------------------------------

    def add_product(self, name: str, product_id: UUID | None = None) -> UUID:
        product_id = product_id or uuid4()
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO products(id, name) VALUES (?, ?)",
                (str(product_id), name),
            )
        return product_id

    def add_source(
        self,
        product_id: UUID,
        name: str,
        *,
        source_type: str = "git",
        source_id: UUID | None = None,
    ) -> UUID:
        source_id = source_id or uuid4()
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO sources(id, product_id, name, source_type) VALUES (?, ?, ?, ?)",
                (str(source_id), str(product_id), name, source_type),
            )
        return source_id

    def upsert_file(self, record: FileRecord) -> tuple[UUID, str]:
        """Register a file for a snapshot.

        Returns:
            (file_id, status) where status is 'inserted', 'updated', or 'skipped'.
            A file whose content hash is unchanged is skipped and keeps its id.
        """
        with self.transaction() as conn:
            existing = conn.execute(
                "SELECT id, content_hash FROM files WHERE snapshot_id = ? AND path = ?",
                (str(record.snapshot_id), record.path),
            ).fetchone()

            if existing and existing["content_hash"] == record.content_hash:
                return UUID(existing["id"]), "skipped"

            if existing:
                conn.execute("DELETE FROM files WHERE id = ?", (existing["id"],))

            conn.execute(
                """
                INSERT INTO files(id, source_id, snapshot_id, path, content_hash,
                                  content_type, language, size)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(record.id),
                    str(record.source_id),
                    str(record.snapshot_id),
                    record.path,
                    record.content_hash,
                    record.content_type,
                    record.language,
                    record.size,
                ),
            )
        return record.id, "updated" if existing else "inserted"

    def insert_chunks(
        self,
        file_id: UUID,
        chunks: Sequence[Chunk],
        embeddings: np.ndarray,
    ) -> None:
        """Insert a batch of chunks for a file together with their embeddings.

        A chunk flagged latest clears the flag on every other version that
        shares its base chunk key.
        """
        if embeddings.shape[0] != len(chunks):
            raise ValueError("Embeddings and chunks length mismatch")

        indexed_at = datetime.now(timezone.utc)
        with self.transaction() as conn:
            for chunk, vector in zip(chunks, embeddings):
                base_key = extract_base_chunk_key(chunk.chunk_key) if chunk.chunk_key else None
                if chunk.is_latest and base_key:
                    conn.execute(
                        "UPDATE chunks SET is_latest = 0 WHERE base_chunk_key = ?",
                        (base_key,),
                    )
                conn.execute(
                    f"""
                    INSERT INTO chunks({", ".join(_CHUNK_FIELDS)}, base_chunk_key)
                    VALUES ({", ".join("?" * (len(_CHUNK_FIELDS) + 1))})
                    """,
                    (
                        str(chunk.id),
                        str(file_id),
                        chunk.ordinal,
                        chunk.start_line,
                        chunk.end_line,
                        chunk.content,
                        chunk.content_hash,
                        chunk.token_count,
                        chunk.type,
                        chunk.name,
                        chunk.parent_name,
                        chunk.signature,
                        chunk.doc_comment,
                        chunk.level,
                        chunk.importance_score,
                        _text(chunk.snapshot_id),
                        chunk.commit_hash,
                        chunk.author,
                        _timestamp(chunk.updated_at),
                        _timestamp(chunk.indexed_at or indexed_at),
                        chunk.file_version,
                        int(chunk.is_latest),
                        chunk.chunk_key,
                        base_key,
                    ),
                )
                conn.execute(
                    "INSERT INTO embeddings(chunk_id, vector) VALUES (?, ?)",
                    (
                        str(chunk.id),
                        sqlite3.Binary(np.asarray(vector, dtype="float32").tobytes()),
                    ),
                )
        logger.debug(f"Inserted {len(chunks)} chunks for file {file_id}")

    def add_chunk_relation(self, parent_id: UUID, child_id: UUID, ordinal: int = 0) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO chunk_hierarchy(parent_id, child_id, ordinal) VALUES (?, ?, ?)",
                (str(parent_id), str(child_id), ordinal),
            )

    def add_summary(
        self,
        source_id: UUID,
        snapshot_id: UUID,
        summary_type: str,
        content: str,
        vector: np.ndarray,
        *,
        target_path: str = "",
        arch_type: str | None = None,
        summary_id: UUID | None = None,
    ) -> UUID:
        """Store a generated summary and its embedding.

        Architecture summaries have no target path; ``arch_type`` names the
        aspect they describe (overview, tech_stack, ...).
        """
        if summary_type not in SUMMARY_TYPES:
            raise InvalidInputError(f"unknown summary type: {summary_type}")

        summary_id = summary_id or uuid4()
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO summaries(id, source_id, snapshot_id, summary_type,
                                      target_path, arch_type, content)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(summary_id),
                    str(source_id),
                    str(snapshot_id),
                    summary_type,
                    target_path,
                    arch_type,
                    content,
                ),
            )
            conn.execute(
                "INSERT INTO summary_embeddings(summary_id, vector) VALUES (?, ?)",
                (
                    str(summary_id),
                    sqlite3.Binary(np.asarray(vector, dtype="float32").tobytes()),
                ),
            )
        logger.debug(f"Stored {summary_type} summary {summary_id} for snapshot {snapshot_id}")
        return summary_id

    # -- similarity search -------------------------------------------------

    def search_by_product(
        self,
        product_id: UUID,
        vector: np.ndarray,
        limit: int,
        filters: SearchFilter,
    ) -> List[SearchResult]:
        return self._search("s.product_id = ?", str(product_id), vector, limit, filters)

    def search_by_source(
        self,
        source_id: UUID,
        vector: np.ndarray,
        limit: int,
        filters: SearchFilter,
    ) -> List[SearchResult]:
        return self._search("f.source_id = ?", str(source_id), vector, limit, filters)

    def search_by_snapshot(
        self,
        snapshot_id: UUID,
        vector: np.ndarray,
        limit: int,
        filters: SearchFilter,
    ) -> List[SearchResult]:
        return self._search("f.snapshot_id = ?", str(snapshot_id), vector, limit, filters)

    def _search(
        self,
        scope_clause: str,
        scope_id: str,
        vector: np.ndarray,
        limit: int,
        filters: SearchFilter,
    ) -> List[SearchResult]:
        clauses = [scope_clause]
        params: list[str] = [scope_id]
        if filters.path_prefix:
            # Case-sensitive and literal, unlike LIKE.
            clauses.append("substr(f.path, 1, length(?)) = ?")
            params.extend([filters.path_prefix, filters.path_prefix])
        if filters.content_type:
            clauses.append("f.content_type = ?")
            params.append(filters.content_type)

        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT
                    c.id AS chunk_id,
                    f.path AS path,
                    c.start_line AS start_line,
                    c.end_line AS end_line,
                    c.content AS content,
                    e.vector AS vector
                FROM embeddings e
                JOIN chunks c ON c.id = e.chunk_id
                JOIN files f ON f.id = c.file_id
                JOIN sources s ON s.id = f.source_id
                WHERE {" AND ".join(clauses)}
                """,
                params,
            ).fetchall()

        return [
            SearchResult(
                chunk_id=UUID(row["chunk_id"]),
                file_path=row["path"],
                start_line=row["start_line"],
                end_line=row["end_line"],
                content=row["content"],
                score=score,
            )
            for row, score in self._top_k(rows, vector, limit)
        ]

    def _top_k(
        self, rows: Sequence[sqlite3.Row], vector: np.ndarray, limit: int
    ) -> list[tuple[sqlite3.Row, float]]:
        """Score ``rows`` by dot product with ``vector``; best ``limit`` first."""
        if not rows or limit <= 0:
            return []

        query = np.asarray(vector, dtype="float32")
        if self.dimension is not None and query.shape[-1] != self.dimension:
            raise ValueError(
                f"Query vector has dimension {query.shape[-1]}, expected {self.dimension}"
            )
        matrix = np.vstack([np.frombuffer(row["vector"], dtype="float32") for row in rows])
        scores = matrix @ query

        if limit < len(scores):
            top_indices = np.argpartition(scores, -limit)[-limit:]
            top_indices = top_indices[np.argsort(scores[top_indices])[::-1]]
        else:
            top_indices = np.argsort(scores)[::-1]

        return [(rows[idx], float(scores[idx])) for idx in top_indices]

    # -- summary search ----------------------------------------------------

    def search_summaries_by_snapshot(
        self,
        snapshot_id: UUID,
        vector: np.ndarray,
        limit: int,
        filters: SummaryFilter,
    ) -> List[SummarySearchResult]:
        return self._search_summaries(
            "sm.snapshot_id = ?", str(snapshot_id), vector, limit, filters
        )

    def search_summaries_by_product(
        self,
        product_id: UUID,
        vector: np.ndarray,
        limit: int,
        filters: SummaryFilter,
    ) -> List[SummarySearchResult]:
        """Search the newest summarised snapshot of every source in the product."""
        scope = """
            s.product_id = ? AND sm.snapshot_id IN (
                SELECT latest.snapshot_id FROM summaries latest
                WHERE latest.rowid IN (SELECT MAX(rowid) FROM summaries GROUP BY source_id)
            )
        """
        return self._search_summaries(scope, str(product_id), vector, limit, filters)

    def _search_summaries(
        self,
        scope_clause: str,
        scope_id: str,
        vector: np.ndarray,
        limit: int,
        filters: SummaryFilter,
    ) -> List[SummarySearchResult]:
        clauses = [scope_clause]
        params: list[str] = [scope_id]
        if filters.summary_types:
            clauses.append(f"sm.summary_type IN ({', '.join('?' * len(filters.summary_types))})")
            params.extend(filters.summary_types)
        if filters.path_prefix:
            clauses.append("substr(sm.target_path, 1, length(?)) = ?")
            params.extend([filters.path_prefix, filters.path_prefix])

        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT
                    sm.id AS summary_id,
                    sm.snapshot_id AS snapshot_id,
                    sm.summary_type AS summary_type,
                    sm.target_path AS target_path,
                    sm.arch_type AS arch_type,
                    sm.content AS content,
                    se.vector AS vector
                FROM summary_embeddings se
                JOIN summaries sm ON sm.id = se.summary_id
                JOIN sources s ON s.id = sm.source_id
                WHERE {" AND ".join(clauses)}
                """,
                params,
            ).fetchall()

        return [
            SummarySearchResult(
                summary_id=UUID(row["summary_id"]),
                snapshot_id=UUID(row["snapshot_id"]),
                summary_type=row["summary_type"],
                target_path=row["target_path"],
                content=row["content"],
                score=score,
                arch_type=row["arch_type"],
            )
            for row, score in self._top_k(rows, vector, limit)
        ]

    # -- chunk lookups -----------------------------------------------------

    def get_chunk(self, chunk_id: UUID) -> Chunk:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM chunks c WHERE c.id = ?",
                (str(chunk_id),),
            ).fetchone()
        if row is None:
            raise NotFoundError(f"chunk not found: {chunk_id}")
        return _row_to_chunk(row)

    def get_chunk_context(self, chunk_id: UUID, before: int, after: int) -> List[Chunk]:
        """Chunks of the same file with ordinals in ``[ordinal-before, ordinal+after]``."""
        target = self.get_chunk(chunk_id)
        low = max(target.ordinal - before, 0)
        high = target.ordinal + after
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT {_CHUNK_COLUMNS} FROM chunks c
                WHERE c.file_id = ? AND c.ordinal BETWEEN ? AND ?
                ORDER BY c.ordinal
                """,
                (str(target.file_id), low, high),
            ).fetchall()
        return [_row_to_chunk(row) for row in rows]

    def get_parent_chunk(self, chunk_id: UUID) -> Chunk | None:
        with self._lock:
            row = self._conn.execute(
                f"""
                SELECT {_CHUNK_COLUMNS} FROM chunk_hierarchy h
                JOIN chunks c ON c.id = h.parent_id
                WHERE h.child_id = ?
                LIMIT 1
                """,
                (str(chunk_id),),
            ).fetchone()
        return _row_to_chunk(row) if row is not None else None

    def get_child_chunks(self, chunk_id: UUID) -> List[Chunk]:
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT {_CHUNK_COLUMNS} FROM chunk_hierarchy h
                JOIN chunks c ON c.id = h.child_id
                WHERE h.parent_id = ?
                ORDER BY h.ordinal
                """,
                (str(chunk_id),),
            ).fetchall()
        return [_row_to_chunk(row) for row in rows]

    def get_chunk_tree(self, root_id: UUID, max_depth: int) -> List[Chunk]:
        """Depth-first pre-order walk from ``root_id``; the root is depth 1."""
        tree: List[Chunk] = []
        visited: set[UUID] = set()

        def traverse(chunk_id: UUID, depth: int) -> None:
            if depth > max_depth or chunk_id in visited:
                return
            visited.add(chunk_id)
            tree.append(self.get_chunk(chunk_id))
            for child in self.get_child_chunks(chunk_id):
                traverse(child.id, depth + 1)

        traverse(root_id, 1)
        return tree

    # -- provenance --------------------------------------------------------

    def iter_provenance(self) -> Iterator[ChunkProvenance]:
        """Yield one provenance record per stored chunk, for ``ProvenanceGraph.load``."""
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT
                    c.id AS chunk_id,
                    COALESCE(c.snapshot_id, f.snapshot_id) AS snapshot_id,
                    f.path AS path,
                    c.commit_hash AS commit_hash,
                    c.chunk_key AS chunk_key,
                    c.is_latest AS is_latest,
                    COALESCE(c.indexed_at, c.created_at) AS indexed_at,
                    c.author AS author,
                    c.updated_at AS updated_at,
                    c.file_version AS file_version,
                    f.snapshot_id AS source_snapshot_id
                FROM chunks c
                JOIN files f ON f.id = c.file_id
                ORDER BY c.rowid
                """
            ).fetchall()

        for row in rows:
            yield ChunkProvenance(
                chunk_id=UUID(row["chunk_id"]),
                snapshot_id=UUID(row["snapshot_id"]),
                file_path=row["path"],
                commit_hash=row["commit_hash"] or "",
                chunk_key=row["chunk_key"] or "",
                is_latest=bool(row["is_latest"]),
                indexed_at=_datetime(row["indexed_at"]),
                source_snapshot_id=UUID(row["source_snapshot_id"]),
                author=row["author"],
                updated_at=_datetime(row["updated_at"]),
                file_version=row["file_version"],
            )
