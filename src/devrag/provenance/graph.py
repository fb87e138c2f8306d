"""In-memory provenance index for versioned chunks."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Iterator
from uuid import UUID

from devrag.errors import InvalidInputError, NotFoundError

logger = logging.getLogger(__name__)

NIL_UUID = UUID(int=0)


@dataclass(frozen=True, slots=True)
class ChunkProvenance:
    """Traceability record for one indexed chunk version."""

    chunk_id: UUID
    snapshot_id: UUID
    file_path: str
    commit_hash: str
    chunk_key: str
    is_latest: bool
    indexed_at: datetime
    source_snapshot_id: UUID | None = None
    author: str | None = None
    updated_at: datetime | None = None
    file_version: str | None = None


@dataclass(slots=True)
class FileProvenanceHistory:
    """Every recorded chunk version for a single file path."""

    file_path: str
    versions: list[ChunkProvenance] = field(default_factory=list)


class _ReadWriteLock:
    """Many concurrent readers or a single writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writing:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writing or self._readers:
                self._cond.wait()
            self._writing = True
        try:
            yield
        finally:
            with self._cond:
                self._writing = False
                self._cond.notify_all()


def _is_absent(value: UUID | None) -> bool:
    return value is None or value == NIL_UUID


class ProvenanceGraph:
    """Maps chunk ids to provenance, and chunk keys / file paths to chunk ids.

    The graph is append-only: records are added once per chunk version and are
    never updated in place. The three indexes are kept mutually consistent under
    a reader/writer lock.
    """

    def __init__(self) -> None:
        self._lock = _ReadWriteLock()
        self._provenances: dict[UUID, ChunkProvenance] = {}
        self._key_to_chunks: dict[str, list[UUID]] = {}
        self._file_to_chunks: dict[str, list[UUID]] = {}

    def add(self, provenance: ChunkProvenance | None) -> None:
        if provenance is None:
            raise InvalidInputError("provenance cannot be None")
        if _is_absent(provenance.chunk_id):
            raise InvalidInputError("chunk ID cannot be empty")
        if _is_absent(provenance.snapshot_id):
            raise InvalidInputError("snapshot ID cannot be empty")
        if not provenance.file_path:
            raise InvalidInputError("file path cannot be empty")

        with self._lock.write():
            self._insert(provenance)

    def load(self, records: Iterable[ChunkProvenance]) -> int:
        """Add every record from ``records``; returns the number added."""
        added = 0
        for record in records:
            self.add(record)
            added += 1
        logger.debug(f"Loaded {added} provenance records")
        return added

    def _insert(self, provenance: ChunkProvenance) -> None:
        chunk_id = provenance.chunk_id
        if chunk_id in self._provenances:
            # The first record for a chunk id wins.
            logger.warning(f"Provenance for chunk {chunk_id} added more than once, ignoring")
            return
        self._provenances[chunk_id] = provenance
        if provenance.chunk_key:
            self._key_to_chunks.setdefault(provenance.chunk_key, []).append(chunk_id)
        self._file_to_chunks.setdefault(provenance.file_path, []).append(chunk_id)

    def get(self, chunk_id: UUID) -> ChunkProvenance:
        with self._lock.read():
            provenance = self._provenances.get(chunk_id)
        if provenance is None:
            raise NotFoundError(f"provenance not found for chunk ID: {chunk_id}")
        return provenance

    def get_by_chunk_key(self, chunk_key: str) -> list[UUID]:
        """Return every chunk id recorded under exactly ``chunk_key``."""
        with self._lock.read():
            chunk_ids = list(self._key_to_chunks.get(chunk_key, ()))
        if not chunk_ids:
            raise NotFoundError(f"no chunks found for chunk key: {chunk_key}")
        return chunk_ids

    def get_latest_by_chunk_key(self, chunk_key: str) -> ChunkProvenance:
        """Return the flagged-latest record for ``chunk_key``.

        Falls back to the most recently indexed record when none is flagged.
        """
        with self._lock.read():
            chunk_ids = self._key_to_chunks.get(chunk_key, ())
            candidates = [self._provenances[cid] for cid in chunk_ids if cid in self._provenances]

        if not candidates:
            raise NotFoundError(f"no chunks found for chunk key: {chunk_key}")

        for provenance in candidates:
            if provenance.is_latest:
                return provenance
        return max(candidates, key=lambda p: p.indexed_at)

    def get_file_history(self, file_path: str) -> FileProvenanceHistory:
        with self._lock.read():
            chunk_ids = self._file_to_chunks.get(file_path, ())
            versions = [self._provenances[cid] for cid in chunk_ids if cid in self._provenances]
        if not versions:
            raise NotFoundError(f"no chunks found for file path: {file_path}")
        return FileProvenanceHistory(file_path=file_path, versions=versions)

    def get_latest_versions(self) -> list[ChunkProvenance]:
        with self._lock.read():
            return [p for p in self._provenances.values() if p.is_latest]

    def is_latest(self, chunk_id: UUID) -> bool:
        return self.get(chunk_id).is_latest

    def trace_provenance(self, chunk_id: UUID) -> str:
        """Human-readable dump of a chunk's origin."""
        prov = self.get(chunk_id)
        lines = [
            f"Chunk ID: {prov.chunk_id}",
            f"File: {prov.file_path}",
            f"Git Commit: {prov.commit_hash}",
            f"Snapshot ID: {prov.snapshot_id}",
            f"Source Snapshot ID: {prov.source_snapshot_id}",
            f"Chunk Key: {prov.chunk_key}",
            f"Is Latest: {str(prov.is_latest).lower()}",
            f"Indexed At: {prov.indexed_at.isoformat()}",
        ]
        if prov.author is not None:
            lines.append(f"Author: {prov.author}")
        if prov.updated_at is not None:
            lines.append(f"Updated At: {prov.updated_at.isoformat()}")
        return "\n".join(lines) + "\n"

    def count(self) -> int:
        with self._lock.read():
            return len(self._provenances)

    def clear(self) -> None:
        with self._lock.write():
            self._provenances = {}
            self._key_to_chunks = {}
            self._file_to_chunks = {}
