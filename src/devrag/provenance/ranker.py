"""Provenance-aware score adjustment, filtering and deduplication."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence
from uuid import UUID

from devrag.errors import NotFoundError
from devrag.models import ResultView, SearchResult
from devrag.provenance.graph import ChunkProvenance, ProvenanceGraph
from devrag.provenance.keys import extract_base_chunk_key

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RankingConfig:
    """Score adjustments applied by :class:`Ranker`.

    ``latest_version_boost`` is added to chunks flagged latest,
    ``recency_decay_factor`` is subtracted from stale chunks, and results whose
    adjusted score falls below ``min_score`` are dropped when it is positive.
    """

    latest_version_boost: float = 0.15
    recency_decay_factor: float = 0.10
    min_score: float = 0.0


@dataclass(slots=True)
class RankedResult(ResultView):
    """A search result with its provenance-adjusted score."""

    result: SearchResult
    original_score: float
    adjusted_score: float
    is_latest: bool = False
    boost_applied: float = 0.0

    @property
    def relevance_score(self) -> float:
        return self.adjusted_score


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(value, high))


def _by_adjusted_score(results: list[RankedResult]) -> list[RankedResult]:
    return sorted(results, key=lambda r: r.adjusted_score, reverse=True)


class Ranker:
    """Turns raw similarity scores into provenance-aware scores."""

    def __init__(self, graph: ProvenanceGraph, config: RankingConfig | None = None) -> None:
        self.graph = graph
        self.config = config or RankingConfig()

    def _lookup(self, chunk_id: UUID) -> ChunkProvenance | None:
        try:
            return self.graph.get(chunk_id)
        except NotFoundError:
            return None

    def adjust_ranking(self, results: Sequence[SearchResult]) -> list[RankedResult]:
        """Boost latest versions, decay stale ones, sort and apply ``min_score``."""
        if not results:
            return []

        ranked: list[RankedResult] = []
        for result in results:
            provenance = self._lookup(result.chunk_id)
            if provenance is None:
                ranked.append(
                    RankedResult(
                        result=result,
                        original_score=result.score,
                        adjusted_score=result.score,
                    )
                )
                continue

            if provenance.is_latest:
                boost = self.config.latest_version_boost
            else:
                boost = -self.config.recency_decay_factor

            ranked.append(
                RankedResult(
                    result=result,
                    original_score=result.score,
                    adjusted_score=_clamp(result.score + boost),
                    is_latest=provenance.is_latest,
                    boost_applied=boost,
                )
            )

        ranked = _by_adjusted_score(ranked)

        if self.config.min_score > 0.0:
            before = len(ranked)
            ranked = [r for r in ranked if r.adjusted_score >= self.config.min_score]
            if len(ranked) < before:
                logger.debug(
                    f"Min score {self.config.min_score:.2f}: {before} -> {len(ranked)} results"
                )

        return ranked

    def deduplicate_by_latest(self, results: Sequence[RankedResult]) -> list[RankedResult]:
        """Keep one result per logical region (base chunk key).

        Within a group the flagged-latest member wins, otherwise the highest
        adjusted score. Results without provenance cannot be grouped and are
        kept as they are.
        """
        if not results:
            return []

        groups: dict[str, list[RankedResult]] = {}
        ungrouped: list[RankedResult] = []
        for result in results:
            provenance = self._lookup(result.chunk_id)
            if provenance is None:
                ungrouped.append(result)
                continue
            base_key = extract_base_chunk_key(provenance.chunk_key)
            groups.setdefault(base_key, []).append(result)

        deduplicated: list[RankedResult] = list(ungrouped)
        for members in groups.values():
            if len(members) == 1:
                deduplicated.append(members[0])
                continue
            latest = next((m for m in members if m.is_latest), None)
            if latest is None:
                latest = max(members, key=lambda m: m.adjusted_score)
            deduplicated.append(latest)

        if len(deduplicated) < len(results):
            logger.debug(f"Deduplicated {len(results)} -> {len(deduplicated)} results")

        return _by_adjusted_score(deduplicated)

    def filter_by_latest_only(self, results: Sequence[SearchResult]) -> list[SearchResult]:
        """Drop results known to be stale; unknown provenance is kept."""
        filtered: list[SearchResult] = []
        for result in results:
            provenance = self._lookup(result.chunk_id)
            if provenance is None or provenance.is_latest:
                filtered.append(result)
        return filtered

    def get_provenance_info(self, chunk_id: UUID) -> ChunkProvenance:
        try:
            return self.graph.get(chunk_id)
        except NotFoundError as exc:
            raise NotFoundError(
                f"failed to get provenance info for chunk {chunk_id}: {exc}"
            ) from exc
