"""Version history tracking and provenance-aware ranking."""

from devrag.provenance.graph import ChunkProvenance, FileProvenanceHistory, ProvenanceGraph
from devrag.provenance.keys import build_chunk_key, extract_base_chunk_key
from devrag.provenance.ranker import RankedResult, Ranker, RankingConfig

__all__ = [
    "ChunkProvenance",
    "FileProvenanceHistory",
    "ProvenanceGraph",
    "RankedResult",
    "Ranker",
    "RankingConfig",
    "build_chunk_key",
    "extract_base_chunk_key",
]
