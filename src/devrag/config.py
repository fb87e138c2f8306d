"""Application configuration defaults."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from devrag.embedding.encoder import DEFAULT_MODEL
from devrag.provenance.ranker import RankingConfig


def _get_default_db_path() -> Path:
    """Prefer a project-local ``data/`` index, otherwise one in the home directory."""
    local_db = Path("data/devrag.db")
    if local_db.exists():
        return local_db
    return Path.home() / ".devrag" / "devrag.db"


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    model_name: str = DEFAULT_MODEL
    latest_version_boost: float = 0.15
    recency_decay_factor: float = 0.10
    min_score: float = 0.0
    search_limit: int = 10
    context_before: int = 0
    context_after: int = 0
    max_depth: int = 0
    max_tokens: int = 8000

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path

    def ranking_config(self) -> RankingConfig:
        return RankingConfig(
            latest_version_boost=self.latest_version_boost,
            recency_decay_factor=self.recency_decay_factor,
            min_score=self.min_score,
        )
