"""Runtime configuration for the docsrag services."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="docsrag_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"

    # Source tree and snapshot location
    docs_dir: Path = Path("./data")
    index_dir: Path = Path("./index_storage")
    index_on_startup: bool = True

    # URL derivation for chunk metadata
    source_prefixes: tuple[str, ...] = ("apps/docs/", "docs/", "data/")
    public_url_base: str = "/docs"
    edit_root: str = "apps/docs/docs/"
    edit_url_template: str = "https://github.com/your-org/your-repo/edit/main/{path}"

    # Chunking
    max_chunk_chars: int = 1000
    chunk_overlap_chars: int = 200
    chars_per_word: int = 6

    # Provider
    embedding_provider: Literal["hash", "huggingface", "google"] = "hash"
    embedding_model: str = "models/text-embedding-004"
    embedding_dim: int = 768
    generation_provider: Literal["template", "google"] = "template"
    generator_model: str = "gemini-2.0-flash"
    generator_temperature: float = 0.3
    google_api_key: str | None = None

    # Ingestion pacing
    embedding_batch_size: int = 10
    embedding_batch_delay_seconds: float = 0.2

    # Retrieval
    search_top_k: int = 5
    min_similarity: float = 0.35
    high_confidence_hits: int = 3
    context_excerpt_chars: int = 500
    context_max_chars: int = 6000

    # Per-stage retry overrides, e.g. {"generation": [2, 0.5]}
    stage_retry_overrides: dict[str, tuple[int, float]] = {}

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    @property
    def window_words(self) -> int:
        return max(1, self.max_chunk_chars // self.chars_per_word)

    @property
    def overlap_words(self) -> int:
        return self.chunk_overlap_chars // self.chars_per_word


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
