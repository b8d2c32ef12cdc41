"""Embedding services."""

from .service import (
    EmbeddingBackend,
    EmbeddingConfig,
    HashEmbeddingBackend,
    LangChainEmbeddingBackend,
    build_embedding_backend,
)

__all__ = [
    "EmbeddingBackend",
    "EmbeddingConfig",
    "HashEmbeddingBackend",
    "LangChainEmbeddingBackend",
    "build_embedding_backend",
]
