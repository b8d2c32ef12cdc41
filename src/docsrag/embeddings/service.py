"""Embedding backends for docsrag."""

from __future__ import annotations

import hashlib
import logging
import math
from dataclasses import dataclass
from typing import List, Literal, Protocol, Sequence

from langchain_community.embeddings import HuggingFaceEmbeddings
from langchain_core.embeddings import Embeddings as LangChainEmbeddings
from langchain_google_genai import GoogleGenerativeAIEmbeddings

from docsrag.models import Vector

LOGGER = logging.getLogger(__name__)

# Provider rejects very long inputs; longer texts are cut before embedding.
MAX_EMBEDDING_CHARS = 10_000


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for embedding backends."""

    provider: Literal["hash", "huggingface", "google"] = "hash"
    model: str = "models/text-embedding-004"
    dim: int = 768
    normalize: bool = True
    device: str | None = None
    api_key: str | None = None


class EmbeddingBackend(Protocol):
    """Protocol describing embedding behaviour."""

    def embed_documents(self, texts: Sequence[str]) -> List[Vector]:
        """Return one vector per text, in order."""

    def embed_query(self, text: str) -> Vector:
        """Return the embedding vector for a query string."""


def _normalize(vector: Sequence[float]) -> Vector:
    norm = math.sqrt(sum(value * value for value in vector)) or 1.0
    return tuple(value / norm for value in vector)


def truncate_for_embedding(text: str) -> str:
    if len(text) <= MAX_EMBEDDING_CHARS:
        return text
    return text[:MAX_EMBEDDING_CHARS]


class HashEmbeddingBackend:
    """Deterministic lightweight embedding fallback used for testing."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()

    def _hash_to_vector(self, text: str) -> Vector:
        raw = b""
        block = 0
        while len(raw) < self._config.dim:
            raw += hashlib.sha256(f"{block}:{text}".encode("utf-8")).digest()
            block += 1
        # Centred components keep unrelated texts near-orthogonal.
        vector = [byte / 127.5 - 1.0 for byte in raw[: self._config.dim]]
        if self._config.normalize:
            return _normalize(vector)
        return tuple(vector)

    def embed_documents(self, texts: Sequence[str]) -> List[Vector]:
        return [self._hash_to_vector(text) for text in texts]

    def embed_query(self, text: str) -> Vector:
        return self._hash_to_vector(text)


def build_langchain_embeddings(config: EmbeddingConfig) -> LangChainEmbeddings:
    if config.provider == "google":
        return GoogleGenerativeAIEmbeddings(model=config.model, google_api_key=config.api_key)
    model_kwargs = {"device": config.device} if config.device else {}
    return HuggingFaceEmbeddings(
        model_name=config.model,
        model_kwargs=model_kwargs,
        encode_kwargs={"normalize_embeddings": config.normalize},
    )


class LangChainEmbeddingBackend:
    """Embedding backend delegating to a LangChain ``Embeddings`` client."""

    def __init__(self, config: EmbeddingConfig | None = None, client: LangChainEmbeddings | None = None) -> None:
        self._config = config or EmbeddingConfig()
        self._client = client or build_langchain_embeddings(self._config)
        LOGGER.info("Embedding backend using %s (%s)", self._config.model, self._config.provider)

    def embed_documents(self, texts: Sequence[str]) -> List[Vector]:
        if not texts:
            return []
        vectors = self._client.embed_documents([truncate_for_embedding(text) for text in texts])
        if len(vectors) != len(texts):
            LOGGER.error("Embedding backend returned %d vectors for %d texts", len(vectors), len(texts))
            raise ValueError("Mismatch between number of texts and embedding vectors")
        if vectors and len(vectors[0]) != self._config.dim:
            LOGGER.warning(
                "Embedding dim mismatch: configured=%d, actual=%d",
                self._config.dim,
                len(vectors[0]),
            )
        return [self._finish(vector) for vector in vectors]

    def embed_query(self, text: str) -> Vector:
        return self._finish(self._client.embed_query(truncate_for_embedding(text)))

    def _finish(self, vector: Sequence[float]) -> Vector:
        if not self._config.normalize:
            return tuple(float(value) for value in vector)
        return _normalize([float(value) for value in vector])


def build_embedding_backend(config: EmbeddingConfig) -> EmbeddingBackend:
    if config.provider == "hash":
        return HashEmbeddingBackend(config)
    return LangChainEmbeddingBackend(config)
