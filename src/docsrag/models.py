"""Shared domain models used across the docsrag pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal, Mapping, Optional, Tuple

from docsrag.metrics.observability import get_logger

ChunkType = Literal["full_document", "section", "subsection"]

Vector = Tuple[float, ...]


@dataclass(frozen=True)
class ChunkMetadata:
    """Metadata captured for a chunk and its owning document."""

    file_path: str
    file_name: str
    file_type: str
    file_hash: str
    title: str
    chunk_type: ChunkType = "full_document"
    section: Optional[str] = None
    chunk_index: Optional[int] = None
    word_count: int = 0
    heading_structure: Tuple[str, ...] = ()
    code_languages: Tuple[str, ...] = ()
    internal_links: Tuple[str, ...] = ()
    external_links: Tuple[str, ...] = ()
    category: str = "general"
    tags: Tuple[str, ...] = ()
    authors: Tuple[str, ...] = ()
    sidebar_position: Optional[int] = None
    sidebar_label: Optional[str] = None
    doc_id: str = ""
    frontend_url: str = ""
    edit_url: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, tuple):
                data[key] = list(value)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ChunkMetadata":
        known = {name for name in cls.__dataclass_fields__}
        values = {key: value for key, value in data.items() if key in known}
        unknown = sorted(key for key in data if key not in known)
        if unknown:
            get_logger("models").warning("models.metadata.unknown_fields", fields=unknown)
        for key, value in values.items():
            if isinstance(value, list):
                values[key] = tuple(value)
        return cls(**values)


@dataclass(frozen=True)
class Chunk:
    """Unit of retrievable documentation text."""

    id: str
    text: str
    metadata: ChunkMetadata

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "text": self.text, "metadata": self.metadata.to_dict()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Chunk":
        return cls(
            id=str(data["id"]),
            text=str(data["text"]),
            metadata=ChunkMetadata.from_dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class EmbeddedChunk:
    """Chunk paired with its embedding vector, ready for the index."""

    chunk: Chunk
    vector: Vector


@dataclass(frozen=True)
class SearchHit:
    """Chunk returned from similarity search."""

    chunk: Chunk
    similarity: float


@dataclass(frozen=True)
class Intent:
    """Coarse classification of a query's purpose."""

    label: str = "general"
    confidence: float = 0.5


DEFAULT_INTENT = Intent()


@dataclass(frozen=True)
class QueryResult:
    """Answer produced by one workflow run."""

    answer: str
    metadata: Mapping[str, Any] = field(default_factory=dict)
    run_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"response": self.answer, "metadata": dict(self.metadata)}
