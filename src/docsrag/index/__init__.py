"""Incremental vector index."""

from .changes import ChangeDetector, FileChanges
from .search import SimilaritySearch, cosine_similarity
from .store import ChangeSet, IndexSnapshot, IndexStore

__all__ = [
    "ChangeDetector",
    "ChangeSet",
    "FileChanges",
    "IndexSnapshot",
    "IndexStore",
    "SimilaritySearch",
    "cosine_similarity",
]
