"""Exception hierarchy shared by the ingestion, index and query layers."""

from __future__ import annotations


class DocsRagError(RuntimeError):
    """Base class for docsrag failures."""


class ParseError(DocsRagError):
    """Raised when a source file cannot be read or its front matter is malformed."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed to parse {path}: {reason}")
        self.path = path
        self.reason = reason


class AdapterError(DocsRagError):
    """Raised when an embedding, classification or generation call fails."""


class SearchError(DocsRagError):
    """Raised when the index is unavailable or structurally invalid."""


class PersistenceError(DocsRagError):
    """Raised when the index snapshot cannot be written."""


class WorkflowError(DocsRagError):
    """Raised when a workflow stage cannot complete."""

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        self.stage = stage


__all__ = [
    "AdapterError",
    "DocsRagError",
    "ParseError",
    "PersistenceError",
    "SearchError",
    "WorkflowError",
]
