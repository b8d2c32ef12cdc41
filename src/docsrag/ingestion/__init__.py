"""Document ingestion: normalization, chunking and file discovery."""

from .chunker import CHUNKER_VERSION, ChunkerConfig, MarkdownChunker
from .files import file_fingerprint, find_markdown_files, read_source
from .markdown import MarkdownDocument, SourceLayout

__all__ = [
    "CHUNKER_VERSION",
    "ChunkerConfig",
    "MarkdownChunker",
    "MarkdownDocument",
    "SourceLayout",
    "file_fingerprint",
    "find_markdown_files",
    "read_source",
]
