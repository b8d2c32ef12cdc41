"""Heading-aware chunker with a sliding word window for oversized sections."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import List, Sequence

from docsrag.ingestion.markdown import Heading, MarkdownDocument
from docsrag.models import Chunk, ChunkMetadata

# Bump whenever chunk boundaries or ids change so stored indexes are re-chunked.
CHUNKER_VERSION = "2"

PREAMBLE_ID = "preamble"


@dataclass(frozen=True)
class ChunkerConfig:
    """Configuration for document chunking."""

    max_chunk_chars: int = 1000
    overlap_chars: int = 200
    chars_per_word: int = 6

    @property
    def window_words(self) -> int:
        return max(1, self.max_chunk_chars // self.chars_per_word)

    @property
    def overlap_words(self) -> int:
        return self.overlap_chars // self.chars_per_word


@dataclass(frozen=True)
class Section:
    heading: str | None
    level: int
    body: str

    @property
    def text(self) -> str:
        if self.heading is None:
            return self.body
        return f"# {self.heading}\n\n{self.body}".rstrip()


def sanitize_id(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def sliding_windows(words: Sequence[str], window: int, overlap: int) -> List[List[str]]:
    """Split ``words`` into windows of ``window`` words sharing ``overlap`` words.

    Windows start every ``window - overlap`` words and stop once a window would
    contain nothing but the previous window's overlap.
    """

    if overlap >= window:
        raise ValueError("overlap must be smaller than the window size")
    if not words:
        return []
    step = window - overlap
    last_start = max(len(words) - overlap, 1)
    return [list(words[start : start + window]) for start in range(0, last_start, step)]


def split_sections(content: str, headings: Sequence[Heading]) -> List[Section]:
    """Cut content at every heading; text before the first heading is kept as a preamble."""

    lines = content.split("\n")
    sections: List[Section] = []
    first_line = headings[0].line if headings else len(lines)
    preamble = "\n".join(lines[:first_line]).strip()
    if preamble:
        sections.append(Section(heading=None, level=1, body=preamble))
    for index, heading in enumerate(headings):
        end = headings[index + 1].line if index + 1 < len(headings) else len(lines)
        body = "\n".join(lines[heading.line + 1 : end]).strip()
        sections.append(Section(heading=heading.text, level=heading.level, body=body))
    return sections


class MarkdownChunker:
    """Turns one normalized document into an ordered list of chunks.

    Documents no longer than ``max_chunk_chars`` become a single
    ``full_document`` chunk. Longer documents are cut at headings; a section
    that is itself too long is split with a sliding word window.
    """

    def __init__(self, config: ChunkerConfig | None = None) -> None:
        self._config = config or ChunkerConfig()
        if self._config.overlap_words >= self._config.window_words:
            raise ValueError("chunk overlap must be smaller than the chunk size")

    @property
    def config(self) -> ChunkerConfig:
        return self._config

    def chunk(self, document: MarkdownDocument) -> List[Chunk]:
        content = document.content
        if not content.strip():
            return []
        base = document.base_metadata()
        if len(content) <= self._config.max_chunk_chars:
            return [Chunk(id=document.file_path, text=content, metadata=replace(base, chunk_type="full_document"))]

        chunks: List[Chunk] = []
        seen_ids: set[str] = set()
        for section in split_sections(content, document.headings):
            section_id = self._unique_id(document.file_path, section, seen_ids)
            chunks.extend(self._chunk_section(section, section_id, base))
        return chunks

    def _chunk_section(self, section: Section, section_id: str, base: ChunkMetadata) -> List[Chunk]:
        text = section.text
        if not text.strip():
            return []
        if len(text) <= self._config.max_chunk_chars:
            chunk_type = "section" if section.level == 1 else "subsection"
            metadata = replace(base, section=section.heading, chunk_type=chunk_type)
            return [Chunk(id=section_id, text=text, metadata=metadata)]
        windows = sliding_windows(text.split(), self._config.window_words, self._config.overlap_words)
        return [
            Chunk(
                id=f"{section_id}#{index}",
                text=" ".join(words),
                metadata=replace(base, section=section.heading, chunk_index=index, chunk_type="subsection"),
            )
            for index, words in enumerate(windows)
        ]

    @staticmethod
    def _unique_id(file_path: str, section: Section, seen: set[str]) -> str:
        slug = PREAMBLE_ID if section.heading is None else (sanitize_id(section.heading) or "section")
        candidate = slug
        suffix = 0
        while candidate in seen:
            suffix += 1
            candidate = f"{slug}-{suffix}"
        seen.add(candidate)
        return f"{file_path}#{candidate}"
