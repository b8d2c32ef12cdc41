"""File discovery and content fingerprints for the documentation tree."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import List, Sequence

from docsrag.errors import ParseError
from docsrag.ingestion.markdown import MARKDOWN_EXTENSIONS
from docsrag.metrics.observability import get_logger

_logger = get_logger("files")


def find_markdown_files(root: Path, extensions: Sequence[str] = MARKDOWN_EXTENSIONS) -> List[Path]:
    """Recursively list Markdown files under ``root`` in a stable order."""

    root = Path(root)
    if not root.exists():
        _logger.warning("files.missing_root", root=str(root))
        return []
    suffixes = {ext.lower() for ext in extensions}
    return sorted(path for path in root.rglob("*") if path.is_file() and path.suffix.lower() in suffixes)


def file_fingerprint(path: Path) -> str:
    """SHA-256 of the file's bytes."""

    try:
        payload = Path(path).read_bytes()
    except OSError as exc:
        raise ParseError(str(path), f"unreadable: {exc}") from exc
    return hashlib.sha256(payload).hexdigest()


def read_source(path: Path, encoding: str = "utf-8") -> str:
    try:
        return Path(path).read_text(encoding=encoding)
    except (OSError, UnicodeDecodeError) as exc:
        raise ParseError(str(path), f"unreadable: {exc}") from exc
