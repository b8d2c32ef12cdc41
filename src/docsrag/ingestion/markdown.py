"""Markdown/MDX normalization and document-level metadata extraction."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, List, Mapping, Sequence, Tuple

import yaml

from docsrag.errors import ParseError
from docsrag.models import ChunkMetadata

_FRONT_MATTER = re.compile(r"\A---\n(.*?)\n---(?:\n|\Z)", re.DOTALL)
_FENCED_CODE = re.compile(r"(```.*?```|~~~.*?~~~)", re.DOTALL)
_CODE_BLOCK = re.compile(r"```([\w+#.-]+)?[ \t]*(?:title=\"([^\"]*)\")?[^\n]*\n(.*?)\n```", re.DOTALL)
_HEADING = re.compile(r"^(#{1,6})\s+(.+?)(?:\s+#+)?\s*$")
_MD_LINK = re.compile(r"\[([^\]]+)\]\(([^)\s]+)(?:\s+\"[^\"]*\")?\)")
_BARE_URL = re.compile(r"https?://[^\s)>\]\"']+")

_MDX_RULES: Tuple[Tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"^(?:import|export)\s.*$\n?", re.MULTILINE), ""),
    (re.compile(r"<Highlight[^>]*color=\"([^\"]*)\"[^>]*>([^<]*)</Highlight>"), r"**\2** (highlighted in \1)"),
    (re.compile(r":::(\w+)[^\n]*\n(.*?)\n:::", re.DOTALL), r"**\1**: \2"),
    (re.compile(r"<button[^>]*>([^<]*)</button>"), r"[Button: \1]"),
    (re.compile(r"<[^>\n]+>"), ""),
)

MARKDOWN_EXTENSIONS: Tuple[str, ...] = (".md", ".mdx")


@dataclass(frozen=True)
class SourceLayout:
    """Where documents live and how their public/edit URLs are derived."""

    source_root: Path | None = None
    prefixes: Tuple[str, ...] = ("apps/docs/", "docs/", "data/")
    public_url_base: str = "/docs"
    edit_root: str = "apps/docs/docs/"
    edit_url_template: str = "https://github.com/your-org/your-repo/edit/main/{path}"


@dataclass(frozen=True)
class Heading:
    level: int
    text: str
    line: int


@dataclass(frozen=True)
class CodeBlock:
    language: str
    code: str
    title: str | None = None


def normalize_markdown(raw: str) -> str:
    """Normalize line endings and collapse runs of blank lines."""

    text = raw.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def split_front_matter(content: str, path: str = "<memory>") -> tuple[dict[str, Any], str]:
    """Return the parsed YAML front matter and the remaining body."""

    match = _FRONT_MATTER.match(content)
    if not match:
        return {}, content
    try:
        parsed = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        raise ParseError(path, f"malformed front matter: {exc}") from exc
    if parsed is None:
        parsed = {}
    if not isinstance(parsed, dict):
        raise ParseError(path, "front matter must be a mapping")
    return parsed, content[match.end():]


def reduce_mdx(content: str) -> str:
    """Rewrite MDX components as plain Markdown, leaving fenced code untouched."""

    segments = _FENCED_CODE.split(content)
    for index in range(0, len(segments), 2):
        segment = segments[index]
        for pattern, replacement in _MDX_RULES:
            segment = pattern.sub(replacement, segment)
        segments[index] = segment
    return re.sub(r"\n{3,}", "\n\n", "".join(segments)).strip()


def extract_code_blocks(content: str) -> List[CodeBlock]:
    return [
        CodeBlock(language=match.group(1) or "", title=match.group(2), code=match.group(3))
        for match in _CODE_BLOCK.finditer(content)
    ]


def extract_headings(content: str) -> List[Heading]:
    """Return ATX headings in document order, ignoring lines inside fenced code."""

    headings: List[Heading] = []
    in_fence = False
    for number, line in enumerate(content.split("\n")):
        stripped = line.strip()
        if stripped.startswith("```") or stripped.startswith("~~~"):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        match = _HEADING.match(line)
        if match:
            headings.append(Heading(level=len(match.group(1)), text=match.group(2).strip(), line=number))
    return headings


def extract_links(content: str) -> List[str]:
    links = [match.group(2) for match in _MD_LINK.finditer(content)]
    links.extend(url.rstrip(".,;:!?") for url in _BARE_URL.findall(content))
    return list(dict.fromkeys(links))


def is_internal_link(link: str) -> bool:
    return link.startswith(("./", "../", "/"))


def is_external_link(link: str) -> bool:
    return link.startswith(("http://", "https://"))


def relative_source_path(file_path: str | Path, layout: SourceLayout) -> str:
    """Path of a document relative to its source root, in POSIX form."""

    path = Path(file_path)
    if layout.source_root is not None:
        try:
            return path.resolve().relative_to(Path(layout.source_root).resolve()).as_posix()
        except ValueError:
            pass
    text = path.as_posix()
    for prefix in layout.prefixes:
        marker = f"/{prefix}"
        if marker in text:
            return text.rsplit(marker, 1)[1]
        if text.startswith(prefix):
            return text[len(prefix):]
    return text.lstrip("/")


def public_url(relative_path: str, base: str = "/docs") -> str:
    """Site URL for a document: extension dropped, ``/index`` collapsed."""

    slug = re.sub(r"\.mdx?$", "", relative_path)
    slug = re.sub(r"/+", "/", slug).strip("/")
    if slug == "index":
        slug = ""
    elif slug.endswith("/index"):
        slug = slug[: -len("/index")]
    base = base.rstrip("/")
    return f"{base}/{slug}" if slug else (base or "/")


def edit_url(relative_path: str, layout: SourceLayout) -> str:
    return layout.edit_url_template.format(path=f"{layout.edit_root}{relative_path}")


def infer_category(relative_path: str) -> str:
    parts = PurePosixPath(relative_path).parts
    return parts[-2] if len(parts) > 1 else "general"


def _as_strings(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    if isinstance(value, (list, tuple)):
        return tuple(str(item) for item in value)
    return (str(value),)


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


@dataclass(frozen=True)
class MarkdownDocument:
    """A normalized source document plus everything derived from it."""

    file_path: str
    fingerprint: str
    content: str
    relative_path: str
    front_matter: Mapping[str, Any] = field(default_factory=dict)
    headings: Sequence[Heading] = ()
    code_blocks: Sequence[CodeBlock] = ()
    links: Sequence[str] = ()
    layout: SourceLayout = field(default_factory=SourceLayout)

    @classmethod
    def parse(
        cls,
        file_path: str | Path,
        raw: str,
        *,
        fingerprint: str,
        layout: SourceLayout | None = None,
    ) -> "MarkdownDocument":
        layout = layout or SourceLayout()
        path_text = str(file_path)
        front_matter, body = split_front_matter(normalize_markdown(raw), path_text)
        content = reduce_mdx(normalize_markdown(body))
        return cls(
            file_path=path_text,
            fingerprint=fingerprint,
            content=content,
            relative_path=relative_source_path(file_path, layout),
            front_matter=front_matter,
            headings=extract_headings(content),
            code_blocks=extract_code_blocks(content),
            links=extract_links(content),
            layout=layout,
        )

    @property
    def title(self) -> str:
        title = self.front_matter.get("title")
        if title:
            return str(title)
        for heading in self.headings:
            if heading.level == 1:
                return heading.text
        return Path(self.file_path).stem

    def base_metadata(self) -> ChunkMetadata:
        """Metadata shared by every chunk of this document."""

        path = Path(self.file_path)
        languages = [block.language for block in self.code_blocks if block.language]
        return ChunkMetadata(
            file_path=self.file_path,
            file_name=path.name,
            file_type=path.suffix.lstrip("."),
            file_hash=self.fingerprint,
            title=self.title,
            word_count=len(self.content.split()),
            heading_structure=tuple(heading.text for heading in self.headings),
            code_languages=tuple(dict.fromkeys(languages)),
            internal_links=tuple(link for link in self.links if is_internal_link(link)),
            external_links=tuple(link for link in self.links if is_external_link(link)),
            category=infer_category(self.relative_path),
            tags=_as_strings(self.front_matter.get("tags")),
            authors=_as_strings(self.front_matter.get("authors")),
            sidebar_position=_as_int(self.front_matter.get("sidebar_position")),
            sidebar_label=(
                str(self.front_matter["sidebar_label"]) if self.front_matter.get("sidebar_label") else None
            ),
            doc_id=path.stem,
            frontend_url=public_url(self.relative_path, self.layout.public_url_base),
            edit_url=edit_url(self.relative_path, self.layout),
        )
