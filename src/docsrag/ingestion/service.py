"""Incremental ingestion of the documentation tree into the index store."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Sequence, Tuple

from docsrag.errors import AdapterError, ParseError, SearchError
from docsrag.index.store import IndexStore
from docsrag.ingestion.chunker import ChunkerConfig, MarkdownChunker
from docsrag.ingestion.files import file_fingerprint, find_markdown_files, read_source
from docsrag.ingestion.markdown import MARKDOWN_EXTENSIONS, MarkdownDocument, SourceLayout
from docsrag.metrics.observability import PipelineMetrics, get_logger
from docsrag.models import Chunk, EmbeddedChunk
from docsrag.services.provider import ProviderAdapter


@dataclass(frozen=True)
class IngestionConfig:
    """Configuration for one ingestion pass."""

    docs_dir: Path = Path("./data")
    batch_size: int = 10
    batch_delay_seconds: float = 0.2
    encoding: str = "utf-8"
    extensions: Tuple[str, ...] = MARKDOWN_EXTENSIONS


@dataclass(frozen=True)
class IngestionReport:
    """Outcome of one ingestion pass."""

    new: int = 0
    changed: int = 0
    removed: int = 0
    unchanged: int = 0
    chunks_inserted: int = 0
    chunks_deleted: int = 0
    chunks_rejected: int = 0
    failed_files: Tuple[str, ...] = ()
    skipped: bool = False
    full: bool = False
    duration_seconds: float = 0.0
    total_chunks: int = 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["failed_files"] = list(self.failed_files)
        return data


@dataclass
class _Pass:
    fingerprints: Dict[str, str] = field(default_factory=dict)
    preserved: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class IngestionService:
    """Single writer keeping the index in step with the documentation tree."""

    def __init__(
        self,
        store: IndexStore,
        adapter: ProviderAdapter,
        *,
        config: IngestionConfig | None = None,
        chunker: MarkdownChunker | None = None,
        layout: SourceLayout | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._adapter = adapter
        self._config = config or IngestionConfig()
        self._chunker = chunker or MarkdownChunker(ChunkerConfig())
        self._layout = layout or SourceLayout(source_root=self._config.docs_dir)
        self._sleep = sleep
        self._logger = get_logger("ingestion")

    @property
    def store(self) -> IndexStore:
        return self._store

    def initialize(self) -> IngestionReport:
        """Load the persisted snapshot, then bring it up to date.

        A missing or unreadable snapshot triggers a full build.
        """

        try:
            loaded = self._store.load()
        except SearchError as exc:
            self._logger.warning("ingestion.snapshot_unreadable", detail=str(exc))
            loaded = False
        return self.rebuild(full=not loaded)

    def rebuild(self, full: bool = False) -> IngestionReport:
        with self._store.write_lock:
            return self._run(full)

    def _run(self, full: bool) -> IngestionReport:
        start = time.perf_counter()
        state = self._scan()
        changes = self._store.detect_changes(state.fingerprints, preserved=state.preserved, full=full)
        if changes.is_empty and not full:
            self._logger.info("ingestion.skipped", files=len(state.fingerprints), reason="no changes")
            return IngestionReport(
                unchanged=len(changes.unchanged),
                failed_files=tuple(state.failed),
                skipped=True,
                duration_seconds=time.perf_counter() - start,
                total_chunks=len(self._store.snapshot),
            )

        documents = self._chunk_files(changes.to_process, state)
        change_set = self._store.reconcile(documents, state.fingerprints, preserved=state.preserved, full=full)
        embedded, failed_paths = self._embed(change_set.to_insert)

        table = dict(state.fingerprints)
        stored = self._store.snapshot.fingerprints
        for path in state.preserved:
            if path in stored:
                table[path] = stored[path]
        for path in failed_paths:
            table.pop(path, None)

        rejected = self._store.apply(embedded, change_set.to_delete, table)
        self._store.persist()

        duration = time.perf_counter() - start
        inserted = len(embedded) - len(rejected)
        PipelineMetrics.observe_ingestion(duration, inserted)
        report = IngestionReport(
            new=len(change_set.changes.new),
            changed=len(change_set.changes.changed),
            removed=len(change_set.changes.removed),
            unchanged=len(change_set.changes.unchanged),
            chunks_inserted=inserted,
            chunks_deleted=len(change_set.to_delete),
            chunks_rejected=len(change_set.to_insert) - inserted,
            failed_files=tuple(sorted(set(state.failed) | failed_paths)),
            full=full,
            duration_seconds=duration,
            total_chunks=len(self._store.snapshot),
        )
        self._logger.info("ingestion.complete", **report.to_dict())
        return report

    def _scan(self) -> _Pass:
        state = _Pass()
        for path in find_markdown_files(self._config.docs_dir, self._config.extensions):
            key = path.as_posix()
            try:
                state.fingerprints[key] = file_fingerprint(path)
            except ParseError as exc:
                self._logger.error("ingestion.file_failed", path=key, detail=exc.reason)
                state.preserved.append(key)
                state.failed.append(key)
        return state

    def _chunk_files(self, paths: Sequence[str], state: _Pass) -> Dict[str, List[Chunk]]:
        documents: Dict[str, List[Chunk]] = {}
        for key in paths:
            try:
                raw = read_source(Path(key), self._config.encoding)
                document = MarkdownDocument.parse(
                    key,
                    raw,
                    fingerprint=state.fingerprints[key],
                    layout=self._layout,
                )
            except ParseError as exc:
                # Keep whatever the index already holds for this file.
                self._logger.error("ingestion.file_failed", path=key, detail=exc.reason)
                state.fingerprints.pop(key, None)
                state.preserved.append(key)
                state.failed.append(key)
                continue
            documents[key] = self._chunker.chunk(document)
        return documents

    def _embed(self, chunks: Sequence[Chunk]) -> Tuple[List[EmbeddedChunk], set[str]]:
        embedded: List[EmbeddedChunk] = []
        failed_paths: set[str] = set()
        size = max(1, self._config.batch_size)
        batches = [chunks[index : index + size] for index in range(0, len(chunks), size)]
        for number, batch in enumerate(batches, start=1):
            if number > 1 and self._config.batch_delay_seconds > 0:
                self._sleep(self._config.batch_delay_seconds)
            try:
                vectors = self._adapter.embed_batch([chunk.text for chunk in batch])
            except AdapterError as exc:
                PipelineMetrics.embedding_batch_failures.inc()
                self._logger.error(
                    "ingestion.batch_failed",
                    batch=number,
                    batches=len(batches),
                    size=len(batch),
                    detail=str(exc),
                )
                failed_paths.update(chunk.metadata.file_path for chunk in batch)
                continue
            if len(vectors) != len(batch):
                PipelineMetrics.embedding_batch_failures.inc()
                self._logger.error("ingestion.batch_mismatch", batch=number, expected=len(batch), got=len(vectors))
                failed_paths.update(chunk.metadata.file_path for chunk in batch)
                continue
            for chunk, vector in zip(batch, vectors):
                if vector is None:
                    failed_paths.add(chunk.metadata.file_path)
                    continue
                embedded.append(EmbeddedChunk(chunk=chunk, vector=tuple(vector)))
            self._logger.debug("ingestion.batch_embedded", batch=number, batches=len(batches))
        return embedded, failed_paths
