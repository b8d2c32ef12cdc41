"""In-memory chunk/vector index backed by a flat JSON snapshot."""

from __future__ import annotations

import hashlib
import json
import math
import os
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Collection, Dict, List, Mapping, Sequence, Tuple

from docsrag.errors import PersistenceError, SearchError
from docsrag.index.changes import ChangeDetector, FileChanges
from docsrag.ingestion.chunker import CHUNKER_VERSION
from docsrag.metrics.observability import PipelineMetrics, get_logger
from docsrag.models import Chunk, EmbeddedChunk, Vector

DOCUMENTS_FILE = "documents.json"
EMBEDDINGS_FILE = "embeddings.json"
FILE_HASHES_FILE = "file_hashes.json"
MANIFEST_FILE = "manifest.json"


@dataclass(frozen=True)
class IndexSnapshot:
    """Immutable view of the index; readers never see a half-applied update."""

    chunks: Mapping[str, Chunk] = field(default_factory=dict)
    vectors: Mapping[str, Vector] = field(default_factory=dict)
    fingerprints: Mapping[str, str] = field(default_factory=dict)
    dimension: int | None = None
    chunker_version: str = CHUNKER_VERSION

    def __len__(self) -> int:
        return len(self.chunks)

    def paths(self) -> set[str]:
        return {chunk.metadata.file_path for chunk in self.chunks.values()}

    def chunk_ids_for(self, path: str) -> List[str]:
        return [chunk_id for chunk_id, chunk in self.chunks.items() if chunk.metadata.file_path == path]

    def validate(self) -> None:
        """Raise ``SearchError`` unless chunks and vectors are mutually consistent."""

        if set(self.chunks) != set(self.vectors):
            raise SearchError("Index snapshot is inconsistent: chunk ids and vector ids differ")
        dimensions = {len(vector) for vector in self.vectors.values()}
        if len(dimensions) > 1:
            raise SearchError(f"Index snapshot mixes vector dimensions: {sorted(dimensions)}")
        if self.dimension is not None and dimensions and dimensions != {self.dimension}:
            raise SearchError("Index snapshot dimension does not match its manifest")
        if 0 in dimensions:
            raise SearchError("Index snapshot contains empty vectors")


@dataclass(frozen=True)
class ChangeSet:
    """Chunks to insert and chunk ids to delete for one ingestion pass."""

    to_insert: Tuple[Chunk, ...] = ()
    to_delete: Tuple[str, ...] = ()
    changes: FileChanges = field(default_factory=FileChanges)

    @property
    def is_empty(self) -> bool:
        return not self.to_insert and not self.to_delete


def _checksum(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _valid_vector(vector: Sequence[float] | None) -> bool:
    if not vector:
        return False
    return all(isinstance(value, (int, float)) and math.isfinite(value) for value in vector)


class IndexStore:
    """Owns the chunk collection, the vectors and the fingerprint table.

    Updates follow a stage/persist/swap sequence: ``apply`` builds a new
    snapshot beside the live one, ``persist`` writes it to disk and only then
    makes it visible through ``snapshot``.
    """

    def __init__(
        self,
        storage_dir: str | Path,
        *,
        chunker_version: str = CHUNKER_VERSION,
        detector: ChangeDetector | None = None,
    ) -> None:
        self._dir = Path(storage_dir)
        self._chunker_version = chunker_version
        self._detector = detector or ChangeDetector()
        self._snapshot = IndexSnapshot(chunker_version=chunker_version)
        self._staged: IndexSnapshot | None = None
        self._loaded = False
        self._write_lock = threading.RLock()
        self._logger = get_logger("index")

    @property
    def storage_dir(self) -> Path:
        return self._dir

    @property
    def snapshot(self) -> IndexSnapshot:
        return self._snapshot

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def write_lock(self) -> threading.RLock:
        return self._write_lock

    def exists(self) -> bool:
        return (self._dir / DOCUMENTS_FILE).exists() and (self._dir / EMBEDDINGS_FILE).exists()

    def chunk_ids_for(self, path: str) -> List[str]:
        return self._snapshot.chunk_ids_for(path)

    def stats(self) -> Dict[str, Any]:
        snapshot = self._snapshot
        return {
            "chunks": len(snapshot),
            "files": len(snapshot.fingerprints),
            "dimension": snapshot.dimension,
            "chunker_version": snapshot.chunker_version,
            "loaded": self._loaded,
        }

    def load(self) -> bool:
        """Load the persisted snapshot; ``False`` when none exists."""

        if not self.exists():
            self._logger.info("index.load.missing", storage_dir=str(self._dir))
            return False
        try:
            manifest_path = self._dir / MANIFEST_FILE
            manifest = self._read_json(MANIFEST_FILE) if manifest_path.exists() else {}
            checksums = manifest.get("checksums") or {}
            documents = self._read_json(DOCUMENTS_FILE, checksums.get(DOCUMENTS_FILE))
            embeddings = self._read_json(EMBEDDINGS_FILE, checksums.get(EMBEDDINGS_FILE))
            if FILE_HASHES_FILE in checksums or (self._dir / FILE_HASHES_FILE).exists():
                fingerprints = self._read_json(FILE_HASHES_FILE, checksums.get(FILE_HASHES_FILE))
            else:
                fingerprints = {}
            chunks: Dict[str, Chunk] = {}
            for item in documents:
                chunk = Chunk.from_dict(item)
                chunks[chunk.id] = chunk
            vectors = {str(key): tuple(float(value) for value in vector) for key, vector in embeddings.items()}
            dimension = manifest.get("dimension")
            if dimension is None and vectors:
                dimension = len(next(iter(vectors.values())))
            snapshot = IndexSnapshot(
                chunks=chunks,
                vectors=vectors,
                fingerprints={str(key): str(value) for key, value in fingerprints.items()},
                dimension=dimension,
                chunker_version=str(manifest.get("chunker_version", "unknown")),
            )
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            raise SearchError(f"Index snapshot in {self._dir} is corrupt: {exc}") from exc
        snapshot.validate()
        with self._write_lock:
            self._snapshot = snapshot
            self._staged = None
            self._loaded = True
        PipelineMetrics.index_chunk_count.set(len(snapshot))
        self._logger.info(
            "index.load.complete",
            chunks=len(snapshot),
            files=len(snapshot.fingerprints),
            dimension=snapshot.dimension,
        )
        return True

    def detect_changes(
        self,
        current_fingerprints: Mapping[str, str],
        *,
        preserved: Collection[str] = (),
        full: bool = False,
    ) -> FileChanges:
        snapshot = self._snapshot
        stored = {} if full else dict(snapshot.fingerprints)
        force = bool(snapshot.chunks) and snapshot.chunker_version != self._chunker_version
        if force:
            self._logger.info(
                "index.chunker_version_changed",
                stored=snapshot.chunker_version,
                current=self._chunker_version,
            )
        return self._detector.detect(stored, current_fingerprints, preserved=preserved, force=force)

    def reconcile(
        self,
        current_files: Mapping[str, Sequence[Chunk]],
        current_fingerprints: Mapping[str, str],
        *,
        preserved: Collection[str] = (),
        full: bool = False,
    ) -> ChangeSet:
        """Compute inserts and deletes by file path.

        ``current_files`` maps a path to its freshly produced chunks; only
        entries for new or changed paths are consulted.
        """

        snapshot = self._snapshot
        changes = self.detect_changes(current_fingerprints, preserved=preserved, full=full)
        preserved_set = set(preserved)
        stale_paths = [
            path
            for path in sorted(snapshot.paths())
            if path not in current_fingerprints and path not in snapshot.fingerprints and path not in preserved_set
        ]
        if full:
            stale_paths = [path for path in sorted(snapshot.paths()) if path not in preserved_set]

        to_delete: list[str] = []
        for path in (*changes.new, *changes.changed, *changes.removed, *stale_paths):
            for chunk_id in snapshot.chunk_ids_for(path):
                if chunk_id not in to_delete:
                    to_delete.append(chunk_id)
        to_insert: list[Chunk] = []
        for path in changes.to_process:
            to_insert.extend(current_files.get(path, ()))

        for kind in ("new", "changed", "removed"):
            count = len(getattr(changes, kind))
            if count:
                PipelineMetrics.file_changes.labels(kind=kind).inc(count)
        self._logger.info(
            "index.reconcile",
            new=len(changes.new),
            changed=len(changes.changed),
            removed=len(changes.removed),
            unchanged=len(changes.unchanged),
            to_insert=len(to_insert),
            to_delete=len(to_delete),
        )
        return ChangeSet(to_insert=tuple(to_insert), to_delete=tuple(to_delete), changes=changes)

    def apply(
        self,
        to_insert: Sequence[EmbeddedChunk],
        to_delete: Sequence[str],
        fingerprints: Mapping[str, str],
    ) -> List[str]:
        """Stage a new snapshot; returns ids of chunks rejected for bad vectors.

        Files owning a rejected chunk are dropped from the staged fingerprint
        table so the next pass picks them up again.
        """

        with self._write_lock:
            base = self._staged if self._staged is not None else self._snapshot
            chunks: Dict[str, Chunk] = dict(base.chunks)
            vectors: Dict[str, Vector] = dict(base.vectors)
            for chunk_id in to_delete:
                chunks.pop(chunk_id, None)
                vectors.pop(chunk_id, None)
            dimension = base.dimension if chunks else None

            table = dict(fingerprints)
            rejected: list[str] = []
            for item in to_insert:
                vector = tuple(float(value) for value in item.vector) if _valid_vector(item.vector) else ()
                if not vector or (dimension is not None and len(vector) != dimension):
                    self._logger.warning(
                        "index.apply.rejected_vector",
                        chunk_id=item.chunk.id,
                        length=len(item.vector or ()),
                        dimension=dimension,
                    )
                    rejected.append(item.chunk.id)
                    table.pop(item.chunk.metadata.file_path, None)
                    continue
                if dimension is None:
                    dimension = len(vector)
                chunks.pop(item.chunk.id, None)
                chunks[item.chunk.id] = item.chunk
                vectors[item.chunk.id] = vector

            self._staged = IndexSnapshot(
                chunks=chunks,
                vectors=vectors,
                fingerprints=table,
                dimension=dimension,
                chunker_version=self._chunker_version,
            )
            return rejected

    def discard(self) -> None:
        with self._write_lock:
            self._staged = None

    def persist(self) -> None:
        """Write the staged snapshot to disk, then make it the live snapshot."""

        with self._write_lock:
            target = self._staged if self._staged is not None else self._snapshot
            payloads = {
                DOCUMENTS_FILE: [chunk.to_dict() for chunk in target.chunks.values()],
                EMBEDDINGS_FILE: {chunk_id: list(vector) for chunk_id, vector in target.vectors.items()},
                FILE_HASHES_FILE: dict(target.fingerprints),
            }
            generation = uuid.uuid4().hex
            temp_paths: list[Path] = []
            try:
                texts = {name: json.dumps(payload, ensure_ascii=False) for name, payload in payloads.items()}
                # The manifest commits a generation: ``load`` rejects artifacts whose
                # checksum differs from the one recorded here.
                texts[MANIFEST_FILE] = json.dumps(
                    {
                        "generation": generation,
                        "chunker_version": target.chunker_version,
                        "dimension": target.dimension,
                        "chunk_count": len(target.chunks),
                        "updated_at": datetime.now(timezone.utc).isoformat(),
                        "checksums": {name: _checksum(text) for name, text in texts.items()},
                    },
                    ensure_ascii=False,
                )
                self._dir.mkdir(parents=True, exist_ok=True)
                for name, text in texts.items():
                    temp_path = self._dir / f"{name}.tmp"
                    temp_path.write_text(text, encoding="utf-8")
                    temp_paths.append(temp_path)
                # Manifest is the last file moved into place.
                for temp_path in temp_paths:
                    os.replace(temp_path, self._dir / temp_path.name[: -len(".tmp")])
            except (OSError, TypeError, ValueError) as exc:
                for temp_path in temp_paths:
                    temp_path.unlink(missing_ok=True)
                self._staged = None
                self._logger.error("index.persist.failed", storage_dir=str(self._dir), detail=str(exc))
                raise PersistenceError(f"Failed to persist index to {self._dir}: {exc}") from exc

            self._snapshot = target
            self._staged = None
            self._loaded = True
        PipelineMetrics.index_chunk_count.set(len(target))
        self._logger.info(
            "index.persist.complete",
            generation=generation,
            chunks=len(target),
            files=len(target.fingerprints),
            dimension=target.dimension,
        )

    def _read_json(self, name: str, checksum: str | None = None) -> Any:
        text = (self._dir / name).read_text(encoding="utf-8")
        if checksum is not None and _checksum(text) != checksum:
            raise SearchError(f"Index snapshot in {self._dir} is torn: {name} does not match its manifest")
        return json.loads(text)
