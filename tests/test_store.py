from __future__ import annotations

import json
import math
import os
from pathlib import Path

import pytest
from structlog.testing import capture_logs

from docsrag.errors import PersistenceError, SearchError
from docsrag.index.store import DOCUMENTS_FILE, EMBEDDINGS_FILE, FILE_HASHES_FILE, MANIFEST_FILE, IndexStore
from docsrag.models import Chunk, ChunkMetadata, EmbeddedChunk


def _chunk(chunk_id: str, path: str, text: str = "text") -> Chunk:
    metadata = ChunkMetadata(
        file_path=path,
        file_name=Path(path).name,
        file_type="md",
        file_hash="h",
        title=Path(path).stem,
        tags=("one", "two"),
    )
    return Chunk(id=chunk_id, text=text, metadata=metadata)


def _seed(store: IndexStore) -> None:
    store.apply(
        [
            EmbeddedChunk(_chunk("a.md#one", "a.md"), (1.0, 0.0)),
            EmbeddedChunk(_chunk("a.md#two", "a.md"), (0.1, 0.7)),
            EmbeddedChunk(_chunk("b.md", "b.md"), (0.333333333333, 0.6)),
        ],
        [],
        {"a.md": "h1", "b.md": "h2"},
    )
    store.persist()


def test_apply_is_invisible_until_persist(tmp_path: Path):
    store = IndexStore(tmp_path)
    store.apply([EmbeddedChunk(_chunk("a.md", "a.md"), (1.0, 0.0))], [], {"a.md": "h1"})
    assert len(store.snapshot) == 0
    store.persist()
    assert len(store.snapshot) == 1
    assert store.loaded


def test_snapshot_round_trip(tmp_path: Path):
    store = IndexStore(tmp_path)
    _seed(store)

    reloaded = IndexStore(tmp_path)
    assert reloaded.load() is True
    assert dict(reloaded.snapshot.chunks) == dict(store.snapshot.chunks)
    assert dict(reloaded.snapshot.vectors) == dict(store.snapshot.vectors)
    assert dict(reloaded.snapshot.fingerprints) == {"a.md": "h1", "b.md": "h2"}
    assert reloaded.snapshot.dimension == 2
    assert list(reloaded.snapshot.chunks) == ["a.md#one", "a.md#two", "b.md"]
    manifest = json.loads((tmp_path / MANIFEST_FILE).read_text(encoding="utf-8"))
    assert manifest["chunk_count"] == 3


def test_load_without_snapshot(tmp_path: Path):
    store = IndexStore(tmp_path / "missing")
    assert store.load() is False
    assert not store.loaded


def test_reconcile_by_file_path(tmp_path: Path):
    store = IndexStore(tmp_path)
    _seed(store)
    fresh_a = _chunk("a.md", "a.md", "rewritten")
    new_c = _chunk("c.md", "c.md")

    change_set = store.reconcile({"a.md": [fresh_a], "c.md": [new_c]}, {"a.md": "h1x", "c.md": "h3"})

    assert change_set.changes.changed == ("a.md",)
    assert change_set.changes.new == ("c.md",)
    assert change_set.changes.removed == ("b.md",)
    assert set(change_set.to_delete) == {"a.md#one", "a.md#two", "b.md"}
    assert change_set.to_insert == (new_c, fresh_a)


def test_invalid_vectors_are_rejected(tmp_path: Path):
    store = IndexStore(tmp_path)
    _seed(store)

    rejected = store.apply(
        [
            EmbeddedChunk(_chunk("c.md", "c.md"), (1.0, 2.0, 3.0)),
            EmbeddedChunk(_chunk("d.md", "d.md"), (math.nan, 1.0)),
            EmbeddedChunk(_chunk("e.md", "e.md"), (0.5, 0.5)),
        ],
        [],
        {"a.md": "h1", "b.md": "h2", "c.md": "h3", "d.md": "h4", "e.md": "h5"},
    )
    store.persist()

    assert rejected == ["c.md", "d.md"]
    assert "c.md" not in store.snapshot.chunks
    assert set(store.snapshot.fingerprints) == {"a.md", "b.md", "e.md"}


def test_failed_persist_keeps_previous_snapshot(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    store = IndexStore(tmp_path)
    _seed(store)
    store.apply([], ["b.md"], {"a.md": "h1"})

    def boom(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("docsrag.index.store.os.replace", boom)
    with pytest.raises(PersistenceError):
        store.persist()
    monkeypatch.undo()

    assert "b.md" in store.snapshot.chunks
    assert not list(tmp_path.glob("*.tmp"))
    reloaded = IndexStore(tmp_path)
    reloaded.load()
    assert len(reloaded.snapshot) == 3


def test_corrupt_snapshot_raises_search_error(tmp_path: Path):
    (tmp_path / DOCUMENTS_FILE).write_text("not json", encoding="utf-8")
    (tmp_path / EMBEDDINGS_FILE).write_text("{}", encoding="utf-8")
    with pytest.raises(SearchError):
        IndexStore(tmp_path).load()


def test_missing_vector_is_inconsistent(tmp_path: Path):
    (tmp_path / DOCUMENTS_FILE).write_text(json.dumps([_chunk("a.md", "a.md").to_dict()]), encoding="utf-8")
    (tmp_path / EMBEDDINGS_FILE).write_text("{}", encoding="utf-8")
    with pytest.raises(SearchError):
        IndexStore(tmp_path).load()


def test_chunker_version_change_forces_rechunk(tmp_path: Path):
    old = IndexStore(tmp_path, chunker_version="1")
    _seed(old)

    store = IndexStore(tmp_path, chunker_version="2")
    store.load()
    changes = store.detect_changes({"a.md": "h1", "b.md": "h2"})

    assert changes.changed == ("a.md", "b.md")
    assert store.stats()["chunker_version"] == "1"


def test_torn_commit_is_detected_on_load(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    store = IndexStore(tmp_path)
    _seed(store)
    store.apply([EmbeddedChunk(_chunk("b.md", "b.md", "rewritten"), (0.9, 0.1))], ["b.md"], {"a.md": "h1", "b.md": "h2x"})

    real_replace = os.replace
    calls = {"count": 0}

    def fail_second(src, dst):
        calls["count"] += 1
        if calls["count"] == 2:
            raise OSError("disk full")
        real_replace(src, dst)

    monkeypatch.setattr("docsrag.index.store.os.replace", fail_second)
    with pytest.raises(PersistenceError):
        store.persist()
    monkeypatch.undo()

    assert store.snapshot.chunks["b.md"].text == "text"
    with pytest.raises(SearchError):
        IndexStore(tmp_path).load()


def test_manifest_records_generation_and_checksums(tmp_path: Path):
    store = IndexStore(tmp_path)
    _seed(store)
    manifest = json.loads((tmp_path / MANIFEST_FILE).read_text(encoding="utf-8"))

    assert manifest["generation"]
    assert set(manifest["checksums"]) == {DOCUMENTS_FILE, EMBEDDINGS_FILE, FILE_HASHES_FILE}


def test_empty_index_round_trip(tmp_path: Path):
    store = IndexStore(tmp_path)
    _seed(store)
    store.apply([], list(store.snapshot.chunks), {})
    store.persist()

    assert len(store.snapshot) == 0
    reloaded = IndexStore(tmp_path)
    assert reloaded.load() is True
    assert len(reloaded.snapshot) == 0
    assert dict(reloaded.snapshot.fingerprints) == {}


def test_unknown_metadata_fields_are_logged():
    data = {**_chunk("a.md", "a.md").metadata.to_dict(), "reading_time": 3}
    with capture_logs() as logs:
        metadata = ChunkMetadata.from_dict(data)

    assert metadata.file_path == "a.md"
    assert {"event": "models.metadata.unknown_fields", "fields": ["reading_time"], "log_level": "warning"} in logs
