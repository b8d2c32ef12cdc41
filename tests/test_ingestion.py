from __future__ import annotations

from pathlib import Path

import pytest
from prometheus_client import REGISTRY

from conftest import KeywordAdapter, SleepRecorder, write_docs
from docsrag.errors import PersistenceError
from docsrag.index.store import DOCUMENTS_FILE, EMBEDDINGS_FILE, IndexStore
from docsrag.ingestion.service import IngestionConfig, IngestionService

DOCS = {
    "guides/install.md": "# Install\n\nHow to install the plugin.",
    "guides/deploy.md": "# Deploy\n\nDeploy steps.",
    "intro.md": "Welcome to the search docs.",
}


def _service(tmp_path: Path, adapter: KeywordAdapter, sleep: SleepRecorder, batch_size: int = 2) -> IngestionService:
    docs = write_docs(tmp_path / "docs", DOCS) if not (tmp_path / "docs").exists() else tmp_path / "docs"
    return IngestionService(
        IndexStore(tmp_path / "index"),
        adapter,
        config=IngestionConfig(docs_dir=docs, batch_size=batch_size, batch_delay_seconds=0.5),
        sleep=sleep,
    )


def _key(tmp_path: Path, relative: str) -> str:
    return (tmp_path / "docs" / relative).as_posix()


def test_initial_build_indexes_every_file(tmp_path: Path, adapter: KeywordAdapter, no_sleep: SleepRecorder):
    service = _service(tmp_path, adapter, no_sleep)
    report = service.initialize()

    assert report.full
    assert report.new == 3
    assert report.chunks_inserted == 3
    assert report.total_chunks == 3
    assert service.store.loaded
    assert no_sleep.delays == [0.5]
    assert set(service.store.snapshot.fingerprints) == {_key(tmp_path, name) for name in DOCS}
    assert (tmp_path / "index" / DOCUMENTS_FILE).exists()


def test_unchanged_tree_is_a_no_op(tmp_path: Path, adapter: KeywordAdapter, no_sleep: SleepRecorder):
    service = _service(tmp_path, adapter, no_sleep)
    service.initialize()
    calls = adapter.calls["embed_batch"]

    report = service.rebuild()

    assert report.skipped
    assert report.unchanged == 3
    assert adapter.calls["embed_batch"] == calls


def test_only_changed_file_is_reembedded(tmp_path: Path, adapter: KeywordAdapter, no_sleep: SleepRecorder):
    service = _service(tmp_path, adapter, no_sleep)
    service.initialize()
    before = dict(service.store.snapshot.chunks)
    deploy = _key(tmp_path, "guides/deploy.md")
    Path(deploy).write_text("# Deploy\n\nDeploy with the theme.", encoding="utf-8")

    report = service.rebuild()

    assert report.changed == 1
    assert report.chunks_inserted == 1
    assert report.chunks_deleted == 1
    after = service.store.snapshot.chunks
    assert after[deploy].text == "# Deploy\n\nDeploy with the theme."
    install = _key(tmp_path, "guides/install.md")
    assert after[install] == before[install]


def test_removed_file_leaves_the_index(tmp_path: Path, adapter: KeywordAdapter, no_sleep: SleepRecorder):
    service = _service(tmp_path, adapter, no_sleep)
    service.initialize()
    intro = _key(tmp_path, "intro.md")
    Path(intro).unlink()

    report = service.rebuild()

    assert report.removed == 1
    assert intro not in service.store.snapshot.chunks
    assert intro not in service.store.snapshot.fingerprints


def test_failed_batch_is_retried_next_pass(tmp_path: Path, no_sleep: SleepRecorder):
    adapter = KeywordAdapter(fail_batches=1)
    service = _service(tmp_path, adapter, no_sleep, batch_size=1)
    failures = REGISTRY.get_sample_value("docsrag_embedding_batch_failures_total") or 0.0

    report = service.initialize()

    deploy = _key(tmp_path, "guides/deploy.md")
    assert report.failed_files == (deploy,)
    assert report.chunks_inserted == 2
    assert deploy not in service.store.snapshot.fingerprints
    assert REGISTRY.get_sample_value("docsrag_embedding_batch_failures_total") == failures + 1

    retry = service.rebuild()
    assert retry.new == 1
    assert deploy in service.store.snapshot.chunks
    assert deploy in service.store.snapshot.fingerprints


def test_unparseable_file_keeps_previous_chunks(tmp_path: Path, adapter: KeywordAdapter, no_sleep: SleepRecorder):
    service = _service(tmp_path, adapter, no_sleep)
    service.initialize()
    intro = _key(tmp_path, "intro.md")
    old_hash = service.store.snapshot.fingerprints[intro]
    Path(intro).write_text("---\ntitle: [broken\n---\nBody", encoding="utf-8")

    report = service.rebuild()

    assert report.failed_files == (intro,)
    assert intro in service.store.snapshot.chunks
    assert service.store.snapshot.fingerprints[intro] == old_hash


def test_new_unparseable_file_is_skipped(tmp_path: Path, adapter: KeywordAdapter, no_sleep: SleepRecorder):
    write_docs(tmp_path / "docs", {**DOCS, "bad.md": "---\n- not a mapping\n---\nBody"})
    service = _service(tmp_path, adapter, no_sleep)

    report = service.initialize()

    bad = _key(tmp_path, "bad.md")
    assert report.failed_files == (bad,)
    assert report.chunks_inserted == 3
    assert bad not in service.store.snapshot.fingerprints


def test_persistence_failure_propagates(
    tmp_path: Path,
    adapter: KeywordAdapter,
    no_sleep: SleepRecorder,
    monkeypatch: pytest.MonkeyPatch,
):
    service = _service(tmp_path, adapter, no_sleep)
    service.initialize()
    Path(_key(tmp_path, "intro.md")).write_text("Welcome to the install docs.", encoding="utf-8")

    def boom(src, dst):
        raise OSError("read-only file system")

    monkeypatch.setattr("docsrag.index.store.os.replace", boom)
    with pytest.raises(PersistenceError):
        service.rebuild()
    monkeypatch.undo()

    assert service.store.snapshot.chunks[_key(tmp_path, "intro.md")].text == "Welcome to the search docs."


def test_corrupt_snapshot_triggers_full_build(tmp_path: Path, adapter: KeywordAdapter, no_sleep: SleepRecorder):
    index = tmp_path / "index"
    index.mkdir()
    (index / DOCUMENTS_FILE).write_text("{", encoding="utf-8")
    (index / EMBEDDINGS_FILE).write_text("{", encoding="utf-8")
    service = _service(tmp_path, adapter, no_sleep)

    report = service.initialize()

    assert report.full
    assert report.total_chunks == 3


def test_removing_the_last_file_empties_the_index(tmp_path: Path, adapter: KeywordAdapter, no_sleep: SleepRecorder):
    only = write_docs(tmp_path / "docs", {"only.md": "# Only\n\nThe single page."}) / "only.md"
    service = _service(tmp_path, adapter, no_sleep)
    service.initialize()
    only.unlink()

    report = service.rebuild()

    assert report.removed == 1
    assert report.total_chunks == 0
    assert len(service.store.snapshot) == 0
    assert dict(service.store.snapshot.fingerprints) == {}
    on_disk = IndexStore(tmp_path / "index")
    assert on_disk.load() is True
    assert len(on_disk.snapshot) == 0
    assert dict(on_disk.snapshot.fingerprints) == {}

    assert service.rebuild().skipped
