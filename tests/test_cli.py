from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import write_docs
from docsrag.cli import main, parse_args

DOCS = {
    "guides/install.md": "# Install\n\nRun the installer and restart.",
    "intro.md": "# Welcome\n\nThis site documents the plugin.",
}


def _args(tmp_path: Path, *rest: str) -> list[str]:
    return ["--docs-dir", str(tmp_path / "docs"), "--index-dir", str(tmp_path / "index"), *rest]


def test_index_then_ask(
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("DOCSRAG_MIN_SIMILARITY", "-1")
    write_docs(tmp_path / "docs", DOCS)

    assert main(_args(tmp_path, "index")) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["new"] == 2
    assert report["total_chunks"] == 2
    assert (tmp_path / "index").is_dir()

    assert main(_args(tmp_path, "ask", "How do I install it?", "--no-refresh")) == 0
    answer = json.loads(capsys.readouterr().out)
    assert answer["metadata"]["path"] == "grounded"
    assert "Run the installer" in answer["response"]


def test_ask_without_index_reports_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    write_docs(tmp_path / "docs", DOCS)

    assert main(_args(tmp_path, "ask", "deploy", "--no-refresh")) == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["metadata"]["failed_stage"] == "search"


def test_full_rebuild_flag(tmp_path: Path) -> None:
    args = parse_args(_args(tmp_path, "index", "--full"))
    assert args.command == "index"
    assert args.full is True
    assert args.docs_dir == tmp_path / "docs"
