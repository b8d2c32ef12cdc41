"""Command line entry point: build the index or ask a question."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Sequence

from docsrag.api.app import AppDependencies, build_dependencies
from docsrag.config import Settings, get_settings
from docsrag.errors import DocsRagError


def _settings_from_args(args: argparse.Namespace) -> Settings:
    overrides: dict[str, object] = {}
    if args.docs_dir is not None:
        overrides["docs_dir"] = args.docs_dir
    if args.index_dir is not None:
        overrides["index_dir"] = args.index_dir
    return get_settings(overrides or None)


def run_index(deps: AppDependencies, *, full: bool = False) -> dict:
    if full:
        return deps.ingestion.rebuild(full=True).to_dict()
    return deps.ingestion.initialize().to_dict()


def run_ask(deps: AppDependencies, question: str, *, refresh: bool = True) -> dict:
    if refresh:
        deps.ingestion.initialize()
    else:
        deps.store.load()
    return deps.workflow.run_query(question).to_dict()


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="docsrag", description="Question answering over Markdown documentation.")
    parser.add_argument("--docs-dir", type=Path, default=None, help="Documentation tree to index")
    parser.add_argument("--index-dir", type=Path, default=None, help="Directory holding the index snapshot")
    commands = parser.add_subparsers(dest="command", required=True)

    index = commands.add_parser("index", help="Bring the index up to date with the documentation tree")
    index.add_argument("--full", action="store_true", help="Re-chunk and re-embed every file")

    ask = commands.add_parser("ask", help="Answer a question and print the JSON result")
    ask.add_argument("question", help="Question to answer")
    ask.add_argument("--no-refresh", action="store_true", help="Use the persisted index without rescanning")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    deps = build_dependencies(_settings_from_args(args))
    try:
        if args.command == "index":
            result = run_index(deps, full=args.full)
        else:
            result = run_ask(deps, args.question, refresh=not args.no_refresh)
    except DocsRagError as exc:
        print(f"docsrag: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(result, indent=2, ensure_ascii=False))
    if args.command == "ask" and result["metadata"].get("error"):
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    sys.exit(main())
