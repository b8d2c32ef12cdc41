from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

from docsrag.errors import AdapterError
from docsrag.models import DEFAULT_INTENT, Intent, Vector

VOCABULARY = ("install", "configure", "error", "deploy", "plugin", "theme", "search", "example")


def keyword_vector(text: str) -> Vector:
    words = text.lower().replace("#", " ").split()
    return tuple(float(sum(1 for word in words if word.startswith(term))) for term in VOCABULARY)


class KeywordAdapter:
    """Provider stand-in whose vectors count vocabulary words."""

    def __init__(
        self,
        *,
        intent: Intent = DEFAULT_INTENT,
        expansions: Sequence[str] = (),
        answer: str = "generated answer",
        fail_classify: int = 0,
        fail_expand: int = 0,
        fail_generate: int = 0,
        fail_embed: Sequence[str] = (),
        fail_batches: int = 0,
    ) -> None:
        self.intent = intent
        self.expansions = list(expansions)
        self.answer = answer
        self.fail_classify = fail_classify
        self.fail_expand = fail_expand
        self.fail_generate = fail_generate
        self.fail_embed = set(fail_embed)
        self.fail_batches = fail_batches
        self.calls: Dict[str, int] = {"classify": 0, "expand": 0, "generate": 0, "embed": 0, "embed_batch": 0}
        self.prompts: List[str] = []

    def embed(self, text: str) -> Vector:
        self.calls["embed"] += 1
        if text in self.fail_embed:
            raise AdapterError(f"cannot embed {text!r}")
        return keyword_vector(text)

    def embed_batch(self, texts: Sequence[str]) -> List[Optional[Vector]]:
        self.calls["embed_batch"] += 1
        if self.fail_batches:
            self.fail_batches -= 1
            raise AdapterError("batch rejected")
        return [None if text in self.fail_embed else keyword_vector(text) for text in texts]

    def generate(self, prompt: str) -> str:
        self.calls["generate"] += 1
        self.prompts.append(prompt)
        if self.fail_generate:
            self.fail_generate -= 1
            raise AdapterError("generation unavailable")
        return self.answer

    def classify_intent(self, text: str) -> Intent:
        self.calls["classify"] += 1
        if self.fail_classify:
            self.fail_classify -= 1
            raise AdapterError("classifier unavailable")
        return self.intent

    def expand(self, text: str) -> List[str]:
        self.calls["expand"] += 1
        if self.fail_expand:
            self.fail_expand -= 1
            raise AdapterError("expansion unavailable")
        return list(self.expansions)


def write_docs(root: Path, files: Dict[str, str]) -> Path:
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def adapter() -> KeywordAdapter:
    return KeywordAdapter()


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def no_sleep() -> SleepRecorder:
    return SleepRecorder()
