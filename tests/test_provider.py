from __future__ import annotations

import math
from typing import List

import pytest
from langchain_core.embeddings import DeterministicFakeEmbedding
from langchain_core.language_models import FakeListChatModel

from docsrag.config import Settings
from docsrag.embeddings.service import (
    MAX_EMBEDDING_CHARS,
    EmbeddingConfig,
    HashEmbeddingBackend,
    LangChainEmbeddingBackend,
)
from docsrag.errors import AdapterError
from docsrag.services.prompts import PromptBuilder
from docsrag.services.provider import (
    LangChainProviderAdapter,
    OfflineProviderAdapter,
    build_provider_adapter,
    parse_expansions,
    parse_intent,
)


class RecordingEmbeddings:
    def __init__(self, fail_on: str | None = None, fail_batch: bool = False) -> None:
        self.fail_on = fail_on
        self.fail_batch = fail_batch
        self.queries: List[str] = []

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        if self.fail_batch:
            raise RuntimeError("quota exceeded")
        return [[1.0, 0.0] for _ in texts]

    def embed_query(self, text: str) -> List[float]:
        self.queries.append(text)
        if text == self.fail_on:
            raise RuntimeError("bad input")
        return [3.0, 4.0]


class BrokenChatModel:
    def invoke(self, messages):
        raise RuntimeError("service unavailable")


def test_parse_intent_maps_known_labels():
    assert parse_intent("How-To").label == "how-to"
    assert parse_intent("howto").confidence == 0.8
    assert parse_intent(" Troubleshooting.\n").label == "troubleshooting"
    unknown = parse_intent("banana")
    assert (unknown.label, unknown.confidence) == ("general", 0.5)


def test_parse_expansions_limits_and_filters():
    raw = "1. first\n\n- second\noriginal q\nthird\nfourth"
    assert parse_expansions(raw, "original q") == ["first", "second", "third"]


def test_langchain_adapter_round_trip():
    chat = FakeListChatModel(responses=["troubleshooting", "alt one\nalt two", "Final answer"])
    adapter = LangChainProviderAdapter(HashEmbeddingBackend(EmbeddingConfig(dim=8)), chat, PromptBuilder())

    intent = adapter.classify_intent("my build fails")
    assert (intent.label, intent.confidence) == ("troubleshooting", 0.8)
    assert adapter.expand("how to deploy") == ["alt one", "alt two"]
    assert adapter.generate("prompt") == "Final answer"


def test_generation_failures_become_adapter_errors():
    adapter = LangChainProviderAdapter(HashEmbeddingBackend(), BrokenChatModel())
    with pytest.raises(AdapterError):
        adapter.generate("prompt")
    empty = LangChainProviderAdapter(HashEmbeddingBackend(), FakeListChatModel(responses=["   "]))
    with pytest.raises(AdapterError):
        empty.generate("prompt")


def test_embed_batch_falls_back_per_item():
    backend = LangChainEmbeddingBackend(EmbeddingConfig(dim=2), client=RecordingEmbeddings("bad", fail_batch=True))
    adapter = OfflineProviderAdapter(backend)

    vectors = adapter.embed_batch(["good", "bad"])

    assert vectors[0] == pytest.approx((0.6, 0.8))
    assert vectors[1] is None


def test_embed_batch_raises_when_every_item_fails():
    backend = LangChainEmbeddingBackend(EmbeddingConfig(dim=2), client=RecordingEmbeddings("bad", fail_batch=True))
    with pytest.raises(AdapterError):
        OfflineProviderAdapter(backend).embed_batch(["bad"])


def test_embed_rejects_blank_text():
    with pytest.raises(AdapterError):
        OfflineProviderAdapter(HashEmbeddingBackend()).embed("  ")


def test_long_inputs_are_truncated():
    client = RecordingEmbeddings()
    backend = LangChainEmbeddingBackend(EmbeddingConfig(dim=2), client=client)
    backend.embed_query("x" * (MAX_EMBEDDING_CHARS + 500))
    assert len(client.queries[0]) == MAX_EMBEDDING_CHARS


def test_langchain_embeddings_are_normalized():
    backend = LangChainEmbeddingBackend(EmbeddingConfig(dim=8), client=DeterministicFakeEmbedding(size=8))
    vectors = backend.embed_documents(["alpha", "beta"])
    assert len(vectors) == 2
    assert all(len(vector) == 8 for vector in vectors)
    assert math.sqrt(sum(value * value for value in vectors[0])) == pytest.approx(1.0)
    assert backend.embed_query("alpha") == pytest.approx(vectors[0])


def test_hash_backend_is_deterministic():
    backend = HashEmbeddingBackend(EmbeddingConfig(dim=16))
    first = backend.embed_query("install the plugin")
    assert first == backend.embed_documents(["install the plugin"])[0]
    assert len(first) == 16
    assert math.sqrt(sum(value * value for value in first)) == pytest.approx(1.0)


def test_offline_adapter_heuristics():
    adapter = OfflineProviderAdapter(HashEmbeddingBackend())
    assert adapter.classify_intent("I get an error when deploying").label == "troubleshooting"
    assert adapter.classify_intent("Show me an example config").label == "example"
    assert adapter.classify_intent("How do I install it?").label == "how-to"
    assert adapter.classify_intent("hello there").confidence == 0.5
    assert adapter.expand("anything") == []


def test_offline_generation_echoes_context():
    adapter = OfflineProviderAdapter(HashEmbeddingBackend())
    prompt = PromptBuilder().grounded("q", "Document 1: a.md\nUse the installer.")
    assert "Use the installer." in adapter.generate(prompt)
    assert "not have enough" in adapter.generate(PromptBuilder().fallback("q"))


def test_build_provider_adapter_defaults_offline():
    assert isinstance(build_provider_adapter(Settings()), OfflineProviderAdapter)


def test_hash_vectors_of_unrelated_texts_are_near_orthogonal():
    backend = HashEmbeddingBackend()
    first, second = backend.embed_documents(["install the plugin", "xyzzy unrelated nonsense"])
    assert min(first) < 0.0
    assert abs(sum(a * b for a, b in zip(first, second))) < 0.35
