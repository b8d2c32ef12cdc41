"""Provider adapters wrapping embedding and text generation backends."""

from __future__ import annotations

import logging
import re
from typing import Any, List, Optional, Protocol, Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage
from langchain_google_genai import ChatGoogleGenerativeAI

from docsrag.config import Settings
from docsrag.embeddings.service import (
    EmbeddingBackend,
    EmbeddingConfig,
    build_embedding_backend,
)
from docsrag.errors import AdapterError
from docsrag.models import DEFAULT_INTENT, Intent, Vector
from docsrag.services.prompts import PromptBuilder

LOGGER = logging.getLogger(__name__)

MAX_EXPANSIONS = 3
CLASSIFIED_CONFIDENCE = 0.8

_LABEL_ALIASES = {
    "how-to": "how-to",
    "howto": "how-to",
    "concept": "concept",
    "reference": "reference",
    "troubleshooting": "troubleshooting",
    "example": "example",
    "general": "general",
}


class ProviderAdapter(Protocol):
    """External boundary for embeddings, generation and query analysis."""

    def embed(self, text: str) -> Vector:
        """Embed one text; raises ``AdapterError`` on failure."""

    def embed_batch(self, texts: Sequence[str]) -> List[Optional[Vector]]:
        """Embed texts in order; an item that cannot be embedded becomes ``None``."""

    def generate(self, prompt: str) -> str:
        """Return generated text for ``prompt``."""

    def classify_intent(self, text: str) -> Intent:
        """Return the query intent."""

    def expand(self, text: str) -> List[str]:
        """Return up to three alternative phrasings of ``text``."""


def parse_intent(raw: str) -> Intent:
    label = raw.strip().strip("`*\"'.").lower()
    mapped = _LABEL_ALIASES.get(label)
    if mapped is None:
        return DEFAULT_INTENT
    return Intent(label=mapped, confidence=CLASSIFIED_CONFIDENCE)


def parse_expansions(raw: str, original: str) -> List[str]:
    alternatives: List[str] = []
    for line in raw.splitlines():
        candidate = re.sub(r"^\s*(?:[-*]|\d+[.)])\s*", "", line).strip()
        if not candidate or candidate == original.strip() or candidate in alternatives:
            continue
        alternatives.append(candidate)
    return alternatives[:MAX_EXPANSIONS]


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    parts = []
    for part in content or ():
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(str(part.get("text", "")))
    return "".join(parts)


class _EmbeddingMixin:
    _embeddings: EmbeddingBackend

    def embed(self, text: str) -> Vector:
        if not text or not text.strip():
            raise AdapterError("Text cannot be empty for embedding")
        try:
            return tuple(self._embeddings.embed_query(text))
        except AdapterError:
            raise
        except Exception as exc:  # noqa: BLE001 - provider SDKs raise arbitrary errors
            raise AdapterError(f"Embedding failed: {exc}") from exc

    def embed_batch(self, texts: Sequence[str]) -> List[Optional[Vector]]:
        if not texts:
            return []
        try:
            vectors = self._embeddings.embed_documents(list(texts))
            return [tuple(vector) for vector in vectors]
        except Exception as exc:  # noqa: BLE001 - retried item by item below
            LOGGER.warning("Batch embedding failed (%s); retrying %d texts individually", exc, len(texts))
        results: List[Optional[Vector]] = []
        for text in texts:
            try:
                results.append(self.embed(text))
            except AdapterError as exc:
                LOGGER.error("Embedding failed for text %r: %s", text[:100], exc)
                results.append(None)
        if not any(results):
            raise AdapterError(f"Embedding failed for all {len(texts)} texts in batch")
        return results


class LangChainProviderAdapter(_EmbeddingMixin):
    """Adapter calling a LangChain chat model and an embedding backend."""

    def __init__(
        self,
        embeddings: EmbeddingBackend,
        chat_model: BaseChatModel,
        prompts: PromptBuilder | None = None,
    ) -> None:
        self._embeddings = embeddings
        self._chat_model = chat_model
        self._prompts = prompts or PromptBuilder()

    def generate(self, prompt: str) -> str:
        try:
            response = self._chat_model.invoke([HumanMessage(content=prompt)])
        except Exception as exc:  # noqa: BLE001 - provider SDKs raise arbitrary errors
            raise AdapterError(f"Generation failed: {exc}") from exc
        text = _message_text(response.content).strip()
        if not text:
            raise AdapterError("No text generated by the model")
        return text

    def classify_intent(self, text: str) -> Intent:
        return parse_intent(self.generate(self._prompts.classification(text)))

    def expand(self, text: str) -> List[str]:
        return parse_expansions(self.generate(self._prompts.expansion(text)), text)


_KEYWORD_INTENTS = (
    ("troubleshooting", ("error", "fail", "broken", "not working", "debug", "issue", "fix", "exception")),
    ("example", ("example", "sample", "snippet", "show me")),
    ("how-to", ("how do", "how to", "how can", "steps", "setup", "set up", "install", "configure")),
    ("reference", ("parameter", "option", "api", "signature", "argument", "config")),
    ("concept", ("what is", "what are", "explain", "why", "overview")),
)

_CONTEXT_MARKER = "Documentation context:\n"


class OfflineProviderAdapter(_EmbeddingMixin):
    """Deterministic adapter for tests and air-gapped installs.

    Intents come from keyword heuristics, no expansions are produced, and
    answers echo the documentation context found in the prompt.
    """

    def __init__(self, embeddings: EmbeddingBackend) -> None:
        self._embeddings = embeddings

    def generate(self, prompt: str) -> str:
        if _CONTEXT_MARKER in prompt:
            context = prompt.split(_CONTEXT_MARKER, 1)[1].split("\n\nInstructions:", 1)[0].strip()
            return f"Based on the documentation:\n\n{context}"
        return "I do not have enough relevant documentation to answer that question."

    def classify_intent(self, text: str) -> Intent:
        lowered = text.lower()
        for label, keywords in _KEYWORD_INTENTS:
            if any(keyword in lowered for keyword in keywords):
                return Intent(label=label, confidence=CLASSIFIED_CONFIDENCE)
        return DEFAULT_INTENT

    def expand(self, text: str) -> List[str]:
        return []


def build_provider_adapter(settings: Settings) -> ProviderAdapter:
    embeddings = build_embedding_backend(
        EmbeddingConfig(
            provider=settings.embedding_provider,
            model=settings.embedding_model,
            dim=settings.embedding_dim,
            api_key=settings.google_api_key,
        )
    )
    if settings.generation_provider == "template":
        return OfflineProviderAdapter(embeddings)
    chat_model = ChatGoogleGenerativeAI(
        model=settings.generator_model,
        temperature=settings.generator_temperature,
        google_api_key=settings.google_api_key,
    )
    return LangChainProviderAdapter(embeddings, chat_model)
