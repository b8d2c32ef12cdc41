"""Retrieval capabilities exposed to the query workflow."""

from __future__ import annotations

from typing import List, Protocol, Sequence

from docsrag.index.search import SimilaritySearch
from docsrag.metrics.observability import get_logger
from docsrag.models import DEFAULT_INTENT, Intent, SearchHit
from docsrag.services.prompts import PromptBuilder
from docsrag.services.provider import ProviderAdapter


class RetrievalCapabilities(Protocol):
    """The three operations the workflow needs from the knowledge base."""

    def search(self, query: str, top_k: int) -> List[SearchHit]:
        """Embed ``query`` and return the closest chunks."""

    def generate_fallback(self, query: str, intent: Intent) -> str:
        """Answer without documentation context."""

    def generate_with_sources(self, query: str, context: str, hits: Sequence[SearchHit], intent: Intent) -> str:
        """Answer from ``context`` and append the sources used."""


class DocumentationKnowledgeBase:
    """Knowledge base backed by the in-memory index and a provider adapter."""

    def __init__(
        self,
        search: SimilaritySearch,
        adapter: ProviderAdapter,
        prompts: PromptBuilder | None = None,
        *,
        min_similarity: float | None = 0.35,
    ) -> None:
        self._search = search
        self._adapter = adapter
        self._prompts = prompts or PromptBuilder()
        self._min_similarity = min_similarity
        self._logger = get_logger("knowledge")

    @property
    def prompts(self) -> PromptBuilder:
        return self._prompts

    def search(self, query: str, top_k: int) -> List[SearchHit]:
        vector = self._adapter.embed(query)
        hits = self._search.search(vector, top_k, min_similarity=self._min_similarity)
        self._logger.info(
            "knowledge.search",
            query=query,
            hits=len(hits),
            top_similarity=hits[0].similarity if hits else None,
        )
        return hits

    def generate_fallback(self, query: str, intent: Intent = DEFAULT_INTENT) -> str:
        answer = self._adapter.generate(self._prompts.fallback(query))
        return self._prompts.fallback_notice(query) + answer

    def generate_with_sources(
        self,
        query: str,
        context: str,
        hits: Sequence[SearchHit],
        intent: Intent = DEFAULT_INTENT,
    ) -> str:
        answer = self._adapter.generate(self._prompts.grounded(query, context, intent))
        if not hits:
            return answer
        return f"{answer}\n\n---\n\n{self._prompts.sources_section(hits)}"
