"""Workflow stages.

Each stage reads and writes the shared ``RunContext`` and returns one member
of its outcome enum. ``run`` is the body the orchestrator retries; when the
retries for an ``AdapterError`` are exhausted the orchestrator calls
``recover``, which either degrades gracefully or fails the stage.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Type

from docsrag.errors import AdapterError, WorkflowError
from docsrag.metrics.observability import get_logger
from docsrag.models import DEFAULT_INTENT, SearchHit
from docsrag.services.knowledge import RetrievalCapabilities
from docsrag.services.prompts import PromptBuilder
from docsrag.services.provider import ProviderAdapter
from docsrag.workflow.graph import (
    Default,
    Done,
    IntentOutcome,
    RunContext,
    SearchOutcome,
    StageId,
)

_logger = get_logger("workflow")


class Stage:
    id: StageId
    outcomes: Type[Enum]

    def run(self, ctx: RunContext) -> Enum:
        raise NotImplementedError

    def recover(self, ctx: RunContext, exc: AdapterError) -> Enum:
        raise WorkflowError(str(exc), stage=self.id.value) from exc


class IntentStage(Stage):
    id = StageId.INTENT
    outcomes = IntentOutcome

    def __init__(self, adapter: ProviderAdapter) -> None:
        self._adapter = adapter

    def run(self, ctx: RunContext) -> IntentOutcome:
        if not ctx.query.strip():
            raise WorkflowError("Query is required", stage=self.id.value)
        ctx.intent = self._adapter.classify_intent(ctx.query)
        _logger.info("workflow.intent", run_id=ctx.run_id, intent=ctx.intent.label, confidence=ctx.intent.confidence)
        return self._route(ctx)

    def recover(self, ctx: RunContext, exc: AdapterError) -> IntentOutcome:
        _logger.warning("workflow.intent.degraded", run_id=ctx.run_id, detail=str(exc))
        ctx.intent = DEFAULT_INTENT
        return IntentOutcome.DEFAULT

    @staticmethod
    def _route(ctx: RunContext) -> IntentOutcome:
        label = ctx.intent.label if ctx.intent else DEFAULT_INTENT.label
        if label == "troubleshooting":
            return IntentOutcome.TROUBLESHOOTING
        if label == "example":
            return IntentOutcome.EXAMPLE
        return IntentOutcome.DEFAULT


class ExpansionStage(Stage):
    id = StageId.EXPANSION
    outcomes = Default

    def __init__(self, adapter: ProviderAdapter) -> None:
        self._adapter = adapter

    def run(self, ctx: RunContext) -> Default:
        ctx.expanded_queries = list(self._adapter.expand(ctx.query))
        _logger.info("workflow.expansion", run_id=ctx.run_id, variations=len(ctx.expanded_queries))
        return Default.DEFAULT

    def recover(self, ctx: RunContext, exc: AdapterError) -> Default:
        _logger.warning("workflow.expansion.degraded", run_id=ctx.run_id, detail=str(exc))
        ctx.expanded_queries = []
        return Default.DEFAULT


class SearchStage(Stage):
    """Searches the original query and every expansion, keeping each chunk's best score."""

    id = StageId.SEARCH
    outcomes = SearchOutcome

    def __init__(self, knowledge: RetrievalCapabilities, *, top_k: int = 5, high_confidence_hits: int = 3) -> None:
        self._knowledge = knowledge
        self._top_k = top_k
        self._high_confidence_hits = high_confidence_hits

    def run(self, ctx: RunContext) -> SearchOutcome:
        best: Dict[str, SearchHit] = {}
        order: List[str] = []
        hits = self._knowledge.search(ctx.query, self._top_k)
        for variant in ctx.expanded_queries:
            try:
                hits = [*hits, *self._knowledge.search(variant, self._top_k)]
            except AdapterError as exc:
                _logger.warning("workflow.search.variant_failed", run_id=ctx.run_id, query=variant, detail=str(exc))
        for hit in hits:
            current = best.get(hit.chunk.id)
            if current is None:
                order.append(hit.chunk.id)
                best[hit.chunk.id] = hit
            elif hit.similarity > current.similarity:
                best[hit.chunk.id] = hit
        ranked = sorted((best[chunk_id] for chunk_id in order), key=lambda hit: hit.similarity, reverse=True)
        ctx.results = ranked[: self._top_k]
        _logger.info("workflow.search", run_id=ctx.run_id, documents=len(ctx.results))
        if not ctx.results:
            return SearchOutcome.NO_RESULTS
        if len(ctx.results) >= self._high_confidence_hits:
            return SearchOutcome.HIGH_CONFIDENCE
        return SearchOutcome.LOW_CONFIDENCE


class ContextStage(Stage):
    id = StageId.CONTEXT
    outcomes = Default

    def __init__(self, prompts: PromptBuilder) -> None:
        self._prompts = prompts

    def run(self, ctx: RunContext) -> Default:
        ctx.context = self._prompts.build_context(ctx.results)
        return Default.DEFAULT


class GenerationStage(Stage):
    id = StageId.GENERATION
    outcomes = Default

    def __init__(self, knowledge: RetrievalCapabilities) -> None:
        self._knowledge = knowledge

    def run(self, ctx: RunContext) -> Default:
        if not ctx.context:
            raise WorkflowError("No context available for response generation", stage=self.id.value)
        ctx.answer = self._knowledge.generate_with_sources(
            ctx.query,
            ctx.context,
            ctx.results,
            ctx.intent or DEFAULT_INTENT,
        )
        ctx.path = "grounded"
        return Default.DEFAULT


class FallbackStage(Stage):
    id = StageId.FALLBACK
    outcomes = Default

    def __init__(self, knowledge: RetrievalCapabilities) -> None:
        self._knowledge = knowledge

    def run(self, ctx: RunContext) -> Default:
        ctx.answer = self._knowledge.generate_fallback(ctx.query, ctx.intent or DEFAULT_INTENT)
        ctx.path = "fallback"
        return Default.DEFAULT


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class MetadataStage(Stage):
    id = StageId.METADATA
    outcomes = Done

    def run(self, ctx: RunContext) -> Done:
        intent = ctx.intent or DEFAULT_INTENT
        ctx.metadata = {
            "query_analysis": {
                "intent": intent.label,
                "confidence": intent.confidence,
                "expansions": len(ctx.expanded_queries),
            },
            "search_metadata": {
                "documents_found": len(ctx.results),
                "top_relevance": ctx.results[0].similarity if ctx.results else 0.0,
            },
            "response_length": len(ctx.answer),
            "timestamp": _timestamp(),
            "path": ctx.path,
            "grounded": ctx.path == "grounded",
            "error": False,
            "run_id": ctx.run_id,
            "stages": list(ctx.visited),
        }
        return Done.DONE


ERROR_ANSWER = """## System Error

I encountered an issue while processing your query: "{query}"

**Error Details:** {message}

**What you can try:**
- Rephrase your question using different keywords
- Check if your query is related to the available documentation
- Try a simpler, more specific question"""


class ErrorStage(Stage):
    id = StageId.ERROR
    outcomes = Done

    def run(self, ctx: RunContext) -> Done:
        message = str(ctx.error) if ctx.error else "Unknown error occurred"
        ctx.answer = ERROR_ANSWER.format(query=ctx.query, message=message)
        ctx.path = "error"
        ctx.metadata = {
            "error": True,
            "message": message,
            "failed_stage": ctx.failed_stage,
            "path": "error",
            "grounded": False,
            "run_id": ctx.run_id,
            "timestamp": _timestamp(),
            "stages": list(ctx.visited),
        }
        return Done.DONE


@dataclass(frozen=True)
class StageSet:
    """Every stage of the workflow, keyed by id."""

    stages: Dict[StageId, Stage]

    def __getitem__(self, stage_id: StageId) -> Stage:
        return self.stages[stage_id]

    @classmethod
    def build(
        cls,
        adapter: ProviderAdapter,
        knowledge: RetrievalCapabilities,
        prompts: PromptBuilder,
        *,
        top_k: int = 5,
        high_confidence_hits: int = 3,
    ) -> "StageSet":
        stages: List[Stage] = [
            IntentStage(adapter),
            ExpansionStage(adapter),
            SearchStage(knowledge, top_k=top_k, high_confidence_hits=high_confidence_hits),
            ContextStage(prompts),
            GenerationStage(knowledge),
            FallbackStage(knowledge),
            MetadataStage(),
            ErrorStage(),
        ]
        return cls(stages={stage.id: stage for stage in stages})
