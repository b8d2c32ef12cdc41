"""Query workflow: walks the stage graph for one query and never raises."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Mapping, Optional, Tuple

from docsrag.config import Settings
from docsrag.errors import AdapterError, DocsRagError, WorkflowError
from docsrag.metrics.observability import PipelineMetrics, TimedSection, get_logger
from docsrag.models import QueryResult
from docsrag.services.knowledge import RetrievalCapabilities
from docsrag.services.prompts import PromptBuilder
from docsrag.services.provider import ProviderAdapter
from docsrag.workflow.graph import (
    START_STAGE,
    STAGE_OUTCOMES,
    TRANSITIONS,
    RetryPolicy,
    RunContext,
    StageId,
    retry_policies,
    validate_graph,
)
from docsrag.workflow.stages import StageSet


@dataclass(frozen=True)
class WorkflowConfig:
    """Tunables for the query workflow."""

    top_k: int = 5
    high_confidence_hits: int = 3
    retry_overrides: Mapping[str, Tuple[int, float]] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Settings) -> "WorkflowConfig":
        return cls(
            top_k=settings.search_top_k,
            high_confidence_hits=settings.high_confidence_hits,
            retry_overrides=dict(settings.stage_retry_overrides),
        )


class QueryWorkflow:
    """Runs intent, expansion, search, context and generation (or fallback) for a query."""

    def __init__(
        self,
        adapter: ProviderAdapter,
        knowledge: RetrievalCapabilities,
        prompts: PromptBuilder | None = None,
        *,
        config: WorkflowConfig | None = None,
        transitions: Mapping[Tuple[StageId, Enum], Optional[StageId]] = TRANSITIONS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        validate_graph(transitions, STAGE_OUTCOMES)
        self._config = config or WorkflowConfig()
        self._transitions = transitions
        self._policies: Dict[StageId, RetryPolicy] = retry_policies(self._config.retry_overrides)
        self._stages = StageSet.build(
            adapter,
            knowledge,
            prompts or PromptBuilder(),
            top_k=self._config.top_k,
            high_confidence_hits=self._config.high_confidence_hits,
        )
        self._sleep = sleep
        self._logger = get_logger("workflow")

    @property
    def policies(self) -> Mapping[StageId, RetryPolicy]:
        return self._policies

    def run_query(self, text: str) -> QueryResult:
        ctx = RunContext(run_id=uuid.uuid4().hex, query=text or "")
        start = time.perf_counter()
        self._logger.info("workflow.start", run_id=ctx.run_id, query=ctx.query)
        stage_id: Optional[StageId] = START_STAGE
        while stage_id is not None:
            try:
                stage_id = self._step(stage_id, ctx)
            except DocsRagError as exc:
                self._fail(ctx, stage_id, exc)
                stage_id = None
            except Exception as exc:  # noqa: BLE001 - any stage failure ends on the error path
                self._fail(ctx, stage_id, WorkflowError(f"{type(exc).__name__}: {exc}", stage=stage_id.value))
                stage_id = None
        PipelineMetrics.workflow_runs.labels(path=ctx.path or "error").inc()
        self._logger.info(
            "workflow.complete",
            run_id=ctx.run_id,
            path=ctx.path,
            stages=ctx.visited,
            duration_seconds=time.perf_counter() - start,
        )
        return QueryResult(answer=ctx.answer, metadata=ctx.metadata, run_id=ctx.run_id)

    def _step(self, stage_id: StageId, ctx: RunContext) -> Optional[StageId]:
        stage = self._stages[stage_id]
        ctx.visited.append(stage_id.value)
        with TimedSection(lambda duration, name=stage_id.value: PipelineMetrics.observe_stage(name, duration)):
            try:
                outcome = self._policies[stage_id].call(stage_id.value, stage.run, ctx, sleep=self._sleep)
            except AdapterError as exc:
                outcome = stage.recover(ctx, exc)
        if not isinstance(outcome, stage.outcomes):
            raise WorkflowError(f"Stage {stage_id.value} returned undeclared outcome {outcome!r}", stage=stage_id.value)
        try:
            return self._transitions[(stage_id, outcome)]
        except KeyError as exc:
            raise WorkflowError(f"No transition for ({stage_id.value}, {outcome.value})", stage=stage_id.value) from exc

    def _fail(self, ctx: RunContext, stage_id: StageId, exc: DocsRagError) -> None:
        ctx.error = exc
        ctx.failed_stage = getattr(exc, "stage", None) or stage_id.value
        self._logger.error(
            "workflow.stage.failed",
            run_id=ctx.run_id,
            stage=ctx.failed_stage,
            error_type=type(exc).__name__,
            detail=str(exc),
        )
        if stage_id is StageId.ERROR:
            ctx.answer = ctx.answer or "System error occurred"
            ctx.path = "error"
            return
        ctx.visited.append(StageId.ERROR.value)
        # Formatting only; it does not call the provider.
        self._stages[StageId.ERROR].run(ctx)
