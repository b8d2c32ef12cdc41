"""Stage identifiers, transition table, retry policies and per-run state."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Type, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
    wait_none,
)

from docsrag.errors import AdapterError, WorkflowError
from docsrag.metrics.observability import PipelineMetrics, get_logger
from docsrag.models import Intent, SearchHit

T = TypeVar("T")

_logger = get_logger("workflow")


class StageId(str, Enum):
    INTENT = "intent"
    EXPANSION = "expansion"
    SEARCH = "search"
    CONTEXT = "context"
    GENERATION = "generation"
    FALLBACK = "fallback"
    METADATA = "metadata"
    ERROR = "error"


class IntentOutcome(str, Enum):
    DEFAULT = "default"
    TROUBLESHOOTING = "troubleshooting"
    EXAMPLE = "example"


class SearchOutcome(str, Enum):
    NO_RESULTS = "no_results"
    HIGH_CONFIDENCE = "high_confidence"
    LOW_CONFIDENCE = "low_confidence"


class Default(str, Enum):
    DEFAULT = "default"


class Done(str, Enum):
    DONE = "done"


STAGE_OUTCOMES: Mapping[StageId, Type[Enum]] = {
    StageId.INTENT: IntentOutcome,
    StageId.EXPANSION: Default,
    StageId.SEARCH: SearchOutcome,
    StageId.CONTEXT: Default,
    StageId.GENERATION: Default,
    StageId.FALLBACK: Default,
    StageId.METADATA: Done,
    StageId.ERROR: Done,
}

# ``None`` marks a terminal transition.
TRANSITIONS: Mapping[Tuple[StageId, Enum], Optional[StageId]] = {
    (StageId.INTENT, IntentOutcome.DEFAULT): StageId.EXPANSION,
    (StageId.INTENT, IntentOutcome.TROUBLESHOOTING): StageId.EXPANSION,
    (StageId.INTENT, IntentOutcome.EXAMPLE): StageId.EXPANSION,
    (StageId.EXPANSION, Default.DEFAULT): StageId.SEARCH,
    (StageId.SEARCH, SearchOutcome.NO_RESULTS): StageId.FALLBACK,
    (StageId.SEARCH, SearchOutcome.HIGH_CONFIDENCE): StageId.CONTEXT,
    (StageId.SEARCH, SearchOutcome.LOW_CONFIDENCE): StageId.CONTEXT,
    (StageId.CONTEXT, Default.DEFAULT): StageId.GENERATION,
    (StageId.GENERATION, Default.DEFAULT): StageId.METADATA,
    (StageId.FALLBACK, Default.DEFAULT): StageId.METADATA,
    (StageId.METADATA, Done.DONE): None,
    (StageId.ERROR, Done.DONE): None,
}

START_STAGE = StageId.INTENT


def validate_graph(
    transitions: Mapping[Tuple[StageId, Enum], Optional[StageId]] = TRANSITIONS,
    outcomes: Mapping[StageId, Type[Enum]] = STAGE_OUTCOMES,
) -> None:
    """Raise ``WorkflowError`` unless every outcome of every stage is routed."""

    for stage in StageId:
        outcome_type = outcomes.get(stage)
        if outcome_type is None:
            raise WorkflowError(f"Stage {stage.value} declares no outcomes", stage=stage.value)
        for outcome in outcome_type:
            if (stage, outcome) not in transitions:
                raise WorkflowError(
                    f"Stage {stage.value} has no transition for outcome {outcome.value}",
                    stage=stage.value,
                )
    for (stage, outcome), target in transitions.items():
        if not isinstance(stage, StageId) or not isinstance(outcome, outcomes.get(stage, ())):
            raise WorkflowError(f"Transition key ({stage}, {outcome}) is not a declared stage outcome")
        if target is not None and not isinstance(target, StageId):
            raise WorkflowError(f"Transition ({stage.value}, {outcome.value}) targets unknown stage {target!r}")


@dataclass(frozen=True)
class RetryPolicy:
    """How often a stage body is attempted and how long to wait in between."""

    attempts: int = 1
    delay: float = 0.0
    backoff: float = 1.0

    def _wait(self):
        if self.delay <= 0:
            return wait_none()
        if self.backoff == 1.0:
            return wait_fixed(self.delay)
        return wait_exponential(multiplier=self.delay, exp_base=self.backoff)

    def call(
        self,
        stage: str,
        fn: Callable[..., T],
        *args: Any,
        sleep: Callable[[float], None] = time.sleep,
    ) -> T:
        """Run ``fn`` retrying ``AdapterError`` only; the last error is re-raised."""

        def _before_sleep(state: RetryCallState) -> None:
            PipelineMetrics.stage_retries.labels(stage=stage).inc()
            _logger.warning(
                "workflow.stage.retry",
                stage=stage,
                attempt=state.attempt_number,
                detail=str(state.outcome.exception()) if state.outcome else None,
            )

        retrying = Retrying(
            stop=stop_after_attempt(max(1, self.attempts)),
            wait=self._wait(),
            retry=retry_if_exception_type(AdapterError),
            before_sleep=_before_sleep,
            sleep=sleep,
            reraise=True,
        )
        return retrying(fn, *args)


DEFAULT_RETRY_POLICIES: Mapping[StageId, RetryPolicy] = {
    StageId.INTENT: RetryPolicy(attempts=3, delay=0.5),
    StageId.EXPANSION: RetryPolicy(attempts=2, delay=0.3),
    StageId.SEARCH: RetryPolicy(attempts=2, delay=0.25),
    StageId.CONTEXT: RetryPolicy(),
    StageId.GENERATION: RetryPolicy(attempts=3, delay=1.0),
    StageId.FALLBACK: RetryPolicy(attempts=2, delay=1.0),
    StageId.METADATA: RetryPolicy(),
    StageId.ERROR: RetryPolicy(),
}


def retry_policies(overrides: Mapping[str, Tuple[int, float]] | None = None) -> Dict[StageId, RetryPolicy]:
    policies = dict(DEFAULT_RETRY_POLICIES)
    for name, (attempts, delay) in (overrides or {}).items():
        try:
            stage = StageId(name)
        except ValueError as exc:
            raise WorkflowError(f"Unknown stage in retry overrides: {name}") from exc
        policies[stage] = RetryPolicy(attempts=int(attempts), delay=float(delay))
    return policies


@dataclass
class RunContext:
    """Mutable state owned by one workflow run."""

    run_id: str
    query: str
    intent: Optional[Intent] = None
    expanded_queries: List[str] = field(default_factory=list)
    results: List[SearchHit] = field(default_factory=list)
    context: str = ""
    answer: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[BaseException] = None
    failed_stage: Optional[str] = None
    path: str = ""
    visited: List[str] = field(default_factory=list)
