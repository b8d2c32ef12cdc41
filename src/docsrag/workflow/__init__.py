"""Query workflow orchestration."""

from .graph import (
    DEFAULT_RETRY_POLICIES,
    STAGE_OUTCOMES,
    TRANSITIONS,
    Default,
    Done,
    IntentOutcome,
    RetryPolicy,
    RunContext,
    SearchOutcome,
    StageId,
    retry_policies,
    validate_graph,
)
from .orchestrator import QueryWorkflow, WorkflowConfig

__all__ = [
    "DEFAULT_RETRY_POLICIES",
    "STAGE_OUTCOMES",
    "TRANSITIONS",
    "Default",
    "Done",
    "IntentOutcome",
    "QueryWorkflow",
    "RetryPolicy",
    "RunContext",
    "SearchOutcome",
    "StageId",
    "WorkflowConfig",
    "retry_policies",
    "validate_graph",
]
