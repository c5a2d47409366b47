"""Workflow execution state machine."""

from .bootstrap import BootstrapResult, WorkflowBootstrapper
from .execution import ExecutionService, ExecutionSummary
from .progress import (
    ActionResult,
    RoleProgressSummary,
    StepCompletionData,
    StepFailureData,
    StepProgressTracker,
)
from .repair import ConsistencyResolver, DriftSignal, PostTransitionCheck, SyncResult, classify_drift
from .resolution import StepResolver
from .transitions import (
    READINESS_CHECKS,
    RecommendedTransition,
    RoleTransitionEngine,
    TransitionContext,
    TransitionOutcome,
    TransitionScorer,
    TransitionValidation,
    WeightedTransitionScorer,
)

__all__ = [
    "ActionResult",
    "BootstrapResult",
    "ConsistencyResolver",
    "DriftSignal",
    "ExecutionService",
    "ExecutionSummary",
    "PostTransitionCheck",
    "READINESS_CHECKS",
    "RecommendedTransition",
    "RoleProgressSummary",
    "RoleTransitionEngine",
    "StepCompletionData",
    "StepFailureData",
    "StepProgressTracker",
    "StepResolver",
    "SyncResult",
    "TransitionContext",
    "TransitionOutcome",
    "TransitionScorer",
    "TransitionValidation",
    "WeightedTransitionScorer",
    "WorkflowBootstrapper",
    "classify_drift",
]
