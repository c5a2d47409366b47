"""Sub-task dependency and batch engine."""

from .batches import AggregatedEvidence, BatchCompletionAggregator, BatchCompletionResult
from .creation import BatchCreationResult, SubtaskCreator
from .graph import build_batch_graph, plan_batches, sequence_batches, validate_batch_dependencies
from .query import BlockedSubtask, NextSubtaskResult, SubtaskQueries
from .specs import BatchDependency, BatchSpec, SubtaskBatchRequest, SubtaskSpec, SubtaskUpdate
from .updates import DependencyStatus, SubtaskUpdater, SubtaskUpdateResult

__all__ = [
    "AggregatedEvidence",
    "BatchCompletionAggregator",
    "BatchCompletionResult",
    "BatchCreationResult",
    "BatchDependency",
    "BatchSpec",
    "BlockedSubtask",
    "DependencyStatus",
    "NextSubtaskResult",
    "SubtaskBatchRequest",
    "SubtaskCreator",
    "SubtaskQueries",
    "SubtaskSpec",
    "SubtaskUpdate",
    "SubtaskUpdateResult",
    "SubtaskUpdater",
    "build_batch_graph",
    "plan_batches",
    "sequence_batches",
    "validate_batch_dependencies",
]
