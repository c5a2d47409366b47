"""guidance-engine: durable workflow guidance for AI coding agents."""

from .config import GuidanceConfig, load_config
from .errors import ErrorKind, GuidanceError
from .persistence import WorkflowStore, get_store
from .service import GuidanceService, OperationFailure, OperationResult
from .subtasks import SubtaskBatchRequest, SubtaskUpdate
from .workflow import TransitionContext

__version__ = "0.1.0"
__all__ = [
    "ErrorKind",
    "GuidanceConfig",
    "GuidanceError",
    "GuidanceService",
    "OperationFailure",
    "OperationResult",
    "SubtaskBatchRequest",
    "SubtaskUpdate",
    "TransitionContext",
    "WorkflowStore",
    "get_store",
    "load_config",
]
