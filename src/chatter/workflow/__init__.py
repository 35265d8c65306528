"""Multi-stage workflows."""

from .coordinator import Stage, StageRecord, WorkflowCoordinator, WorkflowRun
from .progress import MessageProgressTracker, NullProgress
from .summary import DocumentSummaryWorkflow

__all__ = [
    "DocumentSummaryWorkflow",
    "MessageProgressTracker",
    "NullProgress",
    "Stage",
    "StageRecord",
    "WorkflowCoordinator",
    "WorkflowRun",
]
