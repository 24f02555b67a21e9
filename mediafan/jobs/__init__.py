"""Batch models, timing, and the fan-out orchestrator."""

from mediafan.jobs.models import Batch, BatchStatus, FailureReason, ItemTask, TaskState
from mediafan.jobs.orchestrator import ExecutionPolicy, FanOutOrchestrator, create_batch, retry_failed
from mediafan.jobs.progress import BatchProgress, BatchResult, BatchTimer, progress_label

__all__ = ["Batch", "BatchProgress", "BatchResult", "BatchStatus", "BatchTimer", "ExecutionPolicy", "FailureReason", "FanOutOrchestrator", "ItemTask", "TaskState", "create_batch", "progress_label", "retry_failed"]
