"""Batch timing, progress counters, and final outcome summaries."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from mediafan.ai.pipeline.contracts import Media, Target
from mediafan.jobs.models import Batch, BatchStatus, FailureReason, ItemTask, TaskState


class BatchTimer:
  """Wall-clock instrumentation anchored to a monotonic clock."""

  def __init__(self) -> None:
    self._started_at: datetime | None = None
    self._monotonic_start: float | None = None

  @property
  def started_at(self) -> datetime | None:
    return self._started_at

  def start(self) -> datetime:
    self._started_at = datetime.now(UTC)
    self._monotonic_start = time.perf_counter()
    return self._started_at

  def elapsed_seconds(self) -> float:
    if self._monotonic_start is None:
      return 0.0
    return max(time.perf_counter() - self._monotonic_start, 0.0)

  def stop(self) -> tuple[datetime, float]:
    """Return (completed_at, elapsed_seconds).

    completed_at is derived from the monotonic elapsed time, so it never precedes
    started_at even if the system clock steps backwards mid-batch.
    """
    if self._started_at is None:
      raise RuntimeError("BatchTimer.stop() called before start().")
    elapsed = self.elapsed_seconds()
    return self._started_at + timedelta(seconds=elapsed), elapsed


def progress_label(current: int, total: int) -> str:
  """Return a "Generating 2 of 5" style label."""
  if total <= 0:
    return "Nothing to generate"
  return f"Generating {min(max(current, 1), total)} of {total}"


@dataclass(frozen=True)
class BatchProgress:
  """Counts per task state for a "working on i of N" indicator."""

  total: int
  pending: int
  generating: int
  succeeded: int
  failed: int
  cancelled: int

  @classmethod
  def from_batch(cls, batch: Batch) -> BatchProgress:
    counts = {state: 0 for state in TaskState}
    for task in batch.tasks.values():
      counts[task.state] += 1
    return cls(
      total=len(batch.tasks),
      pending=counts[TaskState.PENDING],
      generating=counts[TaskState.GENERATING],
      succeeded=counts[TaskState.SUCCEEDED],
      failed=counts[TaskState.FAILED],
      cancelled=counts[TaskState.CANCELLED],
    )

  @property
  def finished(self) -> int:
    return self.succeeded + self.failed + self.cancelled

  @property
  def percent(self) -> float:
    if self.total == 0:
      return 100.0
    return round(self.finished / self.total * 100, 2)

  def label(self) -> str:
    if self.total == 0:
      return "Nothing to generate"
    if self.finished == self.total:
      return f"Finished {self.total} of {self.total}"
    return progress_label(self.finished + 1, self.total)


@dataclass(frozen=True)
class BatchResult:
  """Final summary delivered once every task of a batch is terminal."""

  batch_id: str
  status: BatchStatus
  started_at: datetime
  completed_at: datetime
  elapsed_seconds: float
  outcomes: list[ItemTask] = field(default_factory=list)
  succeeded: list[tuple[Target, Media]] = field(default_factory=list)
  failed: list[tuple[Target, FailureReason]] = field(default_factory=list)
  cancelled: list[Target] = field(default_factory=list)

  @classmethod
  def from_batch(cls, batch: Batch) -> BatchResult:
    if batch.started_at is None or batch.completed_at is None:
      raise ValueError(f"Batch {batch.batch_id} has not completed.")

    outcomes = batch.ordered_tasks
    succeeded: list[tuple[Target, Media]] = []
    failed: list[tuple[Target, FailureReason]] = []
    cancelled: list[Target] = []
    for task in outcomes:
      if task.state is TaskState.SUCCEEDED and task.media is not None:
        succeeded.append((task.target, task.media))
      elif task.state is TaskState.FAILED and task.failure is not None:
        failed.append((task.target, task.failure))
      elif task.state is TaskState.CANCELLED:
        cancelled.append(task.target)

    return cls(
      batch_id=batch.batch_id,
      status=batch.status,
      started_at=batch.started_at,
      completed_at=batch.completed_at,
      elapsed_seconds=batch.elapsed_seconds or 0.0,
      outcomes=outcomes,
      succeeded=succeeded,
      failed=failed,
      cancelled=cancelled,
    )

  @property
  def all_succeeded(self) -> bool:
    return len(self.succeeded) == len(self.outcomes)

  def counts(self) -> dict[str, int]:
    return {"total": len(self.outcomes), "succeeded": len(self.succeeded), "failed": len(self.failed), "cancelled": len(self.cancelled)}
