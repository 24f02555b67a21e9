"""Domain models for fan-out batches and their item tasks."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum

from mediafan.ai.errors import InvalidTransitionError, MediaFanError
from mediafan.ai.pipeline.contracts import GenerationRequest, Media, Seed, Target
from mediafan.utils.ids import generate_batch_id, generate_task_id

RequestFactory = Callable[[Seed, Target], GenerationRequest]


class TaskState(StrEnum):
  PENDING = "pending"
  GENERATING = "generating"
  SUCCEEDED = "succeeded"
  FAILED = "failed"
  CANCELLED = "cancelled"

  @property
  def is_terminal(self) -> bool:
    return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset({TaskState.SUCCEEDED, TaskState.FAILED, TaskState.CANCELLED})

_ALLOWED_TRANSITIONS: dict[TaskState, frozenset[TaskState]] = {
  TaskState.PENDING: frozenset({TaskState.GENERATING, TaskState.CANCELLED}),
  TaskState.GENERATING: frozenset({TaskState.SUCCEEDED, TaskState.FAILED}),
  TaskState.SUCCEEDED: frozenset(),
  TaskState.FAILED: frozenset(),
  TaskState.CANCELLED: frozenset(),
}


class BatchStatus(StrEnum):
  NOT_STARTED = "not_started"
  RUNNING = "running"
  COMPLETED = "completed"


@dataclass(frozen=True)
class FailureReason:
  """Why an item task ended without an artifact."""

  code: str
  message: str
  error: BaseException | None = None
  retryable: bool = False

  @classmethod
  def from_exception(cls, exc: BaseException) -> FailureReason:
    """Map any exception into a failure reason, keeping the original for inspection."""
    if isinstance(exc, MediaFanError):
      return cls(code=exc.code, message=str(exc) or type(exc).__name__, error=exc, retryable=exc.retryable)
    message = str(exc)
    return cls(code="unexpected", message=f"{type(exc).__name__}: {message}" if message else type(exc).__name__, error=exc)

  @classmethod
  def cancelled(cls) -> FailureReason:
    return cls(code="cancelled", message="Cancelled before the task was scheduled.", retryable=True)


def _utcnow() -> datetime:
  return datetime.now(UTC)


@dataclass(frozen=True)
class ItemTask:
  """Immutable snapshot of one target's unit of work."""

  target: Target
  index: int
  request: GenerationRequest | None = None
  state: TaskState = TaskState.PENDING
  media: Media | None = None
  failure: FailureReason | None = None
  task_id: str = field(default_factory=generate_task_id)
  started_at: datetime | None = None
  finished_at: datetime | None = None

  @property
  def is_terminal(self) -> bool:
    return self.state.is_terminal

  def _transition(self, new_state: TaskState, **changes: object) -> ItemTask:
    if new_state not in _ALLOWED_TRANSITIONS[self.state]:
      raise InvalidTransitionError(f"Task {self.task_id} ({self.target.id}) cannot move from {self.state} to {new_state}.")
    return replace(self, state=new_state, **changes)

  def start(self) -> ItemTask:
    return self._transition(TaskState.GENERATING, started_at=_utcnow())

  def with_request(self, request: GenerationRequest, *, target: Target | None = None) -> ItemTask:
    """Attach the request built after lazy media resolution; a request is only ever set once."""
    if self.request is not None:
      raise InvalidTransitionError(f"Task {self.task_id} already has a request.")
    if self.state is not TaskState.GENERATING:
      raise InvalidTransitionError(f"Task {self.task_id} can only receive a request while generating.")
    if target is not None and target.id != self.target.id:
      raise InvalidTransitionError(f"Task {self.task_id} cannot switch target {self.target.id} to {target.id}.")
    return replace(self, request=request, target=target or self.target)

  def succeed(self, media: Media) -> ItemTask:
    return self._transition(TaskState.SUCCEEDED, media=media, finished_at=_utcnow())

  def fail(self, reason: FailureReason) -> ItemTask:
    return self._transition(TaskState.FAILED, failure=reason, finished_at=_utcnow())

  def cancel(self) -> ItemTask:
    return self._transition(TaskState.CANCELLED, failure=FailureReason.cancelled(), finished_at=_utcnow())

  def retry(self) -> ItemTask:
    """Return a fresh pending task for the same target; terminal tasks are never reopened."""
    if not self.is_terminal:
      raise InvalidTransitionError(f"Task {self.task_id} is still {self.state}; only terminal tasks can be retried.")
    return ItemTask(target=self.target, index=self.index, request=self.request)


@dataclass
class Batch:
  """The full set of item tasks derived from one seed, plus aggregate status."""

  seed: Seed
  tasks: dict[str, ItemTask]
  # Builds requests for tasks whose target media is fetched inside the task.
  request_factory: RequestFactory | None = field(default=None, repr=False, compare=False)
  batch_id: str = field(default_factory=generate_batch_id)
  status: BatchStatus = BatchStatus.NOT_STARTED
  started_at: datetime | None = None
  completed_at: datetime | None = None
  elapsed_seconds: float | None = None

  @property
  def ordered_tasks(self) -> list[ItemTask]:
    """Tasks in original target order."""
    return sorted(self.tasks.values(), key=lambda task: task.index)

  @property
  def all_terminal(self) -> bool:
    return all(task.is_terminal for task in self.tasks.values())

  def task_for_target(self, target_id: str) -> ItemTask | None:
    for task in self.tasks.values():
      if task.target.id == target_id:
        return task
    return None

  def snapshot(self) -> Batch:
    """Return a detached copy observers can hold without seeing later mutations."""
    return replace(self, tasks=dict(self.tasks))
