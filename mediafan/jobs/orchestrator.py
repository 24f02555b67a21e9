"""Fan-out orchestration: drive one request per target through a generation client."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from mediafan.ai.errors import BatchStateError, NoMediaInResponseError, PrerequisiteFailedError, TransportError
from mediafan.ai.pipeline.contracts import GenerationRequest, Media, Seed, Target
from mediafan.ai.prompts import variant_of
from mediafan.ai.providers.base import ClientConfig, GenerationClient
from mediafan.jobs.models import Batch, BatchStatus, FailureReason, ItemTask, RequestFactory, TaskState
from mediafan.jobs.progress import BatchResult, BatchTimer
from mediafan.media.codec import MediaCodec

logger = logging.getLogger(__name__)

TaskUpdateCallback = Callable[[ItemTask], Awaitable[None] | None]
BatchCompleteCallback = Callable[[BatchResult], Awaitable[None] | None]


@dataclass(frozen=True)
class ExecutionPolicy:
  """How many submissions may be in flight, and how long each may take."""

  max_concurrency: int = 1
  submit_timeout_seconds: float | None = None

  def __post_init__(self) -> None:
    if self.max_concurrency < 1:
      raise ValueError("max_concurrency must be at least 1.")
    if self.submit_timeout_seconds is not None and self.submit_timeout_seconds <= 0:
      raise ValueError("submit_timeout_seconds must be positive when provided.")

  @property
  def is_sequential(self) -> bool:
    return self.max_concurrency == 1

  @classmethod
  def sequential(cls, *, submit_timeout_seconds: float | None = None) -> ExecutionPolicy:
    return cls(max_concurrency=1, submit_timeout_seconds=submit_timeout_seconds)

  @classmethod
  def bounded(cls, max_concurrency: int, *, submit_timeout_seconds: float | None = None) -> ExecutionPolicy:
    return cls(max_concurrency=max_concurrency, submit_timeout_seconds=submit_timeout_seconds)

  @classmethod
  def from_config(cls, config: ClientConfig) -> ExecutionPolicy:
    return cls(max_concurrency=config.max_concurrent_submissions, submit_timeout_seconds=config.default_timeout_seconds)


def default_request_factory(seed: Seed, target: Target) -> GenerationRequest:
  """Specialize the seed instruction for the target label, attaching any reference and target media."""
  return variant_of(seed.instruction_text, target.label, seed.reference_media, target.auxiliary_media)


def create_batch(seed: Seed, targets: Sequence[Target], request_factory: RequestFactory | None = None) -> Batch:
  """Create a batch with one pending task per target, before any network call."""
  factory = request_factory or default_request_factory
  seen: set[str] = set()
  tasks: dict[str, ItemTask] = {}
  for index, target in enumerate(targets):
    if target.id in seen:
      raise ValueError(f"Duplicate target id {target.id!r} in batch.")
    seen.add(target.id)
    # Targets whose media lives behind a URL get their request built inside the task, after the fetch.
    request = None if target.needs_resolution else factory(seed, target)
    task = ItemTask(target=target, index=index, request=request)
    tasks[task.task_id] = task
  return Batch(seed=seed, tasks=tasks, request_factory=factory)


def retry_failed(batch: Batch) -> Batch:
  """Create a new batch holding fresh pending tasks for every failed or cancelled task."""
  if batch.status is not BatchStatus.COMPLETED:
    raise BatchStateError(f"Batch {batch.batch_id} is {batch.status}; only completed batches can be retried.")
  retried = [task.retry() for task in batch.ordered_tasks if task.state in (TaskState.FAILED, TaskState.CANCELLED)]
  return Batch(seed=batch.seed, tasks={task.task_id: task for task in retried}, request_factory=batch.request_factory)


async def _notify(callback: Callable[[Any], Awaitable[None] | None] | None, payload: Any) -> None:
  """Invoke a sync or async observer; observer failures are logged and never reach the batch."""
  if callback is None:
    return
  try:
    result = callback(payload)
    if inspect.isawaitable(result):
      await result
  except Exception:  # noqa: BLE001
    logger.error("Observer callback %r failed.", callback, exc_info=True)


class FanOutOrchestrator:
  """Runs batches against a generation client with per-item failure isolation."""

  def __init__(self, client: GenerationClient, *, codec: MediaCodec | None = None, default_policy: ExecutionPolicy | None = None) -> None:
    self._client = client
    self._codec = codec or MediaCodec()
    self._default_policy = default_policy or ExecutionPolicy.sequential()

  @property
  def client(self) -> GenerationClient:
    return self._client

  @property
  def codec(self) -> MediaCodec:
    return self._codec

  async def submit(self, request: GenerationRequest, policy: ExecutionPolicy | None = None) -> Media:
    """Submit one request, bounded by the policy timeout or the client's default."""
    active_policy = policy or self._default_policy
    timeout = active_policy.submit_timeout_seconds or self._client.default_timeout_seconds
    if timeout is None:
      return await self._client.submit(request)
    try:
      return await asyncio.wait_for(self._client.submit(request), timeout=timeout)
    except TimeoutError as exc:
      raise TransportError(f"Generation timed out after {timeout:g}s.") from exc

  async def run(
    self,
    batch: Batch,
    policy: ExecutionPolicy | None = None,
    on_task_update: TaskUpdateCallback | None = None,
    on_batch_complete: BatchCompleteCallback | None = None,
    *,
    cancel_event: asyncio.Event | None = None,
  ) -> BatchResult:
    """Drive every task to a terminal state and deliver the summary.

    Item failures never raise out of this method; they are reported through the
    callbacks and the returned BatchResult.
    """
    if batch.status is not BatchStatus.NOT_STARTED:
      raise BatchStateError(f"Batch {batch.batch_id} is {batch.status}; a batch can only run once.")

    active_policy = policy or self._default_policy
    timer = BatchTimer()
    batch.started_at = timer.start()
    batch.status = BatchStatus.RUNNING
    logger.info("Batch %s started: %d task(s), max_concurrency=%d", batch.batch_id, len(batch.tasks), active_policy.max_concurrency)

    order = [task.task_id for task in batch.ordered_tasks]
    if active_policy.is_sequential:
      await self._run_sequential(batch, order, active_policy, on_task_update, cancel_event)
    else:
      await self._run_bounded(batch, order, active_policy, on_task_update, cancel_event)

    batch.completed_at, batch.elapsed_seconds = timer.stop()
    batch.status = BatchStatus.COMPLETED
    result = BatchResult.from_batch(batch)
    logger.info("Batch %s completed in %.2fs: %s", batch.batch_id, result.elapsed_seconds, result.counts())
    await _notify(on_batch_complete, result)
    return result

  async def run_with_prerequisite(
    self,
    seed: Seed,
    targets: Sequence[Target],
    prerequisite: Callable[[], Awaitable[Media]],
    make_request_factory: Callable[[Media], RequestFactory],
    policy: ExecutionPolicy | None = None,
    on_task_update: TaskUpdateCallback | None = None,
    on_batch_complete: BatchCompleteCallback | None = None,
    *,
    cancel_event: asyncio.Event | None = None,
    placeholder: Media | None = None,
  ) -> BatchResult:
    """Produce a shared artifact once, then fan out over the targets.

    Raises PrerequisiteFailedError before any task exists when the shared step fails.
    When a placeholder is given, a shared step that answers with text but no media
    falls back to it instead.
    """
    try:
      self._client.ensure_configured()
      shared = await prerequisite()
    except NoMediaInResponseError as exc:
      if placeholder is None:
        logger.error("Shared prerequisite returned no media; no tasks were created.")
        raise PrerequisiteFailedError(f"Shared artifact could not be produced: {exc}", cause=exc) from exc
      logger.warning("Shared prerequisite returned no media; using the placeholder. Reply: %.120s", exc.text or "")
      shared = placeholder
    except Exception as exc:  # noqa: BLE001
      logger.error("Shared prerequisite failed; no tasks were created.", exc_info=True)
      raise PrerequisiteFailedError(f"Shared artifact could not be produced: {exc}", cause=exc) from exc

    batch = create_batch(seed, targets, make_request_factory(shared))
    return await self.run(batch, policy, on_task_update, on_batch_complete, cancel_event=cancel_event)

  async def _run_sequential(self, batch: Batch, order: list[str], policy: ExecutionPolicy, on_task_update: TaskUpdateCallback | None, cancel_event: asyncio.Event | None) -> None:
    for position, task_id in enumerate(order):
      if cancel_event is not None and cancel_event.is_set():
        logger.info("Batch %s cancelled with %d task(s) unscheduled.", batch.batch_id, len(order) - position)
        for remaining_id in order[position:]:
          await self._cancel_task(batch, remaining_id, on_task_update)
        return
      await self._run_task(batch, task_id, policy, on_task_update)

  async def _run_bounded(self, batch: Batch, order: list[str], policy: ExecutionPolicy, on_task_update: TaskUpdateCallback | None, cancel_event: asyncio.Event | None) -> None:
    semaphore = asyncio.Semaphore(policy.max_concurrency)

    async def _worker(task_id: str) -> None:
      async with semaphore:
        if cancel_event is not None and cancel_event.is_set():
          await self._cancel_task(batch, task_id, on_task_update)
          return
        await self._run_task(batch, task_id, policy, on_task_update)

    await asyncio.gather(*(_worker(task_id) for task_id in order))

  async def _publish(self, batch: Batch, task: ItemTask, on_task_update: TaskUpdateCallback | None) -> None:
    batch.tasks[task.task_id] = task
    await _notify(on_task_update, task)

  async def _cancel_task(self, batch: Batch, task_id: str, on_task_update: TaskUpdateCallback | None) -> None:
    task = batch.tasks[task_id]
    if task.state is TaskState.PENDING:
      await self._publish(batch, task.cancel(), on_task_update)

  async def _run_task(self, batch: Batch, task_id: str, policy: ExecutionPolicy, on_task_update: TaskUpdateCallback | None) -> None:
    task = batch.tasks[task_id].start()
    await self._publish(batch, task, on_task_update)
    logger.debug("Task %s (%s) generating.", task.task_id, task.target.label)

    try:
      if task.request is None:
        task = await self._resolve_request(batch, task)
      media = await self.submit(task.request, policy)
    except Exception as exc:  # noqa: BLE001
      reason = FailureReason.from_exception(exc)
      logger.warning("Task %s (%s) failed [%s]: %s", task.task_id, task.target.label, reason.code, reason.message)
      task = task.fail(reason)
    else:
      logger.info("Task %s (%s) succeeded: %s, %d bytes", task.task_id, task.target.label, media.mime_type, media.size)
      task = task.succeed(media)

    await self._publish(batch, task, on_task_update)

  async def _resolve_request(self, batch: Batch, task: ItemTask) -> ItemTask:
    """Resolve the target's media and build its request inside the task boundary."""
    target = task.target
    if target.needs_resolution:
      target = target.with_media(await self._codec.resolve(target.auxiliary_source))
    factory = batch.request_factory or default_request_factory
    return task.with_request(factory(batch.seed, target), target=target)
