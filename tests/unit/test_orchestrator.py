from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from mediafan.ai.errors import BatchStateError, EmptyResponseError, NotConfiguredError, PrerequisiteFailedError, TransportError, UnreadableSourceError
from mediafan.ai.pipeline.contracts import Seed, Target
from mediafan.jobs.models import BatchStatus, TaskState
from mediafan.jobs.orchestrator import ExecutionPolicy, FanOutOrchestrator, create_batch, retry_failed


def _targets(*labels: str) -> list[Target]:
  return [Target(id=label.lower(), label=label) for label in labels]


class Recorder:
  """Collects callback invocations in arrival order."""

  def __init__(self) -> None:
    self.updates = []
    self.results = []

  def on_task_update(self, task) -> None:
    self.updates.append(task)

  def on_batch_complete(self, result) -> None:
    self.results.append(result)

  def generating_labels(self) -> list[str]:
    return [task.target.label for task in self.updates if task.state is TaskState.GENERATING]


def test_create_batch_builds_one_pending_task_per_target() -> None:
  batch = create_batch(Seed(instruction_text="poster"), _targets("Hoodie", "Mug", "Tote"))

  assert batch.status is BatchStatus.NOT_STARTED
  assert [task.target.label for task in batch.ordered_tasks] == ["Hoodie", "Mug", "Tote"]
  assert all(task.state is TaskState.PENDING for task in batch.ordered_tasks)
  assert all(task.request is not None for task in batch.ordered_tasks)
  assert batch.started_at is None and batch.completed_at is None


def test_create_batch_rejects_duplicate_target_ids() -> None:
  with pytest.raises(ValueError, match="Duplicate"):
    create_batch(Seed(instruction_text="poster"), [Target(id="a", label="A"), Target(id="a", label="B")])


def test_create_batch_defers_request_for_remote_targets() -> None:
  target = Target(id="hoodie", label="Hoodie", auxiliary_source="https://cdn.example.com/hoodie.png")
  batch = create_batch(Seed(instruction_text="poster"), [target])

  assert batch.ordered_tasks[0].request is None


@pytest.mark.anyio
async def test_concrete_hoodie_and_mug_scenario(scripted_client, png_media) -> None:
  client = scripted_client(outcomes={"Hoodie": png_media, "Mug": TransportError("rate limited")})
  recorder = Recorder()
  batch = create_batch(Seed(instruction_text="geometric sunset pattern"), _targets("Hoodie", "Mug"))

  result = await FanOutOrchestrator(client).run(batch, ExecutionPolicy.sequential(), recorder.on_task_update, recorder.on_batch_complete)

  assert recorder.results == [result]
  assert [(target.label, media) for target, media in result.succeeded] == [("Hoodie", png_media)]
  assert [(target.label, type(reason.error)) for target, reason in result.failed] == [("Mug", TransportError)]
  assert result.failed[0][1].code == "transport"
  assert batch.status is BatchStatus.COMPLETED
  assert batch.all_terminal
  assert result.status is BatchStatus.COMPLETED


@pytest.mark.anyio
async def test_sequential_generating_order_matches_target_order(scripted_client, png_media) -> None:
  # Earlier targets are slower, so any reordering would show up.
  client = scripted_client(default=png_media, delays={"Alpha": 0.03, "Bravo": 0.02, "Charlie": 0.01})
  recorder = Recorder()
  batch = create_batch(Seed(instruction_text="poster"), _targets("Alpha", "Bravo", "Charlie", "Delta"))

  await FanOutOrchestrator(client).run(batch, ExecutionPolicy.sequential(), recorder.on_task_update, recorder.on_batch_complete)

  assert recorder.generating_labels() == ["Alpha", "Bravo", "Charlie", "Delta"]
  assert [task.state for task in recorder.updates] == [TaskState.GENERATING, TaskState.SUCCEEDED] * 4
  assert client.max_in_flight == 1


@pytest.mark.anyio
async def test_one_failing_target_does_not_stop_the_rest(scripted_client, png_media) -> None:
  labels = ["One", "Two", "Three", "Four", "Five"]
  client = scripted_client(default=png_media, outcomes={"Three": EmptyResponseError("No candidates in response")})
  recorder = Recorder()
  batch = create_batch(Seed(instruction_text="poster"), _targets(*labels))

  result = await FanOutOrchestrator(client).run(batch, None, recorder.on_task_update, recorder.on_batch_complete)

  assert len(recorder.results) == 1
  assert [target.label for target, _ in result.succeeded] == ["One", "Two", "Four", "Five"]
  assert [target.label for target, _ in result.failed] == ["Three"]
  assert len(client.submitted) == 5


@pytest.mark.anyio
async def test_unexpected_client_exception_is_isolated(scripted_client, png_media) -> None:
  client = scripted_client(default=png_media, outcomes={"Mug": KeyError("boom")})
  batch = create_batch(Seed(instruction_text="poster"), _targets("Mug", "Hoodie"))

  result = await FanOutOrchestrator(client).run(batch)

  assert result.failed[0][1].code == "unexpected"
  assert result.failed[0][1].message.startswith("KeyError")
  assert [target.label for target, _ in result.succeeded] == ["Hoodie"]


@pytest.mark.anyio
async def test_empty_batch_completes_without_task_updates(scripted_client) -> None:
  recorder = Recorder()
  batch = create_batch(Seed(instruction_text="poster"), [])

  result = await FanOutOrchestrator(scripted_client()).run(batch, None, recorder.on_task_update, recorder.on_batch_complete)

  assert recorder.updates == []
  assert recorder.results == [result]
  assert result.outcomes == [] and result.succeeded == [] and result.failed == []
  assert batch.status is BatchStatus.COMPLETED


@pytest.mark.anyio
async def test_timing_is_monotonic(scripted_client, png_media) -> None:
  client = scripted_client(default=png_media, delays={"Slow": 0.02})
  batch = create_batch(Seed(instruction_text="poster"), _targets("Slow"))

  result = await FanOutOrchestrator(client).run(batch)

  assert batch.completed_at >= batch.started_at
  assert result.elapsed_seconds >= 0.01
  assert result.completed_at >= result.started_at


@pytest.mark.anyio
async def test_timeout_fails_only_that_task(scripted_client, png_media) -> None:
  client = scripted_client(default=png_media, delays={"Stuck": 1.0})
  batch = create_batch(Seed(instruction_text="poster"), _targets("Stuck", "Quick"))

  result = await FanOutOrchestrator(client).run(batch, ExecutionPolicy.sequential(submit_timeout_seconds=0.05))

  assert [target.label for target, _ in result.failed] == ["Stuck"]
  assert isinstance(result.failed[0][1].error, TransportError)
  assert "timed out" in result.failed[0][1].message
  assert [target.label for target, _ in result.succeeded] == ["Quick"]


@pytest.mark.anyio
async def test_client_default_timeout_applies_without_policy_timeout(scripted_client, png_media) -> None:
  client = scripted_client(default=png_media, delays={"Stuck": 1.0}, timeout=0.05)
  batch = create_batch(Seed(instruction_text="poster"), _targets("Stuck"))

  result = await FanOutOrchestrator(client).run(batch)

  assert result.failed[0][1].code == "transport"


@pytest.mark.anyio
async def test_cancel_between_tasks_skips_remaining(scripted_client, png_media) -> None:
  client = scripted_client(default=png_media)
  cancel_event = asyncio.Event()
  recorder = Recorder()

  def _cancel_after_first(task) -> None:
    recorder.on_task_update(task)
    if task.state is TaskState.SUCCEEDED:
      cancel_event.set()

  batch = create_batch(Seed(instruction_text="poster"), _targets("First", "Second", "Third"))
  result = await FanOutOrchestrator(client).run(batch, None, _cancel_after_first, recorder.on_batch_complete, cancel_event=cancel_event)

  assert len(client.submitted) == 1
  assert [target.label for target in result.cancelled] == ["Second", "Third"]
  assert [task.state for task in result.outcomes] == [TaskState.SUCCEEDED, TaskState.CANCELLED, TaskState.CANCELLED]
  assert batch.status is BatchStatus.COMPLETED
  assert len(recorder.results) == 1


@pytest.mark.anyio
async def test_cancel_under_bounded_policy_skips_queued_tasks(scripted_client, png_media) -> None:
  client = scripted_client(default=png_media, delays={"Second": 0.05})
  cancel_event = asyncio.Event()
  recorder = Recorder()

  def _cancel_after_first(task) -> None:
    recorder.on_task_update(task)
    if task.state is TaskState.SUCCEEDED:
      cancel_event.set()

  batch = create_batch(Seed(instruction_text="poster"), _targets("First", "Second", "Third", "Fourth", "Fifth"))
  result = await FanOutOrchestrator(client).run(batch, ExecutionPolicy.bounded(2), _cancel_after_first, recorder.on_batch_complete, cancel_event=cancel_event)

  # The second task was already in flight when the event fired, so it still finishes.
  assert [task.state for task in result.outcomes] == [TaskState.SUCCEEDED, TaskState.SUCCEEDED, TaskState.CANCELLED, TaskState.CANCELLED, TaskState.CANCELLED]
  assert [target.label for target in result.cancelled] == ["Third", "Fourth", "Fifth"]
  assert len(client.submitted) == 2
  assert all("Variant: Third" not in request.instruction for request in client.submitted)
  assert batch.status is BatchStatus.COMPLETED
  assert recorder.results == [result]


@pytest.mark.anyio
async def test_bounded_policy_caps_in_flight_submissions(scripted_client, png_media) -> None:
  client = scripted_client(default=png_media, delays={"Variant": 0.01})
  labels = [f"Variant {i}" for i in range(6)]
  recorder = Recorder()
  batch = create_batch(Seed(instruction_text="poster"), [Target(id=f"v{i}", label=label) for i, label in enumerate(labels)])

  result = await FanOutOrchestrator(client).run(batch, ExecutionPolicy.bounded(2), recorder.on_task_update, recorder.on_batch_complete)

  assert client.max_in_flight == 2
  assert len(result.succeeded) == 6
  # Outcomes keep target order even when completion order differs.
  assert [target.label for target, _ in result.succeeded] == labels
  assert {task.task_id for task in recorder.updates} == set(batch.tasks)


@pytest.mark.anyio
async def test_failing_callbacks_never_break_the_run(scripted_client, png_media) -> None:
  client = scripted_client(default=png_media)
  on_task_update = MagicMock(side_effect=RuntimeError("render failed"))
  batch = create_batch(Seed(instruction_text="poster"), _targets("Hoodie", "Mug"))

  result = await FanOutOrchestrator(client).run(batch, None, on_task_update)

  assert on_task_update.call_count == 4
  assert len(result.succeeded) == 2


@pytest.mark.anyio
async def test_async_callbacks_are_awaited(scripted_client, png_media) -> None:
  seen: list[str] = []

  async def _on_task_update(task) -> None:
    await asyncio.sleep(0)
    seen.append(task.state)

  batch = create_batch(Seed(instruction_text="poster"), _targets("Hoodie"))
  await FanOutOrchestrator(scripted_client(default=png_media)).run(batch, None, _on_task_update)

  assert seen == [TaskState.GENERATING, TaskState.SUCCEEDED]


@pytest.mark.anyio
async def test_running_a_batch_twice_is_rejected(scripted_client, png_media) -> None:
  orchestrator = FanOutOrchestrator(scripted_client(default=png_media))
  batch = create_batch(Seed(instruction_text="poster"), _targets("Hoodie"))
  await orchestrator.run(batch)

  with pytest.raises(BatchStateError):
    await orchestrator.run(batch)


@pytest.mark.anyio
async def test_remote_target_fetch_failure_fails_only_that_task(scripted_client, png_media, mock_codec) -> None:
  client = scripted_client(default=png_media)
  targets = [
    Target(id="hoodie", label="Hoodie", auxiliary_source="https://cdn.example.com/hoodie.png"),
    Target(id="mug", label="Mug", auxiliary_source="https://cdn.example.com/missing.png"),
  ]
  batch = create_batch(Seed(instruction_text="poster"), targets)

  result = await FanOutOrchestrator(client, codec=mock_codec).run(batch)

  assert [target.label for target, _ in result.succeeded] == ["Hoodie"]
  assert isinstance(result.failed[0][1].error, UnreadableSourceError)
  assert len(client.submitted) == 1
  hoodie = batch.task_for_target("hoodie")
  assert hoodie.target.auxiliary_media is not None
  assert hoodie.request.attachments == (hoodie.target.auxiliary_media,)


@pytest.mark.anyio
async def test_prerequisite_failure_creates_no_tasks(scripted_client, png_media) -> None:
  recorder = Recorder()
  make_factory = MagicMock()

  async def _design():
    raise NotConfiguredError("Gemini API key not configured.")

  orchestrator = FanOutOrchestrator(scripted_client(default=png_media))
  with pytest.raises(PrerequisiteFailedError) as exc:
    await orchestrator.run_with_prerequisite(Seed(instruction_text="poster"), _targets("Hoodie", "Mug"), _design, make_factory, None, recorder.on_task_update, recorder.on_batch_complete)

  assert isinstance(exc.value.cause, NotConfiguredError)
  assert isinstance(exc.value.__cause__, NotConfiguredError)
  make_factory.assert_not_called()
  assert recorder.updates == []
  assert recorder.results == []


@pytest.mark.anyio
async def test_retry_failed_creates_fresh_tasks(scripted_client, png_media) -> None:
  client = scripted_client(default=png_media, outcomes={"Mug": TransportError("429 Too Many Requests")})
  orchestrator = FanOutOrchestrator(client)
  batch = create_batch(Seed(instruction_text="poster"), _targets("Hoodie", "Mug"))
  first = await orchestrator.run(batch)
  failed_task_id = first.outcomes[1].task_id

  retry_batch = retry_failed(batch)

  assert [task.target.label for task in retry_batch.ordered_tasks] == ["Mug"]
  assert retry_batch.ordered_tasks[0].state is TaskState.PENDING
  assert retry_batch.ordered_tasks[0].task_id != failed_task_id
  assert batch.tasks[failed_task_id].state is TaskState.FAILED


def test_retry_failed_requires_completed_batch() -> None:
  batch = create_batch(Seed(instruction_text="poster"), _targets("Hoodie"))

  with pytest.raises(BatchStateError):
    retry_failed(batch)


def test_execution_policy_validation() -> None:
  with pytest.raises(ValueError):
    ExecutionPolicy(max_concurrency=0)
  with pytest.raises(ValueError):
    ExecutionPolicy(submit_timeout_seconds=0)
  assert ExecutionPolicy().is_sequential
  assert not ExecutionPolicy.bounded(3).is_sequential
