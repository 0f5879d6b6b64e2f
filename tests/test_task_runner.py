import asyncio

import pytest

from conftest import FakeTaskService, GatedTaskService
from healthlab.core.errors import EndpointExhausted, InvalidSubmission, PollingError, PollingTimeout
from healthlab.core.models import GenerationRequest, GenerationTask
from healthlab.core.task_runner import SlotState, TaskSlot

REQUEST = GenerationRequest(prompt="avocado toast")


def submitted(task_id="T1", endpoint="B1"):
    return GenerationTask(task_id=task_id, source="text", status="PENDING", accepted_endpoint=endpoint)


def snapshot(status, endpoint="B1", mesh_url=None, task_id="T1"):
    return GenerationTask(task_id=task_id, source="text", status=status, accepted_endpoint=endpoint, mesh_url=mesh_url)


@pytest.mark.asyncio
async def test_polls_until_terminal_status():
    service = FakeTaskService(
        submitted(),
        [snapshot("IN_PROGRESS"), snapshot("SUCCEEDED", mesh_url="https://x/m.glb")],
    )
    updates = []
    slot = TaskSlot(service, interval_s=0, on_update=updates.append)

    task = await slot.submit("text", REQUEST)
    assert task.task_id == "T1"
    assert slot.state is SlotState.POLLING

    final = await slot.wait()

    assert final.status == "SUCCEEDED"
    assert final.mesh_url == "https://x/m.glb"
    assert slot.state is SlotState.SUCCEEDED
    assert not slot.is_active
    assert service.poll_calls == [("T1", "text", "B1"), ("T1", "text", "B1")]
    assert [update.status for update in updates] == ["PENDING", "IN_PROGRESS", "SUCCEEDED"]

    await asyncio.sleep(0.01)
    assert len(service.poll_calls) == 2


@pytest.mark.asyncio
async def test_provider_failed_status_is_terminal():
    service = FakeTaskService(submitted(), [snapshot("failed")])
    slot = TaskSlot(service, interval_s=0)

    await slot.submit("text", REQUEST)
    final = await slot.wait()

    assert final.status == "failed"
    assert slot.state is SlotState.FAILED
    assert slot.error is None


@pytest.mark.asyncio
async def test_sticky_endpoint_follows_latest_answer():
    service = FakeTaskService(
        submitted(endpoint="B1"),
        [snapshot("IN_PROGRESS", endpoint="B2"), snapshot("SUCCEEDED", endpoint="B2")],
    )
    slot = TaskSlot(service, interval_s=0)

    await slot.submit("text", REQUEST)
    await slot.wait()

    assert [call[2] for call in service.poll_calls] == ["B1", "B2"]


@pytest.mark.asyncio
async def test_cancel_freezes_poll_count():
    service = FakeTaskService(submitted(), [snapshot("IN_PROGRESS")])
    slot = TaskSlot(service, interval_s=0.01)

    await slot.submit("text", REQUEST)
    await service.polled.wait()
    slot.cancel()
    calls_at_cancel = len(service.poll_calls)

    await asyncio.sleep(0.05)

    assert calls_at_cancel >= 1
    assert len(service.poll_calls) == calls_at_cancel
    assert slot.state is SlotState.IDLE
    assert slot.task is None
    assert not slot.is_active

    slot.cancel()
    assert slot.state is SlotState.IDLE


@pytest.mark.asyncio
async def test_poll_error_keeps_last_snapshot():
    cause = EndpointExhausted("all bases answered 404", status_code=404)
    service = FakeTaskService(submitted(), [snapshot("IN_PROGRESS"), cause])
    errors = []
    slot = TaskSlot(service, interval_s=0, on_error=errors.append)

    await slot.submit("text", REQUEST)
    with pytest.raises(PollingError) as excinfo:
        await slot.wait()

    assert excinfo.value.__cause__ is cause
    assert errors == [excinfo.value]
    assert slot.state is SlotState.ERROR
    assert slot.task.status == "IN_PROGRESS"
    assert not slot.is_active


@pytest.mark.asyncio
async def test_max_attempts_stops_without_rewriting_status():
    service = FakeTaskService(submitted(), [snapshot("IN_PROGRESS")])
    slot = TaskSlot(service, interval_s=0, max_attempts=3)

    await slot.submit("text", REQUEST)
    with pytest.raises(PollingTimeout):
        await slot.wait()

    assert len(service.poll_calls) == 3
    assert slot.state is SlotState.FAILED
    assert slot.task.status == "IN_PROGRESS"


@pytest.mark.asyncio
async def test_new_submission_cancels_previous_loop():
    first = FakeTaskService(submitted(task_id="T1"), [snapshot("IN_PROGRESS")])
    slot = TaskSlot(first, interval_s=0.01)

    await slot.submit("text", REQUEST)
    await first.polled.wait()

    second = FakeTaskService(
        submitted(task_id="T2", endpoint="B9"),
        [snapshot("SUCCEEDED", endpoint="B9", task_id="T2")],
    )
    slot.service = second
    await slot.submit("text", REQUEST)
    calls_on_first = len(first.poll_calls)

    final = await slot.wait()
    await asyncio.sleep(0.05)

    assert final.task_id == "T2"
    assert len(first.poll_calls) == calls_on_first
    assert second.poll_calls == [("T2", "text", "B9")]


@pytest.mark.asyncio
async def test_failed_submission_creates_no_task():
    service = FakeTaskService(InvalidSubmission("A text prompt is required"), [snapshot("PENDING")])
    slot = TaskSlot(service, interval_s=0)

    with pytest.raises(InvalidSubmission):
        await slot.submit("text", GenerationRequest())

    assert slot.state is SlotState.IDLE
    assert slot.task is None
    assert service.poll_calls == []


@pytest.mark.asyncio
async def test_cancel_while_submitting_starts_no_loop():
    service = GatedTaskService([submitted()], [snapshot("IN_PROGRESS")])
    slot = TaskSlot(service, interval_s=0)

    pending = asyncio.create_task(slot.submit("text", REQUEST))
    await service.entered.wait()
    assert slot.state is SlotState.SUBMITTING

    slot.cancel()
    service.gate.set()
    task = await pending
    await asyncio.sleep(0.05)

    assert task.task_id == "T1"
    assert slot.state is SlotState.IDLE
    assert slot.task is None
    assert not slot.is_active
    assert service.poll_calls == []


@pytest.mark.asyncio
async def test_overlapping_submissions_leave_one_loop():
    service = GatedTaskService(
        [submitted(task_id="T1"), submitted(task_id="T2")],
        [snapshot("IN_PROGRESS", task_id="T2")],
    )
    slot = TaskSlot(service, interval_s=0.01)

    first = asyncio.create_task(slot.submit("text", REQUEST))
    await service.entered.wait()
    second = asyncio.create_task(slot.submit("text", REQUEST))
    while len(service.submit_calls) < 2:
        await asyncio.sleep(0)

    service.gate.set()
    first_task, second_task = await asyncio.gather(first, second)
    await service.polled.wait()

    assert (first_task.task_id, second_task.task_id) == ("T1", "T2")
    assert slot.task.task_id == "T2"
    assert slot.state is SlotState.POLLING

    slot.cancel()
    calls_at_cancel = len(service.poll_calls)
    await asyncio.sleep(0.05)

    assert {call[0] for call in service.poll_calls} == {"T2"}
    assert len(service.poll_calls) == calls_at_cancel
    assert not slot.is_active
