import asyncio
from typing import List

import pytest

from thoughtbot.models import Capture, CompletionResult
from thoughtbot.notifier import (
    ERROR_RESULT,
    TIMEOUT_RESULT,
    CaptureNotFoundError,
    CompletionRegistry,
    await_capture_status,
    completion_from_capture,
    poll_capture_status,
)


class FakeTime:
    """Clock and sleep that only move when the code under test sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []
        self.on_sleep = None

    def clock(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        if self.on_sleep is not None:
            await self.on_sleep(len(self.sleeps))


@pytest.mark.anyio
async def test_wait_times_out_and_unregisters():
    registry = CompletionRegistry(timeout=0.01)
    result = await registry.wait("cap-1")
    assert result == TIMEOUT_RESULT
    assert registry.waiting("cap-1") == 0


@pytest.mark.anyio
async def test_notify_reaches_every_waiter_once():
    registry = CompletionRegistry(timeout=1.0)
    first = asyncio.ensure_future(registry.wait("cap-1"))
    second = asyncio.ensure_future(registry.wait("cap-1"))
    await asyncio.sleep(0)
    assert registry.waiting("cap-1") == 2

    outcome = CompletionResult(classification="task_create", category="business")
    assert registry.notify("cap-1", outcome) == 2
    assert registry.notify("cap-1", ERROR_RESULT) == 0

    assert await first == outcome
    assert await second == outcome
    assert registry.waiting("cap-1") == 0


def test_notify_without_waiters_is_a_no_op():
    registry = CompletionRegistry()
    assert registry.notify("nobody", ERROR_RESULT) == 0


def test_completion_from_capture():
    assert completion_from_capture(Capture()) is None
    assert completion_from_capture(Capture(classification="error")) == ERROR_RESULT
    tagged = Capture(classification="thought", raw_llm_output={"type": "thought", "category": "business"})
    assert completion_from_capture(tagged) == CompletionResult(classification="thought", category="business")
    untagged_category = Capture(classification="task_create", raw_llm_output={})
    assert completion_from_capture(untagged_category).category == "personal"


@pytest.mark.anyio
async def test_await_status_returns_stored_outcome(store):
    capture = await store.insert_capture(Capture(classification="task_update", raw_llm_output={"category": "personal"}))
    registry = CompletionRegistry(timeout=1.0)

    result = await await_capture_status(store, registry, capture.id)

    assert result.classification == "task_update"
    assert registry.waiting(capture.id) == 0


@pytest.mark.anyio
async def test_await_status_waits_for_notification(store):
    capture = await store.insert_capture(Capture(transcript="call mom"))
    registry = CompletionRegistry(timeout=1.0)

    waiter = asyncio.ensure_future(await_capture_status(store, registry, capture.id))
    await asyncio.sleep(0)
    registry.notify(capture.id, CompletionResult(classification="task_create", category="personal"))

    assert (await waiter).classification == "task_create"


@pytest.mark.anyio
async def test_await_status_unknown_capture(store):
    registry = CompletionRegistry()
    with pytest.raises(CaptureNotFoundError):
        await await_capture_status(store, registry, "missing")
    assert registry.waiting("missing") == 0


@pytest.mark.anyio
async def test_poll_backs_off_until_tagged(store):
    capture = await store.insert_capture(Capture(transcript="call mom"))
    fake = FakeTime()

    async def tag_on_third_sleep(count: int) -> None:
        if count == 3:
            await store.update_capture(capture.id, classification="thought", raw_llm_output={"category": "business"})

    fake.on_sleep = tag_on_third_sleep

    result = await poll_capture_status(store, capture.id, sleep=fake.sleep, clock=fake.clock)

    assert fake.sleeps == [0.5, 1.0, 2.0]
    assert result == CompletionResult(classification="thought", category="business")


@pytest.mark.anyio
async def test_poll_delay_is_capped(store):
    capture = await store.insert_capture(Capture())
    fake = FakeTime()

    result = await poll_capture_status(store, capture.id, max_wait=20.0, sleep=fake.sleep, clock=fake.clock)

    assert result == TIMEOUT_RESULT
    assert fake.sleeps == [0.5, 1.0, 2.0, 4.0, 5.0, 5.0, 2.5]


@pytest.mark.anyio
async def test_poll_gives_up_after_max_wait(store):
    capture = await store.insert_capture(Capture())
    fake = FakeTime()

    result = await poll_capture_status(store, capture.id, max_wait=3.0, sleep=fake.sleep, clock=fake.clock)

    assert result == TIMEOUT_RESULT
    assert fake.sleeps == [0.5, 1.0, 1.5]


@pytest.mark.anyio
async def test_poll_unknown_capture(store):
    with pytest.raises(CaptureNotFoundError):
        await poll_capture_status(store, "missing")
