import asyncio
from datetime import date
from pathlib import Path
from typing import Any, List, Tuple

import pytest

from thoughtbot.matching.lexical import LexicalMatcher
from thoughtbot.models import (
    Capture,
    ClassificationResult,
    Task,
    TaskCreatePayload,
    TaskUpdatePayload,
    ThoughtPayload,
)
from thoughtbot.notifier import TIMEOUT_RESULT, CompletionRegistry
from thoughtbot.pipeline import CapturePipeline, CaptureState
from thoughtbot.resolver import EntityResolver
from thoughtbot.store import RecordStore

TODAY = date(2024, 1, 1)


class OrderCheckingStore(RecordStore):
    """Records write order and checks the entity exists whenever a tag is written."""

    def __init__(self):
        super().__init__()
        self.events: List[str] = []

    async def insert_thought(self, thought):
        self.events.append("insert_thought")
        return await super().insert_thought(thought)

    async def insert_task(self, task):
        self.events.append("insert_task")
        return await super().insert_task(task)

    async def update_task(self, task_id, **changes):
        self.events.append("update_task")
        return await super().update_task(task_id, **changes)

    async def update_capture(self, capture_id, **changes):
        for key in changes:
            self.events.append(f"capture.{key}")
        tag = changes.get("classification")
        if tag == "thought":
            assert any(t.capture_id == capture_id for t in self._thoughts.values())
        elif tag == "task_create":
            assert any(t.capture_id == capture_id for t in self._tasks.values())
        return await super().update_capture(capture_id, **changes)


def _classifier(result: ClassificationResult, calls: List[str] | None = None):
    async def classify(text: str) -> ClassificationResult:
        if calls is not None:
            calls.append(text)
        return result

    return classify


def _transcriber(text: str):
    async def transcribe(path: Path) -> str:
        return text

    return transcribe


async def _never_transcribe(path: Path) -> str:
    raise AssertionError("text captures skip transcription")


def _pipeline(store, *, classify, transcribe=_never_transcribe, registry=None, on_state=None) -> CapturePipeline:
    lexical = LexicalMatcher(store)
    resolver = EntityResolver(store, lexical, lexical, today=lambda: TODAY)
    return CapturePipeline(
        store,
        resolver,
        registry or CompletionRegistry(timeout=1.0),
        transcribe=transcribe,
        classify=classify,
        on_state=on_state,
    )


THOUGHT = ClassificationResult(type="thought", category="business", thought=ThoughtPayload(text="Maybe hire a designer"))
TASK = ClassificationResult(type="task_create", task_create=TaskCreatePayload(title="Buy groceries today"))


@pytest.mark.anyio
async def test_text_capture_creates_thought_and_tags_capture():
    store = OrderCheckingStore()
    pipeline = _pipeline(store, classify=_classifier(THOUGHT))

    accepted = await pipeline.submit_text("  maybe we should hire a designer ")
    await pipeline.drain()

    capture = await store.get_capture(accepted.id)
    assert capture.transcript == "maybe we should hire a designer"
    assert capture.classification == "thought"
    assert capture.raw_llm_output["category"] == "business"
    thoughts = await store.list_thoughts()
    assert len(thoughts) == 1 and thoughts[0].capture_id == accepted.id
    assert store.events == ["capture.raw_llm_output", "insert_thought", "capture.classification"]


@pytest.mark.anyio
async def test_tag_is_written_after_task_mutation():
    store = OrderCheckingStore()
    lexical_seed = await store.insert_task(
        Task(title="Post LinkedIn update", canonical_title="post linkedin update", due_date=TODAY)
    )
    store.events.clear()
    update = ClassificationResult(
        type="task_update",
        task_update=TaskUpdatePayload(operation="complete", target_hint="LinkedIn post"),
    )
    pipeline = _pipeline(store, classify=_classifier(update))

    accepted = await pipeline.submit_text("LinkedIn post complete")
    await pipeline.drain()

    assert (await store.get_task(lexical_seed.id)).status == "done"
    assert (await store.get_capture(accepted.id)).classification == "task_update"
    assert store.events == ["capture.raw_llm_output", "update_task", "capture.classification"]


@pytest.mark.anyio
async def test_submit_answers_before_processing_finishes(store):
    gate = asyncio.Event()

    async def slow_classify(text: str) -> ClassificationResult:
        await gate.wait()
        return TASK

    pipeline = _pipeline(store, classify=slow_classify)
    accepted = await pipeline.submit_text("buy groceries today")

    assert accepted.status == "processing"
    await asyncio.sleep(0)
    assert pipeline.state(accepted.id) == CaptureState.CLASSIFYING
    assert (await store.get_capture(accepted.id)).classification is None

    gate.set()
    await pipeline.drain()
    assert pipeline.state(accepted.id) is None
    assert (await store.get_capture(accepted.id)).classification == "task_create"


@pytest.mark.anyio
async def test_audio_capture_walks_through_all_states(store):
    seen: List[Tuple[str, CaptureState]] = []
    pipeline = _pipeline(
        store,
        classify=_classifier(TASK),
        transcribe=_transcriber("Buy groceries today"),
        on_state=lambda capture_id, state: seen.append((capture_id, state)),
    )

    accepted = await pipeline.submit_audio(Path("/tmp/note.m4a"), audio_url="/uploads/note.m4a")
    await pipeline.drain()

    assert [state for _, state in seen] == [
        CaptureState.RECEIVED,
        CaptureState.TRANSCRIBING,
        CaptureState.TRANSCRIBED,
        CaptureState.CLASSIFYING,
        CaptureState.CLASSIFIED,
        CaptureState.RESOLVING,
        CaptureState.DONE,
    ]
    capture = await store.get_capture(accepted.id)
    assert capture.audio_url == "/uploads/note.m4a"
    assert capture.transcript == "Buy groceries today"
    tasks = await store.list_tasks()
    assert len(tasks) == 1 and tasks[0].due_date == TODAY


@pytest.mark.anyio
@pytest.mark.parametrize("transcript", ["you", "Thanks.", "a."])
async def test_noise_transcript_marks_error_without_classifying(store, transcript):
    calls: List[str] = []
    registry = CompletionRegistry(timeout=1.0)
    pipeline = _pipeline(store, classify=_classifier(TASK, calls), transcribe=_transcriber(transcript), registry=registry)

    accepted = await pipeline.submit_audio(Path("/tmp/silence.m4a"))
    waiter = registry.register(accepted.id)
    await pipeline.drain()

    assert calls == []
    capture = await store.get_capture(accepted.id)
    assert capture.classification == "error"
    assert capture.transcript == transcript
    assert await store.list_tasks() == []
    assert await store.list_thoughts() == []
    result = waiter.result()
    assert result.classification == "error"
    assert result.category == "unknown"


@pytest.mark.anyio
async def test_classifier_failure_marks_error_and_keeps_transcript(store):
    async def broken_classify(text: str) -> Any:
        raise RuntimeError("model unavailable")

    registry = CompletionRegistry(timeout=1.0)
    pipeline = _pipeline(store, classify=broken_classify, registry=registry)
    accepted = await pipeline.submit_text("call mom")
    waiter = registry.register(accepted.id)
    await pipeline.drain()

    capture = await store.get_capture(accepted.id)
    assert capture.classification == "error"
    assert capture.transcript == "call mom"
    assert capture.raw_llm_output is None
    assert await store.list_tasks() == []
    assert waiter.result().classification == "error"


@pytest.mark.anyio
async def test_transcription_failure_is_contained(store):
    async def broken_transcribe(path: Path) -> str:
        raise ConnectionError("quota exceeded")

    pipeline = _pipeline(store, classify=_classifier(TASK), transcribe=broken_transcribe)
    capture = await store.insert_capture(Capture(audio_url="/uploads/a.m4a"))

    result = await pipeline.process_audio(capture.id, Path("/tmp/a.m4a"))

    assert result.classification == "error"
    assert "quota exceeded" in result.error
    assert (await store.get_capture(capture.id)).classification == "error"


@pytest.mark.anyio
async def test_subscribers_are_notified_exactly_once(store):
    registry = CompletionRegistry(timeout=1.0)
    pipeline = _pipeline(store, classify=_classifier(THOUGHT), registry=registry)

    accepted = await pipeline.submit_text("maybe hire a designer")
    first = registry.register(accepted.id)
    second = registry.register(accepted.id)
    await pipeline.drain()

    assert first.result().classification == "thought"
    assert second.result().category == "business"
    assert registry.waiting(accepted.id) == 0
    assert registry.notify(accepted.id, TIMEOUT_RESULT) == 0


@pytest.mark.anyio
async def test_repeated_task_capture_increments_mention(store):
    pipeline = _pipeline(store, classify=_classifier(TASK))

    await pipeline.submit_text("buy groceries today")
    await pipeline.drain()
    await pipeline.submit_text("buy groceries today again")
    await pipeline.drain()

    tasks = await store.list_tasks()
    assert len(tasks) == 1
    assert tasks[0].mention_count == 2


@pytest.mark.anyio
async def test_empty_text_is_rejected(store):
    pipeline = _pipeline(store, classify=_classifier(THOUGHT))
    with pytest.raises(ValueError):
        await pipeline.submit_text("   ")


class TaskWriteFailingStore(RecordStore):
    """Fails every snapshot that would contain a task row."""

    async def _write_atomic(self, target, content):
        if '"canonical_title"' in content:
            raise OSError("disk full")
        await RecordStore._write_atomic(target, content)


@pytest.mark.anyio
async def test_failed_entity_write_leaves_no_entity(tmp_path):
    store = TaskWriteFailingStore(tmp_path / "records.json")
    registry = CompletionRegistry(timeout=1.0)
    pipeline = _pipeline(store, classify=_classifier(TASK), registry=registry)

    accepted = await pipeline.submit_text("buy groceries today")
    waiter = registry.register(accepted.id)
    await pipeline.drain()

    assert (await store.get_capture(accepted.id)).classification == "error"
    assert await store.list_tasks() == []
    assert waiter.result().classification == "error"
    persisted = RecordStore.load(tmp_path / "records.json")
    assert await persisted.list_tasks() == []
    assert (await persisted.get_capture(accepted.id)).classification == "error"
