"""High-level pipeline: raw capture -> transcript -> classification -> thought/task."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional, Set

from thoughtbot.logging_utils import LOGGER, log_event
from thoughtbot.models import (
    Capture,
    ClassificationResult,
    CompletionCategory,
    CompletionClassification,
    CompletionResult,
)
from thoughtbot.normalize import is_noise_transcript
from thoughtbot.notifier import ERROR_RESULT, CompletionRegistry
from thoughtbot.resolver import EntityResolver, Resolution
from thoughtbot.store import RecordStore

Transcribe = Callable[[Path], Awaitable[str]]
Classify = Callable[[str], Awaitable[ClassificationResult]]
StateListener = Callable[[str, "CaptureState"], None]


class CaptureState(str, Enum):
    RECEIVED = "received"
    TRANSCRIBING = "transcribing"
    TRANSCRIBED = "transcribed"
    CLASSIFYING = "classifying"
    CLASSIFIED = "classified"
    RESOLVING = "resolving"
    DONE = "done"
    ERROR = "error"


class NoiseTranscriptError(ValueError):
    """Raised internally when a transcript is silence or noise."""

    def __init__(self, transcript: str):
        super().__init__(f"Transcript looks like silence/noise: {transcript!r}")
        self.transcript = transcript


@dataclass(slots=True)
class CaptureAccepted:
    id: str
    status: str = "processing"


@dataclass(slots=True)
class PipelineResult:
    capture_id: str
    classification: CompletionClassification
    category: CompletionCategory
    transcript: str | None = None
    resolution: Resolution | None = None
    error: str | None = None


class CapturePipeline:
    """Runs each capture in its own background task and reports completion once."""

    def __init__(
        self,
        store: RecordStore,
        resolver: EntityResolver,
        registry: CompletionRegistry,
        *,
        transcribe: Transcribe,
        classify: Classify,
        on_state: StateListener | None = None,
    ):
        self.store = store
        self.resolver = resolver
        self.registry = registry
        self._transcribe = transcribe
        self._classify = classify
        self._on_state = on_state
        self._states: Dict[str, CaptureState] = {}
        self._tasks: Set[asyncio.Task] = set()

    # Entry points: persist the capture, answer at once, process in the background.

    async def submit_audio(self, audio_path: Path, audio_url: str | None = None) -> CaptureAccepted:
        capture = await self.store.insert_capture(Capture(audio_url=audio_url or str(audio_path)))
        self._set_state(capture.id, CaptureState.RECEIVED)
        self._spawn(self.process_audio(capture.id, Path(audio_path)))
        return CaptureAccepted(id=capture.id)

    async def submit_text(self, text: str) -> CaptureAccepted:
        transcript = text.strip()
        if not transcript:
            raise ValueError("Text is required")
        capture = await self.store.insert_capture(Capture(transcript=transcript))
        self._set_state(capture.id, CaptureState.RECEIVED)
        self._spawn(self.process_text(capture.id, transcript))
        return CaptureAccepted(id=capture.id)

    def state(self, capture_id: str) -> Optional[CaptureState]:
        """Current state of an in-flight capture; ``None`` once it has finished."""

        return self._states.get(capture_id)

    async def drain(self) -> None:
        """Wait for every in-flight capture to finish."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    # Processing

    async def process_audio(self, capture_id: str, audio_path: Path) -> PipelineResult:
        transcript: str | None = None
        try:
            LOGGER.info("[%s] Transcribing audio...", capture_id)
            self._set_state(capture_id, CaptureState.TRANSCRIBING)
            transcript = await self._transcribe(audio_path)
            LOGGER.info("[%s] Transcript: %r", capture_id, transcript)
            await self.store.update_capture(capture_id, transcript=transcript)
            if is_noise_transcript(transcript):
                raise NoiseTranscriptError(transcript)
            self._set_state(capture_id, CaptureState.TRANSCRIBED)
            return await self._classify_and_resolve(capture_id, transcript)
        except Exception as exc:
            return await self._fail(capture_id, transcript, exc)

    async def process_text(self, capture_id: str, transcript: str) -> PipelineResult:
        try:
            LOGGER.info("[%s] Processing text capture: %r", capture_id, transcript)
            self._set_state(capture_id, CaptureState.TRANSCRIBED)
            return await self._classify_and_resolve(capture_id, transcript)
        except Exception as exc:
            return await self._fail(capture_id, transcript, exc)

    async def _classify_and_resolve(self, capture_id: str, transcript: str) -> PipelineResult:
        LOGGER.info("[%s] Classifying...", capture_id)
        self._set_state(capture_id, CaptureState.CLASSIFYING)
        classification = await self._classify(transcript)
        self._set_state(capture_id, CaptureState.CLASSIFIED)

        # Raw payload first; the tag is written only once the entity exists.
        await self.store.update_capture(
            capture_id,
            raw_llm_output=classification.model_dump(mode="json", exclude_none=True),
        )

        self._set_state(capture_id, CaptureState.RESOLVING)
        resolution = await self.resolver.resolve(classification, capture_id)
        LOGGER.info(
            "[%s] %s %s %s (%s)",
            capture_id,
            resolution.action,
            classification.type,
            resolution.entity.id,
            classification.category,
        )

        await self.store.update_capture(capture_id, classification=classification.type)
        self._set_state(capture_id, CaptureState.DONE)
        self.registry.notify(
            capture_id,
            CompletionResult(classification=classification.type, category=classification.category),
        )
        self._states.pop(capture_id, None)

        log_event(
            {
                "status": "success",
                "capture_id": capture_id,
                "raw_text": transcript,
                "classification": classification.type,
                "category": classification.category,
                "action": resolution.action,
                "entity_id": resolution.entity.id,
            }
        )
        return PipelineResult(
            capture_id=capture_id,
            classification=classification.type,
            category=classification.category,
            transcript=transcript,
            resolution=resolution,
        )

    async def _fail(self, capture_id: str, transcript: str | None, exc: Exception) -> PipelineResult:
        if isinstance(exc, NoiseTranscriptError):
            LOGGER.info("[%s] Invalid transcript detected, marking as error", capture_id)
        else:
            LOGGER.exception("[%s] Processing error: %s", capture_id, exc)
        try:
            await self.store.update_capture(capture_id, classification="error")
        except Exception as store_exc:
            LOGGER.error("[%s] Could not mark capture as error: %s", capture_id, store_exc)
        self._set_state(capture_id, CaptureState.ERROR)
        self.registry.notify(capture_id, ERROR_RESULT)
        self._states.pop(capture_id, None)

        log_event(
            {
                "status": "error",
                "capture_id": capture_id,
                "raw_text": transcript or "",
                "error": str(exc),
            }
        )
        return PipelineResult(
            capture_id=capture_id,
            classification="error",
            category="unknown",
            transcript=transcript,
            error=str(exc),
        )

    def _set_state(self, capture_id: str, state: CaptureState) -> None:
        self._states[capture_id] = state
        if self._on_state is not None:
            self._on_state(capture_id, state)

    def _spawn(self, coro: Awaitable[PipelineResult]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


__all__ = [
    "CapturePipeline",
    "CaptureAccepted",
    "CaptureState",
    "PipelineResult",
    "NoiseTranscriptError",
]
