"""One-shot completion notifications for capture processing."""
from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Dict, Optional, Set

from thoughtbot.logging_utils import LOGGER
from thoughtbot.models import Capture, CompletionResult
from thoughtbot.store import RecordStore

DEFAULT_COMPLETION_TIMEOUT = 60.0
TIMEOUT_RESULT = CompletionResult(classification="timeout", category="unknown")
ERROR_RESULT = CompletionResult(classification="error", category="unknown")


class CompletionRegistry:
    """Waiters keyed by capture id; an entry lives until delivery or timeout."""

    def __init__(self, timeout: float = DEFAULT_COMPLETION_TIMEOUT):
        self.timeout = timeout
        self._waiters: Dict[str, Set[asyncio.Future]] = {}

    def register(self, capture_id: str) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(capture_id, set()).add(future)
        return future

    def discard(self, capture_id: str, future: asyncio.Future) -> None:
        waiters = self._waiters.get(capture_id)
        if not waiters:
            return
        waiters.discard(future)
        if not waiters:
            del self._waiters[capture_id]

    def notify(self, capture_id: str, result: CompletionResult) -> int:
        """Deliver ``result`` to every waiter of ``capture_id`` and forget them."""

        waiters = self._waiters.pop(capture_id, set())
        delivered = 0
        for future in waiters:
            if not future.done():
                future.set_result(result)
                delivered += 1
        if delivered:
            LOGGER.info("[%s] Notified %d subscribers", capture_id, delivered)
        return delivered

    def waiting(self, capture_id: str) -> int:
        return len(self._waiters.get(capture_id, ()))

    async def wait(self, capture_id: str, timeout: float | None = None) -> CompletionResult:
        future = self.register(capture_id)
        return await self.wait_on(capture_id, future, timeout)

    async def wait_on(
        self,
        capture_id: str,
        future: asyncio.Future,
        timeout: float | None = None,
    ) -> CompletionResult:
        limit = self.timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=limit)
        except asyncio.TimeoutError:
            LOGGER.info("[%s] Subscriber timed out after %ss", capture_id, limit)
            return TIMEOUT_RESULT
        finally:
            self.discard(capture_id, future)


def completion_from_capture(capture: Capture) -> Optional[CompletionResult]:
    """Outcome already recorded on the capture row, if any."""

    if capture.classification is None:
        return None
    if capture.classification == "error":
        return ERROR_RESULT
    category = "personal"
    if capture.raw_llm_output:
        category = capture.raw_llm_output.get("category") or "personal"
    if category not in {"personal", "business"}:
        category = "personal"
    return CompletionResult(classification=capture.classification, category=category)


class CaptureNotFoundError(LookupError):
    pass


async def await_capture_status(
    store: RecordStore,
    registry: CompletionRegistry,
    capture_id: str,
    timeout: float | None = None,
) -> CompletionResult:
    """Stored outcome when the capture is finished, else the next notification."""

    # Register first so a completion between the lookup and the wait is not lost.
    future = registry.register(capture_id)
    capture = await store.get_capture(capture_id)
    if capture is None:
        registry.discard(capture_id, future)
        raise CaptureNotFoundError(capture_id)
    stored = completion_from_capture(capture)
    if stored is not None:
        registry.discard(capture_id, future)
        return stored
    return await registry.wait_on(capture_id, future, timeout)


async def poll_capture_status(
    store: RecordStore,
    capture_id: str,
    *,
    initial_delay: float = 0.5,
    max_delay: float = 5.0,
    max_wait: float = DEFAULT_COMPLETION_TIMEOUT,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> CompletionResult:
    """Poll the capture row with exponential backoff until it carries a tag."""

    started = clock()
    delay = initial_delay
    while True:
        capture = await store.get_capture(capture_id)
        if capture is None:
            raise CaptureNotFoundError(capture_id)
        stored = completion_from_capture(capture)
        if stored is not None:
            return stored
        remaining = max_wait - (clock() - started)
        if remaining <= 0:
            return TIMEOUT_RESULT
        await sleep(min(delay, remaining))
        delay = min(delay * 2, max_delay)


__all__ = [
    "CompletionRegistry",
    "CaptureNotFoundError",
    "await_capture_status",
    "poll_capture_status",
    "completion_from_capture",
    "TIMEOUT_RESULT",
    "ERROR_RESULT",
]
