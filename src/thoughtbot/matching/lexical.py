"""Trigram and substring matching over canonical titles."""
from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Set, Tuple, TypeVar

from thoughtbot.logging_utils import LOGGER
from thoughtbot.matching.base import DuplicateMatcher
from thoughtbot.models import Task, Thought
from thoughtbot.normalize import normalize_text
from thoughtbot.store import RecordStore
from thoughtbot.time_utils import utcnow

DEFAULT_DUPLICATE_THRESHOLD = 0.7
STRICT_DUPLICATE_THRESHOLD = 0.85
DEFAULT_HINT_THRESHOLD = 0.5
DEFAULT_WINDOW_DAYS = 14

_WORD = re.compile(r"[^\W_]+", re.UNICODE)

RecordT = TypeVar("RecordT")


def trigrams(value: str) -> Set[str]:
    """Word trigrams padded the way pg_trgm pads them (two spaces before, one after)."""

    grams: Set[str] = set()
    for word in _WORD.findall(value.lower()):
        padded = f"  {word} "
        for idx in range(len(padded) - 2):
            grams.add(padded[idx : idx + 3])
    return grams


def trigram_similarity(left: str, right: str) -> float:
    """Shared trigrams over all distinct trigrams; 0.0 when either side has none."""

    left_grams = trigrams(left)
    right_grams = trigrams(right)
    if not left_grams or not right_grams:
        return 0.0
    shared = len(left_grams & right_grams)
    return shared / len(left_grams | right_grams)


def _best_above(
    query: str,
    records: Iterable[RecordT],
    key: Callable[[RecordT], str],
    threshold: float,
) -> Optional[Tuple[RecordT, float]]:
    scored: List[Tuple[RecordT, float]] = [
        (record, trigram_similarity(key(record), query)) for record in records
    ]
    scored = [item for item in scored if item[1] > threshold]
    if not scored:
        return None
    # sorted() is stable, so equal scores keep store order.
    return sorted(scored, key=lambda item: item[1], reverse=True)[0]


class LexicalMatcher(DuplicateMatcher):
    """Duplicate detection and update-target resolution by string similarity."""

    name = "lexical"

    def __init__(
        self,
        store: RecordStore,
        *,
        duplicate_threshold: float = STRICT_DUPLICATE_THRESHOLD,
        hint_threshold: float = DEFAULT_HINT_THRESHOLD,
        window_days: int = DEFAULT_WINDOW_DAYS,
        now: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.duplicate_threshold = duplicate_threshold
        self.hint_threshold = hint_threshold
        self.window = timedelta(days=window_days)
        self._now = now

    async def find_duplicate_task(self, title: str, canonical_title: str) -> Optional[Task]:
        return await self.find_duplicate_task_by_title(canonical_title, self.duplicate_threshold)

    async def find_duplicate_thought(self, text: str, canonical_text: str) -> Optional[Thought]:
        thoughts = await self.store.list_thoughts(created_after=self._now() - self.window)
        best = _best_above(canonical_text, thoughts, lambda t: t.canonical_text, self.duplicate_threshold)
        if best is None:
            return None
        thought, score = best
        LOGGER.info("Lexical thought match: %r ~ %r (similarity=%.3f)", text, thought.text, score)
        return thought

    async def find_duplicate_task_by_title(
        self,
        canonical_title: str,
        threshold: float = DEFAULT_DUPLICATE_THRESHOLD,
    ) -> Optional[Task]:
        """Best open task from the trailing window whose similarity exceeds ``threshold``."""

        tasks = await self.store.list_tasks(status="open", created_after=self._now() - self.window)
        best = _best_above(canonical_title, tasks, lambda t: t.canonical_title, threshold)
        if best is None:
            return None
        task, score = best
        LOGGER.info("Lexical task match: %r ~ %r (similarity=%.3f)", canonical_title, task.title, score)
        return task

    async def find_matching_task(self, target_hint: str, threshold: float | None = None) -> Optional[Task]:
        """Resolve an update hint: substring containment first, then fuzzy similarity."""

        canonical_hint = normalize_text(target_hint)
        if not canonical_hint:
            return None
        open_tasks = await self.store.list_tasks(status="open")

        contained = [task for task in open_tasks if canonical_hint in task.canonical_title]
        if contained:
            return max(contained, key=lambda task: task.created_at)

        limit = self.hint_threshold if threshold is None else threshold
        best = _best_above(canonical_hint, open_tasks, lambda t: t.canonical_title, limit)
        if best is None:
            return None
        task, score = best
        LOGGER.info("Fuzzy target match: %r ~ %r (similarity=%.3f)", target_hint, task.title, score)
        return task


__all__ = [
    "LexicalMatcher",
    "trigram_similarity",
    "trigrams",
    "DEFAULT_DUPLICATE_THRESHOLD",
    "STRICT_DUPLICATE_THRESHOLD",
    "DEFAULT_HINT_THRESHOLD",
]
