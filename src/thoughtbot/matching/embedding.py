"""Nearest-neighbour duplicate detection over cached embeddings."""
from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

from thoughtbot.logging_utils import LOGGER
from thoughtbot.matching.base import DuplicateMatcher
from thoughtbot.models import Task, Thought
from thoughtbot.store import RecordStore

Embed = Callable[[str], Awaitable[Sequence[float]]]

DEFAULT_SIMILARITY_THRESHOLD = 0.75
DEFAULT_CACHE_TTL_SECONDS = 60.0
DEFAULT_CACHE_SIZE = 50

RecordT = TypeVar("RecordT")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Dot product over norms; 0.0 for mismatched dimensions or a zero vector."""

    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    magnitude = norm_a * norm_b
    if magnitude == 0:
        return 0.0
    return dot / magnitude


@dataclass(slots=True)
class CacheEntry(Generic[RecordT]):
    record: RecordT
    vector: List[float]


class EmbeddingCache(Generic[RecordT]):
    """Record vectors keyed by id, valid for ``ttl`` seconds after a refresh.

    Readers always see a complete entry map: a refresh swaps the whole dict.
    """

    def __init__(self, ttl: float = DEFAULT_CACHE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry[RecordT]] = {}
        self._last_refresh: Optional[float] = None

    @property
    def entries(self) -> Dict[str, CacheEntry[RecordT]]:
        return self._entries

    @property
    def last_refresh(self) -> Optional[float]:
        return self._last_refresh

    def is_stale(self) -> bool:
        if self._last_refresh is None:
            return True
        return self._clock() - self._last_refresh > self.ttl

    def replace(self, entries: Dict[str, CacheEntry[RecordT]], refreshed_at: float | None = None) -> None:
        self._entries = entries
        self._last_refresh = self._clock() if refreshed_at is None else refreshed_at

    def invalidate(self) -> None:
        self._last_refresh = None

    async def ensure_fresh(self, loader: Callable[[], Awaitable[Dict[str, CacheEntry[RecordT]]]]) -> bool:
        """Rebuild through ``loader`` when stale; returns True if a rebuild happened."""

        if not self.is_stale():
            return False
        started_at = self._clock()
        entries = await loader()
        self.replace(entries, refreshed_at=started_at)
        return True


@dataclass(slots=True)
class _Best(Generic[RecordT]):
    record: RecordT
    similarity: float


def best_match(
    vector: Sequence[float],
    entries: Dict[str, CacheEntry[RecordT]],
    threshold: float,
) -> Optional[_Best[RecordT]]:
    """Strict maximum above ``threshold``; the first entry seen wins ties."""

    best: Optional[_Best[RecordT]] = None
    for entry in entries.values():
        similarity = cosine_similarity(vector, entry.vector)
        if similarity > threshold and (best is None or similarity > best.similarity):
            best = _Best(entry.record, similarity)
    return best


class EmbeddingMatcher(DuplicateMatcher):
    """Embedding-based duplicate detection for open tasks (thoughts optional).

    Embedding failures fall through to ``fallback`` when one is configured,
    otherwise they mean "no match".
    """

    name = "embedding"

    def __init__(
        self,
        store: RecordStore,
        embed: Embed,
        *,
        threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        cache_size: int = DEFAULT_CACHE_SIZE,
        match_thoughts: bool = False,
        fallback: DuplicateMatcher | None = None,
        task_cache: EmbeddingCache[Task] | None = None,
        thought_cache: EmbeddingCache[Thought] | None = None,
    ):
        self.store = store
        self._embed = embed
        self.threshold = threshold
        self.cache_size = cache_size
        self.match_thoughts = match_thoughts
        self.fallback = fallback
        self.task_cache: EmbeddingCache[Task] = task_cache or EmbeddingCache()
        self.thought_cache: EmbeddingCache[Thought] = thought_cache or EmbeddingCache()

    def invalidate(self) -> None:
        self.task_cache.invalidate()
        self.thought_cache.invalidate()
        if self.fallback is not None:
            self.fallback.invalidate()

    async def find_semantic_task_match(self, new_title: str) -> Optional[Task]:
        await self.task_cache.ensure_fresh(self._load_tasks)
        return await self._search(new_title, self.task_cache, "task", lambda task: task.title)

    async def find_semantic_thought_match(self, new_text: str) -> Optional[Thought]:
        await self.thought_cache.ensure_fresh(self._load_thoughts)
        return await self._search(new_text, self.thought_cache, "thought", lambda thought: thought.text)

    async def find_duplicate_task(self, title: str, canonical_title: str) -> Optional[Task]:
        try:
            return await self.find_semantic_task_match(title)
        except Exception as exc:
            LOGGER.warning("Embedding task match failed for %r: %s", title, exc)
            if self.fallback is None:
                return None
            return await self.fallback.find_duplicate_task(title, canonical_title)

    async def find_duplicate_thought(self, text: str, canonical_text: str) -> Optional[Thought]:
        if not self.match_thoughts:
            return None
        try:
            return await self.find_semantic_thought_match(text)
        except Exception as exc:
            LOGGER.warning("Embedding thought match failed for %r: %s", text, exc)
            if self.fallback is None:
                return None
            return await self.fallback.find_duplicate_thought(text, canonical_text)

    async def _search(
        self,
        new_text: str,
        cache: EmbeddingCache[Any],
        kind: str,
        label: Callable[[Any], str],
    ) -> Optional[Any]:
        entries = cache.entries
        if not entries:
            return None
        vector = list(await self._embed(new_text))
        best = best_match(vector, entries, self.threshold)
        if best is None:
            LOGGER.info("No embedding %s match for %r (max similarity below %s)", kind, new_text, self.threshold)
            return None
        LOGGER.info(
            "Embedding %s match found: %r matches %r (similarity=%.3f)",
            kind,
            new_text,
            label(best.record),
            best.similarity,
        )
        return best.record

    async def _load_tasks(self) -> Dict[str, CacheEntry[Task]]:
        tasks = await self.store.list_tasks(status="open")
        tasks = sorted(tasks, key=lambda t: (t.mention_count, t.created_at), reverse=True)[: self.cache_size]
        entries: Dict[str, CacheEntry[Task]] = {}
        for task in tasks:
            if task.embedding:
                vector = list(task.embedding)
            else:
                vector = list(await self._embed(task.title))
                await self.store.set_task_embedding(task.id, vector)
                task = task.model_copy(update={"embedding": vector})
            entries[task.id] = CacheEntry(task, vector)
        return entries

    async def _load_thoughts(self) -> Dict[str, CacheEntry[Thought]]:
        thoughts = await self.store.list_thoughts()
        thoughts = sorted(thoughts, key=lambda t: (t.mention_count, t.created_at), reverse=True)[: self.cache_size]
        entries: Dict[str, CacheEntry[Thought]] = {}
        for thought in thoughts:
            if thought.embedding:
                vector = list(thought.embedding)
            else:
                vector = list(await self._embed(thought.text))
                await self.store.set_thought_embedding(thought.id, vector)
                thought = thought.model_copy(update={"embedding": vector})
            entries[thought.id] = CacheEntry(thought, vector)
        return entries


__all__ = [
    "cosine_similarity",
    "best_match",
    "CacheEntry",
    "EmbeddingCache",
    "EmbeddingMatcher",
    "DEFAULT_SIMILARITY_THRESHOLD",
    "DEFAULT_CACHE_TTL_SECONDS",
]
