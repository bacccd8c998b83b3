"""Wire settings, store, matcher, resolver and pipeline together."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from thoughtbot import llm_client
from thoughtbot.config import MatcherStrategy, Settings
from thoughtbot.logging_utils import configure_event_log
from thoughtbot.matching.base import DuplicateMatcher
from thoughtbot.matching.embedding import EmbeddingCache, EmbeddingMatcher
from thoughtbot.matching.lexical import LexicalMatcher
from thoughtbot.matching.llm import LLMAdjudicator, LLMMatcher
from thoughtbot.models import ClassificationResult
from thoughtbot.notifier import CompletionRegistry
from thoughtbot.pipeline import CapturePipeline
from thoughtbot.resolver import EntityResolver
from thoughtbot.store import RecordStore
from thoughtbot.time_utils import get_timezone, get_today


@dataclass(slots=True)
class Runtime:
    settings: Settings
    store: RecordStore
    matcher: DuplicateMatcher
    resolver: EntityResolver
    registry: CompletionRegistry
    pipeline: CapturePipeline


def build_lexical_matcher(settings: Settings, store: RecordStore) -> LexicalMatcher:
    return LexicalMatcher(
        store,
        duplicate_threshold=settings.lexical_duplicate_threshold,
        hint_threshold=settings.target_hint_threshold,
        window_days=settings.duplicate_window_days,
    )


def build_matcher(
    settings: Settings,
    store: RecordStore,
    lexical: LexicalMatcher,
    strategy: MatcherStrategy | None = None,
) -> DuplicateMatcher:
    """Select the duplicate-detection strategy named by configuration."""

    chosen = strategy or settings.matcher_strategy
    if chosen == "lexical":
        return lexical
    if chosen == "llm":
        adjudicator = LLMAdjudicator(
            llm_client.complete_json,
            accept_threshold=settings.llm_accept_threshold,
            prompt_threshold=settings.llm_prompt_threshold,
        )
        return LLMMatcher(store, adjudicator, candidate_limit=settings.llm_candidate_limit)
    if chosen == "embedding":
        ttl = settings.embedding_cache_ttl_seconds
        return EmbeddingMatcher(
            store,
            llm_client.generate_embedding,
            threshold=settings.embedding_threshold,
            cache_size=settings.embedding_cache_size,
            match_thoughts=settings.embedding_match_thoughts,
            fallback=lexical,
            task_cache=EmbeddingCache(ttl=ttl),
            thought_cache=EmbeddingCache(ttl=ttl),
        )
    raise ValueError(f"Unknown matcher strategy: {chosen}")


def build_runtime(
    settings: Settings,
    *,
    strategy: MatcherStrategy | None = None,
    store: RecordStore | None = None,
) -> Runtime:
    configure_event_log(settings.log_dir)
    tz = get_timezone(settings.timezone)

    def today() -> date:
        return get_today(tz)

    async def classify(text: str) -> ClassificationResult:
        return await llm_client.classify_transcript(text, today())

    record_store = store or RecordStore.load(settings.snapshot_path)
    lexical = build_lexical_matcher(settings, record_store)
    matcher = build_matcher(settings, record_store, lexical, strategy)
    resolver = EntityResolver(record_store, matcher, lexical, today=today)
    registry = CompletionRegistry(timeout=settings.completion_timeout_seconds)
    pipeline = CapturePipeline(
        record_store,
        resolver,
        registry,
        transcribe=llm_client.transcribe_audio,
        classify=classify,
    )
    return Runtime(
        settings=settings,
        store=record_store,
        matcher=matcher,
        resolver=resolver,
        registry=registry,
        pipeline=pipeline,
    )


__all__ = ["Runtime", "build_runtime", "build_matcher", "build_lexical_matcher"]
