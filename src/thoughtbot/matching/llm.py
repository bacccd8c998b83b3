"""Duplicate detection adjudicated by the chat model."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from thoughtbot.logging_utils import LOGGER
from thoughtbot.matching.base import DuplicateMatcher
from thoughtbot.models import Task, Thought
from thoughtbot.store import RecordStore

CompleteJSON = Callable[[str], Awaitable[Mapping[str, Any]]]

DEFAULT_CANDIDATE_LIMIT = 30
DEFAULT_ACCEPT_THRESHOLD = 0.5
DEFAULT_PROMPT_THRESHOLD = 0.7

TASK_PROMPT_TEMPLATE = """You are checking if a new task/reminder is semantically the same as an existing one.

New input: "{new_text}"

Existing active tasks:
{candidates}

Does the new input refer to the SAME task/commitment as any existing task? Consider:
- Different phrasings of the same action (e.g., "email John" = "send email to John")
- Follow-ups or reminders about the same thing (e.g., "don't forget to call mom" = "call mom")
- Variations in wording that mean the same action

Reply with ONLY valid JSON:
{{
  "matched_id": "the id of the matching task, or null if no match",
  "confidence": 0.0 to 1.0,
  "reason": "brief explanation"
}}

Only match if confidence >= {threshold}. If unsure, return null."""

THOUGHT_PROMPT_TEMPLATE = """You are checking if a new thought/idea is semantically the same as an existing one.

New input: "{new_text}"

Existing thoughts:
{candidates}

Does the new input express the SAME thought/idea/reflection as any existing thought? Consider:
- Different phrasings of the same idea
- Elaborations or restatements of the same thought
- The user expressing the same concern/reflection again

Reply with ONLY valid JSON:
{{
  "matched_id": "the id of the matching thought, or null if no match",
  "confidence": 0.0 to 1.0,
  "reason": "brief explanation"
}}

Only match if confidence >= {threshold}. If unsure, return null."""


@dataclass(slots=True)
class Candidate:
    id: str
    text: str


@dataclass(slots=True)
class SemanticMatch:
    matched_id: str
    confidence: float
    reason: str | None = None


def build_prompt(template: str, new_text: str, candidates: Sequence[Candidate], threshold: float) -> str:
    lines = "\n".join(
        f'{idx}. "{candidate.text}" (id: {candidate.id})' for idx, candidate in enumerate(candidates, start=1)
    )
    return template.format(new_text=new_text, candidates=lines, threshold=threshold)


def parse_match(payload: Any, candidate_ids: Sequence[str], accept_threshold: float) -> Optional[SemanticMatch]:
    """Interpret the model's answer; anything malformed counts as no match."""

    if not isinstance(payload, Mapping):
        return None
    matched_id = payload.get("matched_id")
    if not isinstance(matched_id, str) or matched_id not in candidate_ids:
        return None
    confidence = payload.get("confidence")
    if isinstance(confidence, bool):
        return None
    try:
        confidence_value = float(confidence)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(confidence_value) or not 0.0 <= confidence_value <= 1.0:
        return None
    if confidence_value < accept_threshold:
        return None
    reason = payload.get("reason")
    return SemanticMatch(
        matched_id=matched_id,
        confidence=confidence_value,
        reason=str(reason) if reason is not None else None,
    )


class LLMAdjudicator:
    """Asks the chat model which candidate, if any, the new text repeats."""

    def __init__(
        self,
        complete_json: CompleteJSON,
        *,
        accept_threshold: float = DEFAULT_ACCEPT_THRESHOLD,
        prompt_threshold: float = DEFAULT_PROMPT_THRESHOLD,
    ):
        self._complete_json = complete_json
        self.accept_threshold = accept_threshold
        self.prompt_threshold = prompt_threshold

    async def find_semantic_match(
        self,
        new_text: str,
        candidates: Sequence[Candidate],
        *,
        template: str = TASK_PROMPT_TEMPLATE,
    ) -> Optional[SemanticMatch]:
        if not candidates:
            return None
        prompt = build_prompt(template, new_text, candidates, self.prompt_threshold)
        try:
            payload = await self._complete_json(prompt)
        except Exception as exc:
            LOGGER.warning("Semantic adjudication failed for %r: %s", new_text, exc)
            return None
        match = parse_match(payload, [candidate.id for candidate in candidates], self.accept_threshold)
        if match is not None:
            LOGGER.info(
                "Semantic match found: %r matches %s (confidence=%s, reason=%s)",
                new_text,
                match.matched_id,
                match.confidence,
                match.reason,
            )
        return match


def rank_candidates(records: Sequence[Any], limit: int) -> List[Any]:
    """Most mentioned first, newest first among equals."""

    return sorted(records, key=lambda r: (r.mention_count, r.created_at), reverse=True)[:limit]


class LLMMatcher(DuplicateMatcher):
    """Candidate sets span both categories on purpose."""

    name = "llm"

    def __init__(
        self,
        store: RecordStore,
        adjudicator: LLMAdjudicator,
        *,
        candidate_limit: int = DEFAULT_CANDIDATE_LIMIT,
    ):
        self.store = store
        self.adjudicator = adjudicator
        self.candidate_limit = candidate_limit

    async def find_duplicate_task(self, title: str, canonical_title: str) -> Optional[Task]:
        tasks = rank_candidates(await self.store.list_tasks(status="open"), self.candidate_limit)
        by_id: Dict[str, Task] = {task.id: task for task in tasks}
        match = await self.adjudicator.find_semantic_match(
            title,
            [Candidate(id=task.id, text=task.title) for task in tasks],
            template=TASK_PROMPT_TEMPLATE,
        )
        return by_id.get(match.matched_id) if match else None

    async def find_duplicate_thought(self, text: str, canonical_text: str) -> Optional[Thought]:
        thoughts = rank_candidates(await self.store.list_thoughts(), self.candidate_limit)
        by_id: Dict[str, Thought] = {thought.id: thought for thought in thoughts}
        match = await self.adjudicator.find_semantic_match(
            text,
            [Candidate(id=thought.id, text=thought.text) for thought in thoughts],
            template=THOUGHT_PROMPT_TEMPLATE,
        )
        return by_id.get(match.matched_id) if match else None


__all__ = [
    "Candidate",
    "SemanticMatch",
    "LLMAdjudicator",
    "LLMMatcher",
    "build_prompt",
    "parse_match",
    "rank_candidates",
    "TASK_PROMPT_TEMPLATE",
    "THOUGHT_PROMPT_TEMPLATE",
]
