"""Turns a classified capture into a created or updated thought/task."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Callable, Literal, Optional, Union

from thoughtbot.logging_utils import LOGGER
from thoughtbot.matching.base import DuplicateMatcher
from thoughtbot.matching.lexical import LexicalMatcher
from thoughtbot.models import (
    Category,
    ClassificationResult,
    Task,
    TaskCreatePayload,
    TaskUpdatePayload,
    Thought,
    ThoughtPayload,
)
from thoughtbot.normalize import normalize_text
from thoughtbot.store import RecordStore
from thoughtbot.time_utils import get_tomorrow, utcnow

ResolutionAction = Literal["created", "incremented", "updated", "created_from_update"]


@dataclass(slots=True)
class Resolution:
    action: ResolutionAction
    entity: Union[Thought, Task]

    @property
    def is_duplicate(self) -> bool:
        return self.action == "incremented"

    @property
    def matched(self) -> bool:
        return self.action in {"incremented", "updated"}


class EntityResolver:
    """Decides create-new vs. increment-existing, and resolves task updates.

    Duplicate detection goes through the configured ``matcher``; update
    targets always go through lexical resolution because hints are short
    fragments rather than restatements.
    """

    def __init__(
        self,
        store: RecordStore,
        matcher: DuplicateMatcher,
        target_resolver: LexicalMatcher,
        *,
        today: Callable[[], date],
    ):
        self.store = store
        self.matcher = matcher
        self.target_resolver = target_resolver
        self._today = today

    async def resolve(self, classification: ClassificationResult, capture_id: str | None = None) -> Resolution:
        category = classification.category
        if classification.type == "thought":
            return await self.resolve_thought(classification.thought, category, capture_id)
        if classification.type == "task_create":
            return await self.resolve_task_create(classification.task_create, category, capture_id)
        return await self.resolve_task_update(classification.task_update, category, capture_id)

    async def resolve_thought(
        self,
        payload: ThoughtPayload,
        category: Category,
        capture_id: str | None = None,
    ) -> Resolution:
        canonical_text = normalize_text(payload.text)
        existing = await self._safe_match(self.matcher.find_duplicate_thought, payload.text, canonical_text)
        if existing is not None:
            thought = await self.store.increment_thought_mention(existing.id)
            self.matcher.invalidate()
            return Resolution("incremented", thought)

        thought = await self.store.insert_thought(
            Thought(
                text=payload.text,
                canonical_text=canonical_text,
                category=category,
                capture_id=capture_id,
            )
        )
        self.matcher.invalidate()
        return Resolution("created", thought)

    async def resolve_task_create(
        self,
        payload: TaskCreatePayload,
        category: Category,
        capture_id: str | None = None,
    ) -> Resolution:
        canonical_title = normalize_text(payload.title)
        due_date = payload.due_date or self._today()
        existing = await self._safe_match(self.matcher.find_duplicate_task, payload.title, canonical_title)
        if existing is not None:
            task = await self.store.increment_task_mention(existing.id)
            self.matcher.invalidate()
            return Resolution("incremented", task)

        task = await self._insert_task(payload.title, due_date, category, capture_id)
        return Resolution("created", task)

    async def resolve_task_update(
        self,
        payload: TaskUpdatePayload,
        category: Category,
        capture_id: str | None = None,
    ) -> Resolution:
        target = await self.target_resolver.find_matching_task(payload.target_hint)
        if target is not None:
            task = await self._apply_operation(target, payload)
            self.matcher.invalidate()
            return Resolution("updated", task)

        LOGGER.info("No match found for %r, creating new task", payload.target_hint)
        due_date = payload.new_due_date or self._today()
        task = await self._insert_task(payload.target_hint, due_date, category, capture_id)
        return Resolution("created_from_update", task)

    async def _apply_operation(self, task: Task, payload: TaskUpdatePayload) -> Task:
        operation = payload.operation
        if operation == "complete":
            return await self.store.update_task(task.id, status="done", last_updated_at=utcnow())
        if operation == "cancel":
            return await self.store.update_task(task.id, status="cancelled", last_updated_at=utcnow())
        if operation in {"postpone", "set_due_date"}:
            new_due_date = payload.new_due_date or get_tomorrow(self._today())
            return await self.store.update_task(task.id, due_date=new_due_date, last_updated_at=utcnow())
        # rename is deferred; the task is returned unchanged.
        return task

    async def _insert_task(
        self,
        title: str,
        due_date: date,
        category: Category,
        capture_id: str | None,
    ) -> Task:
        task = await self.store.insert_task(
            Task(
                title=title,
                canonical_title=normalize_text(title),
                due_date=due_date,
                status="open",
                category=category,
                capture_id=capture_id,
            )
        )
        self.matcher.invalidate()
        return task

    async def _safe_match(self, finder, text: str, canonical: str) -> Optional[Union[Thought, Task]]:
        try:
            return await finder(text, canonical)
        except Exception as exc:
            LOGGER.warning("Duplicate matcher '%s' failed for %r: %s", self.matcher.name, text, exc)
            return None


__all__ = ["EntityResolver", "Resolution", "ResolutionAction"]
