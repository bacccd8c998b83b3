"""Record store for captures, thoughts and tasks.

Rows live in memory and every mutation is a single-row operation. When a
snapshot path is configured the whole record set is written to a JSON file
after each mutation (temp file + ``os.replace``) so a restart can ``load`` it.
A mutation whose snapshot write fails is rolled back in memory as well.
"""
from __future__ import annotations

import asyncio
import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import aiofiles

from thoughtbot.models import Capture, Category, Task, TaskStatus, Thought
from thoughtbot.time_utils import utcnow


class RecordNotFoundError(KeyError):
    """Raised when an update or increment targets an unknown id."""

    def __init__(self, kind: str, record_id: str):
        super().__init__(f"{kind} '{record_id}' not found")
        self.kind = kind
        self.record_id = record_id


class RecordStore:
    def __init__(self, snapshot_path: Path | None = None):
        self.snapshot_path = snapshot_path
        self._captures: Dict[str, Capture] = {}
        self._thoughts: Dict[str, Thought] = {}
        self._tasks: Dict[str, Task] = {}
        self._flush_lock = asyncio.Lock()

    @classmethod
    def load(cls, snapshot_path: Path) -> "RecordStore":
        store = cls(snapshot_path)
        if not snapshot_path.exists():
            return store
        data = json.loads(snapshot_path.read_text(encoding="utf-8"))
        for raw in data.get("captures", []):
            capture = Capture.model_validate(raw)
            store._captures[capture.id] = capture
        for raw in data.get("thoughts", []):
            thought = Thought.model_validate(raw)
            store._thoughts[thought.id] = thought
        for raw in data.get("tasks", []):
            task = Task.model_validate(raw)
            store._tasks[task.id] = task
        return store

    # Captures

    async def insert_capture(self, capture: Capture) -> Capture:
        await self._put(self._captures, capture.id, capture.model_copy(deep=True))
        return capture.model_copy(deep=True)

    async def get_capture(self, capture_id: str) -> Optional[Capture]:
        capture = self._captures.get(capture_id)
        return capture.model_copy(deep=True) if capture else None

    async def update_capture(self, capture_id: str, **changes: Any) -> Capture:
        capture = self._require(self._captures, "Capture", capture_id)
        updated = capture.model_copy(update=changes, deep=True)
        await self._put(self._captures, capture_id, updated)
        return updated.model_copy(deep=True)

    # Thoughts

    async def insert_thought(self, thought: Thought) -> Thought:
        await self._put(self._thoughts, thought.id, thought.model_copy(deep=True))
        return thought.model_copy(deep=True)

    async def get_thought(self, thought_id: str) -> Optional[Thought]:
        thought = self._thoughts.get(thought_id)
        return thought.model_copy(deep=True) if thought else None

    async def list_thoughts(
        self,
        *,
        category: Category | None = None,
        created_after: datetime | None = None,
    ) -> List[Thought]:
        rows = [
            thought
            for thought in self._thoughts.values()
            if (category is None or thought.category == category)
            and (created_after is None or thought.created_at > created_after)
        ]
        return [row.model_copy(deep=True) for row in rows]

    async def increment_thought_mention(self, thought_id: str) -> Thought:
        thought = self._require(self._thoughts, "Thought", thought_id)
        updated = thought.model_copy(update={"mention_count": thought.mention_count + 1}, deep=True)
        await self._put(self._thoughts, thought_id, updated)
        return updated.model_copy(deep=True)

    async def set_thought_embedding(self, thought_id: str, embedding: Sequence[float]) -> None:
        thought = self._require(self._thoughts, "Thought", thought_id)
        updated = thought.model_copy(update={"embedding": list(embedding)}, deep=True)
        await self._put(self._thoughts, thought_id, updated)

    # Tasks

    async def insert_task(self, task: Task) -> Task:
        await self._put(self._tasks, task.id, task.model_copy(deep=True))
        return task.model_copy(deep=True)

    async def get_task(self, task_id: str) -> Optional[Task]:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        category: Category | None = None,
        created_after: datetime | None = None,
    ) -> List[Task]:
        rows = [
            task
            for task in self._tasks.values()
            if (status is None or task.status == status)
            and (category is None or task.category == category)
            and (created_after is None or task.created_at > created_after)
        ]
        return [row.model_copy(deep=True) for row in rows]

    async def update_task(self, task_id: str, **changes: Any) -> Task:
        task = self._require(self._tasks, "Task", task_id)
        updated = task.model_copy(update=changes, deep=True)
        await self._put(self._tasks, task_id, updated)
        return updated.model_copy(deep=True)

    async def increment_task_mention(self, task_id: str) -> Task:
        task = self._require(self._tasks, "Task", task_id)
        updated = task.model_copy(
            update={"mention_count": task.mention_count + 1, "last_updated_at": utcnow()},
            deep=True,
        )
        await self._put(self._tasks, task_id, updated)
        return updated.model_copy(deep=True)

    async def set_task_embedding(self, task_id: str, embedding: Sequence[float]) -> None:
        task = self._require(self._tasks, "Task", task_id)
        updated = task.model_copy(update={"embedding": list(embedding)}, deep=True)
        await self._put(self._tasks, task_id, updated)

    # Internals

    @staticmethod
    def _require(rows: Dict[str, Any], kind: str, record_id: str) -> Any:
        row = rows.get(record_id)
        if row is None:
            raise RecordNotFoundError(kind, record_id)
        return row

    async def _put(self, rows: Dict[str, Any], record_id: str, row: Any) -> None:
        """Store ``row`` and flush; the previous row is restored if the flush fails."""

        previous = rows.get(record_id)
        rows[record_id] = row
        try:
            await self._flush()
        except Exception:
            if previous is None:
                rows.pop(record_id, None)
            else:
                rows[record_id] = previous
            raise

    def _snapshot(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            "captures": [row.model_dump(mode="json") for row in self._captures.values()],
            "thoughts": [row.model_dump(mode="json") for row in self._thoughts.values()],
            "tasks": [row.model_dump(mode="json") for row in self._tasks.values()],
        }

    async def _flush(self) -> None:
        if self.snapshot_path is None:
            return
        async with self._flush_lock:
            content = json.dumps(self._snapshot(), ensure_ascii=False, indent=2)
            await self._write_atomic(self.snapshot_path, content)

    @staticmethod
    async def _write_atomic(target: Path, content: str) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = target.with_suffix(target.suffix + ".tmp")
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as tmp_file:
            await tmp_file.write(content)
        os.replace(tmp_path, target)


__all__ = ["RecordStore", "RecordNotFoundError"]
