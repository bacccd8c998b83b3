"""Task listing and direct user edits outside the capture pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Sequence

from thoughtbot.models import Category, Task, TaskStatus
from thoughtbot.normalize import normalize_text
from thoughtbot.store import RecordStore
from thoughtbot.time_utils import utcnow


class EmptyEditError(ValueError):
    """Raised when an edit carries no changes."""


async def list_tasks(
    store: RecordStore,
    *,
    status: TaskStatus | None = None,
    category: Category | None = None,
) -> List[Task]:
    """Tasks newest first, optionally filtered."""

    tasks = await store.list_tasks(status=status, category=category)
    return sorted(tasks, key=lambda task: task.created_at, reverse=True)


async def edit_task(
    store: RecordStore,
    task_id: str,
    *,
    status: TaskStatus | None = None,
    title: str | None = None,
    due_date: date | None = None,
) -> Task:
    changes: Dict[str, Any] = {}
    if status is not None:
        changes["status"] = status
    if title is not None:
        changes["title"] = title
        changes["canonical_title"] = normalize_text(title)
        # The stored vector belongs to the old title.
        changes["embedding"] = None
    if due_date is not None:
        changes["due_date"] = due_date
    if not changes:
        raise EmptyEditError("No updates provided")
    changes["last_updated_at"] = utcnow()
    return await store.update_task(task_id, **changes)


@dataclass(slots=True)
class TaskOverview:
    overdue: List[Task] = field(default_factory=list)
    today: List[Task] = field(default_factory=list)
    upcoming: List[Task] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.overdue or self.today or self.upcoming)


def group_open_tasks(tasks: Sequence[Task], today: date) -> TaskOverview:
    overview = TaskOverview()
    for task in sorted(tasks, key=_due_sort_key):
        if task.status != "open":
            continue
        if task.due_date < today:
            overview.overdue.append(task)
        elif task.due_date == today:
            overview.today.append(task)
        else:
            overview.upcoming.append(task)
    return overview


def _due_sort_key(task: Task):
    return (task.due_date, task.title.lower())


__all__ = ["EmptyEditError", "list_tasks", "edit_task", "TaskOverview", "group_open_tasks"]
