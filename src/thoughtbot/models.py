"""Data models shared across the project."""
from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator

from thoughtbot.time_utils import utcnow

ClassificationType = Literal["thought", "task_create", "task_update"]
CaptureClassification = Literal["thought", "task_create", "task_update", "error"]
CompletionClassification = Literal["thought", "task_create", "task_update", "error", "timeout"]
Category = Literal["personal", "business"]
CompletionCategory = Literal["personal", "business", "unknown"]
TaskStatus = Literal["open", "done", "cancelled"]
TaskUpdateOperation = Literal["complete", "cancel", "postpone", "set_due_date", "rename"]

CATEGORIES = ("personal", "business")
PAYLOAD_FIELDS = ("thought", "task_create", "task_update")


def new_id() -> str:
    return uuid.uuid4().hex


class ThoughtPayload(BaseModel):
    text: str = Field(..., min_length=1)


class TaskCreatePayload(BaseModel):
    title: str = Field(..., min_length=1)
    due_date: Optional[date] = None


class TaskUpdatePayload(BaseModel):
    operation: TaskUpdateOperation
    target_hint: str = Field(..., min_length=1)
    new_due_date: Optional[date] = None


class ClassificationResult(BaseModel):
    """Structured intent produced by the classification model.

    Only the payload that matches ``type`` is required; the others are ignored.
    ``category`` is attached regardless of the type.
    """

    type: ClassificationType
    category: Category = "personal"
    thought: Optional[ThoughtPayload] = None
    task_create: Optional[TaskCreatePayload] = None
    task_update: Optional[TaskUpdatePayload] = None

    @model_validator(mode="before")
    @classmethod
    def _drop_unused_payloads(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        kind = data.get("type")
        cleaned = {key: value for key, value in data.items() if key not in PAYLOAD_FIELDS or key == kind}
        category = cleaned.get("category")
        if isinstance(category, str):
            category = category.strip().lower()
        # Unknown or missing categories fall back to personal.
        cleaned["category"] = category if category in CATEGORIES else "personal"
        return cleaned

    @model_validator(mode="after")
    def _require_matching_payload(self) -> "ClassificationResult":
        if getattr(self, self.type) is None:
            raise ValueError(f"Classification of type '{self.type}' has no '{self.type}' payload")
        return self

    @property
    def payload(self) -> Union[ThoughtPayload, TaskCreatePayload, TaskUpdatePayload]:
        return getattr(self, self.type)


class Capture(BaseModel):
    """One raw voice/text submission and its processing history."""

    id: str = Field(default_factory=new_id)
    created_at: datetime = Field(default_factory=utcnow)
    audio_url: Optional[str] = None
    transcript: Optional[str] = None
    classification: Optional[CaptureClassification] = None
    raw_llm_output: Optional[Dict[str, Any]] = None


class Thought(BaseModel):
    id: str = Field(default_factory=new_id)
    created_at: datetime = Field(default_factory=utcnow)
    text: str
    canonical_text: str
    category: Category = "personal"
    mention_count: int = Field(1, ge=1)
    capture_id: Optional[str] = None
    embedding: Optional[List[float]] = None


class Task(BaseModel):
    id: str = Field(default_factory=new_id)
    created_at: datetime = Field(default_factory=utcnow)
    title: str
    canonical_title: str
    due_date: date
    status: TaskStatus = "open"
    category: Category = "personal"
    mention_count: int = Field(1, ge=1)
    last_updated_at: datetime = Field(default_factory=utcnow)
    embedding: Optional[List[float]] = None
    capture_id: Optional[str] = None


class CompletionResult(BaseModel):
    """One-shot outcome delivered to whoever waits on a capture."""

    classification: CompletionClassification
    category: CompletionCategory = "unknown"


__all__ = [
    "ClassificationType",
    "CaptureClassification",
    "CompletionClassification",
    "Category",
    "CompletionCategory",
    "TaskStatus",
    "TaskUpdateOperation",
    "ThoughtPayload",
    "TaskCreatePayload",
    "TaskUpdatePayload",
    "ClassificationResult",
    "Capture",
    "Thought",
    "Task",
    "CompletionResult",
    "new_id",
]
