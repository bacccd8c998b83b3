"""Common interface for duplicate-detection strategies."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from thoughtbot.models import Task, Thought


class DuplicateMatcher(ABC):
    """Finds an existing record that a freshly classified utterance repeats.

    Implementations never raise for "no confident match"; they return ``None``.
    """

    name = "base"

    @abstractmethod
    async def find_duplicate_thought(self, text: str, canonical_text: str) -> Optional[Thought]:
        ...

    @abstractmethod
    async def find_duplicate_task(self, title: str, canonical_title: str) -> Optional[Task]:
        ...

    def invalidate(self) -> None:
        """Drop cached candidate data after a write; no-op for stateless strategies."""


__all__ = ["DuplicateMatcher"]
