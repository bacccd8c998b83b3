"""Reusable utilities for bot handlers."""
from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import List

from aiogram.types import KeyboardButton, Message, ReplyKeyboardMarkup

from thoughtbot.models import CompletionResult, Task
from thoughtbot.notifier import await_capture_status
from thoughtbot.runtime import Runtime
from thoughtbot.tasks import group_open_tasks
from thoughtbot.time_utils import get_timezone, get_today

TASKS_BUTTON_TEXT = "Open tasks"

RESULT_MESSAGES = {
    "thought": "Noted as a thought",
    "task_create": "Task saved",
    "task_update": "Task updated",
    "error": "Couldn't make sense of that one, please try again.",
    "timeout": "Still working on it, check /tasks in a moment.",
}


def get_main_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        keyboard=[[KeyboardButton(text=TASKS_BUTTON_TEXT)]],
        resize_keyboard=True,
    )


def build_result_message(result: CompletionResult) -> str:
    text = RESULT_MESSAGES[result.classification]
    if result.category == "unknown":
        return text
    return f"{text} ({result.category})"


def build_tasks_overview_message(tasks: List[Task], today: date) -> str:
    overview = group_open_tasks(tasks, today)
    if overview.is_empty:
        return "No open tasks."

    sections = [
        ("Overdue", overview.overdue),
        ("Today", overview.today),
        ("Upcoming", overview.upcoming),
    ]
    lines: List[str] = ["Open tasks:"]
    for title, items in sections:
        if not items:
            continue
        lines.append(f"{title}:")
        for idx, task in enumerate(items, start=1):
            lines.append(f"{idx}. {_format_task_line(task)}")
        lines.append("")
    if lines[-1] == "":
        lines.pop()
    return "\n".join(lines)


def _format_task_line(task: Task) -> str:
    mentions = f" (x{task.mention_count})" if task.mention_count > 1 else ""
    return f"{task.due_date.isoformat()} — {task.title}{mentions}"


async def build_open_tasks_message(runtime: Runtime) -> str:
    tz = get_timezone(runtime.settings.timezone)
    tasks = await runtime.store.list_tasks(status="open")
    return build_tasks_overview_message(tasks, get_today(tz))


async def handle_text_capture(message: Message, runtime: Runtime) -> None:
    text = (message.text or message.caption or "").strip()
    if not text:
        await message.answer("The message is empty.", reply_markup=get_main_keyboard())
        return
    accepted = await runtime.pipeline.submit_text(text)
    result = await await_capture_status(runtime.store, runtime.registry, accepted.id)
    await message.answer(build_result_message(result), reply_markup=get_main_keyboard())


async def handle_voice_capture(message: Message, runtime: Runtime) -> None:
    voice = message.voice or message.audio
    if voice is None:
        return
    uploads_dir = Path(runtime.settings.uploads_dir)
    uploads_dir.mkdir(parents=True, exist_ok=True)
    destination = uploads_dir / f"{voice.file_unique_id}.ogg"
    await message.bot.download(voice, destination=destination)

    accepted = await runtime.pipeline.submit_audio(destination, audio_url=f"/uploads/{destination.name}")
    result = await await_capture_status(runtime.store, runtime.registry, accepted.id)
    await message.answer(build_result_message(result), reply_markup=get_main_keyboard())


__all__ = [
    "TASKS_BUTTON_TEXT",
    "get_main_keyboard",
    "build_result_message",
    "build_tasks_overview_message",
    "build_open_tasks_message",
    "handle_text_capture",
    "handle_voice_capture",
]
