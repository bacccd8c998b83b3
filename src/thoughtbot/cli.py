"""Simple CLI for running captures and editing tasks by hand."""
from __future__ import annotations

import argparse
import asyncio
from datetime import date
from pathlib import Path
from typing import Optional, Sequence

from thoughtbot.config import Settings, get_settings
from thoughtbot.notifier import await_capture_status
from thoughtbot.runtime import build_runtime
from thoughtbot.store import RecordStore
from thoughtbot.tasks import edit_task, list_tasks


def _settings_for(data_dir: Path | None) -> Settings:
    settings = get_settings()
    if data_dir is not None:
        settings = settings.model_copy(update={"data_dir": data_dir})
    return settings


async def run_capture(
    text: str | None,
    *,
    audio: Path | None = None,
    strategy: str | None = None,
    data_dir: Path | None = None,
) -> None:
    runtime = build_runtime(_settings_for(data_dir), strategy=strategy)
    if audio is not None:
        accepted = await runtime.pipeline.submit_audio(audio)
    else:
        accepted = await runtime.pipeline.submit_text(text or "")
    print(f"Capture {accepted.id}: {accepted.status}")
    result = await await_capture_status(runtime.store, runtime.registry, accepted.id)
    await runtime.pipeline.drain()
    print(f"Result: {result.classification} ({result.category})")


async def run_list(data_dir: Path | None, status: str | None) -> None:
    store = RecordStore.load(_settings_for(data_dir).snapshot_path)
    for task in await list_tasks(store, status=status):
        print(f"{task.id}  [{task.status}]  {task.due_date.isoformat()}  x{task.mention_count}  {task.title}")


async def run_edit(
    data_dir: Path | None,
    task_id: str,
    *,
    status: str | None,
    title: str | None,
    due: date | None,
) -> None:
    store = RecordStore.load(_settings_for(data_dir).snapshot_path)
    task = await edit_task(store, task_id, status=status, title=title, due_date=due)
    print(f"Updated {task.id}: [{task.status}] {task.due_date.isoformat()} {task.title}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manual CLI entry point for thoughtbot")
    parser.add_argument("--data-dir", type=Path, help="Override the record store directory")
    sub = parser.add_subparsers(dest="command", required=True)

    capture = sub.add_parser("capture", help="Process one text or audio capture")
    capture.add_argument("text", nargs="?", help="Text to capture")
    capture.add_argument("--audio", type=Path, help="Audio file to transcribe instead of text")
    capture.add_argument("--matcher", choices=["lexical", "llm", "embedding"], help="Duplicate matcher strategy")

    tasks = sub.add_parser("tasks", help="List tasks")
    tasks.add_argument("--status", choices=["open", "done", "cancelled"])

    edit = sub.add_parser("edit", help="Edit a task directly")
    edit.add_argument("task_id")
    edit.add_argument("--status", choices=["open", "done", "cancelled"])
    edit.add_argument("--title")
    edit.add_argument("--due", type=date.fromisoformat, help="New due date (YYYY-MM-DD)")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "capture":
        if args.audio is None and not (args.text or "").strip():
            parser.error("capture needs text or --audio")
        asyncio.run(run_capture(args.text, audio=args.audio, strategy=args.matcher, data_dir=args.data_dir))
    elif args.command == "tasks":
        asyncio.run(run_list(args.data_dir, args.status))
    else:
        asyncio.run(
            run_edit(args.data_dir, args.task_id, status=args.status, title=args.title, due=args.due)
        )


if __name__ == "__main__":
    main()
