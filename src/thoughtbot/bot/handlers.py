"""Telegram handlers."""
from __future__ import annotations

from aiogram import F, Router
from aiogram.filters import Command, CommandStart
from aiogram.types import Message

from thoughtbot.bot.utils import (
    TASKS_BUTTON_TEXT,
    build_open_tasks_message,
    get_main_keyboard,
    handle_text_capture,
    handle_voice_capture,
)
from thoughtbot.runtime import Runtime

router = Router()


@router.message(CommandStart())
async def handle_start(message: Message) -> None:
    await message.answer(
        "Hi! Send me a voice or text note, e.g. 'remind me to call mom tomorrow'.",
        reply_markup=get_main_keyboard(),
    )


@router.message(Command("help"))
async def handle_help(message: Message) -> None:
    await message.answer(
        "Talk or type: ideas become thoughts, commitments become tasks, "
        "and 'done with ...' or 'push ... to Friday' updates a task.",
        reply_markup=get_main_keyboard(),
    )


@router.message(Command("tasks"))
@router.message(F.text == TASKS_BUTTON_TEXT)
async def handle_tasks(message: Message, runtime: Runtime) -> None:
    await message.answer(await build_open_tasks_message(runtime), reply_markup=get_main_keyboard())


@router.message(F.voice | F.audio)
async def handle_voice(message: Message, runtime: Runtime) -> None:
    await handle_voice_capture(message, runtime)


@router.message()
async def handle_entry(message: Message, runtime: Runtime) -> None:
    await handle_text_capture(message, runtime)
