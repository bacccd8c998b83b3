"""Bot bootstrap module."""
from __future__ import annotations

import asyncio

from aiogram import Bot, Dispatcher
from aiogram.fsm.storage.memory import MemoryStorage

from thoughtbot.bot.handlers import router
from thoughtbot.config import get_settings
from thoughtbot.runtime import Runtime, build_runtime


def build_dispatcher(runtime: Runtime) -> Dispatcher:
    storage = MemoryStorage()
    dp = Dispatcher(storage=storage, runtime=runtime)
    dp.include_router(router)
    return dp


async def run_bot() -> None:
    settings = get_settings()
    if settings.telegram_bot_token is None:
        raise RuntimeError("TELEGRAM_BOT_TOKEN is not set in environment")
    runtime = build_runtime(settings)
    bot = Bot(settings.telegram_bot_token.get_secret_value())
    dp = build_dispatcher(runtime)

    async def _on_shutdown() -> None:
        await runtime.pipeline.drain()

    dp.shutdown.register(_on_shutdown)
    await dp.start_polling(bot)


def main() -> None:
    asyncio.run(run_bot())


if __name__ == "__main__":
    main()
