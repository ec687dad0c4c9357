from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import uvicorn

from core.api import create_api_app
from core.bot import TicketBot
from core.config import AppConfig, ConfigError, load_config
from core.logging import configure_logging

LOGGER = logging.getLogger(__name__)


def _build_api_server(bot: TicketBot, config: AppConfig) -> uvicorn.Server | None:
    if bot.transcript_store is None:
        if config.fastapi.enabled:
            LOGGER.warning("Transcript API enabled but transcripts.public_base_url is empty; not serving links")
        return None
    return uvicorn.Server(
        uvicorn.Config(
            app=create_api_app(bot.transcript_store),
            host=config.fastapi.host,
            port=config.fastapi.port,
            log_level=config.logging.level.lower(),
            log_config=None,
        )
    )


async def _run_bot(config: AppConfig) -> None:
    bot = TicketBot(config=config)
    async with bot:
        server = _build_api_server(bot, config)
        api_task = asyncio.create_task(server.serve()) if server else None
        try:
            await bot.start(config.discord.token)
        finally:
            if server and api_task:
                server.should_exit = True
                await api_task


def main() -> None:
    root = Path(__file__).resolve().parent
    try:
        config = load_config(root / "config" / "config.yaml")
    except ConfigError as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc
    configure_logging(config.logging)
    try:
        asyncio.run(_run_bot(config))
    except KeyboardInterrupt:
        LOGGER.info("Shutdown requested")


if __name__ == "__main__":
    main()
