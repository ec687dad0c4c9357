from __future__ import annotations

import logging
from pathlib import Path

import discord
from discord.ext import commands

from core.config import AppConfig
from core.errors import handle_app_command_error, handle_prefix_command_error
from core.extensions import load_extensions
from services.guard import ConcurrencyGuard
from services.panel_registry import PanelRegistry
from services.ticket_service import TicketService, TicketServiceDeps
from services.transcript_delivery import build_delivery_chain
from services.transcript_service import TranscriptService
from services.transcript_store import TranscriptStore
from utils.i18n import I18N
from views.ticket_controls import TicketControlsView
from views.ticket_panel import TicketPanelView

LOGGER = logging.getLogger(__name__)


def build_transcript_store(config: AppConfig) -> TranscriptStore | None:
    if not config.fastapi.enabled or not config.transcripts.public_base_url:
        return None
    return TranscriptStore(
        directory=Path(config.transcripts.storage_directory),
        retention=config.transcripts.retention,
        public_base_url=config.transcripts.public_base_url,
    )


class TicketBot(commands.Bot):
    def __init__(self, config: AppConfig) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True
        intents.messages = True
        intents.message_content = True

        super().__init__(
            command_prefix=config.discord.prefix,
            intents=intents,
            application_id=config.discord.application_id,
            allowed_mentions=discord.AllowedMentions(
                everyone=False,
                roles=True,
                users=True,
                replied_user=False,
            ),
            help_command=None,
        )
        self.config = config
        self.root_dir = Path(__file__).resolve().parent.parent
        self.i18n = I18N(
            self.root_dir / "config" / "locales",
            config.i18n.default_locale,
            config.i18n.supported_locales,
        )
        self.guard = ConcurrencyGuard()
        self.transcript_store = build_transcript_store(config)
        self.transcript_service = TranscriptService(
            config.transcripts,
            delivery=build_delivery_chain(self.i18n, dm_owner=config.transcripts.dm_owner),
            i18n=self.i18n,
            store=self.transcript_store,
        )
        self.ticket_service = TicketService(
            config,
            TicketServiceDeps(
                client=self,
                guard=self.guard,
                transcripts=self.transcript_service,
                i18n=self.i18n,
                controls_view=lambda: TicketControlsView(self),
            ),
        )
        self.panel_registry = PanelRegistry(
            bot_user_id=lambda: self.user.id if self.user else None,
            scan_limit=config.tickets.panel_scan_limit,
        )

    async def setup_hook(self) -> None:
        # Buttons on panels and welcome messages survive restarts through their custom ids.
        self.add_view(TicketPanelView(self))
        self.add_view(TicketControlsView(self))
        await load_extensions(self, self.config.enabled_extensions)

        if self.config.discord.sync_commands_on_start:
            guild_id = self.config.discord.guild_id
            if guild_id:
                guild = discord.Object(id=guild_id)
                self.tree.copy_global_to(guild=guild)
                synced = await self.tree.sync(guild=guild)
            else:
                synced = await self.tree.sync()
            LOGGER.info("Synced %s application commands", len(synced))

        self.tree.on_error = handle_app_command_error  # type: ignore[assignment]

    async def on_ready(self) -> None:
        LOGGER.info("Bot ready as %s (%s)", self.user, self.user.id if self.user else "n/a")

    async def on_command_error(self, ctx: commands.Context[commands.Bot], error: commands.CommandError) -> None:
        if ctx.command and ctx.command.has_error_handler():
            return
        await handle_prefix_command_error(ctx, error)
