from __future__ import annotations

from typing import TYPE_CHECKING

import discord

from core.errors import NotAPanelError, ValidationError
from services.metadata_codec import decode_panel, is_panel_footer
from services.panel_registry import panel_footer_of
from utils.constants import CUSTOM_ID_OPEN_TICKET
from utils.decorators import guarded_interaction
from utils.embeds import success_embed

if TYPE_CHECKING:
    from core.bot import TicketBot


class TicketPanelView(discord.ui.View):
    """Persistent view attached to every panel message; the panel's footer carries its configuration."""

    def __init__(self, bot: TicketBot) -> None:
        super().__init__(timeout=None)
        self.bot = bot
        self.open_button.label = bot.i18n.t("panel.button")

    @discord.ui.button(
        label="Open Ticket",
        emoji="🎫",
        style=discord.ButtonStyle.primary,
        custom_id=CUSTOM_ID_OPEN_TICKET,
    )
    @guarded_interaction
    async def open_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        if not interaction.guild or not isinstance(interaction.user, discord.Member):
            raise ValidationError("Tickets can only be opened inside a server.")
        footer = panel_footer_of(interaction.message) if interaction.message else None
        if not is_panel_footer(footer):
            raise NotAPanelError()

        await interaction.response.defer(ephemeral=True, thinking=True)
        channel = await self.bot.ticket_service.open_ticket(
            guild=interaction.guild,
            owner=interaction.user,
            panel=decode_panel(footer),
        )
        await interaction.followup.send(
            embed=success_embed(self.bot.i18n.t("ticket.opened", channel=channel.mention)),
            ephemeral=True,
        )
