from __future__ import annotations

from typing import TYPE_CHECKING

import discord

from core.errors import ValidationError
from utils.constants import CUSTOM_ID_CLAIM_TICKET, CUSTOM_ID_CLOSE_TICKET
from utils.decorators import guarded_interaction
from utils.embeds import notice_embed, success_embed, warning_embed

if TYPE_CHECKING:
    from core.bot import TicketBot
    from services.ticket_service import CloseOutcome


def _ticket_context(interaction: discord.Interaction) -> tuple[discord.TextChannel, discord.Member]:
    if not interaction.guild or not isinstance(interaction.user, discord.Member):
        raise ValidationError("Guild context is required.")
    channel = interaction.channel
    if not isinstance(channel, discord.TextChannel):
        raise ValidationError("Ticket controls only work in text channels.")
    return channel, interaction.user


class TicketControlsView(discord.ui.View):
    def __init__(self, bot: TicketBot) -> None:
        super().__init__(timeout=None)
        self.bot = bot
        self.claim_button.label = bot.i18n.t("ticket.button.claim")
        self.close_button.label = bot.i18n.t("ticket.button.close")

    @discord.ui.button(
        label="Claim Ticket",
        style=discord.ButtonStyle.secondary,
        emoji="🛠️",
        custom_id=CUSTOM_ID_CLAIM_TICKET,
    )
    @guarded_interaction
    async def claim_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        channel, member = _ticket_context(interaction)
        await interaction.response.defer(ephemeral=True, thinking=True)
        await self.bot.ticket_service.claim_ticket(channel, member)
        await interaction.followup.send(
            embed=success_embed(self.bot.i18n.t("ticket.claimed_ack")),
            ephemeral=True,
        )

    @discord.ui.button(
        label="Close Ticket",
        style=discord.ButtonStyle.danger,
        emoji="🔒",
        custom_id=CUSTOM_ID_CLOSE_TICKET,
    )
    @guarded_interaction
    async def close_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        channel, member = _ticket_context(interaction)
        await interaction.response.defer(ephemeral=True, thinking=True)

        async def acknowledge(outcome: CloseOutcome) -> None:
            embed = notice_embed(outcome.message) if outcome.delivery.ok else warning_embed(outcome.message)
            await interaction.followup.send(embed=embed, ephemeral=True)

        await self.bot.ticket_service.close_ticket(channel, member, acknowledge=acknowledge)
