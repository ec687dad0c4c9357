from __future__ import annotations

import logging
from contextlib import AbstractContextManager

import discord
from discord.ext import commands, tasks

from core.bot import TicketBot
from core.errors import ValidationError
from services.panel_registry import PanelConfig
from services.ticket_service import CloseOutcome
from utils.decorators import panel_admin_only
from utils.embeds import make_embed, notice_embed, success_embed, warning_embed
from views.ticket_panel import TicketPanelView

LOGGER = logging.getLogger(__name__)


class TicketsCog(commands.Cog):
    def __init__(self, bot: TicketBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        if self.bot.transcript_store is not None:
            self.transcript_purge.start()

    async def cog_unload(self) -> None:
        self.transcript_purge.cancel()

    @tasks.loop(hours=1)
    async def transcript_purge(self) -> None:
        store = self.bot.transcript_store
        if store is None:
            return
        try:
            store.purge_expired()
        except OSError:
            LOGGER.exception("Transcript purge failed")

    def _dedupe(self, ctx: commands.Context[TicketBot]) -> AbstractContextManager[bool]:
        event_id = ctx.interaction.id if ctx.interaction else ctx.message.id
        return self.bot.guard.events.hold(event_id)

    @staticmethod
    def _ticket_context(ctx: commands.Context[TicketBot]) -> tuple[discord.TextChannel, discord.Member]:
        if not ctx.guild or not isinstance(ctx.author, discord.Member):
            raise ValidationError("Guild context is required.")
        if not isinstance(ctx.channel, discord.TextChannel):
            raise ValidationError("Ticket commands require a text channel.")
        return ctx.channel, ctx.author

    @commands.hybrid_command(name="panel", description="Post or refresh the ticket panel in this channel.")
    @commands.guild_only()
    @panel_admin_only()
    async def panel(
        self,
        ctx: commands.Context[TicketBot],
        role: discord.Role | None = None,
        category: discord.CategoryChannel | None = None,
        title: str | None = None,
        description: str | None = None,
    ) -> None:
        with self._dedupe(ctx) as acquired:
            if not acquired:
                return
            await ctx.defer(ephemeral=True)
            tickets = self.bot.config.tickets
            config = PanelConfig(
                support_role_id=role.id if role else tickets.support_role_id,
                category_id=category.id if category else tickets.category_id,
                title=(title or tickets.panel_title or self.bot.i18n.t("panel.title"))[:256],
                description=(description or tickets.panel_description or self.bot.i18n.t("panel.description"))[:4000],
                color=tickets.panel_color,
            )
            publication = await self.bot.panel_registry.find_or_create(
                ctx.channel, config, TicketPanelView(self.bot)
            )
            key = "panel.created" if publication.created else "panel.updated"
            channel_mention = getattr(ctx.channel, "mention", "this channel")
            await ctx.send(embed=success_embed(self.bot.i18n.t(key, channel=channel_mention)), ephemeral=True)

    @commands.hybrid_group(name="ticket", with_app_command=True, description="Ticket commands.")
    @commands.guild_only()
    async def ticket(self, ctx: commands.Context[TicketBot]) -> None:
        if ctx.invoked_subcommand is None:
            await ctx.reply(
                embed=make_embed(
                    "Ticket Commands",
                    "`/panel` to post the ticket panel\n"
                    "`/ticket claim` to claim the current ticket\n"
                    "`/ticket add <member>` to give a member access\n"
                    "`/ticket close` to close the current ticket",
                ),
                mention_author=False,
            )

    @ticket.command(name="claim", description="Claim the current ticket.")
    async def ticket_claim(self, ctx: commands.Context[TicketBot]) -> None:
        with self._dedupe(ctx) as acquired:
            if not acquired:
                return
            channel, member = self._ticket_context(ctx)
            await ctx.defer(ephemeral=True)
            await self.bot.ticket_service.claim_ticket(channel, member)
            if ctx.interaction is not None:
                await ctx.send(embed=success_embed(self.bot.i18n.t("ticket.claimed_ack")), ephemeral=True)

    @ticket.command(name="add", description="Give another member access to the current ticket.")
    async def ticket_add(self, ctx: commands.Context[TicketBot], member: discord.Member) -> None:
        with self._dedupe(ctx) as acquired:
            if not acquired:
                return
            channel, actor = self._ticket_context(ctx)
            await ctx.defer(ephemeral=True)
            await self.bot.ticket_service.add_member(channel, actor, member)
            if ctx.interaction is not None:
                await ctx.send(
                    embed=success_embed(self.bot.i18n.t("ticket.member_added_ack", member=member.mention)),
                    ephemeral=True,
                )

    @ticket.command(name="close", description="Close the current ticket and deliver its transcript.")
    async def ticket_close(self, ctx: commands.Context[TicketBot]) -> None:
        with self._dedupe(ctx) as acquired:
            if not acquired:
                return
            channel, member = self._ticket_context(ctx)
            await ctx.defer(ephemeral=True)

            async def acknowledge(outcome: CloseOutcome) -> None:
                # The service already posts the status in the channel for prefix invocations.
                if ctx.interaction is None:
                    return
                embed = notice_embed(outcome.message) if outcome.delivery.ok else warning_embed(outcome.message)
                await ctx.send(embed=embed, ephemeral=True)

            await self.bot.ticket_service.close_ticket(channel, member, acknowledge=acknowledge)


async def setup(bot: TicketBot) -> None:
    await bot.add_cog(TicketsCog(bot))
