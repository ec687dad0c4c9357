from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import discord

from core.config import AppConfig
from core.errors import (
    NotATicketError,
    OperationInProgressError,
    PermissionDeniedError,
    TicketAlreadyOpenError,
    TicketCreationError,
    TranscriptCaptureError,
)
from services.guard import ConcurrencyGuard
from services.metadata_codec import PanelMetadata, TicketMetadata, decode_ticket, encode_ticket
from services.transcript_delivery import STRATEGY_DIRECT_MESSAGE, STRATEGY_TICKET_CHANNEL, DeliveryOutcome
from services.transcript_service import TranscriptService
from utils.constants import (
    TICKET_STATE_CLAIMED,
    TICKET_STATE_CLOSING,
    TICKET_STATE_NONE,
    TICKET_STATE_OPEN,
)
from utils.embeds import make_embed, notice_embed, warning_embed
from utils.i18n import I18N

LOGGER = logging.getLogger(__name__)

MEMBER_PERMISSIONS = discord.PermissionOverwrite(
    view_channel=True,
    send_messages=True,
    read_message_history=True,
    attach_files=True,
    embed_links=True,
)
BOT_PERMISSIONS = discord.PermissionOverwrite(
    view_channel=True,
    send_messages=True,
    read_message_history=True,
    attach_files=True,
    embed_links=True,
    manage_channels=True,
    manage_messages=True,
)


def _log_context(channel: discord.abc.GuildChannel, user_id: int, owner_id: int | None) -> dict[str, int | None]:
    return {"guild_id": channel.guild.id, "channel_id": channel.id, "user_id": user_id, "owner_id": owner_id}


@dataclass(slots=True)
class TicketServiceDeps:
    client: discord.Client
    guard: ConcurrencyGuard
    transcripts: TranscriptService
    i18n: I18N
    controls_view: Callable[[], discord.ui.View | None] = lambda: None


@dataclass(slots=True)
class CloseOutcome:
    metadata: TicketMetadata
    delivery: DeliveryOutcome
    message: str

    @property
    def dm_failed(self) -> bool:
        return self.delivery.failed(STRATEGY_DIRECT_MESSAGE)


CloseAcknowledgement = Callable[[CloseOutcome], Awaitable[None]]


class TicketService:
    def __init__(self, config: AppConfig, deps: TicketServiceDeps) -> None:
        self.config = config
        self.deps = deps

    @property
    def guard(self) -> ConcurrencyGuard:
        return self.deps.guard

    def t(self, key: str, **kwargs: object) -> str:
        return self.deps.i18n.t(key, **kwargs)

    # -- state ---------------------------------------------------------

    @staticmethod
    def read_ticket(channel: discord.abc.GuildChannel) -> TicketMetadata:
        return decode_ticket(getattr(channel, "topic", None))

    def require_ticket(self, channel: discord.abc.GuildChannel | None) -> TicketMetadata:
        if not isinstance(channel, discord.TextChannel):
            raise NotATicketError()
        metadata = self.read_ticket(channel)
        if not metadata.is_ticket:
            raise NotATicketError()
        return metadata

    def state_of(self, channel: discord.TextChannel) -> str:
        metadata = self.read_ticket(channel)
        if not metadata.is_ticket:
            return TICKET_STATE_NONE
        if channel.id in self.guard.channels:
            return TICKET_STATE_CLOSING
        return TICKET_STATE_CLAIMED if metadata.is_claimed else TICKET_STATE_OPEN

    def _ensure_not_closing(self, channel: discord.TextChannel) -> None:
        if channel.id in self.guard.channels:
            raise OperationInProgressError("This ticket is already being closed.")

    # -- authorization -------------------------------------------------

    def support_role_ids(self, channel: discord.TextChannel) -> set[int]:
        role_ids: set[int] = set()
        if self.config.tickets.support_role_id:
            role_ids.add(self.config.tickets.support_role_id)
        default_role_id = channel.guild.default_role.id
        for target, overwrite in channel.overwrites.items():
            if isinstance(target, discord.Role) and target.id != default_role_id and overwrite.view_channel:
                role_ids.add(target.id)
        return role_ids

    def is_support(self, member: discord.Member, channel: discord.TextChannel) -> bool:
        support_ids = self.support_role_ids(channel)
        return any(role.id in support_ids for role in member.roles)

    def can_claim(self, member: discord.Member, channel: discord.TextChannel) -> bool:
        permissions = member.guild_permissions
        if permissions.administrator or permissions.manage_messages:
            return True
        return self.is_support(member, channel)

    def can_manage(self, member: discord.Member, channel: discord.TextChannel, metadata: TicketMetadata) -> bool:
        if member.id == metadata.owner_id:
            return True
        if member.guild_permissions.administrator:
            return True
        return self.is_support(member, channel)

    # -- open ----------------------------------------------------------

    @staticmethod
    def sanitize_channel_fragment(name: str) -> str:
        name = name.strip().lower()
        name = re.sub(r"[^a-z0-9-]+", "-", name)
        name = re.sub(r"-{2,}", "-", name).strip("-")
        return name[:32] or "user"

    def build_channel_name(self, owner: discord.abc.User) -> str:
        return f"{self.config.tickets.channel_prefix}-{self.sanitize_channel_fragment(owner.name)}"[:95]

    async def find_open_ticket(self, guild: discord.Guild, owner_id: int) -> discord.TextChannel | None:
        # Always enumerate from the API; the gateway cache can lag behind a channel created moments ago.
        for channel in await guild.fetch_channels():
            if not isinstance(channel, discord.TextChannel):
                continue
            if self.read_ticket(channel).owner_id == owner_id:
                return channel
        return None

    def build_overwrites(
        self,
        guild: discord.Guild,
        owner: discord.abc.Snowflake,
        support_role: discord.Role | None,
    ) -> dict[discord.abc.Snowflake, discord.PermissionOverwrite]:
        overwrites: dict[discord.abc.Snowflake, discord.PermissionOverwrite] = {
            guild.default_role: discord.PermissionOverwrite(view_channel=False),
            owner: MEMBER_PERMISSIONS,
            guild.me: BOT_PERMISSIONS,
        }
        if support_role is not None:
            overwrites[support_role] = MEMBER_PERMISSIONS
        return overwrites

    @staticmethod
    def _resolve_category(guild: discord.Guild, category_id: int | None) -> discord.CategoryChannel | None:
        if not category_id:
            return None
        category = guild.get_channel(category_id)
        if isinstance(category, discord.CategoryChannel):
            return category
        LOGGER.warning("Configured ticket category %s not found in guild %s", category_id, guild.id)
        return None

    def _welcome_embed(self, owner: discord.abc.User, support_role: discord.Role | None) -> discord.Embed:
        support = support_role.mention if support_role else self.t("ticket.welcome.support_fallback")
        return make_embed(
            title=self.t("ticket.welcome.title"),
            description=self.t("ticket.welcome.body", owner=owner.mention, support=support),
            color=self.config.tickets.panel_color,
        )

    async def open_ticket(
        self,
        guild: discord.Guild,
        owner: discord.Member,
        panel: PanelMetadata | None = None,
    ) -> discord.TextChannel:
        key = (guild.id, owner.id)
        if not self.guard.users.try_acquire(key):
            raise OperationInProgressError()
        try:
            existing = await self.find_open_ticket(guild, owner.id)
            if existing is not None:
                raise TicketAlreadyOpenError(self.t("ticket.already_open", channel=existing.mention))

            panel = panel or PanelMetadata()
            role_id = panel.support_role_id or self.config.tickets.support_role_id
            support_role = guild.get_role(role_id) if role_id else None
            category = self._resolve_category(guild, panel.category_id or self.config.tickets.category_id)

            try:
                channel = await guild.create_text_channel(
                    name=self.build_channel_name(owner),
                    category=category,
                    overwrites=self.build_overwrites(guild, owner, support_role),
                    topic=encode_ticket(owner.id, None),
                    reason=f"Ticket opened by {owner} ({owner.id})",
                )
            except discord.HTTPException as exc:
                LOGGER.exception("Ticket channel creation failed. guild=%s owner=%s", guild.id, owner.id)
                raise TicketCreationError() from exc

            mentions = owner.mention if support_role is None else f"{owner.mention} {support_role.mention}"
            try:
                await channel.send(
                    content=mentions,
                    embed=self._welcome_embed(owner, support_role),
                    view=self.deps.controls_view(),
                )
            except discord.HTTPException as exc:
                LOGGER.exception("Welcome message failed in new ticket %s; removing channel", channel.id)
                await self._delete_channel(channel, reason="Ticket setup failed")
                raise TicketCreationError() from exc

            LOGGER.info(
                "Opened ticket %s for owner %s in guild %s",
                channel.id,
                owner.id,
                guild.id,
                extra=_log_context(channel, owner.id, owner.id),
            )
            return channel
        finally:
            self.guard.users.release(key)

    # -- claim / add member --------------------------------------------

    async def claim_ticket(self, channel: discord.TextChannel, actor: discord.Member) -> TicketMetadata:
        metadata = self.require_ticket(channel)
        self._ensure_not_closing(channel)
        if not self.can_claim(actor, channel):
            raise PermissionDeniedError("Only support staff can claim tickets.")

        # Last writer wins: a second claim simply replaces the claimant.
        updated = TicketMetadata(owner_id=metadata.owner_id, claimant_id=actor.id)
        await channel.edit(
            topic=encode_ticket(updated.owner_id, updated.claimant_id),
            reason=f"Ticket claimed by {actor} ({actor.id})",
        )
        await channel.send(
            content=self.t("ticket.claimed", owner=f"<@{metadata.owner_id}>", actor=actor.mention),
        )
        LOGGER.info(
            "Ticket %s claimed by %s (previous claimant %s)",
            channel.id,
            actor.id,
            metadata.claimant_id,
            extra=_log_context(channel, actor.id, metadata.owner_id),
        )
        return updated

    async def add_member(
        self,
        channel: discord.TextChannel,
        actor: discord.Member,
        target: discord.Member,
    ) -> None:
        metadata = self.require_ticket(channel)
        self._ensure_not_closing(channel)
        if not self.can_manage(actor, channel, metadata):
            raise PermissionDeniedError("Only the ticket owner or support staff can add members.")
        await channel.set_permissions(
            target,
            view_channel=True,
            send_messages=True,
            read_message_history=True,
            reason=f"Added to ticket by {actor} ({actor.id})",
        )
        await channel.send(
            embed=notice_embed(self.t("ticket.member_added", member=target.mention, actor=actor.mention))
        )
        LOGGER.info(
            "Member %s added to ticket %s by %s",
            target.id,
            channel.id,
            actor.id,
            extra=_log_context(channel, actor.id, metadata.owner_id),
        )

    # -- close ---------------------------------------------------------

    async def _resolve_owner(self, guild: discord.Guild, owner_id: int) -> discord.abc.User | None:
        member = guild.get_member(owner_id)
        if member is not None:
            return member
        try:
            return await self.deps.client.fetch_user(owner_id)
        except discord.HTTPException:
            LOGGER.warning("Could not fetch ticket owner %s", owner_id, exc_info=True)
            return None

    def _close_message(self, actor: discord.Member, owner_id: int, delivery: DeliveryOutcome) -> str:
        owner = f"<@{owner_id}>"
        if delivery.delivered_by == STRATEGY_DIRECT_MESSAGE:
            key = "close.delivered.dm"
        elif delivery.delivered_by == STRATEGY_TICKET_CHANNEL:
            key = "close.delivered.channel" if delivery.failed(STRATEGY_DIRECT_MESSAGE) else "close.delivered.channel_only"
        else:
            key = "close.delivered.none"
        lines = [self.t(key, actor=actor.mention, owner=owner)]
        if delivery.link:
            lines.append(self.t("close.link", link=delivery.link))
        lines.append(self.t("close.deleting", seconds=f"{self.config.tickets.close_delay_seconds:g}"))
        return "\n".join(lines)

    async def _delete_channel(self, channel: discord.TextChannel, reason: str) -> None:
        try:
            await channel.delete(reason=reason)
        except discord.HTTPException:
            LOGGER.warning("Failed to delete ticket channel %s", channel.id, exc_info=True)

    async def close_ticket(
        self,
        channel: discord.TextChannel,
        actor: discord.Member,
        acknowledge: CloseAcknowledgement | None = None,
    ) -> CloseOutcome:
        """Capture and deliver the transcript, then delete the channel after the grace delay.

        Delivery failures only change the status text; the channel is removed
        either way. A failure to capture the history aborts before anything
        destructive happens.
        """
        metadata = self.require_ticket(channel)
        if not self.can_manage(actor, channel, metadata):
            raise PermissionDeniedError("Only the ticket owner or support staff can close this ticket.")
        if not self.guard.channels.try_acquire(channel.id):
            raise OperationInProgressError("This ticket is already being closed.")
        try:
            transcripts = self.deps.transcripts
            try:
                transcript = await transcripts.capture(channel, closer=actor)
                document = transcripts.render(transcript)
            except discord.HTTPException as exc:
                LOGGER.exception("Transcript capture failed for ticket %s", channel.id)
                raise TranscriptCaptureError() from exc

            owner = await self._resolve_owner(channel.guild, metadata.owner_id)
            delivery = await transcripts.deliver(document, owner, channel)
            outcome = CloseOutcome(
                metadata=metadata,
                delivery=delivery,
                message=self._close_message(actor, metadata.owner_id, delivery),
            )

            status_embed = notice_embed(outcome.message) if delivery.ok else warning_embed(outcome.message)
            try:
                await channel.send(embed=status_embed)
            except discord.HTTPException:
                LOGGER.warning("Failed to post close status in ticket %s", channel.id, exc_info=True)

            if acknowledge is not None:
                try:
                    await acknowledge(outcome)
                except Exception:
                    LOGGER.exception("Close acknowledgement failed for ticket %s", channel.id)

            LOGGER.info(
                "Closing ticket %s by %s (delivered_by=%s)",
                channel.id,
                actor.id,
                delivery.delivered_by,
                extra=_log_context(channel, actor.id, metadata.owner_id),
            )
            await asyncio.sleep(self.config.tickets.close_delay_seconds)
            await self._delete_channel(channel, reason=f"Ticket closed by {actor} ({actor.id})")
            return outcome
        finally:
            self.guard.channels.release(channel.id)
