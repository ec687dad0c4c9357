from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from core.config import AppConfig, DiscordConfig, TicketConfig, TranscriptConfig
from services.guard import ConcurrencyGuard
from services.ticket_service import TicketService, TicketServiceDeps
from services.transcript_delivery import build_delivery_chain
from services.transcript_service import TranscriptService
from utils.i18n import I18N

LOCALES_DIR = Path(__file__).resolve().parents[1] / "config" / "locales"

GUILD_ID = 1000
OWNER_ID = 2000
SUPPORT_ID = 3000
SUPPORT_ROLE_ID = 4000
OUTSIDER_ID = 5000


def http_error(status: int = 500, cls: type[discord.HTTPException] = discord.HTTPException) -> discord.HTTPException:
    return cls(MagicMock(status=status, reason="error"), "request failed")


def history_of(messages: Iterable[Any]) -> MagicMock:
    items = list(messages)

    async def _history(*_: Any, **__: Any):
        for item in items:
            yield item

    return MagicMock(side_effect=_history)


def make_message(
    message_id: int,
    author: Any,
    content: str = "",
    created_at: datetime | None = None,
    **extra: Any,
) -> SimpleNamespace:
    payload: dict[str, Any] = {
        "id": message_id,
        "author": author,
        "content": content,
        "created_at": created_at or datetime(2024, 1, 1, 12, 0, tzinfo=UTC),
        "attachments": [],
        "embeds": [],
        "mentions": [],
        "role_mentions": [],
        "channel_mentions": [],
    }
    payload.update(extra)
    return SimpleNamespace(**payload)


def make_role(role_id: int = SUPPORT_ROLE_ID, name: str = "Support") -> MagicMock:
    role = MagicMock(spec=discord.Role)
    role.id = role_id
    role.name = name
    role.mention = f"<@&{role_id}>"
    return role


def make_member(
    member_id: int,
    name: str = "member",
    roles: Iterable[Any] = (),
    administrator: bool = False,
    manage_messages: bool = False,
) -> MagicMock:
    member = MagicMock(spec=discord.Member)
    member.id = member_id
    member.name = name
    member.display_name = name
    member.bot = False
    member.mention = f"<@{member_id}>"
    member.roles = list(roles)
    member.guild_permissions = SimpleNamespace(administrator=administrator, manage_messages=manage_messages)
    member.send = AsyncMock()
    return member


def make_guild(members: Iterable[Any] = (), roles: Iterable[Any] = ()) -> MagicMock:
    members_by_id = {member.id: member for member in members}
    roles_by_id = {role.id: role for role in roles}
    guild = MagicMock(spec=discord.Guild)
    guild.id = GUILD_ID
    guild.name = "Test Server"
    guild.default_role = make_role(GUILD_ID, "@everyone")
    guild.me = MagicMock(name="bot-member")
    guild.get_member = MagicMock(side_effect=members_by_id.get)
    guild.get_role = MagicMock(side_effect=roles_by_id.get)
    guild.get_channel = MagicMock(return_value=None)
    guild.fetch_channels = AsyncMock(return_value=[])
    return guild


def make_text_channel(
    guild: Any,
    channel_id: int = 9000,
    name: str = "ticket-owner",
    topic: str | None = None,
    overwrites: dict[Any, Any] | None = None,
) -> MagicMock:
    channel = MagicMock(spec=discord.TextChannel)
    channel.id = channel_id
    channel.name = name
    channel.mention = f"<#{channel_id}>"
    channel.topic = topic
    channel.guild = guild
    channel.overwrites = overwrites or {}
    channel.send = AsyncMock()
    channel.edit = AsyncMock()
    channel.delete = AsyncMock()
    channel.set_permissions = AsyncMock()
    channel.history = history_of([])
    return channel


@pytest.fixture
def i18n() -> I18N:
    return I18N(LOCALES_DIR, "en-US", ["en-US", "nl-NL"])


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(
        discord=DiscordConfig(token="x"),
        tickets=TicketConfig(support_role_id=SUPPORT_ROLE_ID, close_delay_seconds=0),
        transcripts=TranscriptConfig(),
    )


@pytest.fixture
def guard() -> ConcurrencyGuard:
    return ConcurrencyGuard()


@pytest.fixture
def client() -> MagicMock:
    client = MagicMock(spec=discord.Client)
    client.fetch_user = AsyncMock(side_effect=http_error(404, discord.NotFound))
    return client


@pytest.fixture
def ticket_service(app_config: AppConfig, guard: ConcurrencyGuard, i18n: I18N, client: MagicMock) -> TicketService:
    transcripts = TranscriptService(
        app_config.transcripts,
        delivery=build_delivery_chain(i18n, dm_owner=app_config.transcripts.dm_owner),
        i18n=i18n,
    )
    return TicketService(
        app_config,
        TicketServiceDeps(client=client, guard=guard, transcripts=transcripts, i18n=i18n),
    )
