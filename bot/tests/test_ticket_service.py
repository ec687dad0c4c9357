from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from conftest import (
    OUTSIDER_ID,
    OWNER_ID,
    SUPPORT_ID,
    SUPPORT_ROLE_ID,
    history_of,
    http_error,
    make_guild,
    make_member,
    make_message,
    make_role,
    make_text_channel,
)
from core.errors import (
    NotATicketError,
    OperationInProgressError,
    PermissionDeniedError,
    TicketAlreadyOpenError,
    TicketCreationError,
    TranscriptCaptureError,
)
from services.metadata_codec import PanelMetadata, decode_ticket, encode_ticket
from services.ticket_service import TicketService
from services.transcript_delivery import STRATEGY_DIRECT_MESSAGE, STRATEGY_TICKET_CHANNEL
from utils.constants import TICKET_STATE_CLAIMED, TICKET_STATE_CLOSING, TICKET_STATE_NONE, TICKET_STATE_OPEN


@pytest.fixture
def support_role() -> MagicMock:
    return make_role()


@pytest.fixture
def owner() -> MagicMock:
    return make_member(OWNER_ID, "Alice Smith")


@pytest.fixture
def staff(support_role: MagicMock) -> MagicMock:
    return make_member(SUPPORT_ID, "Helper", roles=[support_role])


@pytest.fixture
def guild(owner: MagicMock, staff: MagicMock, support_role: MagicMock) -> MagicMock:
    return make_guild(members=[owner, staff], roles=[support_role])


@pytest.fixture
def ticket_channel(guild: MagicMock) -> MagicMock:
    return make_text_channel(guild, topic=encode_ticket(OWNER_ID))


def test_sanitize_channel_fragment() -> None:
    assert TicketService.sanitize_channel_fragment("Hello World !!!") == "hello-world"
    assert TicketService.sanitize_channel_fragment("***") == "user"


@pytest.mark.asyncio
async def test_open_ticket_creates_private_channel(
    ticket_service: TicketService, guild: MagicMock, owner: MagicMock, support_role: MagicMock
) -> None:
    created = make_text_channel(guild, channel_id=777)
    guild.create_text_channel = AsyncMock(return_value=created)

    channel = await ticket_service.open_ticket(guild, owner)

    assert channel is created
    kwargs = guild.create_text_channel.await_args.kwargs
    assert kwargs["name"] == "ticket-alice-smith"
    assert kwargs["topic"] == "ticket_user:2000;claimed_by:"
    overwrites = kwargs["overwrites"]
    assert overwrites[guild.default_role].view_channel is False
    assert overwrites[owner].view_channel is True
    assert overwrites[support_role].send_messages is True
    created.send.assert_awaited_once()
    assert len(ticket_service.guard.users) == 0


@pytest.mark.asyncio
async def test_open_ticket_uses_panel_role(
    ticket_service: TicketService, guild: MagicMock, owner: MagicMock
) -> None:
    panel_role = make_role(4444, "Billing")
    guild.get_role = MagicMock(side_effect={4444: panel_role}.get)
    guild.create_text_channel = AsyncMock(return_value=make_text_channel(guild))

    await ticket_service.open_ticket(guild, owner, panel=PanelMetadata(support_role_id=4444))

    assert panel_role in guild.create_text_channel.await_args.kwargs["overwrites"]


@pytest.mark.asyncio
async def test_open_ticket_rejects_second_ticket(
    ticket_service: TicketService, guild: MagicMock, owner: MagicMock, ticket_channel: MagicMock
) -> None:
    guild.fetch_channels = AsyncMock(return_value=[ticket_channel])
    guild.create_text_channel = AsyncMock()

    with pytest.raises(TicketAlreadyOpenError) as excinfo:
        await ticket_service.open_ticket(guild, owner)

    assert ticket_channel.mention in excinfo.value.user_message
    guild.create_text_channel.assert_not_awaited()
    assert len(ticket_service.guard.users) == 0


@pytest.mark.asyncio
async def test_open_ticket_rejects_concurrent_request(
    ticket_service: TicketService, guild: MagicMock, owner: MagicMock
) -> None:
    guild.create_text_channel = AsyncMock()
    ticket_service.guard.users.try_acquire((guild.id, owner.id))

    with pytest.raises(OperationInProgressError):
        await ticket_service.open_ticket(guild, owner)

    guild.create_text_channel.assert_not_awaited()


@pytest.mark.asyncio
async def test_open_ticket_removes_channel_when_welcome_fails(
    ticket_service: TicketService, guild: MagicMock, owner: MagicMock
) -> None:
    created = make_text_channel(guild)
    created.send = AsyncMock(side_effect=http_error(403, discord.Forbidden))
    guild.create_text_channel = AsyncMock(return_value=created)

    with pytest.raises(TicketCreationError):
        await ticket_service.open_ticket(guild, owner)

    created.delete.assert_awaited_once()


@pytest.mark.asyncio
async def test_open_ticket_reports_creation_failure(
    ticket_service: TicketService, guild: MagicMock, owner: MagicMock
) -> None:
    guild.create_text_channel = AsyncMock(side_effect=http_error(403, discord.Forbidden))

    with pytest.raises(TicketCreationError):
        await ticket_service.open_ticket(guild, owner)
    assert len(ticket_service.guard.users) == 0


def test_state_of_follows_topic_and_guard(ticket_service: TicketService, guild: MagicMock) -> None:
    plain = make_text_channel(guild, channel_id=1, topic="general")
    opened = make_text_channel(guild, channel_id=2, topic=encode_ticket(OWNER_ID))
    claimed = make_text_channel(guild, channel_id=3, topic=encode_ticket(OWNER_ID, SUPPORT_ID))

    assert ticket_service.state_of(plain) == TICKET_STATE_NONE
    assert ticket_service.state_of(opened) == TICKET_STATE_OPEN
    assert ticket_service.state_of(claimed) == TICKET_STATE_CLAIMED

    ticket_service.guard.channels.try_acquire(claimed.id)
    assert ticket_service.state_of(claimed) == TICKET_STATE_CLOSING


@pytest.mark.asyncio
async def test_claim_records_claimant(
    ticket_service: TicketService, ticket_channel: MagicMock, staff: MagicMock
) -> None:
    updated = await ticket_service.claim_ticket(ticket_channel, staff)

    assert updated.claimant_id == SUPPORT_ID
    topic = ticket_channel.edit.await_args.kwargs["topic"]
    assert decode_ticket(topic).claimant_id == SUPPORT_ID
    ticket_channel.send.assert_awaited_once()


@pytest.mark.asyncio
async def test_second_claim_replaces_claimant(
    ticket_service: TicketService, guild: MagicMock, support_role: MagicMock
) -> None:
    channel = make_text_channel(guild, topic=encode_ticket(OWNER_ID, SUPPORT_ID))
    other = make_member(6000, "Other", roles=[support_role])

    updated = await ticket_service.claim_ticket(channel, other)

    assert updated.claimant_id == 6000
    assert channel.edit.await_args.kwargs["topic"] == "ticket_user:2000;claimed_by:6000"


@pytest.mark.asyncio
async def test_claim_requires_support(
    ticket_service: TicketService, ticket_channel: MagicMock, owner: MagicMock
) -> None:
    with pytest.raises(PermissionDeniedError):
        await ticket_service.claim_ticket(ticket_channel, owner)
    ticket_channel.edit.assert_not_awaited()


@pytest.mark.asyncio
async def test_claim_accepts_role_from_channel_overwrites(
    ticket_service: TicketService, guild: MagicMock
) -> None:
    panel_role = make_role(4444, "Billing")
    channel = make_text_channel(
        guild,
        topic=encode_ticket(OWNER_ID),
        overwrites={panel_role: discord.PermissionOverwrite(view_channel=True)},
    )
    billing = make_member(6000, "Billing Staff", roles=[panel_role])

    await ticket_service.claim_ticket(channel, billing)
    channel.edit.assert_awaited_once()


@pytest.mark.asyncio
async def test_claim_outside_ticket_is_rejected(
    ticket_service: TicketService, guild: MagicMock, staff: MagicMock
) -> None:
    channel = make_text_channel(guild, topic="just a channel")
    with pytest.raises(NotATicketError):
        await ticket_service.claim_ticket(channel, staff)


@pytest.mark.asyncio
async def test_claim_while_closing_is_rejected(
    ticket_service: TicketService, ticket_channel: MagicMock, staff: MagicMock
) -> None:
    ticket_service.guard.channels.try_acquire(ticket_channel.id)
    with pytest.raises(OperationInProgressError):
        await ticket_service.claim_ticket(ticket_channel, staff)


@pytest.mark.asyncio
async def test_add_member_grants_access(
    ticket_service: TicketService, ticket_channel: MagicMock, owner: MagicMock
) -> None:
    friend = make_member(OUTSIDER_ID, "Friend")

    await ticket_service.add_member(ticket_channel, owner, friend)

    ticket_channel.set_permissions.assert_awaited_once()
    args, kwargs = ticket_channel.set_permissions.await_args
    assert args[0] is friend
    assert kwargs["view_channel"] is True


@pytest.mark.asyncio
async def test_add_member_requires_owner_or_support(
    ticket_service: TicketService, ticket_channel: MagicMock
) -> None:
    outsider = make_member(OUTSIDER_ID, "Outsider")
    with pytest.raises(PermissionDeniedError):
        await ticket_service.add_member(ticket_channel, outsider, make_member(7000, "Target"))


@pytest.mark.asyncio
async def test_close_sends_transcript_by_dm_and_deletes_channel(
    ticket_service: TicketService, ticket_channel: MagicMock, owner: MagicMock, staff: MagicMock
) -> None:
    ticket_channel.history = history_of([make_message(1, owner, "help please")])
    acknowledge = AsyncMock()

    outcome = await ticket_service.close_ticket(ticket_channel, staff, acknowledge=acknowledge)

    assert outcome.delivery.delivered_by == STRATEGY_DIRECT_MESSAGE
    assert not outcome.dm_failed
    owner.send.assert_awaited_once()
    assert owner.send.await_args.kwargs["file"].filename == "transcript-ticket-owner.html"
    acknowledge.assert_awaited_once_with(outcome)
    ticket_channel.delete.assert_awaited_once()
    assert ticket_channel.id not in ticket_service.guard.channels


@pytest.mark.asyncio
async def test_close_falls_back_to_channel_when_dm_blocked(
    ticket_service: TicketService, ticket_channel: MagicMock, owner: MagicMock, staff: MagicMock
) -> None:
    owner.send = AsyncMock(side_effect=http_error(403, discord.Forbidden))

    outcome = await ticket_service.close_ticket(ticket_channel, staff)

    assert outcome.dm_failed
    assert outcome.delivery.delivered_by == STRATEGY_TICKET_CHANNEL
    assert "could not be reached" in outcome.message
    sent_files = [call.kwargs.get("file") for call in ticket_channel.send.await_args_list]
    assert any(file is not None for file in sent_files)
    ticket_channel.delete.assert_awaited_once()


@pytest.mark.asyncio
async def test_close_deletes_channel_even_when_every_delivery_fails(
    ticket_service: TicketService, ticket_channel: MagicMock, owner: MagicMock, staff: MagicMock
) -> None:
    owner.send = AsyncMock(side_effect=http_error(403, discord.Forbidden))
    ticket_channel.send = AsyncMock(side_effect=http_error(500))

    outcome = await ticket_service.close_ticket(ticket_channel, staff)

    assert not outcome.delivery.ok
    ticket_channel.delete.assert_awaited_once()


@pytest.mark.asyncio
async def test_close_uses_fetched_owner_when_not_cached(
    ticket_service: TicketService, guild: MagicMock, staff: MagicMock, client: MagicMock
) -> None:
    departed = make_member(8000, "Gone")
    client.fetch_user = AsyncMock(return_value=departed)
    channel = make_text_channel(guild, topic=encode_ticket(8000))

    outcome = await ticket_service.close_ticket(channel, staff)

    assert outcome.delivery.delivered_by == STRATEGY_DIRECT_MESSAGE
    departed.send.assert_awaited_once()


@pytest.mark.asyncio
async def test_close_capture_failure_keeps_channel(
    ticket_service: TicketService, ticket_channel: MagicMock, staff: MagicMock
) -> None:
    ticket_channel.history = MagicMock(side_effect=http_error(403, discord.Forbidden))

    with pytest.raises(TranscriptCaptureError):
        await ticket_service.close_ticket(ticket_channel, staff)

    ticket_channel.delete.assert_not_awaited()
    assert ticket_channel.id not in ticket_service.guard.channels


@pytest.mark.asyncio
async def test_close_rejects_duplicate_close(
    ticket_service: TicketService, ticket_channel: MagicMock, staff: MagicMock
) -> None:
    ticket_service.guard.channels.try_acquire(ticket_channel.id)

    with pytest.raises(OperationInProgressError):
        await ticket_service.close_ticket(ticket_channel, staff)
    ticket_channel.delete.assert_not_awaited()


@pytest.mark.asyncio
async def test_close_requires_owner_or_support(ticket_service: TicketService, ticket_channel: MagicMock) -> None:
    outsider = make_member(OUTSIDER_ID, "Outsider")
    with pytest.raises(PermissionDeniedError):
        await ticket_service.close_ticket(ticket_channel, outsider)


@pytest.mark.asyncio
async def test_owner_can_close_own_ticket(
    ticket_service: TicketService, ticket_channel: MagicMock, owner: MagicMock
) -> None:
    await ticket_service.close_ticket(ticket_channel, owner)
    ticket_channel.delete.assert_awaited_once()


def test_support_role_ids_ignore_everyone_overwrite(ticket_service: TicketService, guild: MagicMock) -> None:
    channel = make_text_channel(
        guild,
        topic=encode_ticket(OWNER_ID),
        overwrites={guild.default_role: discord.PermissionOverwrite(view_channel=True)},
    )
    assert ticket_service.support_role_ids(channel) == {SUPPORT_ROLE_ID}


@pytest.mark.asyncio
async def test_double_click_opens_a_single_ticket(
    ticket_service: TicketService, guild: MagicMock, owner: MagicMock
) -> None:
    release = asyncio.Event()
    created = make_text_channel(guild, channel_id=777)

    async def _create_channel(**kwargs: object) -> MagicMock:
        await release.wait()
        created.topic = kwargs["topic"]
        return created

    guild.create_text_channel = AsyncMock(side_effect=_create_channel)
    first = asyncio.create_task(ticket_service.open_ticket(guild, owner))
    while guild.create_text_channel.await_count == 0:
        await asyncio.sleep(0)

    with pytest.raises(OperationInProgressError):
        await ticket_service.open_ticket(guild, owner)

    guild.fetch_channels = AsyncMock(return_value=[created])
    release.set()
    assert await first is created

    with pytest.raises(TicketAlreadyOpenError):
        await ticket_service.open_ticket(guild, owner)
    assert guild.create_text_channel.await_count == 1


@pytest.mark.asyncio
async def test_close_waits_grace_delay_before_deleting(
    ticket_service: TicketService,
    ticket_channel: MagicMock,
    staff: MagicMock,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    events: list[object] = []

    async def fake_sleep(seconds: float) -> None:
        events.append(("sleep", seconds))

    monkeypatch.setattr("services.ticket_service.asyncio.sleep", fake_sleep)
    ticket_service.config.tickets.close_delay_seconds = 5
    ticket_channel.delete = AsyncMock(side_effect=lambda **_: events.append("delete"))

    outcome = await ticket_service.close_ticket(ticket_channel, staff)

    assert events == [("sleep", 5), "delete"]
    assert "deleted in 5 seconds" in outcome.message
