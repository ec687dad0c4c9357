from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

import discord

from utils.i18n import I18N
from utils.time import format_utc

if TYPE_CHECKING:
    from services.transcript_service import TranscriptDocument

LOGGER = logging.getLogger(__name__)

STRATEGY_DIRECT_MESSAGE = "direct_message"
STRATEGY_TICKET_CHANNEL = "ticket_channel"


@dataclass(slots=True, frozen=True)
class DeliveryResult:
    strategy: str
    ok: bool
    detail: str | None = None

    @classmethod
    def success(cls, strategy: str) -> DeliveryResult:
        return cls(strategy=strategy, ok=True)

    @classmethod
    def failure(cls, strategy: str, detail: str) -> DeliveryResult:
        return cls(strategy=strategy, ok=False, detail=detail)


@dataclass(slots=True)
class DeliveryContext:
    owner: discord.abc.User | None
    channel: discord.TextChannel
    link: str | None = None
    link_expires_at: datetime | None = None
    attempts: list[DeliveryResult] = field(default_factory=list)

    def attempted(self, strategy: str) -> bool:
        return any(attempt.strategy == strategy for attempt in self.attempts)


@dataclass(slots=True)
class DeliveryOutcome:
    attempts: list[DeliveryResult] = field(default_factory=list)
    link: str | None = None

    @property
    def delivered_by(self) -> str | None:
        for attempt in self.attempts:
            if attempt.ok:
                return attempt.strategy
        return None

    @property
    def ok(self) -> bool:
        return self.delivered_by is not None

    def failed(self, strategy: str) -> bool:
        return any(a.strategy == strategy and not a.ok for a in self.attempts)


class DeliveryStrategy(Protocol):
    name: str

    async def attempt(self, document: TranscriptDocument, context: DeliveryContext) -> DeliveryResult: ...


def _describe_http_error(error: discord.HTTPException) -> str:
    return f"{type(error).__name__} ({error.status})"


def link_line(i18n: I18N, context: DeliveryContext) -> str | None:
    if not context.link:
        return None
    if context.link_expires_at is None:
        return i18n.t("delivery.link", link=context.link)
    return i18n.t("delivery.link_until", link=context.link, expires=format_utc(context.link_expires_at))


class DirectMessageDelivery:
    name = STRATEGY_DIRECT_MESSAGE

    def __init__(self, i18n: I18N) -> None:
        self.i18n = i18n

    async def attempt(self, document: TranscriptDocument, context: DeliveryContext) -> DeliveryResult:
        if context.owner is None:
            return DeliveryResult.failure(self.name, "ticket owner could not be resolved")
        lines = [self.i18n.t("delivery.dm", channel=context.channel.name)]
        if link := link_line(self.i18n, context):
            lines.append(link)
        try:
            await context.owner.send(content="\n".join(lines), file=document.to_file())
        except discord.HTTPException as exc:
            LOGGER.info("Direct transcript delivery to %s failed: %s", context.owner.id, exc)
            return DeliveryResult.failure(self.name, _describe_http_error(exc))
        return DeliveryResult.success(self.name)


class TicketChannelDelivery:
    name = STRATEGY_TICKET_CHANNEL

    def __init__(self, i18n: I18N) -> None:
        self.i18n = i18n

    async def attempt(self, document: TranscriptDocument, context: DeliveryContext) -> DeliveryResult:
        key = "delivery.channel_fallback" if context.attempted(STRATEGY_DIRECT_MESSAGE) else "delivery.channel"
        lines = [self.i18n.t(key)]
        if link := link_line(self.i18n, context):
            lines.append(link)
        try:
            await context.channel.send(content="\n".join(lines), file=document.to_file())
        except discord.HTTPException as exc:
            LOGGER.warning("Transcript post in channel %s failed: %s", context.channel.id, exc)
            return DeliveryResult.failure(self.name, _describe_http_error(exc))
        return DeliveryResult.success(self.name)


class TranscriptDeliveryChain:
    """Tries each strategy in order and stops at the first success."""

    def __init__(self, strategies: Sequence[DeliveryStrategy]) -> None:
        self.strategies = list(strategies)

    async def deliver(self, document: TranscriptDocument, context: DeliveryContext) -> DeliveryOutcome:
        outcome = DeliveryOutcome(link=context.link)
        for strategy in self.strategies:
            result = await strategy.attempt(document, context)
            context.attempts.append(result)
            outcome.attempts.append(result)
            if result.ok:
                LOGGER.info("Transcript %s delivered via %s", document.filename, strategy.name)
                break
        else:
            LOGGER.warning("All transcript delivery strategies failed for %s", document.filename)
        return outcome


def build_delivery_chain(i18n: I18N, dm_owner: bool = True) -> TranscriptDeliveryChain:
    strategies: list[DeliveryStrategy] = []
    if dm_owner:
        strategies.append(DirectMessageDelivery(i18n))
    strategies.append(TicketChannelDelivery(i18n))
    return TranscriptDeliveryChain(strategies)
