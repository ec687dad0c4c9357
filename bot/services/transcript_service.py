from __future__ import annotations

import html
import io
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import discord

from core.config import TranscriptConfig
from services.transcript_delivery import DeliveryContext, DeliveryOutcome, TranscriptDeliveryChain, link_line
from services.transcript_store import TranscriptStore
from utils.i18n import I18N
from utils.time import as_utc, format_utc, utc_now

LOGGER = logging.getLogger(__name__)

MENTION_PATTERN = re.compile(r"<(@!?|@&|#)(\d+)>")
_SAFE_FILENAME = re.compile(r"[^a-z0-9-]+")


@dataclass(slots=True, frozen=True)
class TranscriptAttachment:
    url: str
    filename: str


@dataclass(slots=True, frozen=True)
class TranscriptEmbed:
    title: str | None = None
    description: str | None = None
    footer: str | None = None
    color: str | None = None


@dataclass(slots=True, frozen=True)
class TranscriptMessage:
    message_id: int
    author_id: int
    author_name: str
    author_is_bot: bool
    created_at: datetime
    content: str
    attachments: tuple[TranscriptAttachment, ...] = ()
    embed: TranscriptEmbed | None = None


@dataclass(slots=True)
class Transcript:
    guild_name: str
    channel_name: str
    closed_by: str
    closed_at: datetime
    messages: list[TranscriptMessage] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class TranscriptDocument:
    filename: str
    content: str

    @property
    def data(self) -> bytes:
        return self.content.encode("utf-8")

    def to_file(self) -> discord.File:
        # discord.File consumes its stream on send, so every delivery needs a fresh one.
        return discord.File(io.BytesIO(self.data), filename=self.filename)


def _display_name(entity: Any) -> str:
    for attr in ("display_name", "global_name", "name"):
        value = getattr(entity, attr, None)
        if isinstance(value, str) and value:
            return value
    return str(entity)


class MentionResolver:
    """Rewrites raw mention tokens into readable names or typed placeholders."""

    def __init__(self, guild: discord.Guild | None) -> None:
        self.guild = guild

    def _lookup(self, kind: str, entity_id: int, message: discord.Message) -> str | None:
        if kind in {"@", "@!"}:
            for user in getattr(message, "mentions", None) or []:
                if user.id == entity_id:
                    return f"@{_display_name(user)}"
            member = self.guild.get_member(entity_id) if self.guild else None
            return f"@{_display_name(member)}" if member else None
        if kind == "@&":
            for role in getattr(message, "role_mentions", None) or []:
                if role.id == entity_id:
                    return f"@{role.name}"
            role = self.guild.get_role(entity_id) if self.guild else None
            return f"@{role.name}" if role else None
        for channel in getattr(message, "channel_mentions", None) or []:
            if channel.id == entity_id:
                return f"#{channel.name}"
        channel = self.guild.get_channel(entity_id) if self.guild else None
        return f"#{channel.name}" if channel else None

    @staticmethod
    def placeholder(kind: str, entity_id: int) -> str:
        if kind == "@&":
            return f"@role:{entity_id}"
        if kind == "#":
            return f"#channel:{entity_id}"
        return f"@user:{entity_id}"

    def resolve(self, message: discord.Message) -> str:
        content = message.content or ""

        def _replace(match: re.Match[str]) -> str:
            kind, raw_id = match.group(1), int(match.group(2))
            return self._lookup(kind, raw_id, message) or self.placeholder(kind, raw_id)

        return MENTION_PATTERN.sub(_replace, content)


def _embed_color(embed: discord.Embed) -> str | None:
    colour = embed.colour
    if colour is None:
        return None
    return f"#{colour.value:06x}"


def normalize_embed(embed: discord.Embed) -> TranscriptEmbed:
    return TranscriptEmbed(
        title=embed.title or None,
        description=embed.description or None,
        footer=embed.footer.text or None,
        color=_embed_color(embed),
    )


def normalize_message(message: discord.Message, resolver: MentionResolver) -> TranscriptMessage:
    embeds = getattr(message, "embeds", None) or []
    return TranscriptMessage(
        message_id=message.id,
        author_id=message.author.id,
        author_name=_display_name(message.author),
        author_is_bot=bool(getattr(message.author, "bot", False)),
        created_at=as_utc(message.created_at),
        content=resolver.resolve(message),
        attachments=tuple(
            TranscriptAttachment(url=attachment.url, filename=attachment.filename)
            for attachment in message.attachments
        ),
        embed=normalize_embed(embeds[0]) if embeds else None,
    )


def transcript_filename(channel_name: str) -> str:
    cleaned = _SAFE_FILENAME.sub("-", channel_name.lower()).strip("-")
    return f"transcript-{cleaned or 'ticket'}.html"


def _safe_href(url: str) -> str | None:
    scheme, sep, _ = url.partition(":")
    if not sep or scheme.strip().lower() not in {"http", "https"}:
        return None
    return html.escape(url, quote=True)


_STYLESHEET = (
    "body{background:#08000f;color:#f4f0ff;font-family:Arial,sans-serif;padding:20px;}"
    ".wrap{background:#13001f;border-radius:16px;padding:20px 28px;max-width:900px;margin:0 auto;}"
    "h1{color:#a877ff;text-align:center;}"
    ".meta{color:#c9b8ff;font-size:14px;line-height:1.6;}"
    ".msg{background:#1d0033;border:1px solid #8000ff55;border-radius:10px;margin:10px 0;padding:8px 12px;}"
    ".author{color:#a877ff;font-weight:bold;}"
    ".bot{font-size:11px;background:#5865f2;color:#fff;border-radius:4px;padding:0 4px;margin-left:4px;}"
    ".time{color:#aaa;font-size:13px;margin-left:6px;}"
    ".content{margin-top:5px;white-space:pre-wrap;word-wrap:break-word;}"
    ".empty{color:#888;font-style:italic;}"
    ".embed{margin-top:6px;padding:6px 10px;border-left:4px solid #8000ff;background:#0d0018;border-radius:4px;}"
    ".embed-title{font-weight:bold;}"
    ".embed-footer{color:#aaa;font-size:12px;margin-top:4px;}"
    "ul{margin:6px 0 0 0;}a{color:#8ab4ff;}"
)


class TranscriptService:
    def __init__(
        self,
        config: TranscriptConfig,
        delivery: TranscriptDeliveryChain,
        i18n: I18N,
        store: TranscriptStore | None = None,
    ) -> None:
        self.config = config
        self.delivery = delivery
        self.i18n = i18n
        self.store = store

    async def capture(
        self,
        channel: discord.TextChannel,
        closer: discord.abc.User,
        closed_at: datetime | None = None,
    ) -> Transcript:
        guild = channel.guild
        resolver = MentionResolver(guild)
        normalized: list[TranscriptMessage] = []
        async for message in channel.history(limit=self.config.max_messages):
            normalized.append(normalize_message(message, resolver))
        normalized.sort(key=lambda msg: (msg.created_at, msg.message_id))
        LOGGER.debug("Captured %s messages from channel %s", len(normalized), channel.id)
        return Transcript(
            guild_name=guild.name if guild else "Unknown server",
            channel_name=channel.name,
            closed_by=_display_name(closer),
            closed_at=as_utc(closed_at or utc_now()),
            messages=normalized,
        )

    def render(self, transcript: Transcript) -> TranscriptDocument:
        return TranscriptDocument(
            filename=transcript_filename(transcript.channel_name),
            content=self._build_html(transcript),
        )

    async def deliver(
        self,
        document: TranscriptDocument,
        owner: discord.abc.User | None,
        channel: discord.TextChannel,
    ) -> DeliveryOutcome:
        context = DeliveryContext(owner=owner, channel=channel)
        if self.store is not None:
            try:
                stored = self.store.save(document)
            except OSError:
                LOGGER.exception("Failed to store transcript %s for link delivery", document.filename)
            else:
                context.link = stored.url
                context.link_expires_at = datetime.fromtimestamp(stored.expires_at, UTC)
        outcome = await self.delivery.deliver(document, context)
        await self._archive(document, context)
        return outcome

    async def _archive(self, document: TranscriptDocument, context: DeliveryContext) -> None:
        channel = context.channel
        if not self.config.archive_channel_id or channel.guild is None:
            return
        archive = channel.guild.get_channel(self.config.archive_channel_id)
        if not isinstance(archive, discord.TextChannel):
            LOGGER.warning("Transcript archive channel %s is not a text channel", self.config.archive_channel_id)
            return
        lines = [self.i18n.t("delivery.archive", channel=channel.name)]
        if link := link_line(self.i18n, context):
            lines.append(link)
        try:
            await archive.send(content="\n".join(lines), file=document.to_file())
        except discord.HTTPException:
            LOGGER.warning("Failed to archive transcript for channel %s", channel.id, exc_info=True)

    @staticmethod
    def _build_embed(embed: TranscriptEmbed) -> str:
        style = f" style='border-left-color:{html.escape(embed.color)}'" if embed.color else ""
        parts = [f"<div class='embed'{style}>"]
        if embed.title:
            parts.append(f"<div class='embed-title'>{html.escape(embed.title)}</div>")
        if embed.description:
            parts.append(f"<div class='content'>{html.escape(embed.description)}</div>")
        if embed.footer:
            parts.append(f"<div class='embed-footer'>{html.escape(embed.footer)}</div>")
        parts.append("</div>")
        return "".join(parts)

    @staticmethod
    def _build_attachments(attachments: Iterable[TranscriptAttachment]) -> str:
        items: list[str] = []
        for attachment in attachments:
            name = html.escape(attachment.filename)
            href = _safe_href(attachment.url)
            items.append(f"<li><a href=\"{href}\">{name}</a></li>" if href else f"<li>{name}</li>")
        return f"<ul>{''.join(items)}</ul>" if items else ""

    def _build_html(self, transcript: Transcript) -> str:
        rows: list[str] = []
        for msg in transcript.messages:
            content = (
                f"<div class='content'>{html.escape(msg.content)}</div>"
                if msg.content
                else "<div class='content empty'>No text</div>"
            )
            bot_badge = "<span class='bot'>BOT</span>" if msg.author_is_bot else ""
            rows.append(
                "<div class='msg'>"
                f"<div><span class='author'>{html.escape(msg.author_name)}</span>{bot_badge}"
                f"<span class='time'>{format_utc(msg.created_at)}</span></div>"
                f"{content}"
                f"{self._build_attachments(msg.attachments)}"
                f"{self._build_embed(msg.embed) if msg.embed else ''}"
                "</div>"
            )

        title = f"#{transcript.channel_name} - Ticket Transcript"
        return (
            "<!doctype html><html lang='en'><head><meta charset='utf-8'>"
            f"<title>{html.escape(title)}</title>"
            f"<style>{_STYLESHEET}</style></head><body><div class='wrap'>"
            "<h1>Ticket Transcript</h1>"
            "<p class='meta'>"
            f"Server: {html.escape(transcript.guild_name)}<br>"
            f"Channel: #{html.escape(transcript.channel_name)}<br>"
            f"Closed by: {html.escape(transcript.closed_by)}<br>"
            f"Closed at: {format_utc(transcript.closed_at)}<br>"
            f"Messages: {len(transcript.messages)}"
            "</p><hr>"
            + "".join(rows)
            + "</div></body></html>"
        )
