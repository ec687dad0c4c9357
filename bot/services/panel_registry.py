from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

import discord

from services.metadata_codec import encode_panel

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class PanelConfig:
    support_role_id: int | None
    category_id: int | None
    title: str
    description: str
    color: int = 0x8000FF

    @property
    def footer(self) -> str:
        return encode_panel(self.support_role_id, self.category_id)

    def build_embed(self) -> discord.Embed:
        embed = discord.Embed(title=self.title, description=self.description, color=self.color)
        embed.set_footer(text=self.footer)
        return embed


@dataclass(slots=True, frozen=True)
class PanelPublication:
    message: discord.Message
    created: bool


def panel_footer_of(message: discord.Message) -> str | None:
    embeds = getattr(message, "embeds", None) or []
    if not embeds:
        return None
    return embeds[0].footer.text


class PanelRegistry:
    """Keeps one panel message per (channel, support role, category)."""

    def __init__(self, bot_user_id: Callable[[], int | None], scan_limit: int = 50) -> None:
        self._bot_user_id = bot_user_id
        self.scan_limit = scan_limit

    async def find(self, channel: discord.abc.Messageable, config: PanelConfig) -> discord.Message | None:
        bot_id = self._bot_user_id()
        if bot_id is None:
            return None
        expected = config.footer
        async for message in channel.history(limit=self.scan_limit):
            if message.author.id != bot_id:
                continue
            if panel_footer_of(message) == expected:
                return message
        return None

    async def find_or_create(
        self,
        channel: discord.abc.Messageable,
        config: PanelConfig,
        view: discord.ui.View,
    ) -> PanelPublication:
        embed = config.build_embed()
        existing = await self.find(channel, config)
        if existing is not None:
            await existing.edit(embed=embed, view=view)
            LOGGER.info("Updated panel message %s (%s)", existing.id, config.footer)
            return PanelPublication(message=existing, created=False)
        message = await channel.send(embed=embed, view=view)
        LOGGER.info("Posted panel message %s (%s)", message.id, config.footer)
        return PanelPublication(message=message, created=True)
