from __future__ import annotations

from datetime import UTC, datetime

import discord

from utils.constants import BRAND_COLOR


def make_embed(
    title: str | None,
    description: str,
    color: discord.Color | int | None = None,
    footer: str | None = None,
) -> discord.Embed:
    resolved_color = color if color is not None else discord.Color(BRAND_COLOR)
    embed = discord.Embed(
        title=title,
        description=description,
        color=resolved_color,
        timestamp=datetime.now(UTC),
    )
    if footer:
        embed.set_footer(text=footer)
    return embed


def notice_embed(message: str) -> discord.Embed:
    return make_embed(title=None, description=message)


def success_embed(message: str) -> discord.Embed:
    return make_embed(title=None, description=message, color=discord.Color.green())


def warning_embed(message: str) -> discord.Embed:
    return make_embed(title=None, description=message, color=discord.Color.orange())
