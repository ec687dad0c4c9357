from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import discord
from discord.ext import commands

from core.errors import handle_interaction_error

LOGGER = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])
ButtonCallback = Callable[[Any, discord.Interaction, discord.ui.Button], Awaitable[None]]


def panel_admin_only() -> Callable[[F], F]:
    async def predicate(ctx: commands.Context[commands.Bot]) -> bool:
        member = ctx.author
        if not ctx.guild or not isinstance(member, discord.Member):
            raise commands.NoPrivateMessage()
        permissions = member.guild_permissions
        return permissions.administrator or permissions.manage_guild

    return commands.check(predicate)


def guarded_interaction(func: ButtonCallback) -> ButtonCallback:
    """Runs a view callback at most once per interaction id and always acknowledges failures.

    The decorated view must expose the bot as ``self.bot``.
    """

    @functools.wraps(func)
    async def wrapper(self: Any, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        events = self.bot.guard.events
        if not events.try_acquire(interaction.id):
            LOGGER.info("Ignoring duplicate delivery of interaction %s", interaction.id)
            return
        try:
            await func(self, interaction, button)
        except Exception as error:
            await handle_interaction_error(interaction, error)
        finally:
            events.release(interaction.id)

    return wrapper
