from __future__ import annotations

import logging
from dataclasses import dataclass

import discord
from discord import app_commands
from discord.ext import commands

LOGGER = logging.getLogger(__name__)


class BotError(RuntimeError):
    user_message: str = "An unexpected error occurred."


@dataclass(slots=True)
class PermissionDeniedError(BotError):
    user_message: str = "You do not have permission to run this action."


@dataclass(slots=True)
class NotATicketError(BotError):
    user_message: str = "This channel is not a ticket."


@dataclass(slots=True)
class NotAPanelError(BotError):
    user_message: str = "This message is not a ticket panel."


@dataclass(slots=True)
class TicketAlreadyOpenError(BotError):
    user_message: str = "You already have an open ticket."


@dataclass(slots=True)
class OperationInProgressError(BotError):
    user_message: str = "Your previous request is still being processed. Please wait."


@dataclass(slots=True)
class TicketCreationError(BotError):
    user_message: str = "The ticket could not be created. Please try again later."


@dataclass(slots=True)
class TranscriptCaptureError(BotError):
    user_message: str = "The transcript could not be captured, so the ticket was left open."


@dataclass(slots=True)
class ValidationError(BotError):
    user_message: str = "The provided input is not valid."


def unwrap_error(error: BaseException) -> BaseException:
    seen: set[int] = set()
    while id(error) not in seen:
        seen.add(id(error))
        original = getattr(error, "original", None)
        if not isinstance(original, BaseException):
            break
        error = original
    return error


async def send_error_response(
    target: commands.Context[commands.Bot] | discord.Interaction[commands.Bot], message: str
) -> None:
    embed = discord.Embed(title="Error", description=message, color=discord.Color.red())
    if isinstance(target, commands.Context):
        if target.interaction is not None:
            await send_error_response(target.interaction, message)
            return
        await target.reply(embed=embed, mention_author=False)
        return
    if target.response.is_done():
        await target.followup.send(embed=embed, ephemeral=True)
    else:
        await target.response.send_message(embed=embed, ephemeral=True)


def _humanize_command_error(error: BaseException) -> str:
    if isinstance(error, BotError):
        return error.user_message
    if isinstance(error, commands.CommandOnCooldown):
        return f"Cooldown active. Retry in {error.retry_after:.1f} seconds."
    if isinstance(error, (commands.MissingPermissions, app_commands.MissingPermissions)):
        return "You are missing required Discord permissions."
    if isinstance(error, (commands.CheckFailure, app_commands.CheckFailure)):
        return "You are not authorized for this command."
    if isinstance(error, commands.BadArgument):
        return "Command argument was invalid."
    return "An unexpected command error occurred."


async def _acknowledge(
    target: commands.Context[commands.Bot] | discord.Interaction[commands.Bot], message: str
) -> None:
    try:
        await send_error_response(target, message)
    except discord.HTTPException:
        LOGGER.warning("Failed to acknowledge failed request: %s", message, exc_info=True)


def _log_failure(kind: str, error: BaseException, command: str | None, guild_id: int | None, user_id: int | None) -> None:
    if isinstance(error, BotError):
        LOGGER.info(
            "%s rejected. command=%s guild=%s user=%s reason=%s",
            kind,
            command,
            guild_id,
            user_id,
            type(error).__name__,
        )
        return
    LOGGER.error(
        "%s failed. command=%s guild=%s user=%s",
        kind,
        command,
        guild_id,
        user_id,
        exc_info=error,
    )


async def handle_prefix_command_error(
    ctx: commands.Context[commands.Bot], error: commands.CommandError
) -> None:
    if isinstance(error, commands.CommandNotFound):
        return
    original = unwrap_error(error)
    _log_failure(
        "Command",
        original,
        getattr(ctx.command, "qualified_name", None),
        getattr(ctx.guild, "id", None),
        ctx.author.id,
    )
    await _acknowledge(ctx, _humanize_command_error(original))


async def handle_app_command_error(
    interaction: discord.Interaction[commands.Bot], error: app_commands.AppCommandError
) -> None:
    original = unwrap_error(error)
    _log_failure(
        "Slash command",
        original,
        getattr(interaction.command, "qualified_name", None),
        getattr(interaction.guild, "id", None),
        interaction.user.id if interaction.user else None,
    )
    await _acknowledge(interaction, _humanize_command_error(original))


async def handle_interaction_error(interaction: discord.Interaction[commands.Bot], error: BaseException) -> None:
    custom_id = interaction.data.get("custom_id") if interaction.data else None
    _log_failure(
        "Interaction",
        error,
        str(custom_id) if custom_id else None,
        getattr(interaction.guild, "id", None),
        interaction.user.id if interaction.user else None,
    )
    message = error.user_message if isinstance(error, BotError) else "Action failed due to an unexpected error."
    await _acknowledge(interaction, message)
