from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from utils.time import parse_relative_duration


class ConfigError(RuntimeError):
    pass


@dataclass(slots=True)
class DiscordConfig:
    token: str
    prefix: str = "!"
    application_id: int | None = None
    guild_id: int | None = None
    sync_commands_on_start: bool = True


@dataclass(slots=True)
class TicketConfig:
    support_role_id: int | None = None
    category_id: int | None = None
    channel_prefix: str = "ticket"
    close_delay_seconds: float = 5.0
    panel_scan_limit: int = 50
    panel_title: str | None = None
    panel_description: str | None = None
    panel_color: int = 0x8000FF


@dataclass(slots=True)
class TranscriptConfig:
    max_messages: int = 100
    storage_directory: str = "artifacts/transcripts"
    retention: timedelta = field(default_factory=lambda: timedelta(days=7))
    public_base_url: str = ""
    dm_owner: bool = True
    archive_channel_id: int | None = None


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    directory: str = "logs"
    file_name: str = "bot.log"
    max_bytes: int = 10_000_000
    backup_count: int = 10
    json_console: bool = False


@dataclass(slots=True)
class FastApiConfig:
    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 8000


@dataclass(slots=True)
class I18NConfig:
    default_locale: str = "en-US"
    supported_locales: list[str] = field(default_factory=lambda: ["en-US", "nl-NL"])


@dataclass(slots=True)
class AppConfig:
    discord: DiscordConfig
    tickets: TicketConfig = field(default_factory=TicketConfig)
    transcripts: TranscriptConfig = field(default_factory=TranscriptConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    fastapi: FastApiConfig = field(default_factory=FastApiConfig)
    i18n: I18NConfig = field(default_factory=I18NConfig)
    enabled_extensions: list[str] = field(default_factory=lambda: ["cogs.tickets"])


def _get_env_str(key: str, fallback: str | None = None) -> str | None:
    value = os.getenv(key)
    if value is None:
        return fallback
    cleaned = value.strip()
    return cleaned if cleaned else fallback


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_snowflake(value: Any) -> int | None:
    if value is None:
        return None
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


def _deep_get(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    node: Any = data
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key)
        if node is None:
            return default
    return node


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Missing config file: {path}")
    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping")
    return raw


def _parse_retention(value: Any) -> timedelta:
    try:
        retention = parse_relative_duration(str(value))
    except ValueError as exc:
        raise ConfigError(f"Invalid transcripts.retention value: {value!r}") from exc
    if retention.total_seconds() <= 0:
        raise ConfigError("transcripts.retention must be positive")
    return retention


def load_config(config_path: Path) -> AppConfig:
    env_path = config_path.parent.parent / ".env"
    load_dotenv(env_path)
    raw = _load_yaml(config_path)

    discord_token = _get_env_str("DISCORD_TOKEN", _deep_get(raw, "discord", "token"))
    if not discord_token or "${" in discord_token:
        raise ConfigError("DISCORD_TOKEN is required")

    discord_cfg = DiscordConfig(
        token=discord_token,
        prefix=str(_get_env_str("BOT_PREFIX", _deep_get(raw, "discord", "prefix", default="!"))),
        application_id=_as_snowflake(
            _get_env_str("DISCORD_APPLICATION_ID", _deep_get(raw, "discord", "application_id"))
        ),
        guild_id=_as_snowflake(_get_env_str("GUILD_ID", _deep_get(raw, "discord", "guild_id"))),
        sync_commands_on_start=_as_bool(
            _get_env_str("SYNC_COMMANDS"),
            _as_bool(_deep_get(raw, "discord", "sync_commands_on_start"), True),
        ),
    )

    ticket_cfg = TicketConfig(
        support_role_id=_as_snowflake(
            _get_env_str("SUPPORT_ROLE_ID", _deep_get(raw, "tickets", "support_role_id"))
        ),
        category_id=_as_snowflake(_get_env_str("CATEGORY_ID", _deep_get(raw, "tickets", "category_id"))),
        channel_prefix=str(_deep_get(raw, "tickets", "channel_prefix", default="ticket")),
        close_delay_seconds=max(0.0, _as_float(_deep_get(raw, "tickets", "close_delay_seconds"), 5.0)),
        panel_scan_limit=max(1, _as_int(_deep_get(raw, "tickets", "panel_scan_limit"), 50)),
        panel_title=_deep_get(raw, "tickets", "panel_title"),
        panel_description=_deep_get(raw, "tickets", "panel_description"),
        panel_color=_as_int(_deep_get(raw, "tickets", "panel_color"), 0x8000FF),
    )

    transcript_cfg = TranscriptConfig(
        max_messages=max(1, _as_int(_deep_get(raw, "transcripts", "max_messages"), 100)),
        storage_directory=str(
            _deep_get(raw, "transcripts", "storage_directory", default="artifacts/transcripts")
        ),
        retention=_parse_retention(_deep_get(raw, "transcripts", "retention", default="7d")),
        public_base_url=str(
            _get_env_str("TRANSCRIPT_BASE_URL", _deep_get(raw, "transcripts", "public_base_url", default=""))
        ).rstrip("/"),
        dm_owner=_as_bool(_deep_get(raw, "transcripts", "dm_owner"), True),
        archive_channel_id=_as_snowflake(
            _get_env_str("TRANSCRIPT_CHANNEL_ID", _deep_get(raw, "transcripts", "archive_channel_id"))
        ),
    )

    logging_cfg = LoggingConfig(
        level=str(_get_env_str("LOG_LEVEL", _deep_get(raw, "logging", "level", default="INFO"))),
        directory=str(_deep_get(raw, "logging", "directory", default="logs")),
        file_name=str(_deep_get(raw, "logging", "file_name", default="bot.log")),
        max_bytes=_as_int(_deep_get(raw, "logging", "max_bytes"), 10_000_000),
        backup_count=_as_int(_deep_get(raw, "logging", "backup_count"), 10),
        json_console=_as_bool(_deep_get(raw, "logging", "json_console"), False),
    )

    fastapi_cfg = FastApiConfig(
        enabled=_as_bool(_deep_get(raw, "fastapi", "enabled"), False),
        host=str(_deep_get(raw, "fastapi", "host", default="0.0.0.0")),
        port=_as_int(_get_env_str("PORT", _deep_get(raw, "fastapi", "port")), 8000),
    )

    i18n_cfg = I18NConfig(
        default_locale=str(_deep_get(raw, "i18n", "default_locale", default="en-US")),
        supported_locales=list(_deep_get(raw, "i18n", "supported_locales", default=["en-US", "nl-NL"])),
    )

    enabled_extensions = [
        str(ext) for ext in list(_deep_get(raw, "enabled_extensions", default=["cogs.tickets"]))
    ]

    return AppConfig(
        discord=discord_cfg,
        tickets=ticket_cfg,
        transcripts=transcript_cfg,
        logging=logging_cfg,
        fastapi=fastapi_cfg,
        i18n=i18n_cfg,
        enabled_extensions=enabled_extensions,
    )
