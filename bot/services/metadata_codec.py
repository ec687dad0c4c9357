from __future__ import annotations

from dataclasses import dataclass

TICKET_OWNER_KEY = "ticket_user"
TICKET_CLAIMANT_KEY = "claimed_by"
PANEL_ROLE_KEY = "support_role"
PANEL_CATEGORY_KEY = "category"

_PAIR_SEPARATOR = ";"
_KEY_SEPARATOR = ":"


@dataclass(slots=True, frozen=True)
class TicketMetadata:
    owner_id: int | None
    claimant_id: int | None = None

    @property
    def is_ticket(self) -> bool:
        return self.owner_id is not None

    @property
    def is_claimed(self) -> bool:
        return self.claimant_id is not None


@dataclass(slots=True, frozen=True)
class PanelMetadata:
    support_role_id: int | None = None
    category_id: int | None = None


def _format_id(value: int | None) -> str:
    return "" if value is None else str(int(value))


def _parse_id(value: str | None) -> int | None:
    if value is None:
        return None
    cleaned = value.strip()
    if not cleaned.isdigit() or not cleaned.isascii():
        return None
    parsed = int(cleaned)
    return parsed if parsed > 0 else None


def _parse_pairs(text: str | None) -> dict[str, str]:
    pairs: dict[str, str] = {}
    if not text:
        return pairs
    for chunk in text.split(_PAIR_SEPARATOR):
        key, sep, value = chunk.partition(_KEY_SEPARATOR)
        key = key.strip()
        if not sep or not key or key in pairs:
            continue
        pairs[key] = value.strip()
    return pairs


def encode_ticket(owner_id: int, claimant_id: int | None = None) -> str:
    return (
        f"{TICKET_OWNER_KEY}{_KEY_SEPARATOR}{_format_id(owner_id)}"
        f"{_PAIR_SEPARATOR}{TICKET_CLAIMANT_KEY}{_KEY_SEPARATOR}{_format_id(claimant_id)}"
    )


def decode_ticket(text: str | None) -> TicketMetadata:
    """Decode a channel topic. Never raises; unknown or broken input decodes to empty fields."""
    pairs = _parse_pairs(text)
    return TicketMetadata(
        owner_id=_parse_id(pairs.get(TICKET_OWNER_KEY)),
        claimant_id=_parse_id(pairs.get(TICKET_CLAIMANT_KEY)),
    )


def is_ticket_topic(text: str | None) -> bool:
    return decode_ticket(text).is_ticket


def encode_panel(support_role_id: int | None, category_id: int | None) -> str:
    return (
        f"{PANEL_ROLE_KEY}{_KEY_SEPARATOR}{_format_id(support_role_id)}"
        f"{_PAIR_SEPARATOR}{PANEL_CATEGORY_KEY}{_KEY_SEPARATOR}{_format_id(category_id)}"
    )


def decode_panel(text: str | None) -> PanelMetadata:
    pairs = _parse_pairs(text)
    return PanelMetadata(
        support_role_id=_parse_id(pairs.get(PANEL_ROLE_KEY)),
        category_id=_parse_id(pairs.get(PANEL_CATEGORY_KEY)),
    )


def is_panel_footer(text: str | None) -> bool:
    pairs = _parse_pairs(text)
    return PANEL_ROLE_KEY in pairs and PANEL_CATEGORY_KEY in pairs
