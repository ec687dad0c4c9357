from __future__ import annotations

TICKET_STATE_NONE = "none"
TICKET_STATE_OPEN = "open"
TICKET_STATE_CLAIMED = "claimed"
TICKET_STATE_CLOSING = "closing"

CUSTOM_ID_OPEN_TICKET = "ticket:open"
CUSTOM_ID_CLAIM_TICKET = "ticket:claim"
CUSTOM_ID_CLOSE_TICKET = "ticket:close"

BRAND_COLOR = 0x8000FF
