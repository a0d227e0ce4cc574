from __future__ import annotations

from datetime import date
from typing import Any


SYSTEM_PROMPT_TEMPLATE = """\
You are a friendly hotel search assistant for a hotel booking website.
Today's date is {today}.

Rules:
- Reply in plain text only. No markdown: no headings, bold, italics, code or tables.
- Keep replies short: 1-3 sentences unless the user asks for detail.
- When the user wants hotels somewhere, call search_hotels. Resolve relative dates
  ("next weekend", "in two weeks") to YYYY-MM-DD using today's date. If no dates are given,
  ask for them in one short question instead of guessing.
- Default to 2 adults and 0 children when the user does not say.
- Never invent hotels, prices, or amenities. Only use what search_hotels returned.
- If a search finds nothing, say so kindly and suggest one concrete alternative.
- When it helps the user pick a next step, end with a single line:
  [OPTIONS: option one | option two | option three]
  Options are short (max 5 words each), at most 4 of them.
"""


def system_prompt(today: date | None = None) -> str:
    return SYSTEM_PROMPT_TEMPLATE.format(today=(today or date.today()).isoformat())


SEARCH_HOTELS_TOOL: dict[str, Any] = {
    "type": "function",
    "function": {
        "name": "search_hotels",
        "description": (
            "Search bookable hotels with live prices in a destination for given dates. "
            "Returns up to 5 hotels with prices and facilities."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "destination": {
                    "type": "string",
                    "description": "City or area name, e.g. 'Paris' or 'Bali'.",
                },
                "checkIn": {"type": "string", "description": "Check-in date, YYYY-MM-DD."},
                "checkOut": {"type": "string", "description": "Check-out date, YYYY-MM-DD."},
                "adults": {"type": "integer", "description": "Number of adults (default 2)."},
                "children": {"type": "integer", "description": "Number of children (default 0)."},
                "currency": {"type": "string", "description": "ISO 4217 currency code (default USD)."},
                "starRating": {
                    "type": "array",
                    "items": {"type": "integer", "minimum": 1, "maximum": 5},
                    "description": "Only include hotels with these star ratings.",
                },
            },
            "required": ["destination", "checkIn", "checkOut"],
        },
    },
}

CHAT_TOOLS: list[dict[str, Any]] = [SEARCH_HOTELS_TOOL]
