from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from services.chat.app.logging import logger
from services.chat.app.observability import FALLBACK_TOTAL


@dataclass
class SearchArgs:
    """
    Arguments of a `search_hotels` call as the model produced them.

    Only `destination` is required by the tool; everything else is optional and defaulted by the executor.
    """

    destination: str = ""
    check_in: str | None = None
    check_out: str | None = None
    adults: int | None = None
    children: int | None = None
    currency: str | None = None
    star_rating: list[int] | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> SearchArgs:
        return cls(
            destination=_as_str(payload.get("destination")) or "",
            check_in=_as_str(payload.get("checkIn")),
            check_out=_as_str(payload.get("checkOut")),
            adults=_as_int(payload.get("adults")),
            children=_as_int(payload.get("children")),
            currency=_as_str(payload.get("currency")),
            star_rating=_as_int_list(payload.get("starRating")),
        )


# Best-effort recovery for truncated or otherwise invalid argument JSON. Each field is independent.
_FALLBACK_PATTERNS: dict[str, re.Pattern[str]] = {
    "destination": re.compile(r'"destination"\s*:\s*"([^"]+)"'),
    "checkIn": re.compile(r'"checkIn"\s*:\s*"([^"]+)"'),
    "checkOut": re.compile(r'"checkOut"\s*:\s*"([^"]+)"'),
    "adults": re.compile(r'"adults"\s*:\s*(\d+)'),
    "children": re.compile(r'"children"\s*:\s*(\d+)'),
}
_INT_FIELDS = {"adults", "children"}


def _as_str(v: Any) -> str | None:  # noqa: ANN401
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _as_int(v: Any) -> int | None:  # noqa: ANN401
    if isinstance(v, bool) or v is None:
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def _as_int_list(v: Any) -> list[int] | None:  # noqa: ANN401
    if not isinstance(v, list):
        return None
    out = [i for i in (_as_int(x) for x in v) if i is not None]
    return out or None


def extract_known_fields(raw: str) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name, pattern in _FALLBACK_PATTERNS.items():
        m = pattern.search(raw)
        if not m:
            continue
        out[name] = int(m.group(1)) if name in _INT_FIELDS else m.group(1)
    return out


def decode_search_args(raw: str | dict[str, Any] | None) -> SearchArgs:
    if isinstance(raw, dict):
        return SearchArgs.from_payload(raw)
    text = raw or "{}"
    try:
        payload = json.loads(text)
        if not isinstance(payload, dict):
            raise ValueError("tool arguments are not a JSON object")
    except ValueError:
        payload = extract_known_fields(text)
        FALLBACK_TOTAL.labels("args_regex_fallback").inc()
        logger.warning("tool_args_regex_fallback", recovered=sorted(payload.keys()), raw_len=len(text))
    return SearchArgs.from_payload(payload)
