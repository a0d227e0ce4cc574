from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from services.chat.app.errors import HotelApiError, ToolExecutionError
from services.chat.app.hotel_client import HotelApiClient
from services.chat.app.logging import logger
from services.chat.app.observability import FALLBACK_TOTAL
from services.chat.app.schemas import HotelSummary
from services.chat.app.settings import SETTINGS
from services.chat.app.tool_args import SearchArgs, decode_search_args


PLACEHOLDER_HOTEL_NAME = "Hotel"
UNKNOWN_TOOL_RESULT = "Unknown tool"
NO_HOTELS_RESULT = (
    "No hotels found for these dates and criteria. "
    "Suggest the user try different dates or a nearby destination."
)


def no_destination_result(destination: str) -> str:
    return f'No destination found for "{destination}". Ask the user to try a different city name.'


@dataclass
class ToolResult:
    result_text: str
    hotels: list[HotelSummary] = field(default_factory=list)


def _first(v: Any) -> dict[str, Any]:  # noqa: ANN401 - upstream JSON
    if isinstance(v, list) and v and isinstance(v[0], dict):
        return v[0]
    return {}


def _as_dict(v: Any) -> dict[str, Any]:  # noqa: ANN401
    return v if isinstance(v, dict) else {}


def _as_float(v: Any) -> float | None:  # noqa: ANN401
    if v is None or isinstance(v, bool):
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def _first_present(*values: Any) -> Any:  # noqa: ANN401
    for v in values:
        if v is not None:
            return v
    return None


def _first_str(*values: Any, default: str = "") -> str:  # noqa: ANN401
    for v in values:
        if isinstance(v, str) and v:
            return v
    return default


def extract_facilities(details: dict[str, Any]) -> list[str]:
    """
    Flat facility names from a detail record.

    Entries are either bare names or objects with a `name` field; anything else is skipped.
    """
    raw = details.get("hotelFacilities") or details.get("facilities") or []
    if not isinstance(raw, list):
        return []
    names: list[str] = []
    for f in raw:
        name = f if isinstance(f, str) else _as_dict(f).get("name")
        if isinstance(name, str) and name:
            names.append(name)
    return names


def display_price(rate_hotel: dict[str, Any]) -> tuple[float | None, str | None, str | None]:
    """
    (price, currency, cancellation tag) from the first room type and its first rate.

    Offer-level prices win over the rate total. Non-positive values are not prices.
    """
    room = _first(rate_hotel.get("roomTypes"))
    rate = _first(room.get("rates"))
    offer = _as_dict(room.get("offerRetailRate"))
    suggested = _as_dict(room.get("suggestedSellingPrice"))
    total = _first(_as_dict(rate.get("retailRate")).get("total"))

    amount = _as_float(_first_present(offer.get("amount"), suggested.get("amount"), total.get("amount")))
    price = amount if amount is not None and amount > 0 else None
    currency = offer.get("currency") or total.get("currency")
    tag = _as_dict(rate.get("cancellationPolicies")).get("refundableTag")
    return price, (str(currency) if currency else None), (str(tag) if tag else None)


def build_hotel_summary(rate_hotel: dict[str, Any], details: dict[str, Any], currency: str) -> HotelSummary:
    price, price_currency, tag = display_price(rate_hotel)
    return HotelSummary(
        hotel_id=str(rate_hotel.get("hotelId") or ""),
        name=_first_str(details.get("name"), details.get("hotelName"), default=PLACEHOLDER_HOTEL_NAME),
        star_rating=_as_float(details.get("starRating")),
        photo=_first_str(details.get("main_photo"), details.get("thumbnail")),
        min_rate=price,
        currency=price_currency or currency,
        review_score=_as_float(_first_present(details.get("rating"), details.get("reviewScore"))),
        city=_first_str(details.get("city")),
        country=_first_str(details.get("country")),
        cancellation_policy_tag=tag,
    )


def build_result_text(destination: str, hotels: list[HotelSummary], facilities: dict[str, list[str]]) -> str:
    prices = [h.min_rate for h in hotels if h.min_rate is not None]
    cur = hotels[0].currency if hotels else SETTINGS.default_currency
    if prices:
        price_range = f"{cur} {min(prices):.0f}-{max(prices):.0f}/night"
    else:
        price_range = "varies"

    names = [h.name for h in hotels if h.name != PLACEHOLDER_HOTEL_NAME]
    lines = [
        f"Found {len(hotels)} hotels in {destination}. Price range: {price_range}. "
        "Hotel cards are shown automatically, so just write a short enthusiastic intro."
    ]
    if names:
        lines[0] += (
            f" Then on the LAST line, add [OPTIONS: {' | '.join(names)}] "
            "so the user can tap to ask about a specific hotel."
        )

    facility_lines = [f"{h.name}: {', '.join(facilities[h.hotel_id])}" for h in hotels if facilities.get(h.hotel_id)]
    lines.append("")
    lines.append(
        "HOTEL FACILITIES (use this to answer questions about amenities, parking, breakfast, pools, pets, WiFi, etc.):"
    )
    lines.append("\n".join(facility_lines) or "Facility details not available for these hotels.")
    return "\n".join(lines)


class HotelSearchTool:
    """
    `search_hotels`: place resolution -> rate search -> detail enrichment -> summary.

    "Nothing found" outcomes come back as normal results for the model to phrase. Place and rate
    failures raise ToolExecutionError. Detail failures never drop a hotel.
    """

    name = "search_hotels"

    def __init__(self, client: HotelApiClient | None = None) -> None:
        self._client = client or HotelApiClient()

    def _rate_search_payload(self, args: SearchArgs, place_id: str) -> dict[str, Any]:
        adults = args.adults or SETTINGS.default_adults
        payload: dict[str, Any] = {
            "checkin": args.check_in,
            "checkout": args.check_out,
            "adults": adults,
            "children": args.children or SETTINGS.default_children,
            "currency": args.currency or SETTINGS.default_currency,
            "guestNationality": SETTINGS.guest_nationality,
            "placeId": place_id,
            "occupancies": [{"adults": adults}],
            "includeHotelData": True,
            "timeout": SETTINGS.rate_search_timeout_s,
            "limit": SETTINGS.rate_search_limit,
        }
        if args.star_rating:
            payload["starRating"] = args.star_rating
        return payload

    async def _fetch_details(self, hotel_ids: list[str]) -> dict[str, dict[str, Any]]:
        # All-settle: every fetch runs to completion and a failure only affects its own hotel.
        results = await asyncio.gather(
            *(self._client.get_hotel_details(hid) for hid in hotel_ids),
            return_exceptions=True,
        )
        details: dict[str, dict[str, Any]] = {}
        for hid, res in zip(hotel_ids, results):
            if isinstance(res, BaseException):
                FALLBACK_TOTAL.labels("detail_enrichment_failed").inc()
                logger.warning("hotel_detail_failed", hotel_id=hid, error=str(res))
                continue
            if res:
                details[hid] = res
        return details

    async def run(self, args: SearchArgs) -> ToolResult:
        destination = args.destination
        if not destination:
            return ToolResult(result_text=no_destination_result(destination))
        currency = args.currency or SETTINGS.default_currency

        try:
            places = await self._client.search_places(destination)
            if not places or not places[0].get("placeId"):
                logger.info("search_no_destination", destination_len=len(destination))
                return ToolResult(result_text=no_destination_result(destination))
            place_id = str(places[0]["placeId"])

            rates = await self._client.search_rates(self._rate_search_payload(args, place_id))
        except HotelApiError as e:
            raise ToolExecutionError(str(e)) from e

        if not rates:
            logger.info("search_no_hotels", place_id=place_id)
            return ToolResult(result_text=NO_HOTELS_RESULT)

        top = rates[: SETTINGS.enrich_limit]
        hotel_ids = [str(h.get("hotelId") or "") for h in top]
        details = await self._fetch_details([hid for hid in hotel_ids if hid])

        hotels: list[HotelSummary] = []
        facilities: dict[str, list[str]] = {}
        for rate_hotel, hid in zip(top, hotel_ids):
            fetched = details.get(hid)
            # Without a detail record, whatever the rate search carried inline (name, thumbnail) is used.
            hotels.append(build_hotel_summary(rate_hotel, fetched if fetched is not None else rate_hotel, currency))
            facs = extract_facilities(fetched or {})
            if facs:
                facilities[hid] = facs

        logger.info(
            "search_finished",
            place_id=place_id,
            rate_results=len(rates),
            hotels=len(hotels),
            enriched=len(details),
        )
        return ToolResult(result_text=build_result_text(destination, hotels, facilities), hotels=hotels)


ToolHandler = Callable[[Any], Awaitable[ToolResult]]


async def _run_search_hotels(raw_args: Any) -> ToolResult:  # noqa: ANN401
    return await HotelSearchTool().run(decode_search_args(raw_args))


# One tool call is executed per turn; adding a tool means adding an entry here and to the prompt schema.
TOOL_HANDLERS: dict[str, ToolHandler] = {
    HotelSearchTool.name: _run_search_hotels,
}


async def execute_tool(name: str, raw_args: Any) -> ToolResult:  # noqa: ANN401
    handler = TOOL_HANDLERS.get(name)
    if handler is None:
        logger.warning("unknown_tool", tool_name=name)
        return ToolResult(result_text=UNKNOWN_TOOL_RESULT)
    return await handler(raw_args)
