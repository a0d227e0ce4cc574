from __future__ import annotations

import json
import time
from typing import Any

import httpx
from opentelemetry import trace

from services.chat.app.errors import HotelApiError
from services.chat.app.logging import logger
from services.chat.app.observability import TOOL_ERROR_TOTAL, TOOL_LATENCY
from services.chat.app.settings import SETTINGS


def _error_message(data: Any, fallback: str) -> str:  # noqa: ANN401 - upstream JSON
    if isinstance(data, dict):
        err = data.get("error") or data.get("message") or data.get("errors")
        if err:
            return err if isinstance(err, str) else json.dumps(err, default=str)
    return fallback


class HotelApiClient:
    """
    Thin client over the hotel data API: place search, rate search and hotel details.

    Every call is attempted once. Failures raise HotelApiError; "no results" is not a failure.
    """

    _default_transport: httpx.AsyncBaseTransport | None = None

    @classmethod
    def set_default_transport(cls, transport: httpx.AsyncBaseTransport | None) -> None:
        cls._default_transport = transport

    def __init__(self, base_url: str | None = None, api_key: str | None = None) -> None:
        self._base_url = (base_url or SETTINGS.hotel_api_base_url).rstrip("/")
        self._api_key = api_key if api_key is not None else SETTINGS.hotel_api_key
        self._timeout = httpx.Timeout(SETTINGS.hotel_api_timeout_s)
        self._transport = self._default_transport

    @property
    def _headers(self) -> dict[str, str]:
        return {"X-API-Key": self._api_key, "Accept": "application/json"}

    async def _request(
        self,
        tool_name: str,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
        timeout: httpx.Timeout | None = None,
    ) -> dict[str, Any]:
        tracer = trace.get_tracer("chat.hotel_api")
        url = f"{self._base_url}{path}"
        t0 = time.perf_counter()

        with tracer.start_as_current_span("hotel_api_call") as span:
            span.set_attribute("tool.name", tool_name)
            try:
                async with httpx.AsyncClient(timeout=timeout or self._timeout, transport=self._transport) as client:
                    resp = await client.request(method, url, params=params, json=payload, headers=self._headers)
            except httpx.RequestError as e:
                TOOL_ERROR_TOTAL.labels(tool_name).inc()
                span.record_exception(e)
                logger.info("hotel_api_call_finished", tool_name=tool_name, status="ERROR", error=str(e))
                raise HotelApiError(f"{tool_name} request failed: {e}", url=url) from e

            latency_ms = int((time.perf_counter() - t0) * 1000)
            TOOL_LATENCY.labels(tool_name).observe(latency_ms)
            span.set_attribute("tool.latency_ms", latency_ms)
            span.set_attribute("http.status_code", resp.status_code)

            text = resp.text
            try:
                data = json.loads(text)
            except json.JSONDecodeError:
                data = None

            if not resp.is_success or not isinstance(data, dict):
                TOOL_ERROR_TOTAL.labels(tool_name).inc()
                logger.info(
                    "hotel_api_call_finished",
                    tool_name=tool_name,
                    status="ERROR",
                    http_status=resp.status_code,
                    latency_ms=latency_ms,
                )
                if not resp.is_success:
                    msg = f"hotel API error ({resp.status_code}): {_error_message(data, text[:200])}"
                else:
                    msg = f"hotel API returned invalid JSON: {text[:200]}"
                raise HotelApiError(msg, status_code=resp.status_code, url=url)

            logger.info("hotel_api_call_finished", tool_name=tool_name, status="OK", latency_ms=latency_ms)
            return data

    async def search_places(self, text_query: str) -> list[dict[str, Any]]:
        data = await self._request("search_places", "GET", "/data/places", params={"textQuery": text_query})
        return [p for p in (data.get("data") or []) if isinstance(p, dict)]

    async def search_rates(self, payload: dict[str, Any]) -> list[dict[str, Any]]:
        # The upstream enforces `payload["timeout"]` itself; leave it room to answer before we give up.
        budget = float(payload.get("timeout") or 0)
        timeout = httpx.Timeout(max(SETTINGS.hotel_api_timeout_s, budget + 5.0))
        data = await self._request("search_rates", "POST", "/hotels/rates", payload=payload, timeout=timeout)
        return [h for h in (data.get("data") or []) if isinstance(h, dict)]

    async def get_hotel_details(self, hotel_id: str) -> dict[str, Any]:
        data = await self._request("get_hotel_details", "GET", "/data/hotel", params={"hotelId": hotel_id})
        details = data.get("data")
        return details if isinstance(details, dict) else {}
