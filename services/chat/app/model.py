from __future__ import annotations

import json
import re
import time
from typing import Any

import httpx
from opentelemetry import trace
from pydantic import ValidationError

from services.chat.app.errors import MalformedResponse, ModelConfigError, ModelError, ModelUnavailable
from services.chat.app.llm_schemas import ChatCompletion
from services.chat.app.logging import logger
from services.chat.app.observability import FALLBACK_TOTAL, MODEL_ERROR_TOTAL, MODEL_LATENCY
from services.chat.app.settings import SETTINGS


# Valid JSON escapes (\" \\ \/ \b \f \n \r \t \uXXXX) are matched whole so "\\" pairs stay intact;
# the bare-backslash alternative only matches what is left over.
_ESCAPE_RE = re.compile(r'\\(?:["\\/bfnrt]|u[0-9a-fA-F]{4})|\\')


def repair_invalid_escapes(text: str) -> str:
    return _ESCAPE_RE.sub(lambda m: m.group(0) if len(m.group(0)) > 1 else "\\\\", text)


def parse_completion_body(text: str) -> dict[str, Any]:
    """
    Parse a chat-completion body, allowing one repair pass for invalid escape sequences.

    Some models emit stray backslashes inside reasoning text or tool-call arguments, which makes
    the whole body invalid JSON. Escaping them is a best-effort fix, not a general parser.
    """
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning("model_json_parse_failed", error=str(e), body_len=len(text))
    FALLBACK_TOTAL.labels("json_repair").inc()
    try:
        return json.loads(repair_invalid_escapes(text))
    except json.JSONDecodeError as e:
        logger.error("model_json_unrepairable", error=str(e), body_preview=text[:500])
        raise MalformedResponse("model returned malformed JSON") from e


class ModelClient:
    _default_transport: httpx.AsyncBaseTransport | None = None

    @classmethod
    def set_default_transport(cls, transport: httpx.AsyncBaseTransport | None) -> None:
        cls._default_transport = transport

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
    ) -> None:
        self._base_url = (base_url or SETTINGS.llm_base_url).rstrip("/")
        self._api_key = api_key if api_key is not None else SETTINGS.llm_api_key
        self._model = model or SETTINGS.llm_model
        self._timeout = httpx.Timeout(SETTINGS.llm_timeout_s)
        self._transport = self._default_transport

    def _body(self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "stream": False,
            "temperature": SETTINGS.llm_temperature,
            "max_tokens": SETTINGS.llm_max_tokens,
        }
        if tools:
            body["tools"] = tools
        return body

    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None = None,
        call: str = "call",
    ) -> ChatCompletion:
        """
        Single attempt against the chat-completions endpoint; no retries.

        Raises ModelConfigError, ModelUnavailable (no response), ModelError (non-2xx) or
        MalformedResponse (body unparseable even after repair, or not a completion).
        """
        if not self._api_key:
            MODEL_ERROR_TOTAL.labels(call, "config").inc()
            raise ModelConfigError("LLM_API_KEY is not set")

        tracer = trace.get_tracer("chat.model")
        url = f"{self._base_url}/chat/completions"
        headers = {"Authorization": f"Bearer {self._api_key}"}
        t0 = time.perf_counter()

        with tracer.start_as_current_span("model_call") as span:
            span.set_attribute("model.call", call)
            span.set_attribute("model.tools", bool(tools))
            logger.info("model_call_started", call=call, messages=len(messages), tools=bool(tools))
            try:
                async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                    resp = await client.post(url, json=self._body(messages, tools), headers=headers)
            except httpx.RequestError as e:
                MODEL_ERROR_TOTAL.labels(call, "unavailable").inc()
                span.record_exception(e)
                logger.error("model_call_unavailable", call=call, error=str(e))
                raise ModelUnavailable(f"model API unreachable: {e}") from e

            latency_ms = int((time.perf_counter() - t0) * 1000)
            MODEL_LATENCY.labels(call).observe(latency_ms)
            span.set_attribute("http.status_code", resp.status_code)
            text = resp.text

            if not resp.is_success:
                MODEL_ERROR_TOTAL.labels(call, "status").inc()
                logger.error("model_call_failed", call=call, status=resp.status_code, body_preview=text[:500])
                raise ModelError(resp.status_code, text)

            try:
                data = parse_completion_body(text)
                completion = ChatCompletion.model_validate(data)
            except MalformedResponse:
                MODEL_ERROR_TOTAL.labels(call, "malformed").inc()
                raise
            except ValidationError as e:
                MODEL_ERROR_TOTAL.labels(call, "malformed").inc()
                raise MalformedResponse(f"model response is not a chat completion: {e.error_count()} errors") from e

            msg = completion.first_message()
            logger.info(
                "model_call_finished",
                call=call,
                latency_ms=latency_ms,
                choices=len(completion.choices),
                tool_calls=len((msg.tool_calls or []) if msg else []),
            )
            return completion
