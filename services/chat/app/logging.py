from __future__ import annotations

import logging
import sys
import uuid
from typing import Any

import structlog

# Transcript text and tool payloads stay out of the logs; only their sizes are recorded.
_REDACTED_KEYS = frozenset({"content", "messages", "arguments", "tool_result"})


def _redact_payloads(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:  # noqa: ANN401
    for key in _REDACTED_KEYS & event_dict.keys():
        value = event_dict[key]
        if isinstance(value, (str, list, dict)):
            event_dict[key] = f"<{len(value)} redacted>"
    return event_dict


def configure_logging(log_level: str, service_name: str = "chat") -> None:
    level = log_level.upper()
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="ts"),
            _redact_payloads,
            structlog.processors.dict_tracebacks,
            structlog.processors.EventRenamer("msg"),
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level)),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service=service_name)


def bind_turn(**fields: Any) -> str:  # noqa: ANN401
    """Start a per-request log context; every event logged during the turn carries `turn_id`."""
    turn_id = uuid.uuid4().hex[:12]
    structlog.contextvars.bind_contextvars(turn_id=turn_id, **fields)
    return turn_id


def unbind_turn() -> None:
    structlog.contextvars.unbind_contextvars("turn_id", "transcript_len")


logger = structlog.get_logger()
