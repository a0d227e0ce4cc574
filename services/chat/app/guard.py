from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from services.chat.app.errors import TranscriptValidationError
from services.chat.app.schemas import ChatMessage
from services.chat.app.settings import SETTINGS


TRANSCRIPT_TOO_LONG_MESSAGE = (
    "Our conversation is getting long! Please start a new chat so I can help you fresh. "
    "Just close and reopen the chat widget."
)

ALLOWED_ROLES = frozenset({"user", "assistant"})

# Model-control delimiters (<|im_start|>, <|endoftext|>, ...) and instruction-boundary markers.
_CONTROL_TOKEN_RE = re.compile(r"<\|[^|]*\|>")
_INST_RE = re.compile(r"\[INST\]|\[/INST\]", re.IGNORECASE)
_SYS_RE = re.compile(r"<<SYS>>|<</SYS>>", re.IGNORECASE)


@dataclass
class GuardedTranscript:
    messages: list[ChatMessage] = field(default_factory=list)
    too_long: bool = False


def sanitize_content(text: str) -> str:
    text = _CONTROL_TOKEN_RE.sub("", text)
    text = _INST_RE.sub("", text)
    text = _SYS_RE.sub("", text)
    return text.strip()


def guard_transcript(
    raw: Any,  # noqa: ANN401 - untrusted request JSON
    *,
    max_messages: int | None = None,
    max_length: int | None = None,
) -> GuardedTranscript:
    """
    Validate and sanitize an incoming transcript.

    - Non-list input is a validation failure.
    - More than `max_messages` entries short-circuits with `too_long=True`; nothing is sanitized.
    - Otherwise unknown roles are dropped, content is truncated to `max_length` and stripped of
      control/injection tokens.
    """
    max_messages = SETTINGS.max_messages if max_messages is None else max_messages
    max_length = SETTINGS.max_message_length if max_length is None else max_length

    if not isinstance(raw, list):
        raise TranscriptValidationError("messages required")
    if len(raw) > max_messages:
        return GuardedTranscript(too_long=True)

    out: list[ChatMessage] = []
    for m in raw:
        if not isinstance(m, dict):
            continue
        role = m.get("role")
        if not isinstance(role, str) or role not in ALLOWED_ROLES:
            continue
        content = m.get("content")
        text = content[:max_length] if isinstance(content, str) else ""
        out.append(ChatMessage(role=role, content=sanitize_content(text)))
    return GuardedTranscript(messages=out)
