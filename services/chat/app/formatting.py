from __future__ import annotations

import re
from dataclasses import dataclass


_OPTIONS_RE = re.compile(r"\[OPTIONS:\s*(.+?)\]\s*$")

_MARKDOWN_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"#{1,6}\s+"), ""),
    (re.compile(r"\*\*(.+?)\*\*"), r"\1"),
    (re.compile(r"\*(.+?)\*"), r"\1"),
    (re.compile(r"__(.+?)__"), r"\1"),
    # Single underscores only count as emphasis at word edges, so snake_case survives.
    (re.compile(r"(?<!\w)_(.+?)_(?!\w)"), r"\1"),
    (re.compile(r"`(.+?)`"), r"\1"),
    (re.compile(r"^\s*[-*]\s+", re.MULTILINE), "• "),
    (re.compile(r"^\s*\d+\.\s+", re.MULTILINE), "• "),
]


@dataclass
class FormattedReply:
    content: str
    options: list[str] | None = None


def strip_markdown(text: str) -> str:
    for pattern, repl in _MARKDOWN_RULES:
        text = pattern.sub(repl, text)
    return text.strip()


def format_reply(text: str) -> FormattedReply:
    """
    Plain-text the model reply and lift a trailing `[OPTIONS: a | b]` directive into `options`.

    The directive is removed from `content` even when it yields no usable entries.
    """
    m = _OPTIONS_RE.search(text)
    if not m:
        return FormattedReply(content=strip_markdown(text))
    options = [o.strip() for o in m.group(1).split("|")]
    options = [o for o in options if o]
    content = strip_markdown(text[: m.start()].strip())
    return FormattedReply(content=content, options=options or None)
