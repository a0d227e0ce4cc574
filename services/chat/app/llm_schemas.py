from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class LenientModel(BaseModel):
    # Providers add fields freely (reasoning_content, usage, ...); only the ones used here are typed.
    model_config = ConfigDict(extra="ignore")


class ToolCallFunction(LenientModel):
    name: str
    # Usually a JSON string; some providers send an already-decoded object.
    arguments: str | dict[str, Any] | None = None


class ToolCall(LenientModel):
    id: str = ""
    type: Literal["function"] = "function"
    function: ToolCallFunction


class AssistantMessage(LenientModel):
    role: str = "assistant"
    content: str | None = None
    tool_calls: list[ToolCall] | None = None


class Choice(LenientModel):
    index: int = 0
    message: AssistantMessage
    finish_reason: str | None = None


class ChatCompletion(LenientModel):
    id: str | None = None
    choices: list[Choice] = Field(default_factory=list)

    def first_message(self) -> AssistantMessage | None:
        return self.choices[0].message if self.choices else None
