"""
One conversation turn as a small state machine:

GUARD -> MODEL_TURN_1 -> (FORMAT | TOOL_TURN -> MODEL_TURN_2 -> FORMAT) -> END

Every failure leaves the graph as a StageError naming the stage, except a failed second model call,
which degrades to a generic acknowledgement and keeps the hotels already found.
"""

from __future__ import annotations

import json
from typing import Any, Literal, TypedDict

from langgraph.graph import END, StateGraph

from services.chat.app.errors import ModelClientError, StageError
from services.chat.app.formatting import format_reply
from services.chat.app.guard import TRANSCRIPT_TOO_LONG_MESSAGE, guard_transcript
from services.chat.app.llm_schemas import AssistantMessage, ToolCall
from services.chat.app.logging import logger
from services.chat.app.model import ModelClient
from services.chat.app.observability import FALLBACK_TOTAL
from services.chat.app.prompt import CHAT_TOOLS, system_prompt
from services.chat.app.schemas import ChatResponse, HotelSummary
from services.chat.app.search_tool import execute_tool


GENERIC_ACK = "Here are the hotels I found!"


class ChatState(TypedDict, total=False):
    # Input
    raw_messages: Any
    # System prompt + sanitized transcript, as sent to the model.
    messages: list[dict[str, Any]]
    too_long: bool
    # Tool turn
    assistant_message: dict[str, Any]
    tool_call: dict[str, Any]
    tool_result: str
    hotels: list[HotelSummary]
    # Output
    reply_text: str
    degraded: bool
    content: str
    options: list[str] | None
    stage: str


def _tool_call_for_replay(tc: ToolCall) -> dict[str, Any]:
    args = tc.function.arguments
    if not isinstance(args, str):
        args = json.dumps(args or {})
    return {"id": tc.id, "type": tc.type, "function": {"name": tc.function.name, "arguments": args}}


def _assistant_replay_message(msg: AssistantMessage) -> dict[str, Any]:
    return {
        "role": "assistant",
        "content": msg.content or "",
        "tool_calls": [_tool_call_for_replay(tc) for tc in (msg.tool_calls or [])],
    }


async def _guard(state: ChatState) -> ChatState:
    state["stage"] = "GUARD"
    guarded = guard_transcript(state.get("raw_messages"))
    if guarded.too_long:
        FALLBACK_TOTAL.labels("transcript_too_long").inc()
        logger.info("transcript_too_long", messages=len(state.get("raw_messages") or []))
        state["too_long"] = True
        state["content"] = TRANSCRIPT_TOO_LONG_MESSAGE
        state["options"] = None
        return state
    state["messages"] = [{"role": "system", "content": system_prompt()}] + [
        m.model_dump() for m in guarded.messages
    ]
    return state


def _route_after_guard(state: ChatState) -> Literal["MODEL_TURN_1", "END"]:
    return "END" if state.get("too_long") else "MODEL_TURN_1"


async def _model_turn_1(state: ChatState) -> ChatState:
    state["stage"] = "MODEL_TURN_1"
    try:
        completion = await ModelClient().complete(state["messages"], tools=CHAT_TOOLS, call="call1")
    except ModelClientError as e:
        raise StageError("call1", e) from e

    msg = completion.first_message()
    if msg is None:
        raise StageError("call1", "no response from model")

    if msg.tool_calls:
        if len(msg.tool_calls) > 1:
            # Single tool call per turn: the rest are ignored.
            logger.info("extra_tool_calls_ignored", tool_calls=len(msg.tool_calls))
        state["tool_call"] = msg.tool_calls[0].model_dump()
        state["assistant_message"] = _assistant_replay_message(msg)
    else:
        state["reply_text"] = msg.content or ""
    return state


def _route_after_model_turn_1(state: ChatState) -> Literal["TOOL_TURN", "FORMAT"]:
    return "TOOL_TURN" if state.get("tool_call") else "FORMAT"


async def _tool_turn(state: ChatState) -> ChatState:
    state["stage"] = "TOOL_TURN"
    tc = ToolCall.model_validate(state["tool_call"])
    try:
        result = await execute_tool(tc.function.name, tc.function.arguments)
    except Exception as e:  # noqa: BLE001
        logger.error("tool_exec_failed", tool_name=tc.function.name, error=str(e))
        raise StageError("tool-exec", e) from e
    state["tool_result"] = result.result_text
    state["hotels"] = result.hotels
    return state


async def _model_turn_2(state: ChatState) -> ChatState:
    state["stage"] = "MODEL_TURN_2"
    tc = ToolCall.model_validate(state["tool_call"])
    messages = [
        *state["messages"],
        state["assistant_message"],
        {"role": "tool", "content": state.get("tool_result") or "", "tool_call_id": tc.id},
    ]
    try:
        completion = await ModelClient().complete(messages, tools=None, call="call2")
    except ModelClientError as e:
        # Never lose hotels already fetched because the wording call failed.
        FALLBACK_TOTAL.labels("call2_degraded").inc()
        logger.warning("chat_call2_degraded", error=str(e), hotels=len(state.get("hotels") or []))
        state["degraded"] = True
        state["reply_text"] = GENERIC_ACK
        return state

    msg = completion.first_message()
    state["reply_text"] = (msg.content if msg else None) or GENERIC_ACK
    return state


async def _format(state: ChatState) -> ChatState:
    state["stage"] = "FORMAT"
    formatted = format_reply(state.get("reply_text") or "")
    state["content"] = formatted.content
    state["options"] = formatted.options
    return state


def build_graph() -> Any:
    sg: StateGraph = StateGraph(ChatState)
    sg.add_node("GUARD", _guard)
    sg.add_node("MODEL_TURN_1", _model_turn_1)
    sg.add_node("TOOL_TURN", _tool_turn)
    sg.add_node("MODEL_TURN_2", _model_turn_2)
    sg.add_node("FORMAT", _format)

    sg.set_entry_point("GUARD")

    sg.add_conditional_edges("GUARD", _route_after_guard, {"MODEL_TURN_1": "MODEL_TURN_1", "END": END})
    sg.add_conditional_edges(
        "MODEL_TURN_1",
        _route_after_model_turn_1,
        {"TOOL_TURN": "TOOL_TURN", "FORMAT": "FORMAT"},
    )
    sg.add_edge("TOOL_TURN", "MODEL_TURN_2")
    sg.add_edge("MODEL_TURN_2", "FORMAT")
    sg.add_edge("FORMAT", END)

    return sg.compile()


GRAPH = build_graph()


async def run_chat_turn(raw_messages: Any) -> ChatResponse:  # noqa: ANN401 - untrusted request JSON
    out = await GRAPH.ainvoke({"raw_messages": raw_messages})
    hotels = out.get("hotels") or []
    return ChatResponse(
        content=out.get("content") or "",
        hotels=hotels or None,
        options=out.get("options"),
    )
