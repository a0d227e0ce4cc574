from __future__ import annotations

import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from services.chat.app.errors import StageError, TranscriptValidationError
from services.chat.app.graph import run_chat_turn
from services.chat.app.logging import bind_turn, configure_logging, logger, unbind_turn
from services.chat.app.observability import add_metrics_middleware, setup_tracing
from services.chat.app.schemas import ChatResponse, ErrorResponse
from services.chat.app.settings import SETTINGS


app = FastAPI(title="Hotel Chat API", version="0.1.0")
configure_logging(SETTINGS.log_level, service_name="chat")
setup_tracing(app, service_name="chat", otlp_endpoint=SETTINGS.otel_exporter_otlp_endpoint)
add_metrics_middleware(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=SETTINGS.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


@app.exception_handler(TranscriptValidationError)
async def _on_validation_error(request: Request, exc: TranscriptValidationError) -> JSONResponse:
    return _error(400, str(exc))


@app.exception_handler(StageError)
async def _on_stage_error(request: Request, exc: StageError) -> JSONResponse:
    logger.error("chat_turn_failed", stage=exc.stage, error=str(exc))
    return _error(500, str(exc))


@app.exception_handler(Exception)
async def _on_unhandled(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("chat_unhandled_error", error=str(exc))
    return _error(500, str(exc))


@app.get("/healthz")
async def healthz() -> dict:
    return {"ok": True}


@app.post("/chat", response_model=ChatResponse, responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}})
async def chat(request: Request) -> ChatResponse:
    start = time.perf_counter()

    # Parsed by hand: a missing or non-array `messages` is a 400 with {"error": ...}, not a 422.
    try:
        body = await request.json()
    except ValueError as e:
        raise TranscriptValidationError("messages required") from e
    if not isinstance(body, dict):
        raise TranscriptValidationError("messages required")

    raw = body.get("messages")
    bind_turn(transcript_len=len(raw) if isinstance(raw, list) else None)
    try:
        result = await run_chat_turn(raw)
        logger.info(
            "response_sent",
            elapsed_ms=int((time.perf_counter() - start) * 1000),
            hotels=len(result.hotels or []),
            options=len(result.options or []),
        )
    finally:
        unbind_turn()
    return result
