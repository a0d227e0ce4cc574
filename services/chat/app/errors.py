from __future__ import annotations


class TranscriptValidationError(ValueError):
    """Request body did not carry a usable `messages` array (HTTP 400)."""


class ModelClientError(RuntimeError):
    pass


class ModelConfigError(ModelClientError):
    pass


class ModelUnavailable(ModelClientError):
    pass


class ModelError(ModelClientError):
    def __init__(self, status_code: int, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"model API error: {status_code}")


class MalformedResponse(ModelClientError):
    pass


class HotelApiError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, url: str | None = None) -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(message)


class ToolExecutionError(RuntimeError):
    pass


class StageError(RuntimeError):
    """
    A failure re-labeled with the conversation stage it happened in.

    The stage prefix is what operators see in the 500 payload, e.g. "call1 failed: model API error: 503".
    """

    def __init__(self, stage: str, cause: BaseException | str) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage} failed: {cause}")
