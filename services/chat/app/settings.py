from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class ChatSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Model (OpenAI-compatible chat completions with function calling)
    llm_api_key: str | None = None
    llm_base_url: str = "https://open.bigmodel.cn/api/paas/v4"
    llm_model: str = "glm-4.5-flash"
    llm_temperature: float = 0.7
    llm_max_tokens: int = 512
    # None disables the client-side timeout; payload size is bounded by the session caps instead.
    llm_timeout_s: float | None = None

    # Hotel API (places / rates / details)
    hotel_api_key: str = ""
    hotel_api_base_url: str = "https://api.liteapi.travel/v3.0"
    hotel_api_timeout_s: float = 15.0
    guest_nationality: str = "US"

    # Search policy
    rate_search_limit: int = 10
    rate_search_timeout_s: int = 8
    enrich_limit: int = 5
    default_adults: int = 2
    default_children: int = 0
    default_currency: str = "USD"

    # Session guard
    max_messages: int = 30
    max_message_length: int = 500

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"
    cors_allow_origins: list[str] = ["http://localhost:3000"]
    otel_exporter_otlp_endpoint: str | None = None


SETTINGS = ChatSettings()
