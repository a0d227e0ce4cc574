from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CamelModel(BaseModel):
    # Wire format is camelCase (hotelId, minRate, ...); Python attributes stay snake_case.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


Role = Literal["user", "assistant"]


class ChatMessage(StrictModel):
    role: Role
    content: str


class HotelSummary(CamelModel):
    hotel_id: str
    name: str
    star_rating: float | None = None
    photo: str = ""
    min_rate: float | None = None
    currency: str
    review_score: float | None = None
    city: str = ""
    country: str = ""
    cancellation_policy_tag: str | None = None


class ChatResponse(CamelModel):
    content: str
    hotels: list[HotelSummary] | None = None
    options: list[str] | None = None


class ErrorResponse(StrictModel):
    error: str
