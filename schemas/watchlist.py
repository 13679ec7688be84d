from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


def normalize_symbol(value: str) -> str:
    symbol = (value or "").strip().upper()
    if not symbol or len(symbol) > 20:
        raise ValueError("ticker must be 1-20 characters")
    return symbol


class WatchlistEntryCreate(BaseModel):
    ticker: str

    @field_validator("ticker")
    @classmethod
    def validate_ticker(cls, value: str) -> str:
        return normalize_symbol(value)


class WatchlistEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    ticker: str
    last_price: Optional[str] = None
    last_sentiment: Optional[str] = None
    added_at: datetime
