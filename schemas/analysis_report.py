from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Signal = Literal["BUY", "SELL", "HOLD"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SourceCitation(_CamelModel):
    title: str
    url: str


class SentimentSection(_CamelModel):
    score: float = Field(ge=-1.0, le=1.0)
    label: str
    summary: str
    social_volume: Optional[List[float]] = None


class TechnicalSection(_CamelModel):
    rsi: float = Field(ge=0.0, le=100.0)
    macd: str
    signal: Signal
    trend: str


class AnalysisReport(_CamelModel):
    ticker: str
    company_name: str
    current_price: str
    price_change: str = "-"
    sentiment: SentimentSection
    technical_analysis: TechnicalSection
    memo: str
    sources: List[SourceCitation] = Field(default_factory=list)
    created_at: datetime

    def to_response(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
