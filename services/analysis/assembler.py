"""
Result assembler: turns raw agent output into fragments and fragments into a report.

Parsing never raises. Anything that cannot be read as the expected JSON object
becomes the agent's safe default and is logged as a warning.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from schemas.analysis_report import (
    AnalysisReport,
    SentimentSection,
    SourceCitation,
    TechnicalSection,
)
from utils.common_helpers import clamp, parse_json_strict

from .collaborators import SearchHit

logger = logging.getLogger(__name__)

DEFAULT_MAX_SOURCES = 10
NO_QUOTES = "NO_QUOTES_FOUND"
WEEKS_OF_VOLUME = 8

SentimentLabel = Literal["Bullish", "Bearish", "Neutral"]
Signal = Literal["BUY", "SELL", "HOLD"]

_LABELS = {"bullish": "Bullish", "bearish": "Bearish", "neutral": "Neutral"}
_SIGNALS = {"buy": "BUY", "sell": "SELL", "hold": "HOLD"}


def _require_number(v: Any) -> float:
    if isinstance(v, bool):
        raise ValueError("boolean is not a number")
    try:
        number = float(v)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"not a number: {v!r}") from exc
    if not math.isfinite(number):
        raise ValueError(f"not a finite number: {v!r}")
    return number


def label_for_score(score: float) -> str:
    if score > 0.2:
        return "Bullish"
    if score < -0.2:
        return "Bearish"
    return "Neutral"


# ============================================================================
# FRAGMENTS
# ============================================================================

class Quote(BaseModel):
    text: str = Field(min_length=1)
    url: str = ""

    @field_validator("text", "url", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()


class SocialFragment(BaseModel):
    sentiment_score: float = Field(ge=-1.0, le=1.0)
    label: SentimentLabel = "Neutral"
    summary: str = ""
    quotes: List[Quote] = Field(default_factory=list)
    social_volume_weekly: Optional[List[float]] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            raise ValueError("social output must be a JSON object")
        data = dict(data)
        score = clamp(_require_number(data.get("sentiment_score")), -1.0, 1.0)
        data["sentiment_score"] = score

        raw_label = str(data.get("label") or "").strip().lower()
        data["label"] = _LABELS.get(raw_label) or label_for_score(score)

        data["summary"] = str(data.get("summary") or "").strip()

        quotes = data.get("quotes")
        kept: List[Dict[str, Any]] = []
        if isinstance(quotes, list):
            for q in quotes:
                if isinstance(q, dict) and str(q.get("text") or "").strip():
                    kept.append({"text": q.get("text"), "url": q.get("url") or ""})
        data["quotes"] = kept

        data["social_volume_weekly"] = _weekly_series(data.get("social_volume_weekly"))
        return data

    @classmethod
    def safe_default(cls) -> "SocialFragment":
        return cls(
            sentiment_score=0.0,
            label="Neutral",
            summary="Failed to parse social sentiment analysis",
            quotes=[],
            social_volume_weekly=[0.0] * WEEKS_OF_VOLUME,
        )


def _weekly_series(v: Any) -> Optional[List[float]]:
    if not isinstance(v, list) or len(v) != WEEKS_OF_VOLUME:
        return None
    try:
        return [clamp(_require_number(x), 0.0, 100.0) for x in v]
    except ValueError:
        return None


class TechnicalFragment(BaseModel):
    rsi: float = Field(ge=0.0, le=100.0)
    macd: str = "Neutral"
    signal: Signal = "HOLD"
    trend: str = "Ranges"
    reasoning: str = ""
    current_price: str = "Unknown"

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            raise ValueError("technical output must be a JSON object")
        data = dict(data)
        data["rsi"] = clamp(_require_number(data.get("rsi")), 0.0, 100.0)
        data["signal"] = _SIGNALS.get(str(data.get("signal") or "").strip().lower(), "HOLD")
        for field, fallback in (("macd", "Neutral"), ("trend", "Ranges"), ("current_price", "Unknown")):
            text = str(data.get(field) or "").strip()
            data[field] = text or fallback
        data["reasoning"] = str(data.get("reasoning") or "").strip()
        return data

    @classmethod
    def safe_default(cls) -> "TechnicalFragment":
        return cls(
            rsi=50.0,
            macd="Neutral",
            signal="HOLD",
            trend="Ranges",
            reasoning="Failed to parse technical analysis",
            current_price="Unknown",
        )


# ============================================================================
# PARSING
# ============================================================================

def parse_social(raw: Any, *, log_context: str = "") -> SocialFragment:
    try:
        return SocialFragment.model_validate(parse_json_strict(raw))
    except (ValueError, ValidationError) as exc:
        logger.warning("%sparse-fallback agent=social error=%s", log_context, exc)
        return SocialFragment.safe_default()


def parse_technical(raw: Any, *, log_context: str = "") -> TechnicalFragment:
    try:
        return TechnicalFragment.model_validate(parse_json_strict(raw))
    except (ValueError, ValidationError) as exc:
        logger.warning("%sparse-fallback agent=technical error=%s", log_context, exc)
        return TechnicalFragment.safe_default()


# ============================================================================
# ASSEMBLY
# ============================================================================

def format_quotes(fragment: SocialFragment) -> str:
    if not fragment.quotes:
        return NO_QUOTES
    return "\n".join(f'> "{q.text}" - [Reference]({q.url})' for q in fragment.quotes)


def narrator_variables(social: SocialFragment, technical: TechnicalFragment) -> Dict[str, Any]:
    """Synthesis inputs. Only fragment content flows into the memo prompt."""
    return {
        "social_score": social.sentiment_score,
        "social_label": social.label,
        "social_summary": social.summary,
        "technical_signal": technical.signal,
        "technical_reasoning": technical.reasoning,
        "social_quotes": format_quotes(social),
    }


def collect_sources(
    market: Sequence[SearchHit],
    social: Sequence[SearchHit],
    limit: int = DEFAULT_MAX_SOURCES,
) -> List[SourceCitation]:
    # Market hits first, then social, in discovery order; duplicates are kept.
    hits = [*market, *social][: max(0, limit)]
    return [SourceCitation(title=h.title, url=h.url) for h in hits]


def build_report(
    *,
    ticker: str,
    company_name: str,
    social: SocialFragment,
    technical: TechnicalFragment,
    memo: str,
    sources: Sequence[SourceCitation],
    created_at: Optional[datetime] = None,
) -> AnalysisReport:
    return AnalysisReport(
        ticker=ticker,
        company_name=company_name,
        current_price=technical.current_price or "Unknown",
        price_change="-",
        sentiment=SentimentSection(
            score=social.sentiment_score,
            label=social.label,
            summary=social.summary,
            social_volume=social.social_volume_weekly,
        ),
        technical_analysis=TechnicalSection(
            rsi=technical.rsi,
            macd=technical.macd,
            signal=technical.signal,
            trend=technical.trend,
        ),
        memo=memo,
        sources=list(sources),
        created_at=created_at or datetime.now(timezone.utc),
    )
