# config/settings.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from dotenv import load_dotenv

load_dotenv()

DEFAULT_MODEL_POOL = "gemini-2.5-flash-lite,gemini-2.5-flash,gemini-3-flash-preview"
DEFAULT_SOCIAL_DOMAINS = "reddit.com,stocktwits.com,news.ycombinator.com"


def _csv(value: Optional[str]) -> Tuple[str, ...]:
    return tuple(p.strip() for p in (value or "").split(",") if p.strip())


def _flag(name: str, default: str = "0") -> bool:
    return (os.getenv(name, default) or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class AnalysisSettings:
    # Gemini
    gemini_api_key: str = ""
    model_pool: Tuple[str, ...] = _csv(DEFAULT_MODEL_POOL)
    temperature: float = 0.4

    # Search
    tavily_api_key: str = ""
    tavily_timeout_s: float = 30.0
    reddit_client_id: str = ""
    reddit_client_secret: str = ""

    # Pacing / retries
    requests_per_minute: int = 15
    pacer_margin_ms: int = 100
    quota_cooldown_s: float = 5.0
    call_timeout_s: float = 60.0

    # Pipeline
    cache_ttl_s: float = 1800.0
    dedupe_inflight: bool = False
    max_sources: int = 10
    market_recency_days: int = 7
    social_recency_days: int = 30
    social_fallback_recency_days: int = 90
    social_domains: Tuple[str, ...] = _csv(DEFAULT_SOCIAL_DOMAINS)

    # Storage / surface
    ticker_directory_path: str = ""
    redis_url: str = ""
    redis_prefix: str = "finagent:analysis:"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @staticmethod
    def from_env() -> "AnalysisSettings":
        return AnalysisSettings(
            gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
            model_pool=_csv(os.getenv("GEMINI_MODEL_POOL") or DEFAULT_MODEL_POOL),
            temperature=float(os.getenv("AI_TEMPERATURE", "0.4")),

            tavily_api_key=os.getenv("TAVILY_API_KEY", ""),
            tavily_timeout_s=float(os.getenv("TAVILY_TIMEOUT_SEC", "30")),
            reddit_client_id=os.getenv("REDDIT_CLIENT_ID", ""),
            reddit_client_secret=os.getenv("REDDIT_CLIENT_SECRET", ""),

            requests_per_minute=int(os.getenv("ANALYSIS_REQUESTS_PER_MINUTE", "15")),
            pacer_margin_ms=int(os.getenv("ANALYSIS_PACER_MARGIN_MS", "100")),
            quota_cooldown_s=float(os.getenv("ANALYSIS_QUOTA_COOLDOWN_S", "5")),
            call_timeout_s=float(os.getenv("ANALYSIS_CALL_TIMEOUT_S", "60")),

            cache_ttl_s=float(os.getenv("ANALYSIS_CACHE_TTL_SEC", "1800")),
            dedupe_inflight=_flag("ANALYSIS_DEDUPE_INFLIGHT"),
            max_sources=int(os.getenv("ANALYSIS_MAX_SOURCES", "10")),
            market_recency_days=int(os.getenv("MARKET_RECENCY_DAYS", "7")),
            social_recency_days=int(os.getenv("SOCIAL_RECENCY_DAYS", "30")),
            social_fallback_recency_days=int(os.getenv("SOCIAL_FALLBACK_RECENCY_DAYS", "90")),
            social_domains=_csv(os.getenv("SOCIAL_DOMAINS") or DEFAULT_SOCIAL_DOMAINS),

            ticker_directory_path=os.getenv("TICKER_DIRECTORY_PATH", ""),
            redis_url=os.getenv("REDIS_URL", ""),
            redis_prefix=os.getenv("REDIS_PREFIX", "finagent:analysis:"),
            cors_origins=list(_csv(os.getenv("CORS_ORIGINS") or "*")),
        )
