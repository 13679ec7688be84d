from __future__ import annotations

import logging
from typing import Optional

from config.settings import AnalysisSettings
from services.gemini.generation_client import GeminiGenerationClient
from services.reddit.client import RedditClient
from services.tavily.client import TavilyClient

from .errors import ConfigurationError
from .executor import RetryingExecutor
from .pacer import Pacer
from .pipeline import AnalysisPipeline, PipelineOptions
from .provider_pool import ProviderPool
from .result_cache import ResultCache, build_redis_client

logger = logging.getLogger(__name__)


def build_pipeline(settings: Optional[AnalysisSettings] = None) -> AnalysisPipeline:
    """Construct the process-wide pipeline and its shared pacer, pool and cache."""
    s = settings or AnalysisSettings.from_env()

    try:
        pool = ProviderPool(s.model_pool)
    except ValueError as exc:
        raise ConfigurationError("GEMINI_MODEL_POOL must name at least one model") from exc

    pacer = Pacer(
        s.requests_per_minute,
        safety_margin_ms=s.pacer_margin_ms,
        action_timeout_s=s.call_timeout_s,
    )
    executor = RetryingExecutor(pacer, pool, quota_cooldown_s=s.quota_cooldown_s)
    cache = ResultCache(
        s.cache_ttl_s,
        redis_client=build_redis_client(s.redis_url),
        redis_prefix=s.redis_prefix,
    )

    reddit = RedditClient(s.reddit_client_id, s.reddit_client_secret)
    pipeline = AnalysisPipeline(
        executor=executor,
        search=TavilyClient(s.tavily_api_key, timeout_s=s.tavily_timeout_s),
        generation=GeminiGenerationClient(s.gemini_api_key, temperature=s.temperature),
        cache=cache,
        social_search=reddit if reddit.configured else None,
        options=PipelineOptions(
            market_recency_days=s.market_recency_days,
            social_recency_days=s.social_recency_days,
            social_fallback_recency_days=s.social_fallback_recency_days,
            social_domains=s.social_domains,
            max_sources=s.max_sources,
            dedupe_inflight=s.dedupe_inflight,
        ),
    )
    logger.info(
        "analysis.pipeline_ready models=%s rpm=%d interval_s=%.2f cache_ttl_s=%.0f reddit=%s redis=%s dedupe=%s",
        ",".join(pool.providers),
        s.requests_per_minute,
        pacer.min_interval_s,
        s.cache_ttl_s,
        reddit.configured,
        bool(s.redis_url),
        s.dedupe_inflight,
    )
    return pipeline
