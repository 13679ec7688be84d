# services/analysis/result_cache.py
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import redis

from schemas.analysis_report import AnalysisReport

logger = logging.getLogger(__name__)

DEFAULT_TTL_SEC = 60 * 30


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: AnalysisReport
    created_at: float


def normalize_key(key: str) -> str:
    return (key or "").strip().upper()


class ResultCache:
    """
    Whole-analysis cache keyed by ticker.

    L1 is an in-process map checked lazily on read (no sweeper, no size bound).
    L2 is an optional shared Redis; Redis errors are logged and never fail a request.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SEC,
        *,
        clock: Callable[[], float] = time.time,
        redis_client: Any = None,
        redis_prefix: str = "finagent:analysis:",
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._redis = redis_client
        self._redis_prefix = redis_prefix
        self._entries: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _fresh(self, created_at: float) -> bool:
        return self._clock() - created_at < self.ttl_seconds

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        k = normalize_key(key)
        if not k:
            return None

        entry = self._entries.get(k)
        if entry is not None:
            if self._fresh(entry.created_at):
                return entry
            self._entries.pop(k, None)

        entry = self._redis_get(k)
        if entry is not None and self._fresh(entry.created_at):
            self._entries[k] = entry
            return entry
        return None

    def get(self, key: str) -> Optional[AnalysisReport]:
        entry = self.get_entry(key)
        return entry.value if entry else None

    def set(self, key: str, value: AnalysisReport) -> None:
        k = normalize_key(key)
        if not k:
            return
        entry = CacheEntry(key=k, value=value, created_at=self._clock())
        self._entries[k] = entry
        self._redis_set(entry)

    # ---- L2 ----

    def _redis_key(self, k: str) -> str:
        return f"{self._redis_prefix}{k}"

    def _redis_get(self, k: str) -> Optional[CacheEntry]:
        if self._redis is None:
            return None
        try:
            raw = self._redis.get(self._redis_key(k))
            if not raw:
                return None
            payload = json.loads(raw)
            return CacheEntry(
                key=k,
                value=AnalysisReport.model_validate(payload["report"]),
                created_at=float(payload["created_at"]),
            )
        except Exception as exc:
            logger.warning("result_cache.redis_get_failed key=%s error=%s", k, exc)
            return None

    def _redis_set(self, entry: CacheEntry) -> None:
        if self._redis is None:
            return
        payload = {
            "created_at": entry.created_at,
            "report": entry.value.model_dump(mode="json"),
        }
        try:
            self._redis.setex(
                self._redis_key(entry.key),
                int(self.ttl_seconds),
                json.dumps(payload, separators=(",", ":")),
            )
        except Exception as exc:
            logger.warning("result_cache.redis_set_failed key=%s error=%s", entry.key, exc)


def build_redis_client(url: Optional[str]):
    """Lazy Redis client from a URL. Returns None when not configured or unreachable."""
    if not url:
        return None
    try:
        return redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=2,
            socket_connect_timeout=2,
        )
    except Exception as exc:
        logger.warning("result_cache.redis_unavailable error=%s", exc)
        return None
