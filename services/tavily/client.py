from __future__ import annotations

import asyncio
import logging
import os
import random
from datetime import timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx
from dateutil import parser

from services.analysis.collaborators import SearchHit

logger = logging.getLogger(__name__)

TAVILY_API_URL = os.getenv("TAVILY_API_URL", "https://api.tavily.com/search")

RETRY_STATUS_CODES = {429, 500, 502, 503, 504}
MAX_RETRIES = 2
DEFAULT_MAX_RESULTS = 6


class TavilyClientError(RuntimeError):
    """Raised when Tavily requests fail or are misconfigured."""


async def _backoff_sleep(attempt: int) -> None:
    await asyncio.sleep((0.6 * (2**attempt)) + random.random() * 0.3)


def _normalize_date(value: Any) -> Optional[str]:
    if not value:
        return None
    raw = str(value).strip()
    try:
        parsed = parser.parse(raw)
    except (ValueError, OverflowError):
        return raw
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).date().isoformat()


def normalize_results(payload: Any) -> List[SearchHit]:
    """Map a Tavily response body onto SearchHits, skipping anything that is not a result object."""
    items = payload.get("results") if isinstance(payload, dict) else None
    if not isinstance(items, list):
        return []
    hits: List[SearchHit] = []
    for r in items:
        if not isinstance(r, dict):
            continue
        hits.append(
            SearchHit(
                title=str(r.get("title") or "Source").strip(),
                url=str(r.get("url") or "#").strip(),
                snippet=" ".join(str(r.get("content") or r.get("snippet") or "").split()),
                published_date=_normalize_date(r.get("published_date")),
            )
        )
    return hits


class TavilyClient:
    """Search collaborator backed by the Tavily search API."""

    def __init__(
        self,
        api_key: str,
        *,
        timeout_s: float = 30.0,
        max_results: int = DEFAULT_MAX_RESULTS,
        api_url: str = TAVILY_API_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        backoff: Callable[[int], Awaitable[None]] = _backoff_sleep,
    ):
        self.api_key = (api_key or "").strip()
        self.timeout_s = timeout_s
        self.max_results = max_results
        self.api_url = api_url
        self._transport = transport
        self._backoff = backoff

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def search(
        self,
        query: str,
        *,
        domains: Optional[Sequence[str]] = None,
        recency_days: Optional[int] = None,
    ) -> List[SearchHit]:
        if not self.configured:
            return []
        try:
            payload = await self._post(self._build_body(query, domains, recency_days))
        except TavilyClientError as exc:
            logger.warning("tavily.search_failed query=%r error=%s", query, exc)
            return []
        return normalize_results(payload)

    def _build_body(
        self,
        query: str,
        domains: Optional[Sequence[str]],
        recency_days: Optional[int],
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "api_key": self.api_key,
            "query": query,
            "search_depth": "advanced",
            "max_results": int(self.max_results),
            "include_answer": False,
            "include_raw_content": False,
        }
        if domains:
            body["include_domains"] = list(domains)
        if recency_days:
            body["days"] = int(recency_days)
        return body

    async def _post(self, body: Dict[str, Any]) -> Dict[str, Any]:
        timeout = httpx.Timeout(self.timeout_s)
        headers = {"Authorization": f"Bearer {self.api_key}"}
        last_exc: Exception | None = None

        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            for attempt in range(MAX_RETRIES + 1):
                try:
                    response = await client.post(self.api_url, json=body, headers=headers)
                    if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                        await self._backoff(attempt)
                        continue
                    response.raise_for_status()
                    data = response.json()
                    return data if isinstance(data, dict) else {}
                except httpx.TimeoutException as exc:
                    last_exc = exc
                except httpx.HTTPStatusError as exc:
                    last_exc = exc
                    break
                except (httpx.HTTPError, ValueError) as exc:
                    last_exc = exc
                    break

                if attempt < MAX_RETRIES:
                    await self._backoff(attempt)

        raise TavilyClientError(f"Tavily request failed: {last_exc}")
