"""
Reddit search collaborator.

App-only OAuth (client credentials) with a cached token, searching the stock
subreddits and attaching a few top comments to each post. Used for the social
harvest when REDDIT_CLIENT_ID / REDDIT_CLIENT_SECRET are set.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx

from services.analysis.collaborators import SearchHit

logger = logging.getLogger(__name__)

TOKEN_URL = "https://www.reddit.com/api/v1/access_token"
API_BASE = "https://oauth.reddit.com"
USER_AGENT = "finagent/1.0"

STOCK_SUBREDDITS = ("wallstreetbets", "stocks", "investing", "stockmarket", "options")
MAX_POSTS = 6
MAX_COMMENTS = 3
TOKEN_EXPIRY_BUFFER_S = 60.0


class RedditClientError(RuntimeError):
    pass


@dataclass
class _Token:
    value: str
    expires_at: float


def time_filter_for_days(recency_days: Optional[int]) -> str:
    if not recency_days:
        return "month"
    if recency_days <= 1:
        return "day"
    if recency_days <= 7:
        return "week"
    if recency_days <= 31:
        return "month"
    if recency_days <= 365:
        return "year"
    return "all"


class RedditClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        timeout_s: float = 15.0,
        subreddits: Sequence[str] = STOCK_SUBREDDITS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.client_id = (client_id or "").strip()
        self.client_secret = (client_secret or "").strip()
        self.timeout_s = timeout_s
        self.subreddits = tuple(subreddits)
        self._transport = transport
        self._clock = clock
        self._token: Optional[_Token] = None

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def search(
        self,
        query: str,
        *,
        domains: Optional[Sequence[str]] = None,
        recency_days: Optional[int] = None,
    ) -> List[SearchHit]:
        # `domains` does not apply: results always come from reddit.com.
        if not self.configured:
            return []
        try:
            async with self._client() as client:
                return await self._search(client, query, time_filter_for_days(recency_days))
        except (httpx.HTTPError, RedditClientError, ValueError) as exc:
            logger.warning("reddit.search_failed query=%r error=%s", query, exc)
            return []

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_s),
            transport=self._transport,
            headers={"User-Agent": USER_AGENT},
        )

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        now = self._clock()
        if self._token is not None and now < self._token.expires_at - TOKEN_EXPIRY_BUFFER_S:
            return self._token.value

        response = await client.post(
            TOKEN_URL,
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
        )
        if response.status_code != 200:
            raise RedditClientError(f"Reddit OAuth failed: {response.status_code}")
        data = response.json()
        token = data.get("access_token")
        if not token:
            raise RedditClientError("Reddit OAuth response missing access_token")
        self._token = _Token(value=token, expires_at=now + float(data.get("expires_in") or 3600))
        return token

    async def _get(self, client: httpx.AsyncClient, path: str, params: Dict[str, Any]) -> Any:
        token = await self._access_token(client)
        response = await client.get(
            f"{API_BASE}{path}",
            params=params,
            headers={"Authorization": f"Bearer {token}"},
        )
        response.raise_for_status()
        return response.json()

    async def _search(self, client: httpx.AsyncClient, query: str, time_filter: str) -> List[SearchHit]:
        data = await self._get(
            client,
            f"/r/{'+'.join(self.subreddits)}/search",
            {"q": query, "restrict_sr": "on", "sort": "relevance", "t": time_filter, "limit": 10},
        )
        children = (data.get("data") or {}).get("children") or [] if isinstance(data, dict) else []
        posts = [c.get("data") or {} for c in children if isinstance(c, dict)][:MAX_POSTS]
        comments = await asyncio.gather(*(self._top_comments(client, p) for p in posts))
        return [self._to_hit(p, c) for p, c in zip(posts, comments)]

    async def _top_comments(self, client: httpx.AsyncClient, post: Dict[str, Any]) -> List[str]:
        permalink = post.get("permalink")
        if not permalink:
            return []
        try:
            data = await self._get(client, permalink.rstrip("/"), {"limit": 5, "sort": "top"})
        except (httpx.HTTPError, RedditClientError, ValueError) as exc:
            logger.debug("reddit.comments_failed permalink=%s error=%s", permalink, exc)
            return []
        if not isinstance(data, list) or len(data) < 2:
            return []
        out: List[str] = []
        for c in (data[1].get("data") or {}).get("children") or []:
            body = (c.get("data") or {}).get("body") or ""
            if c.get("kind") == "t1" and len(body) > 20:
                out.append(body[:200])
            if len(out) >= MAX_COMMENTS:
                break
        return out

    @staticmethod
    def _to_hit(post: Dict[str, Any], comments: List[str]) -> SearchHit:
        title = str(post.get("title") or "Reddit post").strip()
        body = str(post.get("selftext") or "")[:300] or title
        snippet = f"[r/{post.get('subreddit', '')}] score={post.get('score', 0)} {body}"
        if comments:
            snippet += "\nTop comments:\n" + "\n".join(f'  - "{c}"' for c in comments)
        created = post.get("created_utc")
        published = (
            datetime.fromtimestamp(float(created), tz=timezone.utc).date().isoformat() if created else None
        )
        return SearchHit(
            title=title,
            url=f"https://reddit.com{post.get('permalink', '')}",
            snippet=snippet,
            published_date=published,
        )
