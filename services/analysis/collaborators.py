"""
Boundaries between the pipeline and the outside world.

Search adapters never raise: failures are logged and surface as an empty list.
Generation adapters raise ProviderError, classified so the executor can tell
quota exhaustion from other failures.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Protocol, Sequence


@dataclass(frozen=True)
class SearchHit:
    title: str
    url: str
    snippet: str = ""
    published_date: Optional[str] = None


class SearchProvider(Protocol):
    @property
    def configured(self) -> bool: ...

    async def search(
        self,
        query: str,
        *,
        domains: Optional[Sequence[str]] = None,
        recency_days: Optional[int] = None,
    ) -> List[SearchHit]: ...


class GenerationProvider(Protocol):
    @property
    def configured(self) -> bool: ...

    async def generate(self, provider_id: str, template: str, variables: Mapping[str, Any]) -> str: ...


def format_hits_for_prompt(hits: Sequence[SearchHit]) -> str:
    if not hits:
        return "NO_RESULTS_FOUND"
    return "\n\n".join(
        f"({idx}) {hit.title}\nDate: {hit.published_date or 'Unknown'}\n{hit.url}\n{hit.snippet}".rstrip()
        for idx, hit in enumerate(hits, start=1)
    )
