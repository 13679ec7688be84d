from __future__ import annotations

import itertools
from typing import Iterable, List, Sequence


class ProviderPool:
    """Round-robin over a fixed, ordered list of interchangeable model names."""

    def __init__(self, providers: Iterable[str]):
        cleaned: List[str] = [p.strip() for p in providers if p and p.strip()]
        if not cleaned:
            raise ValueError("provider pool must contain at least one provider")
        self._providers: Sequence[str] = tuple(cleaned)
        self._cursor = itertools.count()

    def __len__(self) -> int:
        return len(self._providers)

    @property
    def providers(self) -> Sequence[str]:
        return self._providers

    def next(self) -> str:
        return self._providers[next(self._cursor) % len(self._providers)]
