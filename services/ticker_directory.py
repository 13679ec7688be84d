# services/ticker_directory.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List, Optional

from utils.common_helpers import normalize_ticker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TickerDirectoryEntry:
    ticker: str
    name: str


FALLBACK_TICKERS: List[TickerDirectoryEntry] = [
    TickerDirectoryEntry(t, n)
    for t, n in (
        ("AAPL", "Apple Inc."),
        ("MSFT", "Microsoft Corporation"),
        ("GOOGL", "Alphabet Inc."),
        ("AMZN", "Amazon.com Inc."),
        ("NVDA", "NVIDIA Corporation"),
        ("TSLA", "Tesla Inc."),
        ("META", "Meta Platforms Inc."),
        ("BRK.B", "Berkshire Hathaway"),
        ("V", "Visa Inc."),
        ("JNJ", "Johnson & Johnson"),
        ("WMT", "Walmart Inc."),
        ("JPM", "JPMorgan Chase & Co."),
        ("MA", "Mastercard Inc."),
        ("PG", "Procter & Gamble"),
        ("UNH", "UnitedHealth Group"),
        ("HD", "Home Depot Inc."),
        ("BAC", "Bank of America"),
        ("DIS", "Walt Disney Co."),
        ("GME", "GameStop Corp."),
        ("AMC", "AMC Entertainment"),
        ("PLTR", "Palantir Technologies"),
        ("AMD", "Advanced Micro Devices"),
        ("NFLX", "Netflix Inc."),
        ("PYPL", "PayPal Holdings"),
        ("ADBE", "Adobe Inc."),
        ("CRM", "Salesforce Inc."),
        ("INTC", "Intel Corporation"),
        ("CMCSA", "Comcast Corporation"),
        ("PFE", "Pfizer Inc."),
        ("PEP", "PepsiCo Inc."),
        ("COST", "Costco Wholesale"),
        ("AVGO", "Broadcom Inc."),
        ("T", "AT&T Inc."),
        ("XOM", "Exxon Mobil Corp."),
        ("CVX", "Chevron Corporation"),
        ("ABBV", "AbbVie Inc."),
        ("NKE", "NIKE Inc."),
        ("KO", "Coca-Cola Company"),
        ("MRK", "Merck & Co. Inc."),
        ("ORCL", "Oracle Corporation"),
    )
]


def normalize_entries(data: Any) -> List[TickerDirectoryEntry]:
    """Accepts `ticker|symbol` and `name|company` keys; drops rows without a ticker."""
    if not isinstance(data, list):
        raise ValueError("ticker directory must be a JSON list")
    out: List[TickerDirectoryEntry] = []
    for row in data:
        if not isinstance(row, dict):
            continue
        ticker = normalize_ticker(str(row.get("ticker") or row.get("symbol") or ""))
        if not ticker:
            continue
        name = str(row.get("name") or row.get("company") or ticker).strip()
        out.append(TickerDirectoryEntry(ticker=ticker, name=name))
    return out


class TickerDirectory:
    def __init__(self, entries: Iterable[TickerDirectoryEntry], *, fallback: bool = False):
        self.entries: List[TickerDirectoryEntry] = list(entries)
        self.fallback = fallback
        self._by_ticker = {e.ticker: e for e in self.entries}

    def __len__(self) -> int:
        return len(self.entries)

    @classmethod
    def load(cls, path: Optional[str]) -> "TickerDirectory":
        if not path:
            logger.info("ticker_directory.fallback reason=no_path count=%d", len(FALLBACK_TICKERS))
            return cls(FALLBACK_TICKERS, fallback=True)
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
            entries = normalize_entries(data)
        except (OSError, ValueError) as exc:
            logger.warning(
                "ticker_directory.fallback path=%s error=%s count=%d", path, exc, len(FALLBACK_TICKERS)
            )
            return cls(FALLBACK_TICKERS, fallback=True)
        logger.info("ticker_directory.loaded path=%s count=%d", path, len(entries))
        return cls(entries)

    def resolve_name(self, ticker: str) -> Optional[str]:
        entry = self._by_ticker.get(normalize_ticker(ticker))
        return entry.name if entry else None

    def suggest(self, query: str, limit: int = 10) -> List[TickerDirectoryEntry]:
        """Tickers starting with `query` or names containing it, case-insensitively."""
        q = (query or "").strip().lower()
        if not q or limit <= 0:
            return []
        out: List[TickerDirectoryEntry] = []
        for e in self.entries:
            if e.ticker.lower().startswith(q) or q in e.name.lower():
                out.append(e)
                if len(out) >= limit:
                    break
        return out
