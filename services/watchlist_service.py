from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from models.watchlist import WatchlistEntry
from schemas.analysis_report import AnalysisReport
from schemas.watchlist import normalize_symbol

logger = logging.getLogger(__name__)


def list_entries(db: Session) -> List[WatchlistEntry]:
    # Most recently added first.
    return (
        db.query(WatchlistEntry)
        .order_by(WatchlistEntry.added_at.desc(), WatchlistEntry.ticker.asc())
        .all()
    )


def get_entry(db: Session, ticker: str) -> WatchlistEntry | None:
    return db.get(WatchlistEntry, normalize_symbol(ticker))


def add_entry(db: Session, ticker: str, *, seed: Optional[AnalysisReport] = None) -> WatchlistEntry:
    """
    Watch `ticker`. When a report for the same ticker is at hand, its price and
    sentiment label seed the entry.
    """
    symbol = normalize_symbol(ticker)
    if db.get(WatchlistEntry, symbol) is not None:
        raise ValueError("Ticker already in watchlist")

    entry = WatchlistEntry(ticker=symbol)
    if seed is not None and seed.ticker == symbol:
        entry.last_price = seed.current_price
        entry.last_sentiment = seed.sentiment.label
    db.add(entry)
    db.commit()
    db.refresh(entry)
    logger.info("watchlist.added ticker=%s seeded=%s", symbol, entry.last_price is not None)
    return entry


def remove_entry(db: Session, ticker: str) -> None:
    entry = get_entry(db, ticker)
    if entry is None:
        raise ValueError("Ticker not found in watchlist")
    db.delete(entry)
    db.commit()
    logger.info("watchlist.removed ticker=%s", entry.ticker)


def clear_entries(db: Session) -> int:
    removed = db.query(WatchlistEntry).delete()
    db.commit()
    logger.info("watchlist.cleared removed=%d", removed)
    return removed


def record_report(db: Session, report: AnalysisReport) -> bool:
    """Copy price and sentiment onto the entry for report.ticker. Unwatched tickers are left alone."""
    entry = db.get(WatchlistEntry, report.ticker)
    if entry is None:
        return False
    entry.last_price = report.current_price
    entry.last_sentiment = report.sentiment.label
    db.commit()
    logger.info("watchlist.updated ticker=%s price=%s sentiment=%s", entry.ticker, entry.last_price, entry.last_sentiment)
    return True
