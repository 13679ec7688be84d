from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query

from routers.analysis_routes import get_ticker_directory
from services.ticker_directory import TickerDirectory

router = APIRouter()


@router.get("")
def suggest_tickers(
    q: str = Query("", max_length=40, description="Ticker prefix or part of a company name"),
    limit: int = Query(10, ge=1, le=50),
    directory: TickerDirectory = Depends(get_ticker_directory),
) -> List[Dict[str, Any]]:
    return [{"ticker": e.ticker, "name": e.name} for e in directory.suggest(q, limit)]
