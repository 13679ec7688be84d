from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from database import get_db
from routers.analysis_routes import get_pipeline
from schemas.watchlist import WatchlistEntryCreate, WatchlistEntryOut, normalize_symbol
from services.analysis.pipeline import AnalysisPipeline
from services.watchlist_service import add_entry, clear_entries, list_entries, remove_entry

router = APIRouter()


@router.get("", response_model=List[WatchlistEntryOut], response_model_by_alias=True)
def get_watchlist(db: Session = Depends(get_db)):
    return list_entries(db)


@router.post(
    "",
    response_model=WatchlistEntryOut,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
def add_to_watchlist(
    payload: WatchlistEntryCreate,
    db: Session = Depends(get_db),
    pipeline: AnalysisPipeline = Depends(get_pipeline),
):
    # A fresh cached report (if any) provides the initial price and sentiment.
    seed = pipeline.cache.get(payload.ticker)
    try:
        return add_entry(db, payload.ticker, seed=seed)
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.delete("/{ticker}", status_code=status.HTTP_204_NO_CONTENT)
def delete_from_watchlist(ticker: str, db: Session = Depends(get_db)):
    try:
        remove_entry(db, normalize_symbol(ticker))
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("")
def clear_watchlist(db: Session = Depends(get_db)) -> Dict[str, Any]:
    return {"removed": clear_entries(db)}
