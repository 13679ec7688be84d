# routers/analysis_routes.py
"""
FastAPI routes for multi-agent ticker analysis.

GET /{ticker}         -> report JSON
GET /{ticker}/stream  -> Server-Sent Events: meta, stage*, then result | error
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import SessionLocal, get_db
from middleware.rate_limit import ANALYSIS_RATE_LIMIT, limiter
from schemas.analysis_report import AnalysisReport
from services.analysis.errors import ConfigurationError, PipelineError
from services.analysis.pipeline import AnalysisPipeline
from services.analysis.progress import ProgressChannel
from services.ticker_directory import TickerDirectory
from services.watchlist_service import record_report
from utils.common_helpers import normalize_ticker

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# DEPENDENCIES / HELPERS
# ============================================================================

def get_pipeline(request: Request) -> AnalysisPipeline:
    return request.app.state.pipeline


def get_ticker_directory(request: Request) -> TickerDirectory:
    return request.app.state.ticker_directory


def format_sse(event: str, data: Any) -> str:
    payload = json.dumps(data, separators=(",", ":"), ensure_ascii=True)
    return f"event: {event}\ndata: {payload}\n\n"


def error_payload(exc: BaseException) -> Dict[str, Any]:
    if isinstance(exc, PipelineError):
        return {"message": str(exc), "stage": exc.stage, "task": exc.task_name}
    return {"message": str(exc)}


def _require_ticker(ticker: str) -> str:
    symbol = normalize_ticker(ticker)
    if not symbol or len(symbol) > 20:
        raise HTTPException(status_code=400, detail="ticker must be 1-20 characters")
    return symbol


def _display_name(directory: TickerDirectory, symbol: str, name: Optional[str]) -> Optional[str]:
    return (name or "").strip() or directory.resolve_name(symbol)


def update_watchlist(db: Session, report: AnalysisReport) -> None:
    try:
        record_report(db, report)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("watchlist_update_failed ticker=%s", report.ticker)


def _update_watchlist_in_background(task: "asyncio.Task[AnalysisReport]") -> None:
    # Stream clients may disconnect before the run settles; the watch-list
    # update still happens once it does.
    if task.cancelled() or task.exception() is not None:
        return
    db = SessionLocal()
    try:
        update_watchlist(db, task.result())
    finally:
        db.close()


# ============================================================================
# ENDPOINTS
# ============================================================================

@router.get("/{ticker}")
@limiter.limit(ANALYSIS_RATE_LIMIT)
async def get_analysis(
    request: Request,
    ticker: str,
    name: Optional[str] = Query(None, max_length=120, description="Display name used in search queries"),
    force_refresh: bool = Query(False, description="Bypass cache and recompute"),
    pipeline: AnalysisPipeline = Depends(get_pipeline),
    directory: TickerDirectory = Depends(get_ticker_directory),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """
    Run (or serve from cache) the full analysis for a ticker.

    Cached reports are returned for 30 minutes unless force_refresh=true.
    """
    symbol = _require_ticker(ticker)
    try:
        report = await pipeline.analyze(
            symbol,
            company_name=_display_name(directory, symbol, name),
            force_refresh=force_refresh,
        )
    except ConfigurationError as exc:
        logger.error("analysis_not_configured ticker=%s error=%s", symbol, exc)
        raise HTTPException(status_code=503, detail=str(exc))
    except PipelineError as exc:
        logger.warning("analysis_failed ticker=%s stage=%s task=%s", symbol, exc.stage, exc.task_name)
        raise HTTPException(status_code=502, detail=error_payload(exc))

    update_watchlist(db, report)
    logger.info("analysis_completed ticker=%s signal=%s", symbol, report.technical_analysis.signal)
    return report.to_response()


@router.get("/{ticker}/stream")
@limiter.limit(ANALYSIS_RATE_LIMIT)
async def stream_analysis(
    request: Request,
    ticker: str,
    name: Optional[str] = Query(None, max_length=120),
    force_refresh: bool = Query(False),
    pipeline: AnalysisPipeline = Depends(get_pipeline),
    directory: TickerDirectory = Depends(get_ticker_directory),
):
    symbol = _require_ticker(ticker)
    company_name = _display_name(directory, symbol, name)
    channel = ProgressChannel()
    task = asyncio.create_task(
        pipeline.analyze(symbol, company_name=company_name, observer=channel, force_refresh=force_refresh)
    )
    task.add_done_callback(_update_watchlist_in_background)

    async def event_stream():
        yield format_sse("meta", {"ticker": symbol, "companyName": company_name or symbol})
        async for event in channel:
            yield format_sse("stage", event.to_dict())
        try:
            report = await task
        except (ConfigurationError, PipelineError) as exc:
            yield format_sse("error", error_payload(exc))
            return
        yield format_sse("result", report.to_response())

    headers = {
        "Cache-Control": "no-cache",
        "X-Accel-Buffering": "no",
    }
    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=headers)
