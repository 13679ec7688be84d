from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from routers.analysis_routes import get_pipeline, get_ticker_directory
from services.analysis.pipeline import AnalysisPipeline
from services.ticker_directory import TickerDirectory

router = APIRouter()


@router.get("/health")
def health(
    pipeline: AnalysisPipeline = Depends(get_pipeline),
    directory: TickerDirectory = Depends(get_ticker_directory),
) -> Dict[str, Any]:
    return {
        "status": "ok",
        "generationConfigured": pipeline.generation.configured,
        "searchConfigured": pipeline.search.configured,
        "models": list(pipeline.executor.pool.providers),
        "pacerPending": pipeline.executor.pacer.pending,
        "cachedAnalyses": len(pipeline.cache),
        "tickerDirectorySize": len(directory),
        "tickerDirectoryFallback": directory.fallback,
    }


@router.get("/metrics")
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
