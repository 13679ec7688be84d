# main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from config.logging_config import configure_logging
from config.settings import AnalysisSettings
from database import init_db
from middleware.rate_limit import limiter, rate_limit_exceeded_handler
from middleware.request_logging import RequestLoggingMiddleware
from routers.analysis_routes import router as analysis_router
from routers.ops_routes import router as ops_router
from routers.ticker_routes import router as ticker_router
from routers.watchlist_routes import router as watchlist_router
from services.analysis.factory import build_pipeline
from services.ticker_directory import TickerDirectory

configure_logging()
logger = logging.getLogger(__name__)

settings = AnalysisSettings.from_env()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Pacer, provider pool and cache are process-wide; every request shares them.
    init_db()
    app.state.settings = settings
    app.state.pipeline = build_pipeline(settings)
    app.state.ticker_directory = TickerDirectory.load(settings.ticker_directory_path)
    logger.info("app.startup tickers=%d", len(app.state.ticker_directory))
    yield
    logger.info("app.shutdown")


app = FastAPI(title="finagent", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials="*" not in settings.cors_origins,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include routers
app.include_router(analysis_router, prefix="/api/analysis")
app.include_router(watchlist_router, prefix="/api/watchlist")
app.include_router(ticker_router, prefix="/api/tickers")
app.include_router(ops_router)
