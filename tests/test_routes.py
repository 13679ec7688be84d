import json
import unittest
from unittest.mock import patch

from fastapi import FastAPI
from fastapi.testclient import TestClient
from slowapi.errors import RateLimitExceeded
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from database import Base, get_db
from middleware.rate_limit import limiter, rate_limit_exceeded_handler
from middleware.request_logging import RequestLoggingMiddleware
from routers.analysis_routes import router as analysis_router
from routers.ops_routes import router as ops_router
from routers.ticker_routes import router as ticker_router
from routers.watchlist_routes import router as watchlist_router
from services import watchlist_service
from services.ticker_directory import TickerDirectory, TickerDirectoryEntry
from fakes import FakeGeneration, FakeSearch, build_test_pipeline, hits


def parse_sse(text: str):
    events = []
    for block in text.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


class RouteTestCase(unittest.TestCase):
    def setUp(self) -> None:
        engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
        Base.metadata.create_all(bind=engine)
        self.Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

        self.search = FakeSearch(market=hits("market", 3), social_by_days={30: hits("social", 2)})
        self.generation = FakeGeneration()
        self.pipeline = build_test_pipeline(search=self.search, generation=self.generation)

        app = FastAPI()
        app.state.limiter = limiter
        app.state.pipeline = self.pipeline
        app.state.ticker_directory = TickerDirectory([TickerDirectoryEntry("ACME", "Acme Corp")])
        app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
        app.add_middleware(RequestLoggingMiddleware)
        app.include_router(analysis_router, prefix="/api/analysis")
        app.include_router(watchlist_router, prefix="/api/watchlist")
        app.include_router(ticker_router, prefix="/api/tickers")
        app.include_router(ops_router)

        def override_get_db():
            db = self.Session()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db

        limiter.enabled = False
        self.addCleanup(setattr, limiter, "enabled", True)
        session_patch = patch("routers.analysis_routes.SessionLocal", self.Session)
        session_patch.start()
        self.addCleanup(session_patch.stop)

        self.client = TestClient(app)
        self.client.__enter__()
        self.addCleanup(self.client.__exit__, None, None, None)

    def watch(self, ticker: str) -> None:
        db = self.Session()
        try:
            watchlist_service.add_entry(db, ticker)
        finally:
            db.close()

    def watched(self, ticker: str):
        db = self.Session()
        try:
            entry = watchlist_service.get_entry(db, ticker)
            return (entry.last_price, entry.last_sentiment) if entry else None
        finally:
            db.close()


class AnalysisRouteTests(RouteTestCase):
    def test_report_json(self) -> None:
        resp = self.client.get("/api/analysis/acme")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["ticker"], "ACME")
        self.assertEqual(body["companyName"], "Acme Corp")
        self.assertEqual(body["technicalAnalysis"]["signal"], "BUY")
        self.assertEqual(len(body["sources"]), 5)
        self.assertIn("X-Request-ID", resp.headers)

    def test_name_query_overrides_directory(self) -> None:
        resp = self.client.get("/api/analysis/ZETA", params={"name": "Zeta Labs"})
        self.assertEqual(resp.json()["companyName"], "Zeta Labs")
        self.assertIn("ZETA Zeta Labs", self.search.calls[0][0])

    def test_analysis_updates_watched_ticker(self) -> None:
        self.watch("ACME")
        self.client.get("/api/analysis/ACME")
        self.assertEqual(self.watched("ACME"), ("$123.45", "Bullish"))

    def test_force_refresh(self) -> None:
        self.client.get("/api/analysis/ACME")
        self.client.get("/api/analysis/ACME")
        self.assertEqual(len(self.generation.calls_for("narrator")), 1)
        self.client.get("/api/analysis/ACME", params={"force_refresh": "true"})
        self.assertEqual(len(self.generation.calls_for("narrator")), 2)

    def test_pipeline_failure_is_502_with_stage(self) -> None:
        self.generation.responses["technical"] = RuntimeError("all down")
        resp = self.client.get("/api/analysis/ACME")
        self.assertEqual(resp.status_code, 502)
        detail = resp.json()["detail"]
        self.assertEqual(detail["stage"], "ANALYZE_TECHNICAL")
        self.assertEqual(detail["task"], "technical-analysis")

    def test_missing_configuration_is_503(self) -> None:
        self.generation._configured = False
        resp = self.client.get("/api/analysis/ACME")
        self.assertEqual(resp.status_code, 503)
        self.assertIn("GEMINI_API_KEY", resp.json()["detail"])

    def test_overlong_ticker_is_400(self) -> None:
        resp = self.client.get("/api/analysis/" + "X" * 21)
        self.assertEqual(resp.status_code, 400)

    def test_stream_emits_stages_then_result(self) -> None:
        self.watch("ACME")
        resp = self.client.get("/api/analysis/ACME/stream")
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.headers["content-type"].startswith("text/event-stream"))

        events = parse_sse(resp.text)
        names = [name for name, _ in events]
        self.assertEqual(names[0], "meta")
        self.assertEqual(names[-1], "result")
        self.assertEqual(events[0][1], {"ticker": "ACME", "companyName": "Acme Corp"})
        stages = [data["stage"] for name, data in events if name == "stage"]
        self.assertEqual(stages, ["HARVEST_MARKET", "HARVEST_SOCIAL", "ANALYZE_SOCIAL", "ANALYZE_TECHNICAL", "SYNTHESIZE"])
        self.assertEqual(events[-1][1]["technicalAnalysis"]["signal"], "BUY")
        self.assertEqual(self.watched("ACME"), ("$123.45", "Bullish"))

    def test_stream_reports_failure(self) -> None:
        self.generation.responses["narrator"] = RuntimeError("narrator down")
        events = parse_sse(self.client.get("/api/analysis/ACME/stream").text)
        name, data = events[-1]
        self.assertEqual(name, "error")
        self.assertEqual(data["stage"], "SYNTHESIZE")
        failed = [d for n, d in events if n == "stage" and d["status"] == "failed"]
        self.assertEqual([d["stage"] for d in failed], ["SYNTHESIZE"])


class WatchlistRouteTests(RouteTestCase):
    def test_add_list_delete(self) -> None:
        resp = self.client.post("/api/watchlist", json={"ticker": "acme"})
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.json()["ticker"], "ACME")
        self.assertIsNone(resp.json()["lastPrice"])

        self.assertEqual(self.client.post("/api/watchlist", json={"ticker": "ACME"}).status_code, 409)
        self.assertEqual([e["ticker"] for e in self.client.get("/api/watchlist").json()], ["ACME"])

        self.assertEqual(self.client.delete("/api/watchlist/acme").status_code, 204)
        self.assertEqual(self.client.delete("/api/watchlist/acme").status_code, 404)

    def test_add_is_seeded_from_cached_report(self) -> None:
        self.client.get("/api/analysis/ACME")
        body = self.client.post("/api/watchlist", json={"ticker": "ACME"}).json()
        self.assertEqual(body["lastPrice"], "$123.45")
        self.assertEqual(body["lastSentiment"], "Bullish")

    def test_invalid_ticker_is_rejected(self) -> None:
        self.assertEqual(self.client.post("/api/watchlist", json={"ticker": "   "}).status_code, 422)

    def test_clear(self) -> None:
        self.watch("AAA")
        self.watch("BBB")
        self.assertEqual(self.client.delete("/api/watchlist").json(), {"removed": 2})
        self.assertEqual(self.client.get("/api/watchlist").json(), [])


class TickerAndOpsRouteTests(RouteTestCase):
    def test_ticker_suggestions(self) -> None:
        resp = self.client.get("/api/tickers", params={"q": "acm"})
        self.assertEqual(resp.json(), [{"ticker": "ACME", "name": "Acme Corp"}])
        self.assertEqual(self.client.get("/api/tickers", params={"q": "zzz"}).json(), [])

    def test_health(self) -> None:
        self.client.get("/api/analysis/ACME")
        body = self.client.get("/health").json()
        self.assertEqual(body["status"], "ok")
        self.assertTrue(body["generationConfigured"])
        self.assertEqual(body["models"], ["model-a", "model-b", "model-c"])
        self.assertEqual(body["cachedAnalyses"], 1)
        self.assertEqual(body["tickerDirectorySize"], 1)

    def test_metrics(self) -> None:
        self.client.get("/api/analysis/ACME")
        resp = self.client.get("/metrics")
        self.assertEqual(resp.status_code, 200)
        self.assertIn("ticker_analysis_success_total", resp.text)


if __name__ == "__main__":
    unittest.main()
