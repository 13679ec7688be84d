import unittest
from datetime import datetime, timedelta, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from database import Base
from models.watchlist import WatchlistEntry
from schemas.analysis_report import AnalysisReport, SentimentSection, TechnicalSection
from schemas.watchlist import WatchlistEntryOut
from services import watchlist_service


def make_session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def make_report(ticker: str, price: str = "$10.00", label: str = "Bullish") -> AnalysisReport:
    return AnalysisReport(
        ticker=ticker,
        company_name=ticker,
        current_price=price,
        sentiment=SentimentSection(score=0.5, label=label, summary="s"),
        technical_analysis=TechnicalSection(rsi=55, macd="m", signal="BUY", trend="up"),
        memo="memo",
        created_at=datetime.now(timezone.utc),
    )


class WatchlistServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.addCleanup(self.db.close)

    def test_add_normalizes_and_rejects_duplicates(self) -> None:
        entry = watchlist_service.add_entry(self.db, " acme ")
        self.assertEqual(entry.ticker, "ACME")
        self.assertIsNone(entry.last_price)
        with self.assertRaises(ValueError):
            watchlist_service.add_entry(self.db, "ACME")

    def test_add_is_seeded_from_matching_report(self) -> None:
        entry = watchlist_service.add_entry(self.db, "ACME", seed=make_report("ACME", "$42.00", "Bearish"))
        self.assertEqual(entry.last_price, "$42.00")
        self.assertEqual(entry.last_sentiment, "Bearish")

        other = watchlist_service.add_entry(self.db, "ZETA", seed=make_report("ACME"))
        self.assertIsNone(other.last_price)

    def test_list_is_newest_first(self) -> None:
        now = datetime.now(timezone.utc)
        self.db.add_all(
            [
                WatchlistEntry(ticker="OLD", added_at=now - timedelta(days=2)),
                WatchlistEntry(ticker="NEW", added_at=now),
                WatchlistEntry(ticker="MID", added_at=now - timedelta(days=1)),
            ]
        )
        self.db.commit()
        self.assertEqual([e.ticker for e in watchlist_service.list_entries(self.db)], ["NEW", "MID", "OLD"])

    def test_remove_and_clear(self) -> None:
        for t in ("AAA", "BBB", "CCC"):
            watchlist_service.add_entry(self.db, t)

        watchlist_service.remove_entry(self.db, "bbb")
        self.assertIsNone(watchlist_service.get_entry(self.db, "BBB"))
        with self.assertRaises(ValueError):
            watchlist_service.remove_entry(self.db, "BBB")

        self.assertEqual(watchlist_service.clear_entries(self.db), 2)
        self.assertEqual(watchlist_service.list_entries(self.db), [])

    def test_record_report_updates_watched_ticker_only(self) -> None:
        watchlist_service.add_entry(self.db, "ACME")

        self.assertTrue(watchlist_service.record_report(self.db, make_report("ACME", "$99.00", "Neutral")))
        self.assertFalse(watchlist_service.record_report(self.db, make_report("ZETA")))

        entry = watchlist_service.get_entry(self.db, "ACME")
        self.assertEqual((entry.last_price, entry.last_sentiment), ("$99.00", "Neutral"))
        self.assertIsNone(watchlist_service.get_entry(self.db, "ZETA"))

    def test_output_schema_is_camel_case(self) -> None:
        entry = watchlist_service.add_entry(self.db, "ACME", seed=make_report("ACME"))
        body = WatchlistEntryOut.model_validate(entry).model_dump(by_alias=True)
        self.assertEqual(body["lastPrice"], "$10.00")
        self.assertEqual(body["lastSentiment"], "Bullish")
        self.assertIn("addedAt", body)


if __name__ == "__main__":
    unittest.main()
