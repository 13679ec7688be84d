import json
import unittest
from datetime import datetime, timezone

from schemas.analysis_report import AnalysisReport, SentimentSection, TechnicalSection
from services.analysis.result_cache import ResultCache, normalize_key


def make_report(ticker: str = "ACME", price: str = "$1.00") -> AnalysisReport:
    return AnalysisReport(
        ticker=ticker,
        company_name="Acme Corp",
        current_price=price,
        sentiment=SentimentSection(score=0.1, label="Neutral", summary="meh"),
        technical_analysis=TechnicalSection(rsi=50, macd="flat", signal="HOLD", trend="sideways"),
        memo="memo",
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeRedis:
    def __init__(self, fail: bool = False) -> None:
        self.store = {}
        self.ttls = {}
        self.fail = fail

    def get(self, key):
        if self.fail:
            raise ConnectionError("redis down")
        return self.store.get(key)

    def setex(self, key, ttl, value):
        if self.fail:
            raise ConnectionError("redis down")
        self.store[key] = value
        self.ttls[key] = ttl


class ResultCacheTests(unittest.TestCase):
    def test_hit_within_ttl(self) -> None:
        clock = FakeClock()
        cache = ResultCache(60, clock=clock)
        report = make_report()
        cache.set("ACME", report)
        clock.now += 59.9
        self.assertEqual(cache.get("ACME"), report)

    def test_expired_entry_is_a_miss_and_removed(self) -> None:
        clock = FakeClock()
        cache = ResultCache(60, clock=clock)
        cache.set("ACME", make_report())
        clock.now += 60
        self.assertIsNone(cache.get("ACME"))
        self.assertEqual(len(cache), 0)

    def test_expired_entry_lingers_until_looked_up(self) -> None:
        clock = FakeClock()
        cache = ResultCache(60, clock=clock)
        cache.set("ACME", make_report())
        clock.now += 3600
        self.assertEqual(len(cache), 1)

    def test_keys_are_normalized(self) -> None:
        cache = ResultCache(60, clock=FakeClock())
        cache.set(" acme ", make_report())
        self.assertIsNotNone(cache.get("ACME"))
        self.assertEqual(normalize_key("  brk.b "), "BRK.B")

    def test_last_write_wins(self) -> None:
        clock = FakeClock()
        cache = ResultCache(60, clock=clock)
        cache.set("ACME", make_report(price="$1.00"))
        clock.now += 30
        cache.set("ACME", make_report(price="$2.00"))
        clock.now += 45
        # Second write restarted the TTL.
        self.assertEqual(cache.get("ACME").current_price, "$2.00")

    def test_blank_key_is_ignored(self) -> None:
        cache = ResultCache(60, clock=FakeClock())
        cache.set("  ", make_report())
        self.assertEqual(len(cache), 0)
        self.assertIsNone(cache.get(""))

    def test_rejects_non_positive_ttl(self) -> None:
        with self.assertRaises(ValueError):
            ResultCache(0)


class ResultCacheRedisTests(unittest.TestCase):
    def test_second_process_reads_through_redis(self) -> None:
        clock = FakeClock()
        redis = FakeRedis()
        writer = ResultCache(60, clock=clock, redis_client=redis, redis_prefix="t:")
        writer.set("ACME", make_report())

        self.assertEqual(redis.ttls["t:ACME"], 60)
        stored = json.loads(redis.store["t:ACME"])
        self.assertEqual(stored["report"]["ticker"], "ACME")

        reader = ResultCache(60, clock=clock, redis_client=redis, redis_prefix="t:")
        clock.now += 10
        self.assertEqual(reader.get("acme").current_price, "$1.00")
        self.assertEqual(len(reader), 1)

    def test_redis_entry_freshness_uses_original_timestamp(self) -> None:
        clock = FakeClock()
        redis = FakeRedis()
        ResultCache(60, clock=clock, redis_client=redis).set("ACME", make_report())
        clock.now += 61
        self.assertIsNone(ResultCache(60, clock=clock, redis_client=redis).get("ACME"))

    def test_redis_errors_do_not_fail_requests(self) -> None:
        cache = ResultCache(60, clock=FakeClock(), redis_client=FakeRedis(fail=True))
        with self.assertLogs("services.analysis.result_cache", level="WARNING"):
            cache.set("ACME", make_report())
        self.assertIsNotNone(cache.get("ACME"))
        with self.assertLogs("services.analysis.result_cache", level="WARNING"):
            self.assertIsNone(cache.get("OTHER"))


if __name__ == "__main__":
    unittest.main()
