import asyncio
import unittest

from services.analysis.errors import ActionTimeoutError
from services.analysis.pacer import Pacer, min_interval_ms


class FakeClock:
    """Monotonic clock that only moves when the pacer sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class MinIntervalTests(unittest.TestCase):
    def test_default_rate(self) -> None:
        # 15 rpm -> 4000 ms, plus the 100 ms margin
        self.assertEqual(min_interval_ms(15), 4100)

    def test_rounds_up(self) -> None:
        self.assertEqual(min_interval_ms(7, 0), 8572)

    def test_rejects_non_positive_rate(self) -> None:
        with self.assertRaises(ValueError):
            min_interval_ms(0)


class PacerTests(unittest.IsolatedAsyncioTestCase):
    async def test_burst_is_spaced_start_to_start(self) -> None:
        clock = FakeClock()
        pacer = Pacer(60, safety_margin_ms=0, clock=clock, sleep=clock.sleep)
        started = []

        def make(i):
            async def action():
                started.append((i, clock()))
                return i

            return action

        results = await asyncio.gather(*(pacer.submit(make(i)) for i in range(5)))

        self.assertEqual(results, [0, 1, 2, 3, 4])
        self.assertEqual([i for i, _ in started], [0, 1, 2, 3, 4])
        times = [t for _, t in started]
        for a, b in zip(times, times[1:]):
            self.assertGreaterEqual(b - a, 1.0 - 1e-9)
        self.assertFalse(pacer.draining)
        self.assertEqual(pacer.pending, 0)

    async def test_no_wait_when_interval_already_elapsed(self) -> None:
        clock = FakeClock()
        pacer = Pacer(60, safety_margin_ms=0, clock=clock, sleep=clock.sleep)

        async def action():
            return "ok"

        await pacer.submit(action)
        clock.now += 5.0
        await pacer.submit(action)
        self.assertEqual(clock.sleeps, [])

    async def test_spacing_counts_from_invocation_not_completion(self) -> None:
        clock = FakeClock()
        pacer = Pacer(60, safety_margin_ms=0, clock=clock, sleep=clock.sleep)

        async def slow():
            clock.now += 0.4  # the action itself takes 400 ms
            return "slow"

        async def fast():
            return clock()

        await pacer.submit(slow)
        started_at = await pacer.submit(fast)
        self.assertAlmostEqual(started_at, 1.0)
        self.assertEqual(len(clock.sleeps), 1)
        self.assertAlmostEqual(clock.sleeps[0], 0.6)

    async def test_failure_propagates_and_lane_continues(self) -> None:
        clock = FakeClock()
        pacer = Pacer(60, safety_margin_ms=0, clock=clock, sleep=clock.sleep)

        async def boom():
            raise ValueError("provider exploded")

        async def ok():
            return "next"

        results = await asyncio.gather(pacer.submit(boom), pacer.submit(ok), return_exceptions=True)
        self.assertIsInstance(results[0], ValueError)
        self.assertEqual(results[1], "next")

    async def test_abandoned_submission_still_runs(self) -> None:
        clock = FakeClock()
        pacer = Pacer(60, safety_margin_ms=0, clock=clock, sleep=clock.sleep)
        invoked = []

        async def first():
            invoked.append("first")

        async def second():
            invoked.append("second")
            return "done"

        waiter = asyncio.ensure_future(pacer.submit(first))
        abandoned = asyncio.ensure_future(pacer.submit(second))
        await asyncio.sleep(0)
        abandoned.cancel()
        await waiter
        # Drain until the lane is idle again.
        while pacer.draining:
            await asyncio.sleep(0)

        self.assertEqual(invoked, ["first", "second"])
        self.assertTrue(abandoned.cancelled())

    async def test_submissions_during_drain_join_the_same_loop(self) -> None:
        clock = FakeClock()
        pacer = Pacer(60, safety_margin_ms=0, clock=clock, sleep=clock.sleep)
        order = []

        async def chained():
            order.append("outer")
            # Queued from inside a running action; picked up by the current drain.
            asyncio.ensure_future(pacer.submit(inner))
            await asyncio.sleep(0)
            return "outer"

        async def inner():
            order.append("inner")

        await pacer.submit(chained)
        while pacer.draining:
            await asyncio.sleep(0)
        self.assertEqual(order, ["outer", "inner"])

    async def test_action_timeout_releases_lane(self) -> None:
        pacer = Pacer(60000, safety_margin_ms=0, action_timeout_s=0.05)

        async def hung():
            await asyncio.sleep(10)

        async def ok():
            return "after"

        results = await asyncio.gather(pacer.submit(hung), pacer.submit(ok), return_exceptions=True)
        self.assertIsInstance(results[0], ActionTimeoutError)
        self.assertIsInstance(results[0], TimeoutError)
        self.assertEqual(results[1], "after")


if __name__ == "__main__":
    unittest.main()
