"""Tests for the first-writer-wins stop signal."""

import asyncio
import threading

from ipocalypse.models.enums import StopReason
from ipocalypse.pool.signal import StopSignal


class TestStopSignal:
    def test_first_trip_wins(self):
        signal = StopSignal()
        first = RuntimeError("first")

        assert signal.trip(StopReason.EXHAUSTED, first) is True
        assert signal.trip(StopReason.CANCELLED) is False
        assert signal.trip(StopReason.EXHAUSTED, RuntimeError("second")) is False

        assert signal.reason == StopReason.EXHAUSTED
        assert signal.cause is first

    def test_concurrent_trips_commit_once(self):
        signal = StopSignal()
        threads = 16
        barrier = threading.Barrier(threads)
        wins = []

        def trip(i):
            barrier.wait()
            if signal.trip(StopReason.EXHAUSTED, RuntimeError(str(i))):
                wins.append(i)

        workers = [threading.Thread(target=trip, args=(i,)) for i in range(threads)]
        for t in workers:
            t.start()
        for t in workers:
            t.join()

        assert len(wins) == 1
        assert str(signal.cause) == str(wins[0])

    def test_admit_refused_after_trip(self):
        signal = StopSignal()
        assert signal.admit()
        assert signal.admit()

        signal.trip(StopReason.CANCELLED)

        assert not signal.admit()
        assert signal.admitted == 2
        assert signal.admitted_at_trip == 2

    async def test_wait_returns_early_on_trip(self):
        signal = StopSignal()

        async def trip_soon():
            await asyncio.sleep(0.01)
            signal.trip(StopReason.CANCELLED)

        asyncio.get_running_loop().create_task(trip_soon())
        assert await asyncio.wait_for(signal.wait(30), timeout=5) is True

    async def test_wait_times_out(self):
        signal = StopSignal()
        assert await signal.wait(0.01) is False
        assert await signal.wait(0) is False
        assert not signal.is_set
