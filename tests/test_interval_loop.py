from __future__ import annotations

import asyncio

import pytest

from services.interval_loop import IntervalLoop


def test_overlapping_firings_are_skipped_not_run_concurrently() -> None:
    in_flight = 0
    max_in_flight = 0

    async def slow_callback() -> None:
        nonlocal in_flight, max_in_flight
        in_flight += 1
        max_in_flight = max(max_in_flight, in_flight)
        await asyncio.sleep(0.05)
        in_flight -= 1

    async def scenario() -> IntervalLoop:
        loop = IntervalLoop(0.01, slow_callback, name="slow", fire_immediately=True)
        loop.start()
        await asyncio.sleep(0.2)
        await loop.stop(cancel_inflight=True)
        return loop

    loop = asyncio.run(scenario())

    assert max_in_flight == 1
    assert loop.skipped_count > 0
    assert loop.execution_count >= 1


def test_stop_disarms_timer() -> None:
    calls = 0

    async def callback() -> None:
        nonlocal calls
        calls += 1

    async def scenario() -> int:
        loop = IntervalLoop(0.01, callback, fire_immediately=True)
        loop.start()
        await asyncio.sleep(0.05)
        await loop.stop()
        assert loop.running is False
        await asyncio.sleep(0.01)
        stopped_at = calls
        await asyncio.sleep(0.05)
        return calls - stopped_at

    assert asyncio.run(scenario()) == 0
    assert calls > 0


def test_stop_lets_inflight_run_finish_by_default() -> None:
    async def scenario() -> bool:
        done = asyncio.Event()

        async def callback() -> None:
            await asyncio.sleep(0.03)
            done.set()

        loop = IntervalLoop(1.0, callback, fire_immediately=True)
        loop.start()
        await asyncio.sleep(0.01)
        await loop.stop()
        await asyncio.wait_for(done.wait(), timeout=1.0)
        return done.is_set()

    assert asyncio.run(scenario()) is True


def test_callback_errors_are_logged_and_loop_continues(caplog) -> None:
    calls = 0

    async def failing() -> None:
        nonlocal calls
        calls += 1
        raise ValueError("boom")

    async def scenario() -> None:
        loop = IntervalLoop(0.01, failing, name="failing", fire_immediately=True)
        loop.start()
        await asyncio.sleep(0.05)
        await loop.stop()

    asyncio.run(scenario())

    assert calls >= 2
    assert any("failing" in record.getMessage() for record in caplog.records)


def test_interval_must_be_positive() -> None:
    async def noop() -> None:
        return None

    with pytest.raises(ValueError):
        IntervalLoop(0, noop)
