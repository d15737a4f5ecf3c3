import asyncio
import threading
import time

import pytest

from src.services.processing_counter import ProcessingCounter
from src.services.quiescence_detector import QuiescenceDetector
from src.utils.errors import QuiescenceInvariantError


class FailingCounter(ProcessingCounter):
    def get(self, identifier: str) -> int:
        raise KeyError(identifier)


def test_idle_counter_requests_stop_on_first_tick() -> None:
    detector = QuiescenceDetector(ProcessingCounter(), "p1", period_seconds=1)

    assert detector.tick() is True
    assert detector.state.ticks == 1
    assert detector.state.last_count == 0


@pytest.mark.parametrize("busy_ticks", [1, 3, 5])
def test_stop_requested_exactly_one_tick_after_counter_settles(busy_ticks: int) -> None:
    counter = ProcessingCounter()
    detector = QuiescenceDetector(counter, "p1", period_seconds=1)

    for _ in range(busy_ticks):
        counter.increment("p1")
        assert detector.tick() is False

    assert detector.tick() is True
    assert detector.state.ticks == busy_ticks + 1
    assert detector.state.last_count == busy_ticks


def test_stop_request_is_latched() -> None:
    counter = ProcessingCounter()
    detector = QuiescenceDetector(counter, "p1", period_seconds=1)

    detector.tick()
    counter.increment("p1")
    detector.tick()

    assert detector.stop_requested
    assert detector.state.last_count == 1


def test_period_must_be_positive() -> None:
    with pytest.raises(ValueError):
        QuiescenceDetector(ProcessingCounter(), "p1", period_seconds=0)


@pytest.mark.asyncio
async def test_running_detector_stops_after_one_period_when_idle() -> None:
    detector = QuiescenceDetector(ProcessingCounter(), "p1", period_seconds=0.05)
    started = time.perf_counter()
    detector.start()

    try:
        assert await detector.wait_stop_requested(timeout=1) is True
    finally:
        detector.stop()

    elapsed = time.perf_counter() - started
    assert detector.state.ticks == 1
    assert 0.04 <= elapsed < 0.5


@pytest.mark.asyncio
async def test_wait_stop_requested_times_out_while_busy() -> None:
    counter = ProcessingCounter()
    detector = QuiescenceDetector(counter, "p1", period_seconds=10)
    detector.start()

    try:
        assert await detector.wait_stop_requested(timeout=0.02) is False
    finally:
        detector.stop()


@pytest.mark.asyncio
async def test_stop_is_idempotent_and_ends_ticks() -> None:
    detector = QuiescenceDetector(ProcessingCounter(), "p1", period_seconds=0.02)
    detector.stop()
    detector.start()

    detector.stop()
    detector.stop()
    await asyncio.sleep(0.08)

    assert detector.state.ticks == 0


@pytest.mark.asyncio
async def test_stop_from_another_thread() -> None:
    detector = QuiescenceDetector(ProcessingCounter(), "p1", period_seconds=0.02)
    detector.start()

    thread = threading.Thread(target=detector.stop)
    thread.start()
    thread.join()
    await asyncio.sleep(0.08)

    assert detector.state.ticks == 0


@pytest.mark.asyncio
async def test_start_twice_is_rejected() -> None:
    detector = QuiescenceDetector(ProcessingCounter(), "p1", period_seconds=1)
    detector.start()
    try:
        with pytest.raises(RuntimeError):
            detector.start()
    finally:
        detector.stop()


@pytest.mark.asyncio
async def test_tick_failure_is_reported_and_requests_stop() -> None:
    detector = QuiescenceDetector(FailingCounter(), "p1", period_seconds=0.02)
    detector.start()

    try:
        assert await detector.wait_stop_requested(timeout=1) is True
    finally:
        detector.stop()

    assert isinstance(detector.error, QuiescenceInvariantError)
    assert isinstance(detector.error.cause, KeyError)
    assert detector.state.ticks == 0
