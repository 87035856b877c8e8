"""Tests for the periodic scheduler."""
import threading

import pytest

from loadgen.ticker import Ticker


def test_next_deadline_on_time():
    ticker = Ticker(10, lambda: None)
    assert ticker.next_deadline(0, 5) == 10
    assert ticker.next_deadline(0, 10) == 10
    assert ticker.skipped_count == 0


def test_next_deadline_skips_overrun_ticks():
    skipped = []
    ticker = Ticker(10, lambda: None, on_skip=skipped.append)

    assert ticker.next_deadline(0, 25) == 30
    assert ticker.skipped_count == 2
    assert skipped == [2]

    assert ticker.next_deadline(30, 40.5) == 50
    assert ticker.skipped_count == 3
    assert skipped == [2, 1]


def test_ticker_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        Ticker(0, lambda: None)


def test_ticker_fires_immediately_and_survives_errors():
    calls = []
    fired_twice = threading.Event()

    def fn():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("boom")
        fired_twice.set()

    ticker = Ticker(0.05, fn, name="test-ticker")
    ticker.start()
    try:
        assert fired_twice.wait(5)
    finally:
        ticker.stop(timeout=5)

    assert not ticker.running
    assert ticker.tick_count >= 2


def test_ticker_cannot_start_twice():
    ticker = Ticker(60, lambda: None)
    ticker.start()
    try:
        with pytest.raises(RuntimeError):
            ticker.start()
    finally:
        ticker.stop(timeout=5)
