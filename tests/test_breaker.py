from __future__ import annotations

import threading

import allure
import pytest

from worksheet_gen.generation.breaker import CircuitBreaker
from worksheet_gen.generation.models import CircuitState

pytestmark = [
    allure.epic("Generation Pipeline"),
    allure.feature("Circuit Breaker"),
]


def test_breaker_opens_after_threshold_failures(manual_clock) -> None:
    breaker = CircuitBreaker(failure_threshold=3, reset_timeout=60.0, clock=manual_clock)

    breaker.record_failure()
    breaker.record_failure()
    assert not breaker.is_open()
    breaker.record_failure()

    assert breaker.is_open()
    assert breaker.state == CircuitState.OPEN
    assert breaker.snapshot().consecutive_failures == 3


def test_success_resets_failure_count(manual_clock) -> None:
    breaker = CircuitBreaker(failure_threshold=2, clock=manual_clock)

    breaker.record_failure()
    breaker.record_success()
    breaker.record_failure()

    assert not breaker.is_open()
    assert breaker.snapshot().consecutive_failures == 1


def test_open_breaker_turns_half_open_after_reset_timeout(manual_clock) -> None:
    breaker = CircuitBreaker(failure_threshold=1, reset_timeout=30.0, clock=manual_clock)
    breaker.record_failure()

    manual_clock.advance(29.0)
    assert breaker.is_open()
    manual_clock.advance(1.0)

    assert not breaker.is_open()
    assert breaker.state == CircuitState.HALF_OPEN


def test_half_open_failure_reopens_and_success_closes(manual_clock) -> None:
    breaker = CircuitBreaker(failure_threshold=5, reset_timeout=10.0, clock=manual_clock)
    for _ in range(5):
        breaker.record_failure()
    manual_clock.advance(10.0)
    assert not breaker.is_open()

    breaker.record_failure()
    assert breaker.state == CircuitState.OPEN
    assert breaker.is_open()

    manual_clock.advance(10.0)
    assert not breaker.is_open()
    breaker.record_success()
    assert breaker.state == CircuitState.CLOSED
    assert breaker.snapshot().consecutive_failures == 0


def test_reset_returns_to_closed(manual_clock) -> None:
    breaker = CircuitBreaker(failure_threshold=1, clock=manual_clock)
    breaker.record_failure()

    breaker.reset()

    snapshot = breaker.snapshot()
    assert snapshot.state == CircuitState.CLOSED
    assert snapshot.last_failure_time is None


def test_breaker_rejects_bad_settings() -> None:
    with pytest.raises(ValueError, match="failure_threshold"):
        CircuitBreaker(failure_threshold=0)
    with pytest.raises(ValueError, match="reset_timeout"):
        CircuitBreaker(reset_timeout=-1.0)


def test_concurrent_failures_are_all_counted(manual_clock) -> None:
    breaker = CircuitBreaker(failure_threshold=1000, clock=manual_clock)

    def _fail() -> None:
        for _ in range(100):
            breaker.record_failure()

    threads = [threading.Thread(target=_fail) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert breaker.snapshot().consecutive_failures == 800
    assert breaker.state == CircuitState.CLOSED
