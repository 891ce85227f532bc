"""Tests for the explicit retry policy."""

import pytest

from common.backoff import RetryPolicy, fixed_delay, retry


def test_retry_returns_after_transient_failures() -> None:
    attempts = {"n": 0}
    sleeps: list[float] = []

    def flaky() -> str:
        attempts["n"] += 1
        if attempts["n"] < 3:
            raise RuntimeError("not yet")
        return "done"

    result = retry(flaky, RetryPolicy(attempts=3, delay=fixed_delay(2.0)), sleep=sleeps.append)

    assert result == "done"
    assert attempts["n"] == 3
    assert sleeps == [2.0, 2.0]


def test_retry_reraises_last_error_without_sleeping_after_it() -> None:
    sleeps: list[float] = []
    errors: list[int] = []

    def broken() -> None:
        raise ValueError(f"attempt {len(errors) + 1}")

    with pytest.raises(ValueError, match="attempt 3"):
        retry(
            broken,
            RetryPolicy(attempts=3, delay=fixed_delay(1.0)),
            sleep=sleeps.append,
            on_error=lambda attempt, exc: errors.append(attempt),
        )

    assert errors == [1, 2, 3]
    assert sleeps == [1.0, 1.0]


def test_retry_only_catches_listed_exceptions() -> None:
    def boom() -> None:
        raise KeyError("x")

    with pytest.raises(KeyError):
        retry(boom, RetryPolicy(attempts=5), retry_on=(ValueError,), sleep=lambda s: None)

