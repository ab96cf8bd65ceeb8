from __future__ import annotations

import pytest

from interval_report import retry_utils
from interval_report.retry_utils import RetryConfig, retry_call


def test_backoff_is_deterministic_and_capped() -> None:
    cfg = RetryConfig(max_attempts=5, base_delay_s=1.0, max_delay_s=3.0, multiplier=2.0)
    assert [cfg.delay_for(a) for a in (1, 2, 3, 4)] == [1.0, 2.0, 3.0, 3.0]


def test_retry_call_stops_on_non_retryable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(retry_utils.time, "sleep", lambda *_: None)
    calls: list[int] = []

    def _fn() -> int:
        calls.append(1)
        raise KeyError("nope")

    with pytest.raises(KeyError):
        retry_call(_fn, cfg=RetryConfig(max_attempts=3), should_retry=lambda e: isinstance(e, TimeoutError))

    assert len(calls) == 1


def test_retry_call_reports_each_retry(monkeypatch: pytest.MonkeyPatch) -> None:
    slept: list[float] = []
    monkeypatch.setattr(retry_utils.time, "sleep", slept.append)
    seen: list[tuple[int, float]] = []
    calls: list[int] = []

    def _fn() -> str:
        calls.append(1)
        if len(calls) < 3:
            raise TimeoutError("slow")
        return "ok"

    result = retry_call(
        _fn,
        cfg=RetryConfig(max_attempts=3, base_delay_s=0.5),
        should_retry=lambda e: isinstance(e, TimeoutError),
        on_retry=lambda attempt, exc, delay: seen.append((attempt, delay)),
    )

    assert result == "ok"
    assert seen == [(1, 0.5), (2, 1.0)]
    assert slept == [0.5, 1.0]


def test_retry_call_rejects_zero_attempts() -> None:
    with pytest.raises(ValueError):
        retry_call(lambda: None, cfg=RetryConfig(max_attempts=0), should_retry=lambda e: True)
