import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import httpx
import pytest
from pydantic import BaseModel, ValidationError

from sched_core.core.backoff import RetryPolicy, retry_bookkeeping
from sched_core.core.errors import (
    PERMANENT,
    TRANSIENT,
    PermanentError,
    TransientError,
    classify_error,
    classify_status_code,
    describe_error,
)

NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


def status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://mail.example.com/send")
    response = httpx.Response(code, request=request)
    return httpx.HTTPStatusError("boom", request=request, response=response)


class _Strict(BaseModel):
    value: int


def test_delay_doubles_and_caps():
    policy = RetryPolicy(max_attempts=5, base_seconds=60, cap_seconds=300, jitter_ratio=0.0)

    assert policy.delay_seconds(0) == 60
    assert policy.delay_seconds(1) == 120
    assert policy.delay_seconds(2) == 240
    assert policy.delay_seconds(3) == 300
    assert policy.delay_seconds(100) == 300


def test_jitter_is_bounded_by_ratio():
    policy = RetryPolicy(max_attempts=5, base_seconds=100, cap_seconds=1000, jitter_ratio=0.25, rng=lambda: 1.0)
    assert policy.delay_seconds(0) == 125

    policy = RetryPolicy(max_attempts=5, base_seconds=100, cap_seconds=1000, jitter_ratio=0.25, rng=lambda: 0.0)
    assert policy.delay_seconds(0) == 100


def test_retry_after_header_extends_delay():
    policy = RetryPolicy(max_attempts=5, base_seconds=60, cap_seconds=3600, jitter_ratio=0.0)
    assert policy.next_run_after(NOW, 0, retry_after=600) == NOW + timedelta(seconds=600)
    assert policy.next_run_after(NOW, 0, retry_after=5) == NOW + timedelta(seconds=60)


@pytest.mark.parametrize("code,expected", [
    (400, PERMANENT),
    (401, PERMANENT),
    (404, PERMANENT),
    (422, PERMANENT),
    (429, TRANSIENT),
    (500, TRANSIENT),
    (503, TRANSIENT),
])
def test_classify_status_code(code, expected):
    assert classify_status_code(code) == expected
    assert classify_error(status_error(code)) == expected


def test_classify_error_taxonomy():
    assert classify_error(PermanentError("bad recipient")) == PERMANENT
    assert classify_error(TransientError("rate limited")) == TRANSIENT
    assert classify_error(asyncio.TimeoutError()) == TRANSIENT
    assert classify_error(httpx.ConnectError("refused")) == TRANSIENT
    assert classify_error(KeyError("missing")) == PERMANENT
    assert classify_error(RuntimeError("who knows")) == TRANSIENT

    with pytest.raises(ValidationError) as exc_info:
        _Strict(value="not a number")
    assert classify_error(exc_info.value) == PERMANENT


def test_describe_error_is_truncated():
    message = describe_error(RuntimeError("x" * 5000))
    assert message.startswith("RuntimeError: ")
    assert len(message) <= 1000


def test_bookkeeping_schedules_retry_for_transient_error():
    policy = RetryPolicy(max_attempts=3, base_seconds=60, cap_seconds=3600, jitter_ratio=0.0)
    item = SimpleNamespace(attempts=1, max_attempts=3)

    values, terminal, kind = retry_bookkeeping(item, TransientError("503"), NOW, policy)

    assert not terminal
    assert kind == TRANSIENT
    assert values["attempts"] == 2
    assert values["run_after"] == NOW + timedelta(seconds=120)
    assert "503" in values["last_error"]


def test_bookkeeping_is_terminal_at_ceiling_or_on_permanent_error():
    policy = RetryPolicy(max_attempts=3, base_seconds=60, cap_seconds=3600, jitter_ratio=0.0)

    values, terminal, _ = retry_bookkeeping(SimpleNamespace(attempts=2), TransientError("503"), NOW, policy)
    assert terminal
    assert values["attempts"] == 3
    assert "run_after" not in values

    values, terminal, kind = retry_bookkeeping(SimpleNamespace(attempts=0), PermanentError("401"), NOW, policy)
    assert terminal
    assert kind == PERMANENT
    assert values["attempts"] == 1
