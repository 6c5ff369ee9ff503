"""Tests for the shared adapter timeout/retry policy."""

import asyncio

import httpx
import pytest

from medscan.errors import ConfigurationError, DeliveryError, RecordStoreError
from medscan.services.policy import call_with_policy, is_transient


def status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.test")
    return httpx.HTTPStatusError("error", request=request, response=httpx.Response(code, request=request))


class Flaky:
    """Fails with the queued exceptions, then returns "ok"."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


@pytest.mark.parametrize("exc,expected", [
    (asyncio.TimeoutError(), True),
    (ConnectionResetError(), True),
    (httpx.ConnectError("refused"), True),
    (status_error(429), True),
    (status_error(502), True),
    (status_error(400), False),
    (DeliveryError("x", transient=True), True),
    (DeliveryError("x"), False),
    (ValueError("bad"), False),
])
def test_is_transient(exc, expected):
    assert is_transient(exc) is expected


async def run(operation, **kwargs):
    kwargs.setdefault("retries", 1)
    return await call_with_policy(
        operation, label="Test op", error_cls=DeliveryError, timeout=1, backoff=0, **kwargs
    )


@pytest.mark.asyncio
async def test_success_first_time():
    op = Flaky()

    assert await run(op) == "ok"
    assert op.calls == 1


@pytest.mark.asyncio
async def test_one_retry_for_transient():
    op = Flaky(ConnectionResetError())

    assert await run(op) == "ok"
    assert op.calls == 2


@pytest.mark.asyncio
async def test_at_most_one_retry():
    op = Flaky(ConnectionResetError(), ConnectionResetError(), ConnectionResetError())

    with pytest.raises(DeliveryError) as exc_info:
        await run(op)

    assert op.calls == 2
    assert exc_info.value.transient
    assert "Test op failed" in str(exc_info.value)


@pytest.mark.asyncio
async def test_permanent_failure_not_retried():
    op = Flaky(ValueError("bad payload"))

    with pytest.raises(DeliveryError) as exc_info:
        await run(op)

    assert op.calls == 1
    assert isinstance(exc_info.value.__cause__, ValueError)


@pytest.mark.asyncio
async def test_timeout_counts_as_transient():
    calls = []

    async def slow():
        calls.append(1)
        await asyncio.sleep(5)

    with pytest.raises(DeliveryError) as exc_info:
        await call_with_policy(slow, label="Slow", error_cls=DeliveryError, timeout=0.01, retries=1, backoff=0)

    assert len(calls) == 2
    assert exc_info.value.transient


@pytest.mark.asyncio
async def test_configuration_error_passes_through():
    op = Flaky(ConfigurationError("no key"))

    with pytest.raises(ConfigurationError):
        await run(op)
    assert op.calls == 1


@pytest.mark.asyncio
async def test_own_error_class_not_rewrapped():
    original = DeliveryError("already mapped")
    op = Flaky(original)

    with pytest.raises(DeliveryError) as exc_info:
        await run(op)

    assert exc_info.value is original


@pytest.mark.asyncio
async def test_other_integration_errors_are_mapped():
    op = Flaky(RecordStoreError("wrong layer"))

    with pytest.raises(DeliveryError):
        await run(op, retries=0)
