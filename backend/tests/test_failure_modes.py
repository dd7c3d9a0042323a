"""
Failure Injection Tests.

Validates resilience against authority outages.
"""

import pytest
from backend.app.core.reliability import CircuitBreaker, CircuitOpenError, retry_async
from backend.app.domain.fiscal.afip_client import AfipRejectedError


@pytest.mark.asyncio
async def test_circuit_breaker_activates():
    """Test that circuit breaker opens after threshold failures."""
    cb = CircuitBreaker(failure_threshold=2, reset_timeout=1)

    async def failing_func():
        raise ValueError("Boom")

    # Fail 1
    with pytest.raises(ValueError):
        await cb.call(failing_func)

    # Fail 2 (Threshold reached)
    with pytest.raises(ValueError):
        await cb.call(failing_func)

    # Call 3 (Should be CircuitOpenError)
    with pytest.raises(CircuitOpenError):
        await cb.call(failing_func)


@pytest.mark.asyncio
async def test_circuit_breaker_half_open_recovers():
    cb = CircuitBreaker(failure_threshold=1, reset_timeout=60)

    async def failing_func():
        raise ValueError("Boom")

    async def ok_func():
        return "ok"

    with pytest.raises(ValueError):
        await cb.call(failing_func)
    assert cb.state == "OPEN"

    cb.last_failure_time -= 61
    assert await cb.call(ok_func) == "ok"
    assert cb.state == "CLOSED"
    assert cb.failures == 0


@pytest.mark.asyncio
async def test_rejections_do_not_trip_breaker():
    """Authority refusals are answers, not outages."""
    cb = CircuitBreaker(failure_threshold=1, reset_timeout=60, ignore=(AfipRejectedError,))

    async def rejected():
        raise AfipRejectedError("Voucher rejected")

    for _ in range(3):
        with pytest.raises(AfipRejectedError):
            await cb.call(rejected)

    assert cb.state == "CLOSED"
    assert cb.failures == 0


@pytest.mark.asyncio
async def test_retry_async_gives_up_after_attempts():
    calls = {"count": 0}

    async def always_down():
        calls["count"] += 1
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        await retry_async(always_down, attempts=3, backoff=0, retry_on=(ConnectionError,))

    assert calls["count"] == 3


@pytest.mark.asyncio
async def test_retry_async_does_not_retry_other_errors():
    calls = {"count": 0}

    async def broken():
        calls["count"] += 1
        raise KeyError("bug")

    with pytest.raises(KeyError):
        await retry_async(broken, attempts=3, backoff=0, retry_on=(ConnectionError,))

    assert calls["count"] == 1
