"""Tests for flashsale.guard."""

import asyncio
import threading

import pytest

from flashsale.errors import SaleStoreError
from flashsale.guard import ProcessingGuard, call_notifier, call_store


def test_processing_guard_is_set_if_absent():
    """Only the first acquire succeeds until the marker is released."""
    guard = ProcessingGuard()

    assert guard.acquire("a") is True
    assert guard.acquire("a") is False
    assert "a" in guard
    assert len(guard) == 1

    guard.release("a")
    guard.release("a")
    assert "a" not in guard
    assert guard.acquire("a") is True


@pytest.mark.asyncio
async def test_call_store_returns_result_from_worker_thread():
    """Blocking store calls run off the event loop thread."""
    caller = threading.get_ident()

    def lookup(value):
        return value * 2, threading.get_ident() != caller

    assert await call_store(lookup, 21, timeout=1.0) == (42, True)


@pytest.mark.asyncio
async def test_call_store_wraps_failures():
    """Store exceptions surface as SaleStoreError with the cause attached."""
    def broken():
        raise KeyError("missing")

    with pytest.raises(SaleStoreError) as excinfo:
        await call_store(broken, timeout=1.0)
    assert isinstance(excinfo.value.__cause__, KeyError)


@pytest.mark.asyncio
async def test_call_store_times_out():
    """A store call that outlives its timeout raises SaleStoreError."""
    release = threading.Event()

    def slow():
        release.wait(timeout=2)

    try:
        with pytest.raises(SaleStoreError, match="timed out"):
            await call_store(slow, timeout=0.05)
    finally:
        release.set()


@pytest.mark.asyncio
async def test_call_notifier_swallows_errors_and_timeouts():
    """Notification failures are reported as False rather than raised."""
    async def ok():
        return None

    async def broken():
        raise RuntimeError("discord down")

    async def hangs():
        await asyncio.sleep(1)

    assert await call_notifier("ok", ok(), timeout=1.0) is True
    assert await call_notifier("broken", broken(), timeout=1.0) is False
    assert await call_notifier("hangs", hangs(), timeout=0.05) is False
