from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .errors import SaleStoreError

log = logging.getLogger("flash-sale.guard")

T = TypeVar("T")


class ProcessingGuard:
    """In-memory set of sale ids whose finalize or cancel is in flight.

    ``acquire`` is a set-if-absent with no suspension point, so it is atomic
    with respect to every other task on the event loop.
    """

    def __init__(self) -> None:
        self._held: set[str] = set()

    def acquire(self, sale_id: str) -> bool:
        if sale_id in self._held:
            return False
        self._held.add(sale_id)
        return True

    def release(self, sale_id: str) -> None:
        self._held.discard(sale_id)

    def __contains__(self, sale_id: object) -> bool:
        return sale_id in self._held

    def __len__(self) -> int:
        return len(self._held)


async def call_store(func: Callable[..., T], *args: object, timeout: float) -> T:
    """Run a blocking store call in a worker thread, bounded by ``timeout``."""
    name = getattr(func, "__name__", repr(func))
    try:
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise SaleStoreError(f"Store call {name} timed out after {timeout}s") from exc
    except Exception as exc:  # pylint: disable=broad-except
        raise SaleStoreError(f"Store call {name} failed: {exc}") from exc


async def call_notifier(
    description: str, coro: Awaitable[object], *, timeout: float
) -> bool:
    """Await a downstream notification; failures are logged and swallowed."""
    try:
        await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError:
        log.warning("Notification %s timed out after %ss", description, timeout)
        return False
    except Exception as exc:  # pylint: disable=broad-except
        log.exception("Notification %s failed: %s", description, exc)
        return False
    return True
