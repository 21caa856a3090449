"""Live progress projection for active sales.

Each tracked sale is refreshed on its own cadence, tightening as the
deadline approaches. A global one-second tick only decides which sales are
due. Sales that are finalizing are skipped, and untracked sales stay quiesced
for a grace window so a queued tick cannot overwrite the final display.
Closing a sale also waits out any update already being written.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from discord.ext import tasks

from .errors import SaleStoreError
from .guard import ProcessingGuard, call_notifier, call_store
from .models import Sale, SaleProjection, utc_now
from .validation import format_time_remaining

log = logging.getLogger("flash-sale.projector")

# (seconds remaining below, minimum refresh interval)
REFRESH_CADENCE: tuple[tuple[float, float], ...] = (
    (10.0, 1.0),
    (60.0, 2.0),
    (300.0, 3.0),
)
IDLE_REFRESH_INTERVAL = 5.0


def refresh_interval(seconds_remaining: float) -> float:
    for bound, interval in REFRESH_CADENCE:
        if seconds_remaining < bound:
            return interval
    return IDLE_REFRESH_INTERVAL


@dataclass(slots=True)
class TrackedSale:
    sale: Sale
    last_refresh: float | None = None


class StatusProjector:
    def __init__(
        self,
        store,
        notifier,
        guard: ProcessingGuard,
        *,
        store_timeout: float = 10.0,
        notify_timeout: float = 10.0,
        quiesce_seconds: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._guard = guard
        self._store_timeout = store_timeout
        self._notify_timeout = notify_timeout
        self._quiesce_seconds = quiesce_seconds
        self._clock = clock
        self._tracked: dict[str, TrackedSale] = {}
        self._quiesced: dict[str, float] = {}
        self._inflight: dict[str, asyncio.Event] = {}

    def track(self, sale: Sale) -> bool:
        if not sale.is_active:
            return False
        if self.is_quiesced(sale.sale_id):
            log.debug("Sale %s is quiesced; not tracking", sale.sale_id)
            return False
        existing = self._tracked.get(sale.sale_id)
        if existing is not None:
            existing.sale = sale
        else:
            self._tracked[sale.sale_id] = TrackedSale(sale=sale)
        return True

    def untrack(self, sale_id: str) -> None:
        self._tracked.pop(sale_id, None)
        self._quiesced[sale_id] = self._clock() + self._quiesce_seconds

    def is_tracked(self, sale_id: str) -> bool:
        return sale_id in self._tracked

    def is_quiesced(self, sale_id: str) -> bool:
        until = self._quiesced.get(sale_id)
        if until is None:
            return False
        if self._clock() >= until:
            del self._quiesced[sale_id]
            return False
        return True

    def tracked_ids(self) -> list[str]:
        return list(self._tracked)

    def _may_emit(self, sale_id: str) -> bool:
        return (
            sale_id in self._tracked
            and sale_id not in self._guard
            and not self.is_quiesced(sale_id)
        )

    def _is_due(self, entry: TrackedSale, now: float) -> bool:
        if entry.last_refresh is None:
            return True
        interval = refresh_interval(entry.sale.seconds_remaining())
        return now - entry.last_refresh >= interval

    async def refresh_due(self) -> int:
        """Refresh every tracked sale whose interval has elapsed."""
        refreshed = 0
        for sale_id, entry in list(self._tracked.items()):
            if not self._may_emit(sale_id):
                continue
            if not self._is_due(entry, self._clock()):
                continue
            if await self._refresh(entry):
                refreshed += 1
        self._expire_quiesced()
        return refreshed

    async def _refresh(self, entry: TrackedSale) -> bool:
        sale = entry.sale
        # Failed refreshes wait for the next natural interval.
        entry.last_refresh = self._clock()
        try:
            count = await call_store(
                self._store.entrant_count, sale.sale_id, timeout=self._store_timeout
            )
        except SaleStoreError as exc:
            log.warning("Failed to count entrants for sale %s: %s", sale.sale_id, exc)
            return False

        projection = SaleProjection(
            time_remaining_label=format_time_remaining(sale.ends_at, utc_now()),
            entry_count=count,
        )
        if not self._may_emit(sale.sale_id):
            log.debug("Dropping projection for sale %s after untrack", sale.sale_id)
            return False
        done = asyncio.Event()
        self._inflight[sale.sale_id] = done
        try:
            return await call_notifier(
                f"progress for sale {sale.sale_id}",
                self._notifier.on_sale_progress(sale, projection),
                timeout=self._notify_timeout,
            )
        finally:
            done.set()
            if self._inflight.get(sale.sale_id) is done:
                del self._inflight[sale.sale_id]

    async def settle(self, sale_id: str) -> None:
        """Wait for a progress update already being written for ``sale_id``."""
        pending = self._inflight.get(sale_id)
        if pending is None:
            return
        try:
            await asyncio.wait_for(pending.wait(), timeout=self._notify_timeout)
        except asyncio.TimeoutError:
            log.warning("Progress update for sale %s did not settle", sale_id)

    def _expire_quiesced(self) -> None:
        now = self._clock()
        for sale_id in [key for key, until in self._quiesced.items() if now >= until]:
            del self._quiesced[sale_id]

    @tasks.loop(seconds=1)
    async def refresh_tick(self) -> None:
        try:
            await self.refresh_due()
        except Exception as exc:  # pylint: disable=broad-except
            log.exception("Status refresh tick failed: %s", exc)

    def start(self) -> None:
        if not self.refresh_tick.is_running():
            self.refresh_tick.start()
            log.info("Status projector started (%s sales tracked)", len(self._tracked))

    def stop(self) -> None:
        if self.refresh_tick.is_running():
            self.refresh_tick.cancel()
        log.info("Status projector stopped")
