"""Sale lifecycle scheduling.

Every active sale gets a one-shot timer for its deadline. A periodic
fallback sweep re-derives overdue sales from the store so restarts and
dropped timers still close them, and managers can force an early close.
All three paths run the same :meth:`LifecycleScheduler.finalize`, which is
guarded by the in-memory processing marker and re-reads the store before
acting, so it is safe to retry and to call concurrently.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Callable, Sequence

from discord.ext import tasks

from .config import SchedulerConfig
from .errors import (
    SaleAlreadyEndedError,
    SaleFinalizingError,
    SaleNotFoundError,
    SaleNotPermittedError,
    SaleStoreError,
)
from .guard import ProcessingGuard, call_notifier, call_store
from .models import Entrant, FinalizeOutcome, Sale, SaleStatus, utc_now
from .projector import StatusProjector
from .selection import select_winners

log = logging.getLogger("flash-sale.scheduler")


class LifecycleScheduler:
    def __init__(
        self,
        store,
        notifier,
        projector: StatusProjector,
        guard: ProcessingGuard,
        *,
        sync=None,
        config: SchedulerConfig | None = None,
        selector: Callable[[Sequence[str], int], list[str]] = select_winners,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._projector = projector
        self._guard = guard
        self._sync = sync
        self._config = config or SchedulerConfig()
        self._selector = selector
        self._timers: dict[str, asyncio.Task] = {}
        self.fallback_sweep.change_interval(seconds=self._config.sweep_interval)

    # ----- Timers -----
    def register(self, sale: Sale) -> None:
        """Start timing and displaying a newly created or recovered sale."""
        self.arm(sale)
        self._projector.track(sale)

    def arm(self, sale: Sale) -> None:
        if not sale.is_active:
            log.debug("Not arming sale %s with status %s", sale.sale_id, sale.status)
            return
        delay = max(0.0, sale.seconds_remaining())
        self.disarm(sale.sale_id)
        self._timers[sale.sale_id] = asyncio.get_running_loop().create_task(
            self._fire_after(sale.sale_id, delay), name=f"sale-timer-{sale.sale_id}"
        )
        log.debug("Armed sale %s to close in %.2fs", sale.sale_id, delay)

    def disarm(self, sale_id: str) -> bool:
        task = self._timers.pop(sale_id, None)
        if task is None:
            return False
        task.cancel()
        return True

    def is_armed(self, sale_id: str) -> bool:
        return sale_id in self._timers

    def is_processing(self, sale_id: str) -> bool:
        return sale_id in self._guard

    async def _fire_after(self, sale_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        # Once fired the timer is no longer disarmable.
        if self._timers.get(sale_id) is asyncio.current_task():
            del self._timers[sale_id]
        try:
            await self.finalize(sale_id, trigger="timer")
        except Exception as exc:  # pylint: disable=broad-except
            log.exception("Timer close failed for sale %s: %s", sale_id, exc)

    # ----- Finalize -----
    async def _store_call(self, func, *args):
        return await call_store(func, *args, timeout=self._config.store_timeout)

    async def finalize(
        self, sale_id: str, *, trigger: str = "timer"
    ) -> FinalizeOutcome | None:
        """Close ``sale_id`` exactly once.

        Returns ``None`` when another trigger is already closing the sale or
        the sale is no longer active. Store failures propagate as
        :class:`SaleStoreError` after the processing marker is released.
        """
        if not self._guard.acquire(sale_id):
            log.debug("Sale %s already finalizing; ignoring %s trigger", sale_id, trigger)
            return None
        try:
            sale = await self._store_call(self._store.get_sale, sale_id)
            if sale is None or not sale.is_active:
                log.debug("Sale %s is not active; ignoring %s trigger", sale_id, trigger)
                return None

            entrants: list[Entrant] = await self._store_call(
                self._store.list_entrants, sale_id
            )
            winners = []
            if entrants:
                k = min(sale.winner_count, len(entrants))
                drawn = self._selector([e.participant_id for e in entrants], k)
                winners = await self._store_call(
                    self._store.add_winners,
                    sale_id,
                    [(pid, position) for position, pid in enumerate(drawn, start=1)],
                )

            committed = await self._store_call(
                self._store.set_status, sale_id, SaleStatus.ENDED
            )
            if not committed:
                log.error("Sale %s left the active state during finalize", sale_id)
                return None

            self.disarm(sale_id)
            self._projector.untrack(sale_id)
            await self._projector.settle(sale_id)
            ended = dataclasses.replace(sale, status=SaleStatus.ENDED)
            outcome = FinalizeOutcome(
                sale=ended, winners=winners, entrant_count=len(entrants)
            )
            log.info(
                "Sale %s ended by %s with %s winner(s) from %s entrant(s)%s",
                sale_id,
                trigger,
                len(winners),
                len(entrants),
                " (short sale)" if outcome.short_sale and entrants else "",
            )
            await self._publish(outcome, entrants)
            return outcome
        finally:
            self._guard.release(sale_id)

    async def _publish(self, outcome: FinalizeOutcome, entrants: list[Entrant]) -> None:
        sale = outcome.sale
        if entrants:
            await call_notifier(
                f"results for sale {sale.sale_id}",
                self._notifier.on_sale_finalized(
                    sale, outcome.winners, outcome.short_sale
                ),
                timeout=self._config.notify_timeout,
            )
        else:
            await call_notifier(
                f"no-entrants notice for sale {sale.sale_id}",
                self._notifier.on_sale_without_entrants(sale),
                timeout=self._config.notify_timeout,
            )

        if self._sync is not None:
            await call_notifier(
                f"report sync for sale {sale.sale_id}",
                self._sync.push(sale, outcome.winners, entrants),
                timeout=self._config.notify_timeout,
            )

    # ----- Manual commands -----
    def _ensure_permitted(self, sale: Sale, actor_id: str | None) -> None:
        if actor_id is None:
            return
        if actor_id == sale.owner_id or actor_id in self._config.manager_ids:
            return
        raise SaleNotPermittedError(
            sale.sale_id, f"User {actor_id} may not manage sale {sale.sale_id}"
        )

    async def trigger_now(
        self, sale_id: str, *, actor_id: str | None = None
    ) -> FinalizeOutcome | None:
        sale = await self._store_call(self._store.get_sale, sale_id)
        if sale is None:
            raise SaleNotFoundError(sale_id, f"No sale found with id {sale_id}")
        self._ensure_permitted(sale, actor_id)
        return await self.finalize(sale_id, trigger="manual")

    async def cancel(self, sale_id: str, *, actor_id: str | None = None) -> Sale:
        if not self._guard.acquire(sale_id):
            raise SaleFinalizingError(sale_id, f"Sale {sale_id} is finalizing")
        try:
            sale = await self._store_call(self._store.get_sale, sale_id)
            if sale is None:
                raise SaleNotFoundError(sale_id, f"No sale found with id {sale_id}")
            self._ensure_permitted(sale, actor_id)
            if not sale.is_active:
                raise SaleAlreadyEndedError(
                    sale_id, f"Sale {sale_id} is already {sale.status.value}"
                )
            committed = await self._store_call(
                self._store.set_status, sale_id, SaleStatus.CANCELLED
            )
            if not committed:
                raise SaleAlreadyEndedError(sale_id, f"Sale {sale_id} is no longer active")

            self.disarm(sale_id)
            self._projector.untrack(sale_id)
            await self._projector.settle(sale_id)
            cancelled = dataclasses.replace(sale, status=SaleStatus.CANCELLED)
            log.info("Sale %s cancelled", sale_id)
            await call_notifier(
                f"cancellation of sale {sale_id}",
                self._notifier.on_sale_cancelled(cancelled),
                timeout=self._config.notify_timeout,
            )
            return cancelled
        finally:
            self._guard.release(sale_id)

    # ----- Sweep and recovery -----
    async def sweep_overdue(self) -> int:
        """Finalize overdue active sales and re-arm any that lost their timer."""
        try:
            sales = await self._store_call(self._store.list_active_sales)
        except SaleStoreError as exc:
            log.exception("Sweep failed to list active sales: %s", exc)
            return 0

        now = utc_now()
        finalized = 0
        for sale in sales:
            if sale.ends_at > now:
                if not self.is_armed(sale.sale_id):
                    # Missed by recovery or a dropped timer.
                    self.register(sale)
                continue
            try:
                if await self.finalize(sale.sale_id, trigger="sweep") is not None:
                    finalized += 1
            except Exception as exc:  # pylint: disable=broad-except
                log.exception("Failed to finalize sale %s: %s", sale.sale_id, exc)
        if finalized:
            log.info("Fallback sweep closed %s overdue sale(s)", finalized)
        return finalized

    @tasks.loop(seconds=5)
    async def fallback_sweep(self) -> None:
        await self.sweep_overdue()

    async def recover(self) -> int:
        """Re-arm and re-track every active sale held by the store."""
        sales = await self._store_call(self._store.list_active_sales)
        for sale in sales:
            self.register(sale)
        log.info("Recovered %s active sale(s)", len(sales))
        return len(sales)

    async def start(self) -> None:
        if not self.fallback_sweep.is_running():
            self.fallback_sweep.start()
        self._projector.start()
        try:
            await self.recover()
        except SaleStoreError as exc:
            # Overdue sales are still picked up by the sweep.
            log.error("Startup recovery failed; relying on fallback sweep: %s", exc)
        log.info(
            "Lifecycle scheduler started (%ss fallback sweep)",
            self._config.sweep_interval,
        )

    def stop(self) -> None:
        if self.fallback_sweep.is_running():
            self.fallback_sweep.cancel()
        self._projector.stop()
        for sale_id in list(self._timers):
            self.disarm(sale_id)
        log.info("Lifecycle scheduler stopped")
