from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from flashsale.models import (
    Entrant,
    Sale,
    SaleStatistics,
    SaleStatus,
    WinnerRecord,
    utc_now,
)


def make_sale(
    sale_id: str = "sale-1",
    *,
    ends_in: float = 60.0,
    winner_count: int = 1,
    owner_id: str = "owner",
    scope_id: str = "guild-1",
    status: SaleStatus = SaleStatus.ACTIVE,
) -> Sale:
    now = utc_now()
    return Sale(
        sale_id=sale_id,
        scope_id=scope_id,
        owner_id=owner_id,
        item_label="Mechanical Keycap Set",
        winner_count=winner_count,
        ends_at=now + timedelta(seconds=ends_in),
        status=status,
        created_at=now,
        external_ref="100:200",
    )


class MemoryStore:
    """Thread-safe in-memory SaleStore used by scheduler and projector tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.sales: dict[str, Sale] = {}
        self.entrants: dict[str, dict[str, Entrant]] = {}
        self.winners: dict[str, list[WinnerRecord]] = {}
        self.status_writes: list[tuple[str, SaleStatus]] = []
        self.winner_writes: list[str] = []
        self.failures: dict[str, Exception] = {}
        self.gates: dict[str, threading.Event] = {}

    def _check(self, name: str) -> None:
        gate = self.gates.get(name)
        if gate is not None:
            gate.wait(timeout=5)
        failure = self.failures.get(name)
        if failure is not None:
            raise failure

    def create_sale(self, sale: Sale) -> None:
        self._check("create_sale")
        with self._lock:
            self.sales[sale.sale_id] = sale
            self.entrants.setdefault(sale.sale_id, {})

    def get_sale(self, sale_id: str) -> Sale | None:
        self._check("get_sale")
        with self._lock:
            return self.sales.get(sale_id)

    def list_active_sales(self, scope_id: str | None = None) -> list[Sale]:
        self._check("list_active_sales")
        with self._lock:
            return [
                sale
                for sale in self.sales.values()
                if sale.is_active and (scope_id is None or sale.scope_id == scope_id)
            ]

    def set_status(self, sale_id: str, status: SaleStatus) -> bool:
        self._check("set_status")
        with self._lock:
            sale = self.sales.get(sale_id)
            if sale is None or not sale.is_active:
                return False
            sale.status = status
            self.status_writes.append((sale_id, status))
            return True

    def add_entrant(self, sale_id: str, participant_id: str) -> bool:
        self._check("add_entrant")
        with self._lock:
            sale = self.sales.get(sale_id)
            if sale is None or not sale.is_active:
                return False
            bucket = self.entrants.setdefault(sale_id, {})
            if participant_id in bucket:
                return False
            bucket[participant_id] = Entrant(sale_id, participant_id, utc_now())
            return True

    def remove_entrant(self, sale_id: str, participant_id: str) -> bool:
        self._check("remove_entrant")
        with self._lock:
            sale = self.sales.get(sale_id)
            if sale is None or not sale.is_active:
                return False
            return self.entrants.get(sale_id, {}).pop(participant_id, None) is not None

    def list_entrants(self, sale_id: str) -> list[Entrant]:
        self._check("list_entrants")
        with self._lock:
            return list(self.entrants.get(sale_id, {}).values())

    def entrant_count(self, sale_id: str) -> int:
        self._check("entrant_count")
        with self._lock:
            return len(self.entrants.get(sale_id, {}))

    def add_winners(self, sale_id, winners) -> list[WinnerRecord]:
        self._check("add_winners")
        now = utc_now()
        records = [
            WinnerRecord(sale_id, participant_id, position, now)
            for participant_id, position in winners
        ]
        with self._lock:
            self.winners[sale_id] = records
            self.winner_writes.append(sale_id)
        return records

    def list_winners(self, sale_id: str) -> list[WinnerRecord]:
        with self._lock:
            return list(self.winners.get(sale_id, []))

    def sale_statistics(self, scope_id: str | None = None) -> SaleStatistics:
        with self._lock:
            sales = [
                sale
                for sale in self.sales.values()
                if scope_id is None or sale.scope_id == scope_id
            ]
            entries = [
                participant_id
                for sale in sales
                for participant_id in self.entrants.get(sale.sale_id, {})
            ]
            winners = {
                record.participant_id
                for sale in sales
                for record in self.winners.get(sale.sale_id, [])
            }
        return SaleStatistics(
            total_sales=len(sales),
            active_sales=sum(sale.status is SaleStatus.ACTIVE for sale in sales),
            ended_sales=sum(sale.status is SaleStatus.ENDED for sale in sales),
            cancelled_sales=sum(sale.status is SaleStatus.CANCELLED for sale in sales),
            total_entries=len(entries),
            unique_participants=len(set(entries)),
            unique_winners=len(winners),
        )


class RecordingNotifier:
    """Collects collaborator notifications in emission order."""

    def __init__(self) -> None:
        self.events: list[tuple] = []
        self.failures: dict[str, Exception] = {}

    def _record(self, name: str, *payload) -> None:
        self.events.append((name, *payload))
        failure = self.failures.get(name)
        if failure is not None:
            raise failure

    async def on_sale_finalized(self, sale, winners, short_sale) -> None:
        self._record("finalized", sale.sale_id, list(winners), short_sale)

    async def on_sale_without_entrants(self, sale) -> None:
        self._record("no_entrants", sale.sale_id)

    async def on_sale_cancelled(self, sale) -> None:
        self._record("cancelled", sale.sale_id)

    async def on_sale_progress(self, sale, projection) -> None:
        self._record("progress", sale.sale_id, projection)

    def names(self, sale_id: str | None = None) -> list[str]:
        return [
            event[0]
            for event in self.events
            if sale_id is None or event[1] == sale_id
        ]


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(name="make_sale")
def make_sale_fixture():
    return make_sale
