from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import ClassVar

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    return datetime.now(UTC)


def format_timestamp(value: datetime) -> str:
    """Return ``value`` as an ISO-8601 UTC string (ms precision)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return value.strftime(ISO_FORMAT)[:-4] + "Z"


def parse_timestamp(raw: object) -> datetime:
    """Parse stored timestamps into aware UTC datetimes."""
    text = str(raw or "").strip()
    if not text:
        raise ValueError("Timestamp value is empty")
    parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


class SaleStatus(str, enum.Enum):
    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class Sale:
    sale_id: str
    scope_id: str
    owner_id: str
    item_label: str
    winner_count: int
    ends_at: datetime
    status: SaleStatus = SaleStatus.ACTIVE
    created_at: datetime | None = None
    external_ref: str | None = None

    PK_TEMPLATE: ClassVar[str] = "SALE#%s"
    SK_VALUE: ClassVar[str] = "META"
    RECORD_TYPE: ClassVar[str] = "SALE"

    @classmethod
    def key(cls, sale_id: str) -> dict[str, str]:
        return {"pk": cls.PK_TEMPLATE % sale_id, "sk": cls.SK_VALUE}

    @property
    def is_active(self) -> bool:
        return self.status is SaleStatus.ACTIVE

    def seconds_remaining(self, now: datetime | None = None) -> float:
        return (self.ends_at - (now or utc_now())).total_seconds()

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.sale_id)
        item.update(
            {
                "record_type": self.RECORD_TYPE,
                "sale_id": self.sale_id,
                "scope_id": self.scope_id,
                "owner_id": self.owner_id,
                "item_label": self.item_label,
                "winner_count": self.winner_count,
                "ends_at": format_timestamp(self.ends_at),
                "status": self.status.value,
                "created_at": format_timestamp(self.created_at or utc_now()),
            }
        )
        if self.external_ref is not None:
            item["external_ref"] = self.external_ref
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> Sale:
        sale_id = item.get("sale_id")
        if sale_id is None:
            sale_id = str(item["pk"]).split("#", 1)[1]
        created_raw = item.get("created_at")
        external_ref = item.get("external_ref")
        return cls(
            sale_id=str(sale_id),
            scope_id=str(item.get("scope_id", "")),
            owner_id=str(item.get("owner_id", "")),
            item_label=str(item.get("item_label", "")),
            winner_count=int(item.get("winner_count", 1)),
            ends_at=parse_timestamp(item.get("ends_at")),
            status=SaleStatus(str(item.get("status", SaleStatus.ACTIVE.value))),
            created_at=parse_timestamp(created_raw) if created_raw else None,
            external_ref=str(external_ref) if external_ref is not None else None,
        )


@dataclass(slots=True)
class Entrant:
    sale_id: str
    participant_id: str
    joined_at: datetime

    SK_PREFIX: ClassVar[str] = "ENTRANT#"
    RECORD_TYPE: ClassVar[str] = "ENTRANT"

    @classmethod
    def key(cls, sale_id: str, participant_id: str) -> dict[str, str]:
        return {
            "pk": Sale.PK_TEMPLATE % sale_id,
            "sk": f"{cls.SK_PREFIX}{participant_id}",
        }

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.sale_id, self.participant_id)
        item.update(
            {
                "record_type": self.RECORD_TYPE,
                "participant_id": self.participant_id,
                "joined_at": format_timestamp(self.joined_at),
            }
        )
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> Entrant:
        sale_id = str(item["pk"]).split("#", 1)[1]
        participant_id = item.get("participant_id")
        if participant_id is None:
            participant_id = str(item["sk"])[len(cls.SK_PREFIX) :]
        return cls(
            sale_id=sale_id,
            participant_id=str(participant_id),
            joined_at=parse_timestamp(item.get("joined_at")),
        )


@dataclass(slots=True)
class WinnerRecord:
    sale_id: str
    participant_id: str
    position: int
    selected_at: datetime

    SK_PREFIX: ClassVar[str] = "WINNER#"
    RECORD_TYPE: ClassVar[str] = "WINNER"

    @classmethod
    def key(cls, sale_id: str, position: int) -> dict[str, str]:
        return {
            "pk": Sale.PK_TEMPLATE % sale_id,
            "sk": f"{cls.SK_PREFIX}{position:04d}",
        }

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.sale_id, self.position)
        item.update(
            {
                "record_type": self.RECORD_TYPE,
                "participant_id": self.participant_id,
                "position": self.position,
                "selected_at": format_timestamp(self.selected_at),
            }
        )
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> WinnerRecord:
        return cls(
            sale_id=str(item["pk"]).split("#", 1)[1],
            participant_id=str(item["participant_id"]),
            position=int(item["position"]),
            selected_at=parse_timestamp(item.get("selected_at")),
        )


@dataclass(frozen=True, slots=True)
class SaleProjection:
    time_remaining_label: str
    entry_count: int


@dataclass(frozen=True, slots=True)
class FinalizeOutcome:
    sale: Sale
    winners: list[WinnerRecord]
    entrant_count: int

    @property
    def short_sale(self) -> bool:
        return self.entrant_count < self.sale.winner_count


@dataclass(frozen=True, slots=True)
class SaleStatistics:
    """Totals across every sale in a scope, or across all scopes."""

    total_sales: int = 0
    active_sales: int = 0
    ended_sales: int = 0
    cancelled_sales: int = 0
    total_entries: int = 0
    unique_participants: int = 0
    unique_winners: int = 0
