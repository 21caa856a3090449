from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable
from typing import Protocol

from boto3.dynamodb.conditions import Attr, Key
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError

from .models import (
    Entrant,
    Sale,
    SaleStatistics,
    SaleStatus,
    WinnerRecord,
    format_timestamp,
    utc_now,
)

log = logging.getLogger("flash-sale.storage")

_SERIALIZER = TypeSerializer()


class SaleStore(Protocol):
    """Durable state the scheduler depends on."""

    def create_sale(self, sale: Sale) -> None: ...

    def get_sale(self, sale_id: str) -> Sale | None: ...

    def list_active_sales(self, scope_id: str | None = None) -> list[Sale]: ...

    def set_status(self, sale_id: str, status: SaleStatus) -> bool: ...

    def add_entrant(self, sale_id: str, participant_id: str) -> bool: ...

    def remove_entrant(self, sale_id: str, participant_id: str) -> bool: ...

    def list_entrants(self, sale_id: str) -> list[Entrant]: ...

    def entrant_count(self, sale_id: str) -> int: ...

    def add_winners(
        self, sale_id: str, winners: Iterable[tuple[str, int]]
    ) -> list[WinnerRecord]: ...

    def list_winners(self, sale_id: str) -> list[WinnerRecord]: ...

    def sale_statistics(self, scope_id: str | None = None) -> SaleStatistics: ...


def _serialize(item: dict[str, object]) -> dict[str, object]:
    """Low-level attribute values for client calls such as transactions."""
    return {name: _SERIALIZER.serialize(value) for name, value in item.items()}


def _is_conditional_failure(exc: ClientError) -> bool:
    code = exc.response.get("Error", {}).get("Code")
    return code == "ConditionalCheckFailedException"


class DynamoSaleStore:
    """Single-table DynamoDB implementation of :class:`SaleStore`."""

    def __init__(self, table) -> None:
        self._table = table

    def ensure_table(self) -> None:
        if self._table is None:
            raise RuntimeError("Sale table is not configured")

    # ----- Sales -----
    def create_sale(self, sale: Sale) -> None:
        self.ensure_table()
        if sale.created_at is None:
            sale.created_at = utc_now()
        self._table.put_item(
            Item=sale.to_item(),
            ConditionExpression="attribute_not_exists(pk)",
        )
        log.debug("Sale %s created", sale.sale_id)

    def get_sale(self, sale_id: str) -> Sale | None:
        self.ensure_table()
        resp = self._table.get_item(Key=Sale.key(sale_id))
        item = resp.get("Item")
        if not item:
            return None
        return Sale.from_item(item)

    def _scan(self, condition) -> list[dict]:
        scan_kwargs: dict[str, object] = {"FilterExpression": condition}
        items: list[dict] = []
        while True:
            resp = self._table.scan(**scan_kwargs)
            items.extend(resp.get("Items", []))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                break
            scan_kwargs["ExclusiveStartKey"] = last_key
        return items

    def list_active_sales(self, scope_id: str | None = None) -> list[Sale]:
        self.ensure_table()
        condition = Attr("record_type").eq(Sale.RECORD_TYPE) & Attr("status").eq(
            SaleStatus.ACTIVE.value
        )
        if scope_id is not None:
            condition = condition & Attr("scope_id").eq(scope_id)
        sales = [Sale.from_item(item) for item in self._scan(condition)]
        sales.sort(key=lambda sale: (sale.ends_at, sale.sale_id))
        return sales

    def set_status(self, sale_id: str, status: SaleStatus) -> bool:
        """Move an active sale to ``status``; False when it is no longer active."""
        self.ensure_table()
        try:
            self._table.update_item(
                Key=Sale.key(sale_id),
                UpdateExpression="SET #status = :status, updated_at = :updated",
                ConditionExpression="attribute_exists(pk) AND #status = :active",
                ExpressionAttributeNames={"#status": "status"},
                ExpressionAttributeValues={
                    ":status": status.value,
                    ":active": SaleStatus.ACTIVE.value,
                    ":updated": format_timestamp(utc_now()),
                },
            )
        except ClientError as exc:
            if _is_conditional_failure(exc):
                return False
            raise
        return True

    # ----- Entrants -----
    def _active_check(self, sale_id: str) -> dict[str, object]:
        return {
            "ConditionCheck": {
                "TableName": self._table.name,
                "Key": _serialize(Sale.key(sale_id)),
                "ConditionExpression": "#status = :active",
                "ExpressionAttributeNames": {"#status": "status"},
                "ExpressionAttributeValues": {
                    ":active": _SERIALIZER.serialize(SaleStatus.ACTIVE.value)
                },
            }
        }

    def _transact(self, items: list[dict[str, object]]) -> bool:
        try:
            self._table.meta.client.transact_write_items(TransactItems=items)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "TransactionCanceledException":
                return False
            raise
        return True

    def add_entrant(self, sale_id: str, participant_id: str) -> bool:
        """Record an entry; the sale must be active when the write commits."""
        self.ensure_table()
        entrant = Entrant(sale_id=sale_id, participant_id=participant_id, joined_at=utc_now())
        accepted = self._transact(
            [
                self._active_check(sale_id),
                {
                    "Put": {
                        "TableName": self._table.name,
                        "Item": _serialize(entrant.to_item()),
                        "ConditionExpression": "attribute_not_exists(sk)",
                    }
                },
            ]
        )
        if not accepted:
            log.debug("Sale %s refused entry from %s", sale_id, participant_id)
        return accepted

    def remove_entrant(self, sale_id: str, participant_id: str) -> bool:
        self.ensure_table()
        return self._transact(
            [
                self._active_check(sale_id),
                {
                    "Delete": {
                        "TableName": self._table.name,
                        "Key": _serialize(Entrant.key(sale_id, participant_id)),
                        "ConditionExpression": "attribute_exists(sk)",
                    }
                },
            ]
        )

    def _query_prefix(self, sale_id: str, prefix: str, *, select: str) -> dict:
        query_kwargs: dict[str, object] = {
            "KeyConditionExpression": Key("pk").eq(Sale.PK_TEMPLATE % sale_id)
            & Key("sk").begins_with(prefix),
            "Select": select,
        }
        items: list[dict] = []
        count = 0
        while True:
            resp = self._table.query(**query_kwargs)
            items.extend(resp.get("Items", []))
            count += int(resp.get("Count", 0))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                break
            query_kwargs["ExclusiveStartKey"] = last_key
        return {"Items": items, "Count": count}

    def list_entrants(self, sale_id: str) -> list[Entrant]:
        self.ensure_table()
        resp = self._query_prefix(sale_id, Entrant.SK_PREFIX, select="ALL_ATTRIBUTES")
        entrants = [Entrant.from_item(item) for item in resp["Items"]]
        entrants.sort(key=lambda entrant: (entrant.joined_at, entrant.participant_id))
        return entrants

    def entrant_count(self, sale_id: str) -> int:
        self.ensure_table()
        return self._query_prefix(sale_id, Entrant.SK_PREFIX, select="COUNT")["Count"]

    # ----- Winners -----
    def add_winners(
        self, sale_id: str, winners: Iterable[tuple[str, int]]
    ) -> list[WinnerRecord]:
        self.ensure_table()
        selected_at = utc_now()
        records = [
            WinnerRecord(
                sale_id=sale_id,
                participant_id=participant_id,
                position=position,
                selected_at=selected_at,
            )
            for participant_id, position in winners
        ]
        for record in records:
            self._table.put_item(Item=record.to_item())
        return records

    def list_winners(self, sale_id: str) -> list[WinnerRecord]:
        self.ensure_table()
        resp = self._query_prefix(sale_id, WinnerRecord.SK_PREFIX, select="ALL_ATTRIBUTES")
        winners = [WinnerRecord.from_item(item) for item in resp["Items"]]
        winners.sort(key=lambda record: record.position)
        return winners

    # ----- Statistics -----
    def sale_statistics(self, scope_id: str | None = None) -> SaleStatistics:
        """Aggregate sale, entry and winner counts with full table scans."""
        self.ensure_table()
        condition = Attr("record_type").eq(Sale.RECORD_TYPE)
        if scope_id is not None:
            condition = condition & Attr("scope_id").eq(scope_id)
        sales = [Sale.from_item(item) for item in self._scan(condition)]
        sale_keys = {Sale.PK_TEMPLATE % sale.sale_id for sale in sales}

        entries = [
            item
            for item in self._scan(Attr("record_type").eq(Entrant.RECORD_TYPE))
            if item.get("pk") in sale_keys
        ]
        winners = [
            item
            for item in self._scan(Attr("record_type").eq(WinnerRecord.RECORD_TYPE))
            if item.get("pk") in sale_keys
        ]
        statuses = Counter(sale.status for sale in sales)
        return SaleStatistics(
            total_sales=len(sales),
            active_sales=statuses[SaleStatus.ACTIVE],
            ended_sales=statuses[SaleStatus.ENDED],
            cancelled_sales=statuses[SaleStatus.CANCELLED],
            total_entries=len(entries),
            unique_participants=len({item["participant_id"] for item in entries}),
            unique_winners=len({item["participant_id"] for item in winners}),
        )


__all__ = ["DynamoSaleStore", "SaleStore"]
