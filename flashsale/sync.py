"""Best-effort push of finalized sales to the reporting endpoint."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

import requests

from .config import SyncConfig
from .models import Entrant, Sale, WinnerRecord, format_timestamp

log = logging.getLogger("flash-sale.sync")

NameResolver = Callable[[str], Awaitable[str | None]]


class ReportSync:
    def __init__(
        self,
        config: SyncConfig,
        *,
        session: requests.Session | None = None,
        resolve_name: NameResolver | None = None,
    ) -> None:
        self._config = config
        self._session = session or requests.Session()
        self._resolve_name = resolve_name
        self._warned_disabled = False
        if config.enabled:
            log.info("Report sync configured for %s", config.base_url)

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    @property
    def endpoint(self) -> str:
        return f"{self._config.base_url}/api/giveaway"

    async def _lookup(self, user_id: str) -> str | None:
        if self._resolve_name is None:
            return None
        try:
            return await self._resolve_name(user_id)
        except Exception as exc:  # pylint: disable=broad-except
            log.debug("Could not resolve user %s: %s", user_id, exc)
            return None

    async def _names(self, user_ids: list[str]) -> dict[str, str]:
        unique = list(dict.fromkeys(user_ids))
        try:
            resolved = await asyncio.wait_for(
                asyncio.gather(*(self._lookup(user_id) for user_id in unique)),
                timeout=self._config.timeout,
            )
        except asyncio.TimeoutError:
            log.warning("Name lookup timed out for %s users; reporting ids", len(unique))
            resolved = [None] * len(unique)
        return {
            user_id: name or user_id for user_id, name in zip(unique, resolved)
        }

    async def build_payload(
        self, sale: Sale, winners: list[WinnerRecord], entrants: list[Entrant]
    ) -> dict[str, object]:
        names = await self._names(
            [e.participant_id for e in entrants]
            + [w.participant_id for w in winners]
            + [sale.owner_id]
        )
        return {
            "id": sale.sale_id,
            "giveawayId": sale.sale_id,
            "itemName": sale.item_label,
            "status": sale.status.value,
            "winnerCount": sale.winner_count,
            "endsAt": format_timestamp(sale.ends_at),
            "createdAt": format_timestamp(sale.created_at) if sale.created_at else None,
            "creatorId": sale.owner_id,
            "creatorUsername": names[sale.owner_id],
            "participants": [
                {
                    "userId": e.participant_id,
                    "username": names[e.participant_id],
                    "enteredAt": format_timestamp(e.joined_at),
                }
                for e in entrants
            ],
            "winners": [
                {
                    "userId": w.participant_id,
                    "username": names[w.participant_id],
                    "position": w.position,
                }
                for w in sorted(winners, key=lambda record: record.position)
            ],
        }

    async def push(
        self, sale: Sale, winners: list[WinnerRecord], entrants: list[Entrant]
    ) -> bool:
        """Send one report; never retried and never raises on HTTP failure."""
        if not self.enabled:
            if not self._warned_disabled:
                log.warning("Report sync skipped - DEPLOY_SECRET not configured")
                self._warned_disabled = True
            return False

        payload = await self.build_payload(sale, winners, entrants)
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._config.token}",
        }
        try:
            resp = await asyncio.to_thread(
                self._session.post,
                self.endpoint,
                json=payload,
                headers=headers,
                timeout=self._config.timeout,
            )
        except requests.RequestException as exc:
            log.error("Failed to sync sale %s: %s", sale.sale_id, exc)
            return False

        if not resp.ok:
            log.error(
                "Report sync failed for %s: %s %s - %s",
                sale.sale_id,
                resp.status_code,
                resp.reason,
                resp.text,
            )
            return False

        log.info(
            "Synced sale %s; report at %s/report/%s",
            sale.sale_id,
            self._config.base_url,
            sale.sale_id,
        )
        return True
