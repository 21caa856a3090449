"""Flash sale bot runtime composing the store, scheduler and gateway."""

from __future__ import annotations

import asyncio
import datetime
import logging
import uuid

import boto3
import discord

from .config import EnvironmentConfig
from .errors import ConnectionExhaustedError
from .guard import ProcessingGuard, call_store
from .models import Sale, SaleStatistics, utc_now
from .notifier import DiscordSaleNotifier
from .projector import StatusProjector
from .scheduler import LifecycleScheduler
from .storage import DynamoSaleStore
from .supervisor import ConnectionSupervisor
from .sync import ReportSync
from .validation import parse_duration, validate_item_label, validate_winner_count

log = logging.getLogger("flash-sale")

RECONNECTABLE_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    asyncio.TimeoutError,
    discord.GatewayNotFound,
    discord.ConnectionClosed,
    discord.HTTPException,
)


class SaleRuntime:
    def __init__(
        self,
        config: EnvironmentConfig,
        *,
        bot: discord.Client | None = None,
        store=None,
    ) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.reactions = True

        self.config = config
        self.bot = bot or discord.Client(intents=intents)
        if store is None:
            dynamodb = boto3.resource("dynamodb", region_name=config.aws_region)
            store = DynamoSaleStore(dynamodb.Table(config.sale_table_name))
        self.store = store
        self.guard = ProcessingGuard()
        self.notifier = DiscordSaleNotifier(self.bot)
        self.sync = ReportSync(config.sync, resolve_name=self._resolve_username)
        self.projector = StatusProjector(
            self.store,
            self.notifier,
            self.guard,
            store_timeout=config.scheduler.store_timeout,
            notify_timeout=config.scheduler.notify_timeout,
            quiesce_seconds=config.scheduler.quiesce_seconds,
        )
        self.scheduler = LifecycleScheduler(
            self.store,
            self.notifier,
            self.projector,
            self.guard,
            sync=self.sync,
            config=config.scheduler,
        )
        self.supervisor = ConnectionSupervisor(config.supervisor)
        self._scheduler_started = False
        self.bot.event(self.on_ready)

    async def _resolve_username(self, user_id: str) -> str | None:
        user = self.bot.get_user(int(user_id))
        if user is None:
            user = await self.bot.fetch_user(int(user_id))
        return user.name if user else None

    async def on_ready(self) -> None:
        self.supervisor.on_success()
        if not self._scheduler_started:
            self._scheduler_started = True
            try:
                await self.scheduler.start()
            except Exception:
                # Let the next ready event try again.
                self._scheduler_started = False
                raise
        log.info("Flash sale bot ready as %s", self.bot.user)

    # ----- Commands consumed by the presentation layer -----
    async def open_sale(
        self,
        *,
        scope_id: str,
        owner_id: str,
        item_label: str,
        duration: str | datetime.timedelta,
        winner_count: int | None = None,
        external_ref: str | None = None,
    ) -> Sale:
        if isinstance(duration, str):
            duration = parse_duration(
                duration,
                max_duration=datetime.timedelta(days=self.config.max_duration_days),
            )
        now = utc_now()
        sale = Sale(
            sale_id=str(uuid.uuid4()),
            scope_id=scope_id,
            owner_id=owner_id,
            item_label=validate_item_label(item_label),
            winner_count=validate_winner_count(
                winner_count or self.config.default_winner_count
            ),
            ends_at=now + duration,
            created_at=now,
            external_ref=external_ref,
        )
        await self._store_call(self.store.create_sale, sale)
        self.scheduler.register(sale)
        log.info(
            "Sale %s opened for %s (%s winner(s), ends %s)",
            sale.sale_id,
            sale.item_label,
            sale.winner_count,
            sale.ends_at.isoformat(),
        )
        return sale

    async def record_entry(self, sale_id: str, participant_id: str) -> bool:
        return await self._store_call(self.store.add_entrant, sale_id, participant_id)

    async def withdraw_entry(self, sale_id: str, participant_id: str) -> bool:
        return await self._store_call(
            self.store.remove_entrant, sale_id, participant_id
        )

    async def active_sales(self, scope_id: str | None = None) -> list[Sale]:
        return await self._store_call(self.store.list_active_sales, scope_id)

    async def sale_statistics(self, scope_id: str | None = None) -> SaleStatistics:
        return await self._store_call(self.store.sale_statistics, scope_id)

    async def _store_call(self, func, *args):
        return await call_store(
            func, *args, timeout=self.config.scheduler.store_timeout
        )

    # ----- Gateway connection -----
    async def run(self) -> None:
        try:
            async with self.bot:
                await self._connect_until_closed()
        finally:
            self.scheduler.stop()

    async def _connect_until_closed(self) -> None:
        while True:
            if self.bot.is_closed():
                self.bot.clear()
            try:
                await self.bot.login(self.config.discord_token)
                await self.bot.connect(reconnect=False)
                log.info("Gateway connection closed")
                return
            except RECONNECTABLE_ERRORS as exc:
                log.warning("Gateway connection failed: %s", exc)
                if not await self.supervisor.should_retry():
                    raise ConnectionExhaustedError(
                        "Reconnect attempts exhausted"
                    ) from exc


async def main() -> None:
    config = EnvironmentConfig.load()
    logging.basicConfig(level=getattr(logging, config.log_level, logging.INFO))
    runtime = SaleRuntime(config)
    await runtime.run()


__all__ = ["SaleRuntime", "main"]
