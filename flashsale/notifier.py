"""Presentation-side collaborators notified by the scheduler and projector."""

from __future__ import annotations

import datetime
import logging
from typing import Protocol

import discord
import discord.abc

from .models import Sale, SaleProjection, SaleStatistics, WinnerRecord

log = logging.getLogger("flash-sale.notifier")

ACTIVE_COLOUR = discord.Colour(0x5865F2)
ENDED_COLOUR = discord.Colour(0x808080)
WINNER_COLOUR = discord.Colour(0x00FF00)
EMPTY_COLOUR = discord.Colour(0xFF0000)


class SaleNotifier(Protocol):
    async def on_sale_finalized(
        self, sale: Sale, winners: list[WinnerRecord], short_sale: bool
    ) -> None: ...

    async def on_sale_without_entrants(self, sale: Sale) -> None: ...

    async def on_sale_cancelled(self, sale: Sale) -> None: ...

    async def on_sale_progress(self, sale: Sale, projection: SaleProjection) -> None: ...


def parse_external_ref(ref: str | None) -> tuple[int, int | None] | None:
    """Split ``"<channel_id>:<message_id>"`` into integers."""
    if not ref:
        return None
    channel_raw, _, message_raw = ref.partition(":")
    try:
        channel_id = int(channel_raw)
    except ValueError:
        return None
    try:
        message_id = int(message_raw) if message_raw else None
    except ValueError:
        message_id = None
    return channel_id, message_id


def _ensure_messageable_channel(channel: object) -> discord.abc.Messageable | None:
    """Return the channel if it can accept messages, otherwise ``None``."""

    if channel is None:
        return None

    if isinstance(channel, discord.TextChannel):
        return channel

    send = getattr(channel, "send", None)
    if callable(send):
        return channel

    return None


def _winner_mentions(winners: list[WinnerRecord]) -> str:
    return "\n".join(
        f"{record.position}. <@{record.participant_id}>"
        for record in sorted(winners, key=lambda record: record.position)
    )


def build_progress_embed(sale: Sale, projection: SaleProjection) -> discord.Embed:
    label = projection.time_remaining_label
    plural = "s" if sale.winner_count != 1 else ""
    embed = discord.Embed(
        title=sale.item_label, colour=ACTIVE_COLOUR, timestamp=sale.ends_at
    )
    embed.add_field(
        name="Ends in", value="Ending..." if label == "Ended" else label, inline=False
    )
    embed.add_field(name="Entries", value=str(projection.entry_count), inline=False)
    embed.add_field(
        name="Winner(s)",
        value=f"{sale.winner_count} winner{plural} will be drawn",
        inline=False,
    )
    embed.set_footer(text="React with 🎉 to enter!")
    return embed


def build_closed_embed(
    sale: Sale, winners: list[WinnerRecord], *, entry_count: int | None = None
) -> discord.Embed:
    embed = discord.Embed(
        title=sale.item_label,
        colour=ENDED_COLOUR,
        timestamp=datetime.datetime.now(tz=datetime.UTC),
    )
    embed.add_field(
        name="Ended",
        value=f"<t:{int(datetime.datetime.now(tz=datetime.UTC).timestamp())}:R>",
        inline=False,
    )
    if entry_count is not None:
        embed.add_field(name="Entries", value=str(entry_count), inline=False)
    embed.add_field(
        name="Winner(s)", value=_winner_mentions(winners) or "No winners", inline=False
    )
    embed.set_footer(text="Sale ended")
    return embed


def build_announcement_embed(
    sale: Sale, winners: list[WinnerRecord], short_sale: bool
) -> discord.Embed:
    embed = discord.Embed(
        title=f"🎉 {sale.item_label} Winners",
        description=_winner_mentions(winners),
        colour=WINNER_COLOUR,
        timestamp=datetime.datetime.now(tz=datetime.UTC),
    )
    embed.add_field(name="Winners Drawn", value=str(len(winners)), inline=True)
    embed.add_field(name="Requested", value=str(sale.winner_count), inline=True)
    if short_sale:
        embed.add_field(
            name="Short Sale",
            value="Fewer entrants than winner slots; every entrant won.",
            inline=False,
        )
    embed.add_field(name="Sponsor", value=f"<@{sale.owner_id}>", inline=False)
    return embed


def build_statistics_embed(
    overall: SaleStatistics, scoped: SaleStatistics | None = None
) -> discord.Embed:
    embed = discord.Embed(title="📊 Flash Sale Statistics", colour=ACTIVE_COLOUR)
    embed.add_field(name="Total Sales", value=str(overall.total_sales), inline=True)
    embed.add_field(name="Active Sales", value=str(overall.active_sales), inline=True)
    embed.add_field(name="Completed Sales", value=str(overall.ended_sales), inline=True)
    embed.add_field(
        name="Unique Participants", value=str(overall.unique_participants), inline=True
    )
    embed.add_field(name="Total Winners", value=str(overall.unique_winners), inline=True)
    if scoped is not None:
        embed.add_field(
            name="This Server",
            value=(
                f"Sales: {scoped.total_sales}\n"
                f"Active: {scoped.active_sales}\n"
                f"Entries: {scoped.total_entries}"
            ),
            inline=False,
        )
    return embed


class DiscordSaleNotifier:
    """Publishes sale progress and results to the sale's Discord message."""

    def __init__(self, bot: discord.Client) -> None:
        self._bot = bot

    async def _channel(self, channel_id: int) -> discord.abc.Messageable | None:
        cached = _ensure_messageable_channel(self._bot.get_channel(channel_id))
        if cached is not None:
            return cached
        try:
            fetched = await self._bot.fetch_channel(channel_id)
        except discord.DiscordException as exc:  # pragma: no cover - network failure
            log.warning("Failed to fetch channel %s: %s", channel_id, exc)
            return None
        return _ensure_messageable_channel(fetched)

    async def _resolve(self, sale: Sale):
        ref = parse_external_ref(sale.external_ref)
        if ref is None:
            log.debug("Sale %s has no display reference", sale.sale_id)
            return None, None
        channel_id, message_id = ref
        channel = await self._channel(channel_id)
        if channel is None or message_id is None:
            return channel, None
        message = await channel.fetch_message(message_id)
        return channel, message

    async def on_sale_progress(self, sale: Sale, projection: SaleProjection) -> None:
        embed = build_progress_embed(sale, projection)
        _, message = await self._resolve(sale)
        if message is not None:
            await message.edit(embed=embed)

    async def on_sale_finalized(
        self, sale: Sale, winners: list[WinnerRecord], short_sale: bool
    ) -> None:
        closed = build_closed_embed(sale, winners)
        announcement = build_announcement_embed(sale, winners, short_sale)
        channel, message = await self._resolve(sale)
        if message is not None:
            await message.edit(embed=closed)
        if channel is None:
            return
        await channel.send(embed=announcement)
        for record in winners:
            await channel.send(
                f"🎊 Congratulations <@{record.participant_id}>! 🎊\n"
                f"> Contact <@{sale.owner_id}> to claim your **{sale.item_label}**!"
            )

    async def on_sale_without_entrants(self, sale: Sale) -> None:
        embed = discord.Embed(
            title="😢 SALE ENDED 😢",
            description=f"**{sale.item_label}**\n\nNo one entered the sale!",
            colour=EMPTY_COLOUR,
            timestamp=datetime.datetime.now(tz=datetime.UTC),
        )
        embed.set_footer(text=f"Sale ID: {sale.sale_id}")
        channel, message = await self._resolve(sale)
        if message is not None:
            await message.edit(embed=build_closed_embed(sale, [], entry_count=0))
        if channel is not None:
            await channel.send(embed=embed)

    async def on_sale_cancelled(self, sale: Sale) -> None:
        embed = discord.Embed(
            title=sale.item_label,
            description="This sale was cancelled.",
            colour=ENDED_COLOUR,
        )
        embed.set_footer(text="Sale cancelled")
        _, message = await self._resolve(sale)
        if message is not None:
            await message.edit(embed=embed)
