from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta


class InvalidValueError(ValueError):
    """Base exception for validation failures."""


_DURATION_PATTERN = re.compile(r"^(\d+)([smhdy])?$", re.IGNORECASE)
_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
    "y": 365 * 24 * 60 * 60,
}

MIN_DURATION = timedelta(seconds=1)
MAX_WINNERS = 100
MAX_LABEL_LENGTH = 200


def parse_duration(raw: str, *, max_duration: timedelta | None = None) -> timedelta:
    """Parse ``30s``, ``5m``, ``2h``, ``7d`` or ``1y``; bare numbers are seconds."""
    value = raw.strip()
    match = _DURATION_PATTERN.match(value)
    if not match:
        raise InvalidValueError(f"Invalid duration format: {raw}")
    unit = (match.group(2) or "s").lower()
    duration = timedelta(seconds=int(match.group(1)) * _UNIT_SECONDS[unit])
    if duration < MIN_DURATION:
        raise InvalidValueError(f"Duration too short: {raw} (minimum 1s)")
    limit = max_duration or timedelta(days=2 * 365)
    if duration > limit:
        raise InvalidValueError(f"Duration too long: {raw}")
    return duration


def validate_winner_count(winner_count: int) -> int:
    if winner_count < 1:
        raise InvalidValueError("Winner count must be at least 1")
    if winner_count > MAX_WINNERS:
        raise InvalidValueError(f"Winner count above {MAX_WINNERS} is not supported")
    return winner_count


def validate_item_label(raw: str) -> str:
    label = raw.strip()
    if not label:
        raise InvalidValueError("Item label cannot be empty")
    if len(label) > MAX_LABEL_LENGTH:
        raise InvalidValueError(
            f"Item label must be {MAX_LABEL_LENGTH} characters or fewer"
        )
    return label


def format_time_remaining(ends_at: datetime, now: datetime | None = None) -> str:
    """Render the largest whole unit left before ``ends_at``."""
    current = now or datetime.now(UTC)
    remaining = (ends_at - current).total_seconds()
    if remaining <= 0:
        return "Ended"
    seconds = int(remaining)
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"
