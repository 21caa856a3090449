from datetime import UTC, datetime, timedelta

import pytest

from flashsale.validation import (
    InvalidValueError,
    format_time_remaining,
    parse_duration,
    validate_item_label,
    validate_winner_count,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("30s", timedelta(seconds=30)),
        ("45", timedelta(seconds=45)),
        ("5m", timedelta(minutes=5)),
        ("2H", timedelta(hours=2)),
        ("7d", timedelta(days=7)),
        ("1y", timedelta(days=365)),
    ],
)
def test_parse_duration_units(raw, expected):
    """Every unit suffix converts to the matching timedelta."""
    assert parse_duration(raw) == expected


@pytest.mark.parametrize("raw", ["", "abc", "5w", "-5s", "1.5h", "0s"])
def test_parse_duration_rejects_invalid_input(raw):
    """Malformed or out-of-range durations are rejected."""
    with pytest.raises(InvalidValueError):
        parse_duration(raw)


def test_parse_duration_respects_maximum():
    """Durations over the limit are rejected."""
    with pytest.raises(InvalidValueError):
        parse_duration("31d", max_duration=timedelta(days=30))
    with pytest.raises(InvalidValueError):
        parse_duration("3y")


def test_validate_winner_count_bounds():
    """Winner counts must lie between 1 and 100."""
    assert validate_winner_count(1) == 1
    assert validate_winner_count(100) == 100
    with pytest.raises(InvalidValueError):
        validate_winner_count(0)
    with pytest.raises(InvalidValueError):
        validate_winner_count(101)


def test_validate_item_label_strips_and_bounds():
    """Labels are stripped and must be 1 to 200 characters."""
    assert validate_item_label("  GMK Olivia  ") == "GMK Olivia"
    with pytest.raises(InvalidValueError):
        validate_item_label("   ")
    with pytest.raises(InvalidValueError):
        validate_item_label("x" * 201)


@pytest.mark.parametrize(
    ("remaining", "label"),
    [
        (timedelta(seconds=-1), "Ended"),
        (timedelta(0), "Ended"),
        (timedelta(milliseconds=500), "0s"),
        (timedelta(seconds=59), "59s"),
        (timedelta(minutes=5, seconds=30), "5m"),
        (timedelta(hours=3, minutes=59), "3h"),
        (timedelta(days=2, hours=5), "2d"),
    ],
)
def test_format_time_remaining(remaining, label):
    """The label picks the largest fitting units."""
    now = datetime(2030, 1, 1, tzinfo=UTC)
    assert format_time_remaining(now + remaining, now) == label
