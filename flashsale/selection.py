"""Cryptographically fair winner selection.

Winners are drawn one at a time from a working copy of the entrant list,
removing each draw so no participant can appear twice. Every index draw
comes from :mod:`secrets` and uses rejection sampling so entrant counts that
are not a power of two do not skew the odds.
"""

import logging
import secrets
from collections import Counter
from collections.abc import Sequence
from typing import TypeVar

log = logging.getLogger("flash-sale.selection")

T = TypeVar("T")


def secure_randbelow(n: int) -> int:
    """Return a uniform integer in ``[0, n)`` from the OS CSPRNG."""
    if n <= 0:
        raise ValueError("n must be positive")
    if n == 1:
        return 0
    byte_count = ((n - 1).bit_length() + 7) // 8
    space = 256**byte_count
    threshold = space - (space % n)
    while True:
        value = int.from_bytes(secrets.token_bytes(byte_count), "little")
        if value < threshold:
            return value % n


def select_winners(entrants: Sequence[T], k: int) -> list[T]:
    """Draw ``k`` unique winners; position 1 is the first draw.

    When ``k`` covers every entrant, all of them are returned in a random
    order rather than join order.
    """
    if k <= 0 or not entrants:
        return []

    pool = list(entrants)
    draws = min(k, len(pool))
    if draws < k:
        log.info("Only %s entrants for %s winner slots; all will win", len(pool), k)

    winners: list[T] = []
    for position in range(1, draws + 1):
        index = secure_randbelow(len(pool))
        winner = pool.pop(index)
        winners.append(winner)
        log.debug("Selected winner %s: %s", position, winner)
    return winners


def win_distribution(entrants: Sequence[T], draws: int, k: int = 1) -> dict[T, float]:
    """Share of ``draws`` each entrant won, for fairness checks."""
    counts: Counter = Counter({entrant: 0 for entrant in entrants})
    for _ in range(draws):
        counts.update(select_winners(entrants, k))
    if draws <= 0:
        return {entrant: 0.0 for entrant in entrants}
    return {entrant: counts[entrant] / draws for entrant in entrants}
