"""
Lexicographic position keys for drag-and-drop task ordering.

A key is one format tag character followed by a fixed-width, zero-padded
decimal segment, e.g. ``a0000001000``. Because every key has the same width,
string order and numeric order agree, so tasks in a column can be sorted by
``position`` directly in SQL or on the client.

New keys are spaced ``STEP`` apart. Inserting between two keys takes the
integer midpoint, so repeated inserts at one spot halve the gap each time and
run out after ``floor(log2(STEP))`` inserts. ``allocate`` signals that with
``PositionSpaceExhausted``; callers then ``rebalance`` the column and retry.
"""

from __future__ import annotations

from typing import Optional

import structlog

from taskdeck.core.errors import PositionSpaceExhausted

log = structlog.get_logger()

POSITION_TAG = "a"
POSITION_WIDTH = 10
STEP = 1000
MAX_VALUE = 10**POSITION_WIDTH - 1


def key_for(value: int) -> str:
    """Encode a numeric segment as a position key."""
    if value < 0 or value > MAX_VALUE:
        raise ValueError(f"Position value out of range: {value}")
    return f"{POSITION_TAG}{value:0{POSITION_WIDTH}d}"


def parse_key(key: Optional[str]) -> int:
    """
    Decode a position key to its numeric segment.

    Malformed keys sort as the lowest priority (0) instead of failing the
    request; they are logged so bad data can be found and rebalanced.
    """
    if key and key[0] == POSITION_TAG and key[1:].isdigit():
        return int(key[1:])
    log.warning("positions.malformed_key", key=key)
    return 0


def initial_key() -> str:
    """Key for the first task in an empty column."""
    return key_for(STEP)


def allocate(before_key: Optional[str], after_key: Optional[str]) -> str:
    """
    Return a key strictly between ``before_key`` and ``after_key``.

    ``before_key`` is the key of the task that ends up immediately above the
    new slot and ``after_key`` the one immediately below; either may be
    ``None`` at a column boundary.

    Raises PositionSpaceExhausted when no such key exists.
    """
    if before_key is None and after_key is None:
        return initial_key()

    if before_key is None:
        upper = parse_key(after_key)
        value = max(upper - STEP, 0)
        if value >= upper:
            raise PositionSpaceExhausted(f"No room before {after_key!r}")
        return key_for(value)

    if after_key is None:
        lower = parse_key(before_key)
        value = lower + STEP
        if value > MAX_VALUE:
            raise PositionSpaceExhausted(f"No room after {before_key!r}")
        return key_for(value)

    lower = parse_key(before_key)
    upper = parse_key(after_key)
    if lower > upper:
        lower, upper = upper, lower
    value = (lower + upper) // 2
    if value <= lower or value >= upper:
        raise PositionSpaceExhausted(
            f"No room between {before_key!r} and {after_key!r}"
        )
    return key_for(value)


def rebalance(count: int) -> list[str]:
    """Evenly spaced keys for a column of ``count`` tasks, in ascending order."""
    if count * STEP > MAX_VALUE:
        raise PositionSpaceExhausted(f"Column of {count} tasks does not fit the key width")
    return [key_for((i + 1) * STEP) for i in range(count)]
