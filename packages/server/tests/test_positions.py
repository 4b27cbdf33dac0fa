"""
Tests for lexicographic position keys.

Covers:
- Key format and ordering
- Allocation between, before and after neighbors
- Exhaustion after repeated inserts at one spot
- Rebalanced key generation
"""

from __future__ import annotations

import pytest

from taskdeck.core import positions
from taskdeck.core.errors import PositionSpaceExhausted


class TestKeys:
    def test_key_format(self):
        assert positions.key_for(1000) == "a0000001000"
        assert positions.initial_key() == "a0000001000"

    def test_string_order_matches_numeric_order(self):
        values = [5, 999, 1000, 25_000, 9_999_999]
        keys = [positions.key_for(v) for v in values]
        assert sorted(keys) == keys

    def test_out_of_range_rejected(self):
        with pytest.raises(ValueError):
            positions.key_for(-1)
        with pytest.raises(ValueError):
            positions.key_for(positions.MAX_VALUE + 1)

    def test_parse_round_trip(self):
        assert positions.parse_key("a0000002500") == 2500

    def test_malformed_key_sorts_first(self):
        assert positions.parse_key("zzz") == 0
        assert positions.parse_key(None) == 0
        assert positions.parse_key("") == 0


class TestAllocate:
    def test_empty_column(self):
        assert positions.allocate(None, None) == "a0000001000"

    def test_between_neighbors(self):
        key = positions.allocate("a0000001000", "a0000002000")
        assert key == "a0000001500"
        assert "a0000001000" < key < "a0000002000"

    def test_at_end(self):
        assert positions.allocate("a0000003000", None) == "a0000004000"

    def test_at_start(self):
        assert positions.allocate(None, "a0000003000") == "a0000002000"

    def test_at_start_clamps_to_zero(self):
        key = positions.allocate(None, "a0000000400")
        assert key == "a0000000000"
        assert key < "a0000000400"

    def test_nothing_before_zero(self):
        with pytest.raises(PositionSpaceExhausted):
            positions.allocate(None, "a0000000000")

    def test_swapped_neighbors_still_fit_between(self):
        key = positions.allocate("a0000002000", "a0000001000")
        assert "a0000001000" < key < "a0000002000"

    def test_adjacent_values_exhausted(self):
        with pytest.raises(PositionSpaceExhausted):
            positions.allocate("a0000001000", "a0000001001")

    def test_repeated_inserts_at_one_spot_exhaust(self):
        """Halving a gap of STEP runs out after about log2(STEP) inserts."""
        before, after = "a0000001000", "a0000002000"
        inserts = 0
        with pytest.raises(PositionSpaceExhausted):
            while True:
                key = positions.allocate(before, after)
                assert before < key < after
                after = key
                inserts += 1
        assert inserts == 9

    def test_no_room_after_max(self):
        last = positions.key_for(positions.MAX_VALUE)
        with pytest.raises(PositionSpaceExhausted):
            positions.allocate(last, None)


class TestRebalance:
    def test_evenly_spaced(self):
        assert positions.rebalance(3) == ["a0000001000", "a0000002000", "a0000003000"]

    def test_empty(self):
        assert positions.rebalance(0) == []

    def test_strictly_increasing(self):
        keys = positions.rebalance(50)
        assert all(a < b for a, b in zip(keys, keys[1:]))
