import pytest

from contract_indexer.models import BlockRange
from contract_indexer.scheduler import next_range, safe_height


def test_range_bounded_by_max_batch():
    assert next_range(100, 120, 12, 5) == BlockRange(start=101, end=105)


def test_range_bounded_by_safe_height_after_commit():
    first = next_range(100, 120, 12, 5)
    second = next_range(first.end, 120, 12, 5)
    assert second == BlockRange(start=106, end=108)


def test_nothing_to_do_at_or_past_safe_height():
    assert next_range(108, 120, 12, 5) is None
    assert next_range(115, 120, 12, 5) is None


def test_fresh_cursor_starts_at_genesis():
    assert next_range(-1, 20, 12, 100) == BlockRange(start=0, end=8)


def test_head_below_confirmation_depth():
    assert safe_height(5, 12) == -7
    assert next_range(-1, 5, 12, 10) is None


def test_zero_confirmations_reaches_head():
    assert next_range(9, 10, 0, 10) == BlockRange(start=10, end=10)


def test_never_past_confirmation_boundary():
    for head in range(0, 60, 7):
        for cursor in range(-1, 60, 5):
            for confirmations in (0, 3, 12):
                for max_batch in (1, 4, 25):
                    rng = next_range(cursor, head, confirmations, max_batch)
                    if rng is None:
                        assert cursor >= head - confirmations
                        continue
                    assert rng.start == cursor + 1
                    assert rng.end <= head - confirmations
                    assert len(rng) <= max_batch


def test_invalid_max_batch():
    with pytest.raises(ValueError):
        next_range(0, 100, 0, 0)


def test_block_range_rejects_reversed_bounds():
    with pytest.raises(ValueError):
        BlockRange(start=10, end=9)
