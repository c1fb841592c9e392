import math

import pytest

from core.errors import ConfigurationError
from core.models import Dialog
from processing.packing import OrderLen, build_order_len, materialize_chunks, pack_by_greedy, pack_dialogs


def lengths(*values):
    return [OrderLen(idx=i, order=i + 1, len=v) for i, v in enumerate(values)]


def test_small_meeting_fits_in_one_pack():
    sizes = [243, 40, 157, 50, 69, 108, 61, 79, 169, 405, 126, 55, 180, 37]
    packs = pack_by_greedy(lengths(*sizes), 10_000)

    assert len(packs) == 1
    assert packs[0].indices == list(range(14))
    assert packs[0].total_len == 1779
    assert not packs[0].oversized


def test_long_dialog_is_its_own_oversized_pack():
    packs = pack_by_greedy(lengths(12_000), 10_000)

    assert len(packs) == 1
    assert packs[0].oversized
    assert packs[0].indices == [0]
    assert packs[0].total_len == 12_000


def test_oversized_dialog_flushes_running_pack():
    packs = pack_by_greedy(lengths(30, 40, 500, 20), 100)

    assert [p.indices for p in packs] == [[0, 1], [2], [3]]
    assert [p.oversized for p in packs] == [False, True, False]


def test_greedy_split_preserves_order_and_bounds():
    sizes = [60, 30, 20, 90, 10, 100, 5, 250, 45, 55]
    threshold = 100
    packs = pack_by_greedy(lengths(*sizes), threshold)

    flat = [i for p in packs for i in p.indices]
    assert flat == list(range(len(sizes)))
    for p in packs:
        assert p.indices
        assert p.total_len == sum(sizes[i] for i in p.indices)
        if p.oversized:
            assert len(p.indices) == 1 and p.total_len > threshold
        else:
            assert p.total_len <= threshold
    assert [p.indices for p in packs] == [[0, 1], [2], [3, 4], [5], [6], [7], [8, 9]]


def test_item_exactly_at_threshold_is_not_oversized():
    packs = pack_by_greedy(lengths(100, 1), 100)
    assert [p.indices for p in packs] == [[0], [1]]
    assert not packs[0].oversized


def test_empty_input_gives_no_packs():
    assert pack_by_greedy([], 10) == []


@pytest.mark.parametrize('threshold', [0, -5, math.nan, None, '100', True])
def test_invalid_threshold_fails_fast(threshold):
    with pytest.raises(ConfigurationError):
        pack_by_greedy(lengths(1, 2), threshold)


def test_materialize_chunks_maps_indices_to_dialogs():
    dialogs = [Dialog(order=o, original_text='x' * n) for o, n in [(3, 5), (7, 5), (9, 20)]]
    packs = pack_by_greedy(build_order_len(dialogs), 10)

    assert [p.orders for p in packs] == [[3, 7], [9]]
    chunks = materialize_chunks(packs, dialogs)
    assert [[d.order for d in c] for c in chunks] == [[3, 7], [9]]
    assert pack_dialogs(dialogs, 10) == chunks
