"""
Greedy, order-preserving packing of dialogs into size-bounded chunks.

Packs never reorder dialogs and never cut original_text. A dialog longer
than the threshold becomes its own pack flagged `oversized`.
"""
import math
import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from core.errors import ConfigurationError
from core.models import Dialog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderLen:
    idx: int    # position in the dialogs array
    order: int  # dialog.order
    len: int    # len(dialog.original_text)


@dataclass
class Pack:
    indices: List[int] = field(default_factory=list)
    orders: List[int] = field(default_factory=list)
    total_len: int = 0
    oversized: bool = False


def build_order_len(dialogs: Sequence[Dialog]) -> List[OrderLen]:
    return [OrderLen(idx=i, order=d.order, len=len(d.original_text or "")) for i, d in enumerate(dialogs)]


def _check_threshold(threshold) -> None:
    if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
        raise ConfigurationError(f"char threshold must be a positive number. Received: {threshold!r}")
    if math.isnan(threshold) or threshold <= 0:
        raise ConfigurationError(f"char threshold must be a positive number. Received: {threshold}")


def pack_by_greedy(order_len: Sequence[OrderLen], threshold: int) -> List[Pack]:
    """Single left-to-right pass; see module docstring."""
    _check_threshold(threshold)

    packs: List[Pack] = []
    current = Pack()

    def flush():
        nonlocal current
        if current.indices:
            packs.append(current)
        current = Pack()

    for item in order_len:
        if item.len > threshold:
            flush()
            packs.append(Pack(indices=[item.idx], orders=[item.order], total_len=item.len, oversized=True))
            continue

        if current.total_len + item.len > threshold and current.indices:
            flush()
        current.indices.append(item.idx)
        current.orders.append(item.order)
        current.total_len += item.len
    flush()

    oversized = sum(1 for p in packs if p.oversized)
    logger.debug(f"Packed {len(order_len)} dialogs into {len(packs)} packs ({oversized} oversized)")
    return packs


def materialize_chunks(packs: Sequence[Pack], dialogs: Sequence[Dialog]) -> List[List[Dialog]]:
    return [[dialogs[i] for i in p.indices] for p in packs]


def pack_dialogs(dialogs: Sequence[Dialog], threshold: int) -> List[List[Dialog]]:
    return materialize_chunks(pack_by_greedy(build_order_len(dialogs), threshold), dialogs)
