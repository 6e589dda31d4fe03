from typing import Optional

from contract_indexer.models import BlockRange


def safe_height(head: int, confirmations: int) -> int:
    return head - confirmations


def next_range(cursor: int, head: int, confirmations: int, max_batch: int) -> Optional[BlockRange]:
    """
    Next block range to index after ``cursor`` (the last committed block, -1 when
    nothing has been indexed yet), or None when nothing is confirmed past it.

    The range never ends beyond ``head - confirmations`` and never spans more
    than ``max_batch`` blocks.
    """
    if max_batch < 1:
        raise ValueError("max_batch must be >= 1")
    safe = safe_height(head, confirmations)
    if cursor >= safe:
        return None
    return BlockRange(start=cursor + 1, end=min(safe, cursor + max_batch))
