import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Iterator, List, Optional, Sequence, TypeVar

from web3 import AsyncWeb3
from web3.types import HexBytes

logger = logging.getLogger(__name__)

T = TypeVar("T")

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")

# ---------------- helpers ----------------
def to_hex(x):
    if x is None: return None
    if isinstance(x, (bytes, bytearray, HexBytes)): return "0x" + bytes(x).hex()
    if isinstance(x, int): return hex(x)
    s = str(x)
    return s if s.startswith("0x") else "0x" + s

def to_addr(x):
    """Lower-cased address; every address crossing into the store goes through here."""
    if x is None: return None
    if isinstance(x, (bytes, bytearray)):
        x = to_hex(x)
    return str(x).lower()

def to_checksum(x: str) -> str:
    return AsyncWeb3.to_checksum_address(x)

def is_valid_address(x: str) -> bool:
    return bool(ADDRESS_RE.match(x or ""))

def hex_to_int(x):
    if x is None: return None
    if isinstance(x, int): return x
    if isinstance(x, bytes): return int.from_bytes(x, "big")
    s = str(x)
    return int(s, 16) if s.startswith("0x") else int(s)

def to_dec(x) -> Optional[str]:
    """Big integers (wei, gas, difficulty) are kept as decimal strings."""
    v = hex_to_int(x)
    return None if v is None else str(v)

def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    for i in range(0, len(items), size):
        yield list(items[i:i + size])

# ---------------- retry ----------------
async def retry(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    operation: str = "operation",
    base_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Call ``fn`` up to ``max_retries`` times. After failed attempt N the wait is
    ``base_delay * 2**(N-1)`` seconds. The last exception is re-raised.
    """
    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as e:
            if attempt >= max_retries:
                logger.error("%s failed after %d attempts: %s", operation, attempt, e)
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning("%s failed (attempt %d/%d), retrying in %.1fs: %s",
                           operation, attempt, max_retries, delay, e)
            await sleep(delay)
            attempt += 1
