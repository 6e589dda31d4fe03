import asyncio
from typing import Dict, List, Optional, Sequence

from contract_indexer.models import Block, Log, Receipt, Transaction
from contract_indexer.signatures import TRANSFER_TOPIC0

TRACKED = "0x" + "aa" * 20
TRACKED_2 = "0x" + "cc" * 20
OTHER = "0x" + "bb" * 20
SENDER = "0x" + "11" * 20
TRANSFER_INPUT = "0xa9059cbb" + "00" * 64


def h(n: int, prefix: str = "") -> str:
    s = f"{prefix}{n:x}"
    return "0x" + s.rjust(64, "0")

def block_hash(number: int) -> str:
    return h(number, "b10c")

def tx_hash(number: int, index: int) -> str:
    return h(number * 1000 + index, "7")


def make_tx(number: int, index: int, to: Optional[str] = TRACKED,
            input_data: str = TRANSFER_INPUT) -> Transaction:
    return Transaction(
        hash=tx_hash(number, index),
        block_number=number,
        block_hash=block_hash(number),
        transaction_index=index,
        from_address=SENDER,
        to_address=to,
        value="1000",
        gas_price="20000000000",
        gas_limit="60000",
        nonce=index,
        input_data=input_data,
    )

def make_block(number: int, txs: Sequence[Transaction] = (), timestamp: Optional[int] = None) -> Block:
    return Block(
        number=number,
        hash=block_hash(number),
        parent_hash=block_hash(number - 1) if number > 0 else "0x" + "00" * 32,
        timestamp=timestamp if timestamp is not None else 1_700_000_000 + number * 12,
        gas_limit="30000000",
        gas_used="21000",
        miner=OTHER,
        difficulty="0",
        size=1000,
        transactions=list(txs),
    )

def make_log(number: int, index: int, log_index: int, address: str = TRACKED,
             topic0: str = TRANSFER_TOPIC0) -> Log:
    return Log(
        transaction_hash=tx_hash(number, index),
        block_number=number,
        block_hash=block_hash(number),
        log_index=log_index,
        address=address,
        topics=[topic0],
        data="0x" + "00" * 31 + "01",
    )


class FakeChain:
    """In-memory ChainReader with failure injection and concurrency tracking."""

    def __init__(self, head: int = 0):
        self.head = head
        self.blocks: Dict[int, Block] = {}
        self.receipts: Dict[str, Receipt] = {}
        self.logs: List[Log] = []
        self.code: Dict[str, str] = {TRACKED: "0x6080", TRACKED_2: "0x6080"}
        self.block_failures: Dict[int, int] = {}   # number -> failures left, -1 for always
        self.receipt_failures: Dict[str, int] = {}
        self.code_failures: Dict[str, int] = {}
        self.log_failures = 0
        self.head_failures = 0
        self.block_calls: Dict[int, int] = {}
        self.log_calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    def add_block(self, block: Block, with_receipts: bool = True, status: int = 1):
        self.blocks[block.number] = block
        if with_receipts:
            for tx in block.transactions:
                self.receipts[tx.hash] = Receipt(transaction_hash=tx.hash, status=status, gas_used="21000")

    def add_blocks(self, start: int, end: int):
        for n in range(start, end + 1):
            self.add_block(make_block(n, [make_tx(n, 0)]))

    @staticmethod
    def _consume(failures: dict, key) -> bool:
        left = failures.get(key, 0)
        if left == 0:
            return False
        if left > 0:
            failures[key] = left - 1
        return True

    async def head_height(self) -> int:
        if self.head_failures:
            self.head_failures -= 1
            raise ConnectionError("head unavailable")
        return self.head

    async def block_by_number(self, number: int, include_tx: bool = True) -> Optional[Block]:
        self.block_calls[number] = self.block_calls.get(number, 0) + 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if self._consume(self.block_failures, number):
                raise TimeoutError(f"timeout fetching block {number}")
            return self.blocks.get(number)
        finally:
            self.in_flight -= 1

    async def transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        await asyncio.sleep(0)
        if self._consume(self.receipt_failures, tx_hash):
            raise TimeoutError(f"timeout fetching receipt {tx_hash}")
        return self.receipts.get(tx_hash)

    async def filtered_logs(self, addresses: Sequence[str], from_block: int, to_block: int) -> List[Log]:
        self.log_calls += 1
        await asyncio.sleep(0)
        if self.log_failures:
            self.log_failures -= 1
            raise ConnectionError("getLogs failed")
        wanted = {a.lower() for a in addresses}
        return [lg for lg in self.logs
                if lg.address in wanted and from_block <= lg.block_number <= to_block]

    async def code_at(self, address: str) -> str:
        await asyncio.sleep(0)
        if self._consume(self.code_failures, address.lower()):
            raise ConnectionError(f"getCode {address} failed")
        return self.code.get(address.lower(), "0x")
