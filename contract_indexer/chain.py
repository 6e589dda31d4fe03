from typing import Any, List, Optional, Protocol, Sequence

from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import BlockNotFound, TransactionNotFound

from contract_indexer.helpers import hex_to_int, to_addr, to_checksum, to_dec, to_hex
from contract_indexer.models import Block, Log, Receipt, Transaction


class ChainReader(Protocol):
    """Read-only view of the chain that the pipeline consumes."""

    async def head_height(self) -> int: ...

    async def block_by_number(self, number: int, include_tx: bool = True) -> Optional[Block]: ...

    async def transaction_receipt(self, tx_hash: str) -> Optional[Receipt]: ...

    async def filtered_logs(self, addresses: Sequence[str], from_block: int, to_block: int) -> List[Log]: ...

    async def code_at(self, address: str) -> str: ...


# ---------- web3 response -> models ----------
def _get(obj, key, default=None):
    try:
        v = obj[key]
    except (KeyError, TypeError):
        return default
    return default if v is None else v

def tx_from_web3(tx, block_number: int, block_hash: str) -> Transaction:
    return Transaction(
        hash=to_hex(tx["hash"]),
        block_number=block_number,
        block_hash=block_hash,
        transaction_index=int(_get(tx, "transactionIndex", 0)),
        from_address=to_addr(tx["from"]),
        to_address=to_addr(_get(tx, "to")),
        value=to_dec(_get(tx, "value", 0)),
        gas_price=to_dec(_get(tx, "gasPrice", 0)),
        gas_limit=to_dec(_get(tx, "gas", 0)),
        nonce=int(_get(tx, "nonce", 0)),
        input_data=to_hex(_get(tx, "input", "0x")) or "0x",
    )

def block_from_web3(b) -> Block:
    number = int(b["number"])
    bhash = to_hex(b["hash"])
    txs = []
    for tx in _get(b, "transactions", []):
        # without full_transactions the node only returns hashes
        if isinstance(tx, (bytes, str)):
            continue
        txs.append(tx_from_web3(tx, number, bhash))
    return Block(
        number=number,
        hash=bhash,
        parent_hash=to_hex(b["parentHash"]),
        timestamp=int(b["timestamp"]),
        gas_limit=to_dec(_get(b, "gasLimit", 0)),
        gas_used=to_dec(_get(b, "gasUsed", 0)),
        miner=to_addr(_get(b, "miner") or _get(b, "coinbase")),
        difficulty=to_dec(_get(b, "difficulty", 0)),
        size=hex_to_int(_get(b, "size")),
        transactions=txs,
    )

def receipt_from_web3(r) -> Receipt:
    status = _get(r, "status")
    return Receipt(
        transaction_hash=to_hex(r["transactionHash"]),
        status=None if status is None else int(status),
        gas_used=to_dec(_get(r, "gasUsed")),
    )

def log_from_web3(lg) -> Log:
    data = _get(lg, "data", "0x")
    return Log(
        transaction_hash=to_hex(lg["transactionHash"]),
        block_number=int(lg["blockNumber"]),
        block_hash=to_hex(lg["blockHash"]),
        log_index=int(lg["logIndex"]),
        address=to_addr(lg["address"]),
        topics=[to_hex(t).lower() for t in _get(lg, "topics", [])],
        data=to_hex(data) if data else "0x",
    )


class Web3ChainReader:
    """``ChainReader`` backed by web3's ``AsyncWeb3`` over JSON-RPC."""

    def __init__(self, w3: Any):
        self.w3 = w3

    @classmethod
    def from_url(cls, rpc_url: str) -> "Web3ChainReader":
        return cls(AsyncWeb3(AsyncHTTPProvider(rpc_url)))

    async def head_height(self) -> int:
        return int(await self.w3.eth.block_number)

    async def block_by_number(self, number: int, include_tx: bool = True) -> Optional[Block]:
        try:
            b = await self.w3.eth.get_block(block_identifier=number, full_transactions=include_tx)
        except BlockNotFound:
            return None
        return block_from_web3(b) if b else None

    async def transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        try:
            r = await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        return receipt_from_web3(r) if r else None

    async def filtered_logs(self, addresses: Sequence[str], from_block: int, to_block: int) -> List[Log]:
        logs = await self.w3.eth.get_logs({
            "fromBlock": from_block,
            "toBlock": to_block,
            "address": [to_checksum(a) for a in addresses],
        })
        return [log_from_web3(lg) for lg in logs]

    async def code_at(self, address: str) -> str:
        code = await self.w3.eth.get_code(to_checksum(address))
        return to_hex(code) or "0x"

    async def close(self):
        await self.w3.provider.disconnect()
