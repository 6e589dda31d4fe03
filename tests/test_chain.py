import pytest
from web3.datastructures import AttributeDict
from web3.exceptions import BlockNotFound, TransactionNotFound
from web3.types import HexBytes

from contract_indexer.chain import Web3ChainReader, block_from_web3

TOKEN = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
SENDER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


def hb(byte: str, n: int = 32) -> HexBytes:
    return HexBytes(bytes.fromhex(byte * n))


def raw_block(number=7):
    tx = AttributeDict({
        "hash": hb("01"), "transactionIndex": 0, "from": SENDER, "to": TOKEN,
        "value": 10 ** 18, "gas": 60000, "gasPrice": 2 * 10 ** 9, "nonce": 3,
        "input": HexBytes("0xa9059cbb"), "blockNumber": number, "blockHash": hb("0b"),
    })
    return AttributeDict({
        "number": number, "hash": hb("0b"), "parentHash": hb("0a"), "timestamp": 1700000000,
        "gasLimit": 30000000, "gasUsed": 21000, "miner": SENDER, "difficulty": 0,
        "size": 612, "transactions": [tx],
    })


class FakeEth:
    def __init__(self):
        self.block_number_value = 42
        self.log_filters = []

    @property
    async def block_number(self):
        return self.block_number_value

    async def get_block(self, block_identifier, full_transactions=False):
        if block_identifier != 7:
            raise BlockNotFound(f"block {block_identifier} not found")
        return raw_block()

    async def get_transaction_receipt(self, tx_hash):
        if tx_hash != "0x" + "01" * 32:
            raise TransactionNotFound("missing")
        return AttributeDict({"transactionHash": hb("01"), "status": 1, "gasUsed": 51000})

    async def get_logs(self, params):
        self.log_filters.append(params)
        return [AttributeDict({
            "transactionHash": hb("01"), "blockNumber": 7, "blockHash": hb("0b"),
            "logIndex": 2, "address": TOKEN, "topics": [hb("dd")], "data": HexBytes("0x01"),
        })]

    async def get_code(self, address):
        return HexBytes("0x6080") if address == TOKEN else HexBytes(b"")


class FakeW3:
    def __init__(self):
        self.eth = FakeEth()


def test_block_normalization():
    b = block_from_web3(raw_block())
    assert b.hash == "0x" + "0b" * 32
    assert b.parent_hash == "0x" + "0a" * 32
    assert b.miner == SENDER.lower()
    assert (b.gas_limit, b.gas_used, b.size) == ("30000000", "21000", 612)
    tx = b.transactions[0]
    assert tx.to_address == TOKEN.lower()
    assert tx.from_address == SENDER.lower()
    assert tx.value == str(10 ** 18)
    assert tx.input_data == "0xa9059cbb"
    assert tx.block_hash == b.hash
    assert tx.status is None


def test_hash_only_transactions_are_ignored():
    raw = dict(raw_block())
    raw["transactions"] = [hb("01")]
    assert block_from_web3(raw).transactions == []


@pytest.mark.asyncio
async def test_reader_calls():
    reader = Web3ChainReader(FakeW3())
    assert await reader.head_height() == 42
    assert (await reader.block_by_number(7)).number == 7
    assert await reader.block_by_number(8) is None

    rec = await reader.transaction_receipt("0x" + "01" * 32)
    assert (rec.status, rec.gas_used) == (1, "51000")
    assert await reader.transaction_receipt("0x" + "02" * 32) is None

    logs = await reader.filtered_logs([TOKEN.lower()], 5, 9)
    assert reader.w3.eth.log_filters == [{"fromBlock": 5, "toBlock": 9, "address": [TOKEN]}]
    assert logs[0].address == TOKEN.lower()
    assert logs[0].topics == ["0x" + "dd" * 32]
    assert logs[0].data == "0x01"

    assert await reader.code_at(TOKEN.lower()) == "0x6080"
    assert await reader.code_at(SENDER.lower()) == "0x"
