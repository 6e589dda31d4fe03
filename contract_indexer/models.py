import enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


# ---------- chain-side entities (also the persisted row shapes) ----------
class Transaction(BaseModel):
    hash: str
    block_number: int
    block_hash: str
    transaction_index: int
    from_address: str
    to_address: Optional[str] = None
    value: str = "0"
    gas_price: Optional[str] = None
    gas_limit: Optional[str] = None
    gas_used: Optional[str] = None
    nonce: int = 0
    input_data: str = "0x"
    status: Optional[int] = None   # unknown until a receipt is seen


class Block(BaseModel):
    number: int
    hash: str
    parent_hash: str
    timestamp: int
    gas_limit: str
    gas_used: str
    miner: Optional[str] = None
    difficulty: Optional[str] = None
    size: Optional[int] = None
    transactions: List[Transaction] = Field(default_factory=list)

    @property
    def transaction_count(self) -> int:
        return len(self.transactions)


class Receipt(BaseModel):
    transaction_hash: str
    status: Optional[int] = None
    gas_used: Optional[str] = None


class Log(BaseModel):
    transaction_hash: str
    block_number: int
    block_hash: str
    log_index: int
    address: str
    topics: List[str] = Field(default_factory=list)
    data: str = "0x"


class Event(BaseModel):
    transaction_hash: str
    block_number: int
    block_hash: str
    log_index: int
    contract_address: str
    event_signature: Optional[str] = None
    event_name: Optional[str] = None
    topics: List[str] = Field(default_factory=list)
    data: str = "0x"
    decoded_data: Optional[str] = None


class FunctionCall(BaseModel):
    transaction_hash: str
    contract_address: str
    function_signature: str
    function_name: Optional[str] = None
    input_data: str
    decoded_input: Optional[str] = None
    output_data: Optional[str] = None
    decoded_output: Optional[str] = None
    success: bool


class Contract(BaseModel):
    address: str
    name: Optional[str] = None
    is_active: bool = True
    last_indexed_block: int = 0


# ---------- pipeline values ----------
class BlockRange(BaseModel):
    """Inclusive ``[start, end]`` span of block numbers."""
    start: int = Field(ge=0)
    end: int = Field(ge=0)

    @model_validator(mode="after")
    def _ordered(self):
        if self.end < self.start:
            raise ValueError(f"range end {self.end} before start {self.start}")
        return self

    def __len__(self) -> int:
        return self.end - self.start + 1

    def numbers(self) -> List[int]:
        return list(range(self.start, self.end + 1))

    def __str__(self) -> str:
        return f"[{self.start}, {self.end}]"


class BlockFetchResult(BaseModel):
    """Tagged outcome of fetching one block: either ``block`` or ``error`` is set."""
    number: int
    block: Optional[Block] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.block is not None


class ProcessedBlock(BaseModel):
    block: Block
    transactions: List[Transaction] = Field(default_factory=list)
    function_calls: List[FunctionCall] = Field(default_factory=list)
    failed_receipts: int = 0


class ProcessedRange(BaseModel):
    block_range: BlockRange
    blocks: List[Block] = Field(default_factory=list)
    transactions: List[Transaction] = Field(default_factory=list)
    events: List[Event] = Field(default_factory=list)
    function_calls: List[FunctionCall] = Field(default_factory=list)
    failed_blocks: List[int] = Field(default_factory=list)

    def safe_end(self) -> Optional[int]:
        """Last block of the contiguous fetched prefix, or None if the first block failed."""
        if not self.failed_blocks:
            return self.block_range.end
        first_gap = min(self.failed_blocks)
        return None if first_gap == self.block_range.start else first_gap - 1


class CommitResult(BaseModel):
    block_range: BlockRange
    blocks: int = 0
    transactions: int = 0
    events: int = 0
    function_calls: int = 0


class BlockProcessed(BaseModel):
    block_number: int
    block_hash: str
    transaction_count: int
    event_count: int


class PipelineState(str, enum.Enum):
    IDLE = "idle"
    RANGE_COMPUTED = "range_computed"
    FETCHED = "fetched"
    PROCESSED = "processed"
    COMMITTED = "committed"
    FAILED = "failed"


class TickStatus(str, enum.Enum):
    IDLE = "idle"            # nothing confirmed past the cursor
    SKIPPED = "skipped"      # a previous tick was still in flight
    COMMITTED = "committed"
    PARTIAL = "partial"      # cursor advanced up to the first failed block
    FAILED = "failed"


class TickResult(BaseModel):
    status: TickStatus
    block_range: Optional[BlockRange] = None
    cursor: int
    error: Optional[str] = None
