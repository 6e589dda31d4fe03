import asyncio
import logging
from typing import Iterable, List, Optional, Sequence

from contract_indexer.chain import ChainReader
from contract_indexer.errors import FetchError
from contract_indexer.helpers import retry, to_addr
from contract_indexer.models import (
    Block, BlockFetchResult, BlockRange, Event, FunctionCall, Log,
    ProcessedBlock, ProcessedRange, Receipt, Transaction,
)
from contract_indexer.signatures import SignatureResolver, StaticSignatureResolver, function_selector

logger = logging.getLogger(__name__)


class BlockProcessor:
    """
    Turns fetched blocks into the rows worth keeping: transactions sent to a
    tracked contract (with receipt data when available), their function calls,
    and the logs tracked contracts emitted over the range. Nothing is written here.
    """

    def __init__(self, chain: ChainReader, tracked: Iterable[str],
                 resolver: Optional[SignatureResolver] = None,
                 receipt_concurrency: int = 10, max_retries: int = 3,
                 retry_base_delay: float = 1.0):
        self.chain = chain
        self.tracked = [to_addr(a) for a in tracked]
        self.tracked_set = set(self.tracked)
        self.resolver = resolver or StaticSignatureResolver()
        self.receipt_concurrency = receipt_concurrency
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay

    def is_tracked(self, address: Optional[str]) -> bool:
        return address is not None and address.lower() in self.tracked_set

    # ---------- transactions ----------
    async def fetch_receipts(self, txs: Sequence[Transaction]) -> List[Optional[Receipt]]:
        sem = asyncio.Semaphore(self.receipt_concurrency)

        async def rec_task(tx):
            async with sem:
                return await retry(lambda: self.chain.transaction_receipt(tx.hash),
                                   self.max_retries, f"getTransactionReceipt {tx.hash}",
                                   self.retry_base_delay)

        settled = await asyncio.gather(*[rec_task(tx) for tx in txs], return_exceptions=True)
        out = []
        for tx, rec in zip(txs, settled):
            if isinstance(rec, BaseException):
                logger.warning("Receipt for %s unavailable, storing without it: %s", tx.hash, rec)
                rec = None
            out.append(rec)
        return out

    def function_call(self, tx: Transaction, receipt: Optional[Receipt]) -> Optional[FunctionCall]:
        selector = function_selector(tx.input_data)
        if selector is None or receipt is None:
            return None
        return FunctionCall(
            transaction_hash=tx.hash,
            contract_address=to_addr(tx.to_address),
            function_signature=selector,
            function_name=self.resolver.function_name(selector),
            input_data=tx.input_data,
            success=receipt.status == 1,
        )

    async def process(self, block: Block) -> ProcessedBlock:
        relevant = [tx for tx in block.transactions if self.is_tracked(tx.to_address)]
        if not relevant:
            return ProcessedBlock(block=block)

        receipts = await self.fetch_receipts(relevant)
        txs, calls, missing = [], [], 0
        for tx, rec in zip(relevant, receipts):
            update = {"from_address": to_addr(tx.from_address), "to_address": to_addr(tx.to_address),
                      "status": None, "gas_used": None}
            if rec is None:
                missing += 1
            else:
                update.update(status=rec.status, gas_used=rec.gas_used)
            row = tx.model_copy(update=update)
            txs.append(row)
            fc = self.function_call(row, rec)
            if fc is not None:
                calls.append(fc)

        logger.debug("Block %d: %d/%d transactions tracked", block.number, len(txs), block.transaction_count)
        return ProcessedBlock(block=block, transactions=txs, function_calls=calls, failed_receipts=missing)

    # ---------- events ----------
    def to_event(self, log: Log) -> Event:
        topic0 = log.topics[0] if log.topics else None
        return Event(
            transaction_hash=log.transaction_hash,
            block_number=log.block_number,
            block_hash=log.block_hash,
            log_index=log.log_index,
            contract_address=to_addr(log.address),
            event_signature=topic0,
            event_name=self.resolver.event_name(topic0),
            topics=list(log.topics),
            data=log.data,
        )

    async def fetch_events(self, block_range: BlockRange) -> List[Event]:
        """One filtered log query for the whole range; raises once retries are exhausted."""
        if not self.tracked:
            return []
        try:
            logs = await retry(
                lambda: self.chain.filtered_logs(self.tracked, block_range.start, block_range.end),
                self.max_retries, f"getLogs {block_range}", self.retry_base_delay)
        except Exception as e:
            raise FetchError(f"log query for range {block_range} failed: {e}") from e
        events = [self.to_event(lg) for lg in logs if self.is_tracked(lg.address)]
        events.sort(key=lambda e: (e.block_number, e.log_index))
        return events

    # ---------- range ----------
    async def process_range(self, block_range: BlockRange, fetched: Sequence[BlockFetchResult]) -> ProcessedRange:
        """
        Process a fetched range. Events of blocks that failed to fetch are
        dropped so that every row refers to a block being written. A failing
        log query propagates.
        """
        events = await self.fetch_events(block_range)

        out = ProcessedRange(block_range=block_range)
        ok_numbers = set()
        for res in fetched:
            if not res.ok:
                out.failed_blocks.append(res.number)
                continue
            pb = await self.process(res.block)
            out.blocks.append(pb.block)
            out.transactions.extend(pb.transactions)
            out.function_calls.extend(pb.function_calls)
            ok_numbers.add(res.number)

        out.events = [e for e in events if e.block_number in ok_numbers]
        return out
