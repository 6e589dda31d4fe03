import asyncio
import logging
import sqlite3
import time
from typing import Any, Dict, List, Optional

from contract_indexer import db
from contract_indexer.chain import ChainReader
from contract_indexer.config import START_LATEST, ConfigError, IndexerConfig
from contract_indexer.errors import FetchError, PersistenceError
from contract_indexer.fetcher import BatchFetcher
from contract_indexer.helpers import retry
from contract_indexer.models import (
    BlockProcessed, Contract, PipelineState, ProcessedRange, TickResult, TickStatus,
)
from contract_indexer.processor import BlockProcessor
from contract_indexer.scheduler import next_range, safe_height
from contract_indexer.signatures import SignatureResolver
from contract_indexer.storage import Persister

logger = logging.getLogger(__name__)

CLEANUP_EVERY_S = 3600


class Indexer:
    """
    Pipeline driver. Each tick asks the scheduler for the next confirmed range,
    then fetches, processes and commits it, and only then moves the cursor.
    Ticks never overlap; ``stop()`` lets an in-flight tick finish its commit.
    """

    def __init__(self, config: IndexerConfig, chain: ChainReader, conn: sqlite3.Connection,
                 resolver: Optional[SignatureResolver] = None):
        self.config = config
        self.chain = chain
        self.conn = conn
        self.resolver = resolver
        self.persister = Persister(conn)
        self.fetcher = BatchFetcher(chain, config.sub_batch_size, config.max_retries,
                                    config.retry_base_delay)
        self.processor: Optional[BlockProcessor] = None
        self.tracked: List[str] = []

        self.cursor = -1
        self.state = PipelineState.IDLE
        self.is_running = False
        self.start_time: Optional[float] = None
        self.last_head: Optional[int] = None
        self._last_cleanup: Optional[float] = None
        self._tick_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._subscribers: List[asyncio.Queue] = []
        self._stop_tasks: List[asyncio.Task] = []

    # ---------- startup ----------
    async def register_contracts(self) -> List[str]:
        """Track the configured addresses that hold contract code."""
        logger.info("Registering %d contracts...", len(self.config.contract_addresses))
        tracked = []
        for address in self.config.contract_addresses:
            try:
                code = await retry(lambda: self.chain.code_at(address), self.config.max_retries,
                                   f"getCode {address}", self.config.retry_base_delay)
            except Exception as e:
                # an untracked address would let the cursor run past its data
                raise FetchError(f"could not check contract code at {address}: {e}") from e
            if not code or code == "0x":
                logger.warning("Address %s is not a contract, skipping", address)
                continue
            db.upsert_contract(self.conn, Contract(address=address, name=self.config.display_name(address)))
            tracked.append(address)
            logger.info("Registered contract: %s", address)

        if not tracked:
            raise ConfigError("none of CONTRACT_ADDRESSES holds contract code")
        self.tracked = tracked
        self.processor = BlockProcessor(self.chain, tracked, self.resolver,
                                        receipt_concurrency=self.config.sub_batch_size,
                                        max_retries=self.config.max_retries,
                                        retry_base_delay=self.config.retry_base_delay)
        return tracked

    async def head_height(self) -> int:
        head = await retry(self.chain.head_height, self.config.max_retries,
                           "getBlockNumber", self.config.retry_base_delay)
        self.last_head = head
        return head

    async def determine_start_block(self) -> int:
        """Configured block, else ``latest`` head, else one past the persisted cursor."""
        start_block = self.config.start_block
        if start_block == START_LATEST:
            start = await self.head_height()
        elif isinstance(start_block, int):
            start = start_block
        else:
            last = db.get_last_indexed_block(self.conn)
            if last is not None:
                start = last + 1
            elif self.config.backfill_blocks is not None:
                start = max(0, await self.head_height() - self.config.backfill_blocks)
            else:
                start = 0
        self.cursor = start - 1
        logger.info("Starting indexing from block: %d", start)
        return start

    async def start(self):
        logger.info("Starting indexer...")
        await self.register_contracts()
        await self.determine_start_block()
        self._stop_event.clear()
        self.is_running = True
        self.start_time = time.time()

    async def stop(self):
        logger.info("Stopping indexer...")
        self.is_running = False
        self._stop_event.set()
        # wait for an in-flight range to finish committing
        async with self._tick_lock:
            pass
        logger.info("Indexer stopped")

    def request_stop(self) -> asyncio.Task:
        """Schedule ``stop()`` from a signal handler; ``run()`` awaits the task before returning."""
        task = asyncio.get_running_loop().create_task(self.stop())
        self._stop_tasks.append(task)
        return task

    # ---------- subscriptions ----------
    def subscribe(self, maxsize: int = 0) -> asyncio.Queue:
        """Queue receiving a ``BlockProcessed`` per committed block, in block order."""
        q: asyncio.Queue = asyncio.Queue(maxsize)
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue):
        if q in self._subscribers:
            self._subscribers.remove(q)

    def _publish(self, msg: BlockProcessed):
        for q in self._subscribers:
            try:
                q.put_nowait(msg)
            except asyncio.QueueFull:
                logger.warning("Subscriber queue full, dropping block %d notification", msg.block_number)

    # ---------- pipeline ----------
    def _set_state(self, state: PipelineState):
        logger.debug("Pipeline %s -> %s", self.state.value, state.value)
        self.state = state

    async def tick(self) -> TickResult:
        """Index at most one range. Returns SKIPPED if another tick is still running."""
        if self._tick_lock.locked():
            logger.debug("Previous tick still running, skipping")
            return TickResult(status=TickStatus.SKIPPED, cursor=self.cursor)
        async with self._tick_lock:
            try:
                return await self._run_tick()
            except Exception as e:
                self._set_state(PipelineState.FAILED)
                logger.error("Error during indexing: %s", e, exc_info=True)
                return TickResult(status=TickStatus.FAILED, cursor=self.cursor, error=str(e))
            finally:
                self._set_state(PipelineState.IDLE)

    async def _run_tick(self) -> TickResult:
        if self.processor is None:
            raise RuntimeError("register_contracts() must run before indexing")

        head = await self.head_height()
        rng = next_range(self.cursor, head, self.config.block_confirmations, self.config.batch_size)
        if rng is None:
            return TickResult(status=TickStatus.IDLE, cursor=self.cursor)
        self._set_state(PipelineState.RANGE_COMPUTED)
        logger.info("Indexing blocks %d to %d (latest: %d)", rng.start, rng.end, head)

        fetched = await self.fetcher.fetch(rng)
        self._set_state(PipelineState.FETCHED)

        processed = await self.processor.process_range(rng, fetched)
        self._set_state(PipelineState.PROCESSED)

        new_cursor = processed.safe_end()
        if new_cursor is None:
            raise FetchError(f"block {rng.start} could not be fetched")

        self.persister.commit(rng, processed.blocks, processed.transactions,
                              processed.events, processed.function_calls)
        self._set_state(PipelineState.COMMITTED)

        try:
            db.advance_cursor(self.conn, new_cursor, self.tracked)
        except sqlite3.Error as e:
            raise PersistenceError(f"cursor update to {new_cursor} failed: {e}") from e
        self.cursor = new_cursor

        self._notify(processed, new_cursor)
        self._log_progress(processed, head)
        self._maybe_cleanup()

        if processed.failed_blocks:
            logger.warning("Blocks %s failed to fetch; cursor held at %d",
                           sorted(processed.failed_blocks), new_cursor)
            return TickResult(status=TickStatus.PARTIAL, block_range=rng, cursor=self.cursor,
                              error=f"failed blocks: {sorted(processed.failed_blocks)}")
        return TickResult(status=TickStatus.COMMITTED, block_range=rng, cursor=self.cursor)

    def _notify(self, processed: ProcessedRange, upto: int):
        if not self._subscribers:
            return
        events_per_block: Dict[int, int] = {}
        for e in processed.events:
            events_per_block[e.block_number] = events_per_block.get(e.block_number, 0) + 1
        txs_per_block: Dict[int, int] = {}
        for t in processed.transactions:
            txs_per_block[t.block_number] = txs_per_block.get(t.block_number, 0) + 1
        for b in sorted(processed.blocks, key=lambda b: b.number):
            if b.number > upto:
                break
            self._publish(BlockProcessed(block_number=b.number, block_hash=b.hash,
                                         transaction_count=txs_per_block.get(b.number, 0),
                                         event_count=events_per_block.get(b.number, 0)))

    def _log_progress(self, processed: ProcessedRange, head: int):
        c = self.persister.counters
        remaining = max(0, safe_height(head, self.config.block_confirmations) - self.cursor)
        logger.info(
            "Committed %s: blocks=%d txs=%d events=%d calls=%d | cursor=%d latest=%d remaining=%d",
            processed.block_range, c["blocks"], c["transactions"], c["events"],
            c["function_calls"], self.cursor, head, remaining,
        )

    def _maybe_cleanup(self):
        if not self.config.retention_days:
            return
        now = time.monotonic()
        if self._last_cleanup is not None and now - self._last_cleanup < CLEANUP_EVERY_S:
            return
        self._last_cleanup = now
        try:
            self.persister.cleanup_old_data(self.config.retention_days)
        except PersistenceError as e:
            logger.error("Retention cleanup failed: %s", e)

    def has_backlog(self) -> bool:
        if self.last_head is None:
            return False
        return self.cursor < safe_height(self.last_head, self.config.block_confirmations)

    async def _sleep(self, delay: float):
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def run(self):
        """Tick on ``polling_interval`` until ``stop()``; catch up without waiting while behind."""
        if not self.is_running:
            await self.start()
        logger.info("Polling every %ss", self.config.polling_interval)
        loop = asyncio.get_running_loop()
        while self.is_running:
            started = loop.time()
            result = await self.tick()
            if not self.is_running:
                break
            if result.status in (TickStatus.FAILED, TickStatus.PARTIAL):
                await self._sleep(self.config.failure_backoff)
            elif result.status == TickStatus.COMMITTED and self.has_backlog():
                continue
            await self._sleep(self.config.polling_interval - (loop.time() - started))
        if self._stop_tasks:
            await asyncio.gather(*self._stop_tasks)
            self._stop_tasks.clear()

    # ---------- introspection ----------
    def stats(self) -> Dict[str, Any]:
        runtime = int(time.time() - self.start_time) if self.start_time else 0
        c = self.persister.counters
        return {
            "blocks_processed": c["blocks"],
            "transactions_processed": c["transactions"],
            "events_processed": c["events"],
            "function_calls_processed": c["function_calls"],
            "start_time": self.start_time,
            "runtime": runtime,
            "rate": round(c["blocks"] / runtime, 2) if runtime > 0 else 0.0,
            "is_running": self.is_running,
            "cursor": self.cursor,
            "state": self.state.value,
        }

    async def health_check(self) -> Dict[str, Any]:
        started = time.monotonic()
        try:
            head = await self.chain.head_height()
            chain = {"status": "healthy", "latency_ms": int((time.monotonic() - started) * 1000),
                     "head": head}
        except Exception as e:
            chain = {"status": "unhealthy", "error": str(e)}
        return {
            "indexer": {
                "status": "running" if self.is_running else "stopped",
                "cursor": self.cursor,
                "stats": self.stats(),
            },
            "blockchain": chain,
        }
