import asyncio
import logging
from typing import List

from contract_indexer.chain import ChainReader
from contract_indexer.helpers import chunked, retry
from contract_indexer.models import Block, BlockFetchResult, BlockRange

logger = logging.getLogger(__name__)


class BlockNotAvailable(Exception):
    pass


class BatchFetcher:
    """
    Fetches every block of a range with its transactions. Sub-batches of
    ``sub_batch_size`` blocks run one after another; blocks inside a sub-batch
    are fetched concurrently and each one is retried on its own. A block that
    still fails is returned as a failed ``BlockFetchResult`` instead of raising.
    """

    def __init__(self, chain: ChainReader, sub_batch_size: int = 10,
                 max_retries: int = 3, retry_base_delay: float = 1.0):
        self.chain = chain
        self.sub_batch_size = sub_batch_size
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay

    async def fetch_block(self, number: int) -> Block:
        async def once():
            b = await self.chain.block_by_number(number, True)
            if b is None:
                raise BlockNotAvailable(f"Block {number} not found")
            return b
        return await retry(once, self.max_retries, f"getBlock {number}", self.retry_base_delay)

    async def fetch(self, block_range: BlockRange) -> List[BlockFetchResult]:
        results: List[BlockFetchResult] = []
        for batch in chunked(block_range.numbers(), self.sub_batch_size):
            settled = await asyncio.gather(*[self.fetch_block(n) for n in batch],
                                           return_exceptions=True)
            for n, res in zip(batch, settled):
                if isinstance(res, BaseException):
                    logger.error("Failed to fetch block %d: %s", n, res)
                    results.append(BlockFetchResult(number=n, error=f"{type(res).__name__}: {res}"))
                else:
                    results.append(BlockFetchResult(number=n, block=res))
        failed = sum(1 for r in results if not r.ok)
        logger.debug("Fetched range %s: %d ok, %d failed", block_range, len(results) - failed, failed)
        return results
