import asyncio
import logging
import signal

import uvloop

from contract_indexer.chain import Web3ChainReader
from contract_indexer.config import ConfigError, load_config
from contract_indexer.db import db, ensure_schema
from contract_indexer.errors import IndexerError
from contract_indexer.indexer import Indexer
from contract_indexer.logging_setup import setup_logging

logger = logging.getLogger(__name__)


async def main():
    try:
        config = load_config()
    except ConfigError as e:
        raise SystemExit(f"Configuration error: {e}")
    setup_logging(config.log_level, config.log_dir)

    chain = Web3ChainReader.from_url(config.rpc_url)
    latest = await chain.head_height()
    logger.info("Connected to %s, head=%d", config.rpc_url, latest)

    conn = db(config.db_path)
    ensure_schema(conn)
    logger.info("Database initialized at: %s", config.db_path)

    indexer = Indexer(config, chain, conn)
    try:
        await indexer.start()
    except ConfigError as e:
        conn.close()
        await chain.close()
        raise SystemExit(f"Configuration error: {e}")
    except IndexerError as e:
        conn.close()
        await chain.close()
        raise SystemExit(f"Startup failed: {e}")

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, indexer.request_stop)

    try:
        await indexer.run()
    finally:
        conn.close()
        await chain.close()
        logger.info("Indexer shut down")


def run():
    uvloop.run(main())


if __name__ == "__main__":
    run()
