import logging

import pytest

from contract_indexer.config import IndexerConfig
from contract_indexer.db import db, ensure_schema

from fakes import TRACKED, FakeChain


@pytest.fixture(autouse=True)
def configure_logging():
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    yield


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def conn():
    c = db(":memory:")
    ensure_schema(c)
    yield c
    c.close()


@pytest.fixture
def config():
    return IndexerConfig(
        rpc_url="http://localhost:8545",
        contract_addresses=[TRACKED],
        batch_size=5,
        sub_batch_size=3,
        block_confirmations=12,
        max_retries=3,
        retry_base_delay=0,
        failure_backoff=0,
        polling_interval=0.01,
        db_path=":memory:",
    )
