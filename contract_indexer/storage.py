import json
import logging
import sqlite3
import time
from typing import Dict, Sequence

from contract_indexer.errors import PersistenceError
from contract_indexer.models import Block, BlockRange, CommitResult, Event, FunctionCall, Transaction

logger = logging.getLogger(__name__)


UPSERT_BLOCK = """
    INSERT INTO blocks(
        number, hash, parent_hash, timestamp, gas_limit, gas_used,
        miner, difficulty, size, transaction_count
    ) VALUES(?,?,?,?,?,?,?,?,?,?)
    ON CONFLICT(number) DO UPDATE SET
        hash=excluded.hash, parent_hash=excluded.parent_hash, timestamp=excluded.timestamp,
        gas_limit=excluded.gas_limit, gas_used=excluded.gas_used, miner=excluded.miner,
        difficulty=excluded.difficulty, size=excluded.size,
        transaction_count=excluded.transaction_count
"""

UPSERT_TX = """
    INSERT INTO transactions(
        hash, block_number, block_hash, transaction_index, from_address, to_address,
        value, gas_price, gas_limit, gas_used, nonce, input_data, status
    ) VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?)
    ON CONFLICT(hash) DO UPDATE SET
        block_number=excluded.block_number, block_hash=excluded.block_hash,
        transaction_index=excluded.transaction_index, from_address=excluded.from_address,
        to_address=excluded.to_address, value=excluded.value, gas_price=excluded.gas_price,
        gas_limit=excluded.gas_limit,
        gas_used=COALESCE(excluded.gas_used, transactions.gas_used),
        nonce=excluded.nonce, input_data=excluded.input_data,
        status=COALESCE(excluded.status, transactions.status)
"""

UPSERT_EVENT = """
    INSERT INTO events(
        transaction_hash, block_number, block_hash, log_index, contract_address,
        event_signature, event_name, topics, data, decoded_data
    ) VALUES(?,?,?,?,?,?,?,?,?,?)
    ON CONFLICT(transaction_hash, log_index) DO UPDATE SET
        block_number=excluded.block_number, block_hash=excluded.block_hash,
        contract_address=excluded.contract_address, event_signature=excluded.event_signature,
        event_name=excluded.event_name, topics=excluded.topics, data=excluded.data,
        decoded_data=excluded.decoded_data
"""

UPSERT_CALL = """
    INSERT INTO function_calls(
        transaction_hash, contract_address, function_signature, function_name,
        input_data, decoded_input, output_data, decoded_output, success
    ) VALUES(?,?,?,?,?,?,?,?,?)
    ON CONFLICT(transaction_hash) DO UPDATE SET
        contract_address=excluded.contract_address,
        function_signature=excluded.function_signature, function_name=excluded.function_name,
        input_data=excluded.input_data, decoded_input=excluded.decoded_input,
        output_data=excluded.output_data, decoded_output=excluded.decoded_output,
        success=excluded.success
"""


def block_row(b: Block):
    return (b.number, b.hash, b.parent_hash, b.timestamp, b.gas_limit, b.gas_used,
            b.miner, b.difficulty, b.size, b.transaction_count)

def tx_row(t: Transaction):
    return (t.hash, t.block_number, t.block_hash, t.transaction_index, t.from_address,
            t.to_address, t.value, t.gas_price, t.gas_limit, t.gas_used, t.nonce,
            t.input_data, t.status)

def event_row(e: Event):
    return (e.transaction_hash, e.block_number, e.block_hash, e.log_index, e.contract_address,
            e.event_signature, e.event_name, json.dumps(e.topics), e.data, e.decoded_data)

def call_row(c: FunctionCall):
    return (c.transaction_hash, c.contract_address, c.function_signature, c.function_name,
            c.input_data, c.decoded_input, c.output_data, c.decoded_output, int(c.success))


class Persister:
    """Writes one processed range per SQLite transaction; all rows land or none do."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.counters: Dict[str, int] = {
            "blocks": 0,
            "transactions": 0,
            "events": 0,
            "function_calls": 0,
        }

    def commit(self, block_range: BlockRange, blocks: Sequence[Block],
               transactions: Sequence[Transaction], events: Sequence[Event],
               function_calls: Sequence[FunctionCall]) -> CommitResult:
        conn = self.conn
        try:
            conn.execute("BEGIN")
            conn.executemany(UPSERT_BLOCK, [block_row(b) for b in blocks])
            conn.executemany(UPSERT_TX, [tx_row(t) for t in transactions])
            conn.executemany(UPSERT_EVENT, [event_row(e) for e in events])
            conn.executemany(UPSERT_CALL, [call_row(c) for c in function_calls])
            conn.execute("COMMIT")
        except BaseException as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.error("Commit of range %s rolled back: %s", block_range, e)
            if isinstance(e, sqlite3.Error):
                raise PersistenceError(f"commit of range {block_range} failed: {e}") from e
            raise

        result = CommitResult(block_range=block_range, blocks=len(blocks),
                              transactions=len(transactions), events=len(events),
                              function_calls=len(function_calls))
        self.counters["blocks"] += result.blocks
        self.counters["transactions"] += result.transactions
        self.counters["events"] += result.events
        self.counters["function_calls"] += result.function_calls
        logger.debug("Stored range %s: %d blocks, %d txs, %d events, %d calls", block_range,
                     result.blocks, result.transactions, result.events, result.function_calls)
        return result

    def cleanup_old_data(self, retention_days: int = 90) -> Dict[str, int]:
        """Delete everything belonging to blocks older than ``retention_days``."""
        cutoff = int(time.time()) - retention_days * 86400
        conn = self.conn
        old_blocks = "SELECT number FROM blocks WHERE timestamp < ?"
        try:
            conn.execute("BEGIN")
            events = conn.execute(
                f"DELETE FROM events WHERE block_number IN ({old_blocks})", (cutoff,)).rowcount
            calls = conn.execute(f"""
                DELETE FROM function_calls WHERE transaction_hash IN (
                    SELECT hash FROM transactions WHERE block_number IN ({old_blocks})
                )""", (cutoff,)).rowcount
            txs = conn.execute(
                f"DELETE FROM transactions WHERE block_number IN ({old_blocks})", (cutoff,)).rowcount
            blocks = conn.execute("DELETE FROM blocks WHERE timestamp < ?", (cutoff,)).rowcount
            conn.execute("COMMIT")
        except BaseException as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            if isinstance(e, sqlite3.Error):
                raise PersistenceError(f"cleanup failed: {e}") from e
            raise

        deleted = {"blocks": blocks, "transactions": txs, "events": events, "function_calls": calls}
        logger.info("Cleanup completed: %d blocks, %d transactions, %d events, %d function calls deleted",
                    blocks, txs, events, calls)
        return deleted
