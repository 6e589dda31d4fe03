import sqlite3
from pathlib import Path
from typing import Iterable, List, Optional

from contract_indexer.models import Contract

SCHEMA_PATH = Path(__file__).with_name("schema.sql")
LAST_INDEXED_BLOCK = "last_indexed_block"

def db(path: str) -> sqlite3.Connection:
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA temp_store=MEMORY;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn

def ensure_schema(conn: sqlite3.Connection):
    conn.executescript(SCHEMA_PATH.read_text(encoding="utf-8"))

# ---------- indexer_state ----------
def get_state(conn, key, default=None):
    row = conn.execute("SELECT value FROM indexer_state WHERE key=?", (key,)).fetchone()
    return row[0] if row else default

def set_state(conn, key, value):
    conn.execute("""
        INSERT INTO indexer_state(key, value, updated_at) VALUES(?, ?, strftime('%s', 'now'))
        ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
    """, (key, str(value)))

def get_last_indexed_block(conn) -> Optional[int]:
    v = get_state(conn, LAST_INDEXED_BLOCK)
    return None if v is None else int(v)

def advance_cursor(conn, block_number: int, addresses: Iterable[str] = ()):
    """Persist the resumption point and raise per-contract watermarks. Call only after a commit."""
    addresses = list(addresses)
    conn.execute("BEGIN")
    try:
        set_state(conn, LAST_INDEXED_BLOCK, block_number)
        if addresses:
            qmarks = ",".join(["?"] * len(addresses))
            conn.execute(f"""
                UPDATE contracts SET last_indexed_block = ?
                WHERE address IN ({qmarks}) AND last_indexed_block < ?
            """, (block_number, *addresses, block_number))
        conn.execute("COMMIT")
    except BaseException:
        conn.execute("ROLLBACK")
        raise

# ---------- contracts ----------
def upsert_contract(conn, contract: Contract):
    conn.execute("""
        INSERT INTO contracts(address, name, is_active, last_indexed_block)
        VALUES(?,?,?,?)
        ON CONFLICT(address) DO UPDATE SET name=excluded.name, is_active=excluded.is_active
    """, (contract.address.lower(), contract.name, int(contract.is_active), contract.last_indexed_block))

def get_contracts(conn) -> List[Contract]:
    rows = conn.execute(
        "SELECT address, name, is_active, last_indexed_block FROM contracts ORDER BY address"
    ).fetchall()
    return [Contract(address=r["address"], name=r["name"], is_active=bool(r["is_active"]),
                     last_indexed_block=r["last_indexed_block"] or 0) for r in rows]
