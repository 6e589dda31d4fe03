import json
import logging
import os
import pathlib
from typing import Dict, List, Mapping, Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from contract_indexer.helpers import is_valid_address, to_addr

logger = logging.getLogger(__name__)

START_LATEST = "latest"


class ConfigError(Exception):
    pass


class IndexerConfig(BaseModel):
    rpc_url:             str
    contract_addresses:  List[str] = Field(min_length=1)
    contract_names:      Dict[str, str] = Field(default_factory=dict)
    batch_size:          int = Field(100, ge=1)
    sub_batch_size:      int = Field(10, ge=1)
    polling_interval:    float = Field(5.0, gt=0)
    block_confirmations: int = Field(12, ge=0)
    start_block:         Optional[Union[int, str]] = None
    backfill_blocks:     Optional[int] = Field(None, ge=0)
    max_retries:         int = Field(3, ge=1)
    retry_base_delay:    float = Field(1.0, ge=0)
    failure_backoff:     float = Field(5.0, ge=0)
    db_path:             str = "./data/indexer.db"
    retention_days:      Optional[int] = Field(None, ge=1)
    log_level:           str = "INFO"
    log_dir:             Optional[str] = None

    @field_validator("rpc_url")
    @classmethod
    def _rpc_url(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("RPC_URL is empty")
        return v

    @field_validator("contract_addresses")
    @classmethod
    def _addresses(cls, v: List[str]) -> List[str]:
        out: List[str] = []
        for a in v:
            a = a.strip()
            if not is_valid_address(a):
                raise ValueError(f"invalid contract address format: {a!r}")
            a = to_addr(a)
            if a not in out:
                out.append(a)
        return out

    @field_validator("start_block")
    @classmethod
    def _start_block(cls, v):
        if v is None or v == "":
            return None
        if isinstance(v, int):
            if v < 0:
                raise ValueError("START_BLOCK must be >= 0")
            return v
        s = str(v).strip().lower()
        if s == START_LATEST:
            return START_LATEST
        if not s.isdigit():
            raise ValueError(f"START_BLOCK must be 'latest' or a block number, got {v!r}")
        return int(s)

    @field_validator("log_level")
    @classmethod
    def _log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown LOG_LEVEL {v!r}")
        return v

    def display_name(self, address: str) -> str:
        return self.contract_names.get(address) or f"Contract_{address[:8]}"


def load_contract_names(path: str) -> Dict[str, str]:
    """Optional watchlist file: ``[{"address": "0x..", "name": "..."}, ...]``."""
    p = pathlib.Path(path)
    if not p.exists():
        logger.debug("%s not found; contracts get default names", path)
        return {}
    try:
        entries = json.loads(p.read_text())
    except (OSError, ValueError) as e:
        raise ConfigError(f"failed to parse {path}: {e}") from e
    if not isinstance(entries, list) or not all(isinstance(c, dict) for c in entries):
        raise ConfigError(f"{path} must be a JSON list of {{\"address\", \"name\"}} objects")
    names = {}
    for c in entries:
        addr = c.get("address") or ""
        if is_valid_address(addr) and c.get("name"):
            names[to_addr(addr)] = c["name"]
    return names


def load_config(env: Optional[Mapping[str, str]] = None, dotenv_path: str = ".env") -> IndexerConfig:
    """Build the config from ``env`` (defaults to the process environment after loading .env)."""
    if env is None:
        load_dotenv(dotenv_path)
        env = os.environ

    def get(key, default=None):
        v = env.get(key)
        return default if v is None or v.strip() == "" else v.strip()

    if not get("RPC_URL"):
        raise ConfigError("Missing RPC_URL")
    if not get("CONTRACT_ADDRESSES"):
        raise ConfigError("Missing CONTRACT_ADDRESSES")

    raw = {
        "rpc_url":             get("RPC_URL"),
        "contract_addresses":  [a for a in get("CONTRACT_ADDRESSES").split(",") if a.strip()],
        "contract_names":      load_contract_names(get("CONTRACTS_PATH", "contracts.json")),
        "batch_size":          get("BATCH_SIZE", "100"),
        "sub_batch_size":      get("SUB_BATCH_SIZE", "10"),
        "polling_interval":    get("POLLING_INTERVAL", "5"),
        "block_confirmations": get("BLOCK_CONFIRMATIONS", "12"),
        "start_block":         get("START_BLOCK"),
        "backfill_blocks":     get("BACKFILL_BLOCKS"),
        "max_retries":         get("MAX_RETRIES", "3"),
        "retry_base_delay":    get("RETRY_BASE_DELAY", "1"),
        "failure_backoff":     get("FAILURE_BACKOFF", "5"),
        "db_path":             get("DB_PATH", "./data/indexer.db"),
        "retention_days":      get("RETENTION_DAYS"),
        "log_level":           get("LOG_LEVEL", "INFO"),
        "log_dir":             get("LOG_DIR"),
    }
    try:
        return IndexerConfig(**raw)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}") from e
