import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

_is_logging_configured = False
_current_log_file: Optional[Path] = None

NOISY_LOGGERS = ("web3", "urllib3", "aiohttp", "asyncio")


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None) -> logging.Logger:
    """Configure the root logger once: console on stdout, plus a file when ``log_dir`` is set."""
    global _is_logging_configured, _current_log_file

    root_logger = logging.getLogger()
    if _is_logging_configured:
        return root_logger

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        _current_log_file = path / f"contract_indexer_{timestamp}.log"
        file_handler = logging.FileHandler(_current_log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
        root_logger.setLevel(logging.DEBUG)
    else:
        root_logger.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _is_logging_configured = True
    return root_logger


def get_current_log_file() -> Optional[Path]:
    return _current_log_file
