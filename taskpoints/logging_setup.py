import logging
import sys
from pathlib import Path
from typing import Optional

from .config import LOG_DIR, LOG_LEVEL

_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


class _ThirdPartyFilter(logging.Filter):
    """Let taskpoints logs through; keep library chatter to warnings and up."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith("taskpoints."):
            return True
        return record.levelno >= logging.WARNING


def setup_logging(level: str = LOG_LEVEL, log_dir: Optional[str] = LOG_DIR) -> None:
    """Configure the root logger once, early in application startup.

    Console output goes to stderr. When ``log_dir`` is set, a full debug log is
    also written to ``<log_dir>/taskpoints.log``.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    fmt = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(getattr(logging, level.upper(), logging.INFO))
    console.setFormatter(fmt)
    console.addFilter(_ThirdPartyFilter())
    root.addHandler(console)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(path / "taskpoints.log"), encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(fmt)
        root.addHandler(file_handler)

    logging.captureWarnings(True)
