from __future__ import annotations

import logging
import sys

from pushrelay.core.config import get_settings


_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_KV_FORMAT = "ts=%(asctime)s level=%(levelname)s logger=%(name)s msg=%(message)s"

_configured = False


def configure_logging(level: str | None = None) -> None:
    # Configure the root logger once per process; later calls only adjust the level.
    global _configured
    settings = get_settings()
    resolved = logging.getLevelName((level or settings.log_level or "INFO").upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO
    root = logging.getLogger()
    root.setLevel(resolved)
    if _configured:
        return
    handler = logging.StreamHandler(sys.stdout)
    fmt = _KV_FORMAT if settings.log_format.lower() == "kv" else _TEXT_FORMAT
    handler.setFormatter(logging.Formatter(fmt))
    root.addHandler(handler)
    # SQL echo is noisy at INFO; keep engine logs for explicit debugging only.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    _configured = True
