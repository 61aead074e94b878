# -*- coding: utf-8 -*-
from __future__ import annotations
import logging, logging.handlers
from pathlib import Path

LOG_FILENAME = "warehouse_hub.log"


def log_file_path(settings) -> Path:
    return Path(settings.WAREHOUSE_DATA_ROOT).expanduser() / "logs" / LOG_FILENAME


def setup_logging(settings) -> Path:
    """Configure rotating file logging under WAREHOUSE_DATA_ROOT/logs/warehouse_hub.log"""
    log_path = log_file_path(settings)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    handler = logging.handlers.RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    handler.setFormatter(fmt)
    handler.setLevel(logging.INFO)

    def _has_ours(lg: logging.Logger) -> bool:
        return any(getattr(h, "baseFilename", "").endswith(LOG_FILENAME) for h in lg.handlers)

    root = logging.getLogger()
    root.setLevel(logging.INFO)
    # avoid duplicate handlers on reload
    if not _has_ours(root):
        root.addHandler(handler)

    # uvicorn does not propagate to root
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        lg = logging.getLogger(name)
        lg.setLevel(logging.INFO)
        if not _has_ours(lg):
            lg.addHandler(handler)

    return log_path
