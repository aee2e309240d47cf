"""
Runs the editing API as a local service.

Uvicorn serves `pipemap.api:app`; application and server logs share one
rotating file under PIPEMAP_LOG_DIR (default %LOCALAPPDATA%/pipemap/logs,
or ~/pipemap/logs).
"""

from __future__ import annotations

import argparse
import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

import uvicorn

from pipemap.core.logger import configure_logging, get_logger

LOG_MAX_BYTES = 2_000_000
LOG_BACKUPS = 3
UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def _log_file() -> Path:
    override = os.environ.get("PIPEMAP_LOG_DIR")
    if override:
        log_dir = Path(override)
    else:
        log_dir = Path(os.environ.get("LOCALAPPDATA") or str(Path.home())) / "pipemap" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / "backend.log"


def _configure_logging(log_level: str) -> dict:
    """
    Points the root logger (and so structlog) at the rotating file.
    Returns the dictConfig uvicorn should use for its own loggers.
    """
    level = log_level.upper()
    log_file = _log_file()

    configure_logging(level=level)

    handler = RotatingFileHandler(str(log_file), maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(message)s"))
    root = logging.getLogger()
    root.setLevel(level)
    # Replaces the stdout handler installed by configure_logging
    root.handlers = [handler]

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"plain": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"}},
        "handlers": {
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "formatter": "plain",
                "filename": str(log_file),
                "maxBytes": LOG_MAX_BYTES,
                "backupCount": LOG_BACKUPS,
                "encoding": "utf-8",
            }
        },
        "loggers": {name: {"handlers": ["file"], "level": level, "propagate": False} for name in UVICORN_LOGGERS},
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="pipemap geometry-editing API")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--log-level", default="info")
    args = parser.parse_args(argv)

    log_config = _configure_logging(args.log_level)
    get_logger(__name__).info("standalone_starting", host=args.host, port=args.port)

    from pipemap.api import app

    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level, log_config=log_config, access_log=False)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
