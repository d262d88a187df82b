import logging
import os
from pathlib import Path
from logging.handlers import RotatingFileHandler
from mtt.common.setup import PATHS
from datetime import datetime

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(filename)s:%(lineno)d] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Loggers owned by the HTTP server. `serve` points them at our handlers so one log covers both.
SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


# Handlers are registered by name, checked before the handler is built (a mode "w" FileHandler truncates on
# creation), so calling get_logger again never duplicates output.
def _has_handler(logger, name):
    return any(h.get_name() == name for h in logger.handlers)

def _add_handler(logger, name, handler, level, fmt):
    handler.setLevel(level)
    handler.setFormatter(fmt)
    handler.set_name(name)
    logger.addHandler(handler)

# Keeps only the newest `keep` per-run debug logs for this logger name.
def _prune_debug_runs(debug_dir, name, keep):
    runs = sorted(debug_dir.glob(f"{name}_*.log"), key=lambda p: p.stat().st_mtime, reverse=True)
    for run in runs[keep:]:
        try: run.unlink()
        except OSError: pass

# Console level comes from MTT_LOG_LEVEL (e.g. "DEBUG", "warning"); unknown names fall back to `default`.
def _console_level(default):
    raw = os.getenv("MTT_LOG_LEVEL", "").strip().upper()
    level = logging.getLevelName(raw) if raw else default
    return level if isinstance(level, int) else default

def get_logger(
        name = "mtt",
        level = logging.INFO,
        log_dir: Path | None = None,
        max_bytes = 5 * 1024 * 1024,
        backup_count = 5,
        persistent = True,
        console = False,
        historical_debugs: int = 10
) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.propagate = False
    logger.setLevel(level)

    log_dir = Path(log_dir or PATHS.logs)
    log_dir.mkdir(parents=True,exist_ok=True)
    fmt = logging.Formatter(LOG_FORMAT,LOG_DATE_FORMAT)

    # Rotating history of everything INFO and up, across runs
    if persistent and not _has_handler(logger, f"{name}:persistent"):
        _add_handler(logger, f"{name}:persistent",
                     RotatingFileHandler(log_dir / f"{name}.log", maxBytes=max_bytes, backupCount=backup_count,
                                         encoding="utf-8"),
                     logging.INFO, fmt)

    # latest.log only ever holds the current run
    if not _has_handler(logger, f"{name}:latest"):
        _add_handler(logger, f"{name}:latest",
                     logging.FileHandler(log_dir / "latest.log", mode="w", encoding="utf-8"),
                     level, fmt)

    # One DEBUG file per run (the pid keeps the CLI and a running server apart), newest N kept
    if historical_debugs > 0 and not _has_handler(logger, f"{name}:historical_debug"):
        debug_dir = log_dir / "debug"
        debug_dir.mkdir(parents=True,exist_ok=True)
        run_path = debug_dir / f"{name}_{datetime.now():%Y-%m-%d_%H-%M-%S}_{os.getpid()}.log"
        _add_handler(logger, f"{name}:historical_debug",
                     logging.FileHandler(run_path, encoding="utf-8"), logging.DEBUG, fmt)
        _prune_debug_runs(debug_dir, name, historical_debugs)

    if console and not _has_handler(logger, f"{name}:console"):
        _add_handler(logger, f"{name}:console", logging.StreamHandler(), _console_level(level), fmt)

    return logger

# Sends the records of other libraries' loggers (the HTTP server's by default) through the same handlers as
# `logger`, replacing whatever handlers they had.
def share_handlers(logger, names=SERVER_LOGGERS):
    for other_name in names:
        other = logging.getLogger(other_name)
        other.handlers = list(logger.handlers)
        other.propagate = False
        other.setLevel(logging.INFO)

log = get_logger(level=logging.DEBUG,console=bool(os.getenv("MTT_LOG_CONSOLE")),historical_debugs=10)
log.info("=== INITIALIZED NEW SESSION ===")
