"""Append-only logging helpers for processed captures."""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

LOG_FILE_NAME = "processed_captures.jsonl"
LOGGER_NAME = "thoughtbot"

_EVENT_LOG_DIR: Optional[Path] = None


def _setup_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        logger.setLevel(logging.INFO)
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.propagate = False
    return logger


LOGGER = _setup_logger()


def configure_event_log(log_dir: Optional[Path]) -> None:
    """Set the directory for the JSONL event log; ``None`` keeps console output only."""

    global _EVENT_LOG_DIR
    _EVENT_LOG_DIR = Path(log_dir) if log_dir is not None else None


def _log_path() -> Optional[Path]:
    if _EVENT_LOG_DIR is None:
        return None
    _EVENT_LOG_DIR.mkdir(parents=True, exist_ok=True)
    return _EVENT_LOG_DIR / LOG_FILE_NAME


def log_event(data: Mapping[str, Any]) -> None:
    """Append a JSON event to the log file and emit console output."""

    payload = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **data,
    }
    try:
        path = _log_path()
        if path is not None:
            with path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(payload, ensure_ascii=False, default=str))
                handle.write("\n")
    except OSError:
        # Logging is best-effort; avoid breaking the pipeline.
        pass

    status = payload.get("status", "info")
    raw_text = payload.get("raw_text", "")
    if status == "success":
        LOGGER.info(
            "Processed capture | id=%s classification=%s category=%s action=%s | text=%s",
            payload.get("capture_id"),
            payload.get("classification"),
            payload.get("category"),
            payload.get("action"),
            raw_text,
        )
    else:
        LOGGER.error(
            "Failed to process capture | id=%s error=%s | text=%s",
            payload.get("capture_id"),
            payload.get("error"),
            raw_text,
        )


__all__ = ["configure_event_log", "log_event", "LOGGER", "LOGGER_NAME"]
