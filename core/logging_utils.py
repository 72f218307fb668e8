from __future__ import annotations

import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional

from .paths import get_logs_dir

_TEXT_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: Dict[str, Any] = {
            "ts": time.time(),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(
    working_dir: Optional[Path] = None,
    *,
    level: str | int = "INFO",
    json_file: bool = False,
    name: str = "storekeeper",
) -> logging.Logger:
    """Attach a stdout handler and, optionally, a JSONL file handler."""

    logger = logging.getLogger(name)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)
    if not any(getattr(handler, "_storekeeper_stdout", False) for handler in logger.handlers):
        stream = logging.StreamHandler(sys.stdout)
        stream.setFormatter(logging.Formatter(_TEXT_FORMAT, "%Y-%m-%d %H:%M:%S"))
        stream._storekeeper_stdout = True  # type: ignore[attr-defined]
        logger.addHandler(stream)
    if json_file and working_dir is not None:
        logs_dir = get_logs_dir(Path(working_dir))
        logs_dir.mkdir(parents=True, exist_ok=True)
        log_path = logs_dir / "storekeeper.log.jsonl"
        for handler in list(logger.handlers):
            if isinstance(handler, logging.FileHandler) and getattr(handler, "baseFilename", None) == str(log_path):
                break
        else:
            handler = logging.FileHandler(log_path, encoding="utf-8")
            handler.setFormatter(JsonLogFormatter())
            logger.addHandler(handler)
    logger.propagate = False
    return logger


def redact_secret(value: str | None) -> str:
    if not value:
        return ""
    if len(value) <= 6:
        return "***"
    return f"{value[:3]}***{value[-2:]}"
