from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Dict

logger = logging.getLogger(__name__)


class JsonlLogger:
    """Append-only request log, one JSON object per line, rotated by size."""

    def __init__(self, path: str, max_bytes: int = 25_000_000):
        self.path = path
        self.max_bytes = max_bytes
        # Avoid mkdir("") when only a filename is provided.
        log_dir = os.path.dirname(path)
        if log_dir:
            try:
                os.makedirs(log_dir, exist_ok=True)
            except OSError:
                logger.warning("Cannot create request log directory %s", log_dir)

    def _rotate_if_needed(self):
        try:
            if (
                os.path.exists(self.path)
                and os.path.getsize(self.path) > self.max_bytes
            ):
                ts = time.strftime("%Y%m%d-%H%M%S")
                os.rename(self.path, f"{self.path}.{ts}")
        except OSError:
            logger.warning("Request log rotation failed for %s", self.path)

    def log(self, record: Dict[str, Any]):
        self._rotate_if_needed()
        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=False) + "\n")
        except OSError:
            logger.warning("Could not write request log entry to %s", self.path)


def request_record(
    *,
    model: str | None,
    has_image: bool,
    history_turns: int,
    status: int,
    started_at: float,
    usage: Dict[str, Any] | None = None,
) -> Dict[str, Any]:
    usage = usage or {}
    return {
        "ts": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime()),
        "model": model,
        "has_image": has_image,
        "history_turns": history_turns,
        "status": status,
        "duration_ms": round((time.time() - started_at) * 1000, 1),
        "prompt_tokens": usage.get("prompt_tokens"),
        "completion_tokens": usage.get("completion_tokens"),
    }
