"""
Helpers & Utilities
===================
Shared utility functions used across the application.
"""

import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any

from config.settings import settings


# ── Logging ───────────────────────────────────────────────
def setup_logger(name: str = "carbon_app", level: int | str = logging.INFO) -> logging.Logger:
    """
    Create and configure a logger with console output.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter(
                "[%(asctime)s] %(levelname)s %(name)s — %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger


logger = setup_logger(level=settings.LOG_LEVEL.upper())


def get_logger(module: str) -> logging.Logger:
    """Child logger of the application logger, e.g. ``carbon_app.verification``."""
    return logger.getChild(module)


# ── Time ──────────────────────────────────────────────────
def utc_now() -> datetime:
    """Naive UTC timestamp, matching TIMESTAMP_NTZ columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ── JSON Helpers ──────────────────────────────────────────
class DateTimeEncoder(json.JSONEncoder):
    """JSON encoder that handles datetime objects."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


def to_json(data: Any, pretty: bool = False) -> str:
    """Serialize data to JSON, handling datetimes."""
    return json.dumps(data, cls=DateTimeEncoder, indent=2 if pretty else None)


def from_json(value: Any, default: Any = None) -> Any:
    """Decode a JSON text column; values already decoded by the driver pass through."""
    if value is None:
        return default
    if isinstance(value, (dict, list)):
        return value
    return json.loads(value)


_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def message_text(content: Any) -> str:
    """Flatten a chat-model message content (str or list of parts) to text."""
    if isinstance(content, str):
        return content
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


def parse_model_json(content: Any) -> Any:
    """
    Parse JSON out of a model reply.

    Models often wrap JSON in a markdown fence; the fenced body wins
    when present. Raises ``json.JSONDecodeError`` on anything else.
    """
    text = message_text(content).strip()
    match = _FENCE_RE.search(text)
    if match:
        text = match.group(1).strip()
    return json.loads(text)
