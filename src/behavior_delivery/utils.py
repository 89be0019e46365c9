"""
Utility functions for the behavior delivery engine.

Includes id generation, time helpers, payload sizing and NDJSON reading.
"""

import json
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Union


def generate_output_id() -> str:
    """Generate a unique output id (``output-<epoch ms>-<random>``)."""
    return f"output-{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}"


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def elapsed_ms(t0: float) -> float:
    """Milliseconds elapsed since a ``time.monotonic()`` reading."""
    return round((time.monotonic() - t0) * 1000.0, 3)


def payload_size(data: Any) -> int:
    """Size of a formatted payload: raw length for bytes/str, JSON length otherwise."""
    if isinstance(data, (bytes, bytearray)):
        return len(data)
    if isinstance(data, str):
        return len(data)
    return len(json.dumps(data, default=_json_default))


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def to_json(data: Any) -> str:
    """JSON text for payloads that may contain bytes or datetimes."""
    return json.dumps(data, default=_json_default)


def iter_ndjson(path: Union[str, Path]) -> Iterator[Dict[str, Any]]:
    """Yield one decoded object per non-blank line of an NDJSON file."""
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            yield json.loads(line)
