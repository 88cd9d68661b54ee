from __future__ import annotations

import hashlib
import json
import re
from datetime import datetime, timezone
from typing import Any

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
_FRACTION_RE = re.compile(r"\.(\d+)")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render an aware datetime as fixed-width UTC text (sorts lexically)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def parse_timestamp(value: object) -> datetime:
    """Parse RFC 3339 / ISO 8601 text into an aware UTC datetime.

    Accepts a trailing ``Z`` or a numeric offset and fractional seconds of
    any precision; digits past microseconds are dropped.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            raise ValueError("empty timestamp")
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        text = _FRACTION_RE.sub(
            lambda match: "." + match.group(1)[:6].ljust(6, "0"),
            text,
            count=1,
        )
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def json_dumps_compact(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def compute_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()
