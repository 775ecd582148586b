# utils/time.py
import re
from datetime import datetime, timezone
from typing import Any, Optional

_FRACTION = re.compile(r"(\.\d{6})\d+")

def utc_ms() -> int:
    return int(datetime.now(tz=timezone.utc).timestamp() * 1000)

def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)

def parse_tf(tf: str) -> int:
    """Duration string ('500ms', '10s', '1m', '2h', '1d') to milliseconds."""
    tf = str(tf).strip()
    if tf.endswith("ms"):
        return int(tf[:-2])
    if tf.endswith("s"):
        return int(tf[:-1]) * 1000
    if tf.endswith("m"):
        return int(tf[:-1]) * 60_000
    if tf.endswith("h"):
        return int(tf[:-1]) * 3_600_000
    if tf.endswith("d"):
        return int(tf[:-1]) * 86_400_000
    raise ValueError(f"unknown timeframe: {tf}")

def parse_ts(x: Any) -> Optional[datetime]:
    """
    Backend timestamp to an aware UTC datetime.

    Accepts ISO-8601 strings (trailing 'Z', offsets, .NET-style 7-digit
    fractions) and epoch milliseconds. Naive values are taken as UTC.
    Returns None when the value cannot be read.
    """
    if x is None or isinstance(x, bool):
        return None
    if isinstance(x, datetime):
        dt = x
    elif isinstance(x, (int, float)):
        try:
            return datetime.fromtimestamp(x / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        s = str(x).strip()
        if not s:
            return None
        if s.isdigit():
            return parse_ts(int(s))
        if s.endswith(("Z", "z")):
            s = s[:-1] + "+00:00"
        s = _FRACTION.sub(r"\1", s)
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
