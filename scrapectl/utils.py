from datetime import datetime, timezone
import re

# e.g., "20s", "5m", "1h30m", "90m", "  2h  "
DURATION_RE = re.compile(r"(?i)^\s*(?:(\d+)\s*h)?\s*(?:(\d+)\s*m)?\s*(?:(\d+(?:\.\d+)?)\s*s)?\s*$")


def parse_duration(s) -> float:
    """
    Parse '3', '2.5', '20s', '5m', '1h30m' into seconds (float).
    Zero is allowed; negative or malformed input raises ValueError.
    """
    if s is None:
        raise ValueError("duration is empty")
    text = str(s).strip()
    if not text:
        raise ValueError("duration is empty")
    try:
        value = float(text)
    except ValueError:
        m = DURATION_RE.match(text)
        if not m or not any(m.groups()):
            raise ValueError(f"Invalid duration format: {s!r}")
        h, m_, s_ = m.groups()
        value = 0.0
        if h:  value += int(h) * 3600
        if m_: value += int(m_) * 60
        if s_: value += float(s_)
    if value < 0:
        raise ValueError("duration must be >= 0 seconds")
    return value


def now_iso() -> str:
    """UTC timestamp like '2025-11-06T09:12:34.123456Z'."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def error_message(exc: BaseException) -> str:
    """Message recorded on a job or target result for a caught exception."""
    return str(exc) or exc.__class__.__name__
