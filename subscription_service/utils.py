from datetime import datetime, timezone


def utcnow():
    """Naive UTC timestamp, the form stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_epoch(value):
    """Convert a processor epoch-seconds timestamp to naive UTC, or None."""
    if value is None or value == "":
        return None
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)


def isoformat(value):
    return value.isoformat() if value else None
