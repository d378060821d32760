from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime(timezone=False) columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)
