"""
Time helpers - all persisted timestamps are naive UTC
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current instant as a naive UTC datetime"""
    return datetime.now(timezone.utc).replace(tzinfo=None)
