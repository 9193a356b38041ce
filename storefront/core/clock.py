"""Time helpers shared by tokens, sessions and storage keys.

Database timestamps are stored as naive UTC.
"""

import time
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def epoch_ms() -> int:
    return time.time_ns() // 1_000_000
