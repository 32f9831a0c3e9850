import threading
import time
from datetime import datetime, timezone

_seq_lock = threading.Lock()
_last_seq = 0


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the naive DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def next_sequence() -> int:
    """Strictly increasing within the process; wall-clock based across processes."""
    global _last_seq
    with _seq_lock:
        _last_seq = max(time.time_ns(), _last_seq + 1)
        return _last_seq
