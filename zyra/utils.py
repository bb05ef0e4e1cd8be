import time
import uuid
from contextlib import contextmanager
from datetime import UTC, datetime


def utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


@contextmanager
def timer_ms():
    start = time.perf_counter()
    yield lambda: int((time.perf_counter() - start) * 1000)


def new_request_id(prefix: str = "req") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


def mask_tail(value: str, keep_hidden: int = 4) -> str:
    """'+15551234567' -> '+1555123****' (never reveals a short value)."""
    if len(value) <= keep_hidden:
        return "*" * keep_hidden
    return value[:-keep_hidden] + "*" * keep_hidden
