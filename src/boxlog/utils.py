from __future__ import annotations

import secrets
import time
from datetime import datetime, timezone

from .codec import to_utc


# PUBLIC_INTERFACE
def new_id(kind: str) -> str:
    """
    Return a fresh record id: ``<kind>-<ns timestamp in hex>-<random suffix>``.

    Collisions need two ids minted in the same nanosecond with the same
    40-bit suffix.
    """
    return f"{kind}-{time.time_ns():x}-{secrets.token_hex(5)}"


# PUBLIC_INTERFACE
def utcnow() -> datetime:
    """Current time as an aware UTC datetime at the precision the codec stores."""
    return to_utc(datetime.now(timezone.utc))
