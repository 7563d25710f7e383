"""
ORACLE WATCHER — Common Utility Functions
"""
from datetime import datetime, timezone
from typing import Optional

E6 = 1_000_000


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(timezone.utc)


def utc_timestamp() -> str:
    """Return current UTC timestamp as ISO string."""
    return utc_now().isoformat()


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an ISO timestamp, assuming UTC when no offset is given."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def pct_change(old_val: float, new_val: float) -> float:
    """Calculate percentage change between two values."""
    if old_val == 0:
        return 0.0
    return ((new_val - old_val) / abs(old_val)) * 100.0


def round_pct(value: float) -> float:
    """Round a percentage to 2 decimals."""
    return round(value * 100) / 100


def to_e6(price: float) -> int:
    """Encode a decimal price as E6 fixed-point."""
    return int(round(price * E6))


def from_e6(value: int) -> float:
    """Decode an E6 fixed-point integer to a decimal price."""
    return int(value) / E6
