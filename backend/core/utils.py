"""
Proposal Suite: Shared utilities.

Pure functions used across the whole backend. No imports from other backend
modules; only the standard library and backend.core.constants are allowed.
"""

from __future__ import annotations

import math
import statistics
from datetime import datetime, timezone
from typing import Optional, Sequence


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------

def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_epoch_ms(value: Optional[float]) -> datetime:
    """Convert a Unix timestamp in milliseconds to naive UTC.

    ``None`` maps to the current time.
    """
    if value is None:
        return utcnow()
    return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Money
# ---------------------------------------------------------------------------

def round_cents(amount: float) -> float:
    """Round a currency amount to two decimals (half away from zero)."""
    sign = -1.0 if amount < 0 else 1.0
    return sign * math.floor(abs(amount) * 100.0 + 0.5) / 100.0


def to_minor_units(amount: float) -> int:
    """Currency amount -> integer cents as expected by payment providers."""
    return int(round(amount * 100))


# ---------------------------------------------------------------------------
# Math helpers
# ---------------------------------------------------------------------------

def safe_div(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Divide without raising on zero denominator."""
    if denominator == 0:
        return default
    return numerator / denominator


def pct(part: float, whole: float) -> float:
    """``part / whole * 100`` or 0.0 when ``whole`` is zero."""
    return safe_div(part, whole, 0.0) * 100.0


def clamp(value: float, lo: float, hi: float) -> float:
    """Clamp ``value`` to the range [lo, hi]."""
    return max(lo, min(hi, value))


def floor_to_grid(value: float, size: int) -> int:
    """Snap a coordinate down to the start of its ``size``-pixel cell."""
    return int(math.floor(value / size) * size)


# ---------------------------------------------------------------------------
# Statistical helpers
# ---------------------------------------------------------------------------

def mean_safe(values: Sequence[float], default: float = 0.0) -> float:
    """Return mean of ``values``, or ``default`` when the sequence is empty."""
    if not values:
        return default
    return statistics.mean(values)


def upper_median(values: Sequence[float], default: float = 0.0) -> float:
    """Element at ``n // 2`` of the sorted values.

    For even-length input this is the upper of the two middle values, not
    their average.
    """
    if not values:
        return default
    ordered = sorted(values)
    return ordered[len(ordered) // 2]


def logistic(z: float) -> float:
    """Numerically safe ``1 / (1 + e^-z)``."""
    if z >= 0:
        return 1.0 / (1.0 + math.exp(-z))
    ez = math.exp(z)
    return ez / (1.0 + ez)
