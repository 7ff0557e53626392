"""
Lenient coercion of caller-supplied bounds.

Out-of-range values are clamped to the documented limits rather than
rejected; negative, non-numeric or NaN values fall back to the default.
"""

import logging
import math
from typing import Any

logger = logging.getLogger(__name__)


def coerce_int(value: Any, default: int, minimum: int, maximum: int) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.debug(f"Non-numeric bound {value!r}; using default {default}")
        return default

    if math.isnan(number) or number < 0:
        return default
    if math.isinf(number):
        return maximum
    return max(minimum, min(maximum, int(number)))


def coerce_threshold(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.debug(f"Non-numeric threshold {value!r}; using default {default}")
        return default

    if math.isnan(number) or number < 0:
        return default
    return min(number, 1.0)
