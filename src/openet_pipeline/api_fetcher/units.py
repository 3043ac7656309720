from __future__ import annotations

from typing import Optional

MM_PER_INCH = 25.4


def mm_to_inches(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return float(value) / MM_PER_INCH


def inches_to_mm(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return float(value) * MM_PER_INCH
