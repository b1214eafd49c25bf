"""
LinkupTracker — glucose unit conversion.

Pure functions. Everything inside the client is kept in mg/dL; the display
unit is chosen by the caller on every projection.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Optional, Union

if TYPE_CHECKING:
    from libre_measurements import CanonicalMeasurement

MGDL = "mg/dL"
MMOL = "mmol/L"

# LibreLinkUp uses a flat factor of 18 rather than 18.0182
MMOL_FACTOR = 18


@dataclass(frozen=True)
class DisplayMeasurement:
    """A canonical reading projected into a display unit."""

    value: Union[int, float]
    unit: str
    trend: str
    timestamp_iso: Optional[str]

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "unit": self.unit,
            "trend": self.trend,
            "timestamp": self.timestamp_iso,
        }


def normalize_unit(hint: Optional[object]) -> str:
    """Map any unit hint ("mmol", "MMOL/L", "mg", None, ...) to MGDL or MMOL."""
    if not hint:
        return MGDL
    if "mmol" in str(hint).lower():
        return MMOL
    return MGDL


def round_half_up(value: float, places: int = 0) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def mmol_to_mgdl(value_mmol: float) -> float:
    """Convert mmol/L to mg/dL."""
    return value_mmol * MMOL_FACTOR


def mgdl_to_mmol(value_mgdl: float) -> float:
    """Convert mg/dL to mmol/L."""
    return value_mgdl / MMOL_FACTOR


def convert_mgdl(value_mgdl: float, unit: Optional[str]) -> Union[int, float]:
    """Render an mg/dL value in the given unit with display rounding.

    mg/dL comes back as a whole int, mmol/L as a float with one decimal.
    """
    if normalize_unit(unit) == MMOL:
        return round_half_up(mgdl_to_mmol(value_mgdl), 1)
    return int(round_half_up(value_mgdl))


def project(canonical: "CanonicalMeasurement", unit: Optional[str]) -> DisplayMeasurement:
    """Project a canonical measurement into the caller's display unit.

    mg/dL rounds to the nearest whole number, mmol/L to one decimal place.
    The canonical measurement is never modified.
    """
    target = normalize_unit(unit)
    return DisplayMeasurement(
        value=convert_mgdl(canonical.mg_dl, target),
        unit=target,
        trend=canonical.trend,
        timestamp_iso=canonical.timestamp_iso,
    )
