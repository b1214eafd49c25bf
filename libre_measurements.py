"""
LinkupTracker — LibreLinkUp measurement normalizer.

The graph endpoint is not stable about where it puts readings or which field
names it uses. Each extraction strategy below is a pure function
payload -> CanonicalMeasurement | None; they are tried in order and the first
usable reading wins. All values come out in mg/dL.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Callable, Optional

from glucose_units import MGDL, MMOL, DisplayMeasurement, mmol_to_mgdl, normalize_unit, round_half_up
from libre_errors import MeasurementMissingError

logger = logging.getLogger("libre_measurements")

UNKNOWN_TREND = "Unknown"

# Where readings may live, in lookup order
CONTAINER_PATHS: tuple[tuple[str, ...], ...] = (
    ("data", "connection"),
    ("data",),
    ("connection",),
    ("graph", "connection"),
)
SERIES_CONTAINER_PATHS = CONTAINER_PATHS + ((),)

# (field, holds a list whose first element is the latest reading)
LATEST_FIELDS: tuple[tuple[str, bool], ...] = (
    ("glucoseMeasurement", False),
    ("glucoseItem", False),
    ("glucoseMeasurementHistory", True),
    ("glucoseMeasurements", True),
    ("measurements", True),
    ("glucoseData", True),
)
SERIES_LIST_FIELDS = (
    "glucoseMeasurementHistory",
    "glucoseMeasurements",
    "measurements",
    "glucoseData",
    "graphData",
)

VALUE_KEYS = ("Value", "value", "GlucoseValue", "glucose")
UNIT_KEYS = ("Unit", "unit")
TREND_KEYS = ("TrendArrow", "trendArrow", "Trend", "trend")
TIMESTAMP_KEYS = ("Timestamp", "MeasurementDate", "TimeStamp", "FactoryTimestamp", "ReadingDate", "timestamp")

# GlucoseUnits code → unit
GLUCOSE_UNIT_CODES = {0: MMOL, 1: MGDL}

# TrendArrow code → trend tag
TREND_ARROWS = (
    "NotComputable",
    "SingleDown",
    "FortyFiveDown",
    "Flat",
    "FortyFiveUp",
    "SingleUp",
)

# LibreView timestamps look like "1/15/2024 10:30:00 AM"
TIMESTAMP_FORMATS = (
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %H:%M:%S",
)


@dataclass(frozen=True)
class CanonicalMeasurement:
    """One glucose reading in mg/dL; the only representation trusted internally."""

    mg_dl: float
    trend: str
    timestamp_iso: Optional[str]
    raw: dict = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class GlucoseDelta:
    delta: float
    unit: str


# ── Field helpers ───────────────────────────────────────────────────

def _number(value: object) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        try:
            result = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    # NaN and Infinity are not readings
    return result if math.isfinite(result) else None


def _dig(payload: object, path: tuple[str, ...]) -> Optional[dict]:
    node = payload
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node if isinstance(node, dict) else None


def _source_unit(item: dict) -> Optional[str]:
    """Unit the raw value is expressed in, or None when it cannot be told."""
    for key in UNIT_KEYS:
        hint = item.get(key)
        if isinstance(hint, str) and hint.strip():
            return normalize_unit(hint)
    code = item.get("GlucoseUnits")
    if isinstance(code, int) and not isinstance(code, bool):
        return GLUCOSE_UNIT_CODES.get(code)
    return None


def _mg_dl(item: dict) -> Optional[float]:
    explicit = _number(item.get("ValueInMgPerDl"))
    if explicit is not None:
        return explicit

    value = None
    for key in VALUE_KEYS:
        value = _number(item.get(key))
        if value is not None:
            break
    if value is None:
        return None

    if _source_unit(item) == MMOL:
        return mmol_to_mgdl(value)
    # mg/dL or unknown: already canonical
    return value


def _trend(item: dict) -> str:
    for key in TREND_KEYS:
        value = item.get(key)
        if value is None or isinstance(value, bool):
            continue
        if isinstance(value, int):
            if 0 <= value < len(TREND_ARROWS):
                return TREND_ARROWS[value]
            return UNKNOWN_TREND
        text = str(value).strip()
        if text:
            return text
    return UNKNOWN_TREND


def parse_timestamp(value: object) -> Optional[datetime]:
    """Parse an ISO-8601 or LibreView-style timestamp; None if unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # epoch seconds, or milliseconds for large values
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            logger.debug("Epoch timestamp out of range: %r", value)
            return None

    text = str(value).strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    logger.debug("Unparseable timestamp %r", value)
    return None


def _timestamp_iso(item: dict) -> Optional[str]:
    for key in TIMESTAMP_KEYS:
        value = item.get(key)
        if value is None or value == "":
            continue
        parsed = parse_timestamp(value)
        if parsed is not None:
            return parsed.isoformat()
    return None


def parse_measurement(item: object) -> Optional[CanonicalMeasurement]:
    """Turn one raw reading into a CanonicalMeasurement, or None if it has no value.

    ValueInMgPerDl wins over a generic value field when both are present.
    """
    if not isinstance(item, dict):
        return None
    mg_dl = _mg_dl(item)
    if mg_dl is None:
        return None
    return CanonicalMeasurement(
        mg_dl=mg_dl,
        trend=_trend(item),
        timestamp_iso=_timestamp_iso(item),
        raw=item,
    )


# ── Latest reading ──────────────────────────────────────────────────

def _latest_from(path: tuple[str, ...], key: str, first: bool, payload: object) -> Optional[CanonicalMeasurement]:
    container = _dig(payload, path)
    if container is None:
        return None
    candidate = container.get(key)
    if first:
        if not isinstance(candidate, list) or not candidate:
            return None
        candidate = candidate[0]
    return parse_measurement(candidate)


Strategy = Callable[[object], Optional[CanonicalMeasurement]]

LATEST_STRATEGIES: list[Strategy] = [
    partial(_latest_from, path, key, first)
    for path in CONTAINER_PATHS
    for key, first in LATEST_FIELDS
]


def extract_latest(payload: object, strategies: Optional[list[Strategy]] = None) -> CanonicalMeasurement:
    """Return the most recent reading in a graph/connection response.

    Raises:
        MeasurementMissingError: If no strategy finds a usable value.
    """
    for strategy in strategies or LATEST_STRATEGIES:
        measurement = strategy(payload)
        if measurement is not None:
            logger.debug("Extracted latest measurement: %s", measurement)
            return measurement
    raise MeasurementMissingError("LibreLinkUp glucose measurement missing from response.")


# ── Series ──────────────────────────────────────────────────────────

def _series_items(payload: object) -> list[dict]:
    items: list[dict] = []
    seen: set[int] = set()
    for path in SERIES_CONTAINER_PATHS:
        container = _dig(payload, path)
        if container is None or id(container) in seen:
            continue
        seen.add(id(container))
        for key in SERIES_LIST_FIELDS:
            values = container.get(key)
            if isinstance(values, list):
                items.extend(v for v in values if isinstance(v, dict))
        single = container.get("glucoseMeasurement")
        if isinstance(single, dict):
            items.append(single)
    return items


def _sort_key(measurement: CanonicalMeasurement) -> datetime:
    dt = datetime.fromisoformat(measurement.timestamp_iso)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def extract_series(payload: object) -> list[CanonicalMeasurement]:
    """Return every reading in the response, oldest first.

    Entries without a numeric value or a timestamp are dropped, and a
    timestamp seen twice keeps its first reading. Returns [] when the
    response has no series container.
    """
    by_timestamp: dict[str, CanonicalMeasurement] = {}
    dropped = 0
    for item in _series_items(payload):
        measurement = parse_measurement(item)
        if measurement is None or measurement.timestamp_iso is None:
            dropped += 1
            continue
        by_timestamp.setdefault(measurement.timestamp_iso, measurement)

    if dropped:
        logger.debug("Dropped %d series entries without value or timestamp", dropped)
    return sorted(by_timestamp.values(), key=_sort_key)


def compute_delta(series: list[DisplayMeasurement]) -> Optional[GlucoseDelta]:
    """Change between the last two readings of a display series."""
    if not series or len(series) < 2:
        return None
    last, prev = series[-1], series[-2]
    return GlucoseDelta(delta=round_half_up(last.value - prev.value, 2), unit=last.unit)
