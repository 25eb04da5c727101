"""Speed validation and per-route averaging."""

import math
from collections import defaultdict
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Context, Decimal
from typing import Iterable

from ttc_speed_cache.models import SpeedRecord, VehicleObservation

_ONE_DECIMAL = Decimal("0.1")
# Enough digits to quantize the largest finite float to one decimal.
_ROUNDING = Context(prec=400)


def parse_speed_kmh(raw) -> float | None:
    """Return the reported speed in km/h, or None if it should be excluded.

    Zero is a valid speed (a stopped vehicle). There is no upper bound.
    """
    if raw is None:
        return None
    text = str(raw).strip()
    if not text or "_" in text:
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return value


def round1(value: float) -> float:
    """Round to one decimal place, halves away from zero (8.25 -> 8.3)."""
    return float(
        Decimal(str(value)).quantize(_ONE_DECIMAL, rounding=ROUND_HALF_UP, context=_ROUNDING)
    )


def _mean(values: list[float]) -> float:
    total = sum(values)
    if math.isfinite(total):
        return total / len(values)
    # The sum of very large speeds can overflow where their mean does not.
    return sum(v / len(values) for v in values)


def aggregate(
    observations: Iterable[VehicleObservation], as_of_ms: int
) -> list[SpeedRecord]:
    """Reduce one cycle's observations to one record per route.

    Routes whose observations were all excluded produce no record.
    """
    speeds: dict[str, list[float]] = defaultdict(list)
    for obs in observations:
        speed = parse_speed_kmh(obs.raw_speed)
        if speed is None:
            continue
        speeds[obs.route_tag].append(speed)

    return [
        SpeedRecord(as_of_ms, route_tag, round1(_mean(values)), len(values))
        for route_tag, values in speeds.items()
    ]


@dataclass
class CacheStats:
    total_records: int
    unique_routes: int
    first_timestamp_ms: int | None
    last_timestamp_ms: int | None

    @property
    def duration_hours(self) -> float:
        if self.first_timestamp_ms is None or self.last_timestamp_ms is None:
            return 0.0
        return (self.last_timestamp_ms - self.first_timestamp_ms) / 3_600_000


def summarize(records: Iterable[SpeedRecord]) -> CacheStats:
    routes = set()
    first = last = None
    total = 0
    for record in records:
        total += 1
        routes.add(record.route_tag)
        ts = record.timestamp_ms
        first = ts if first is None else min(first, ts)
        last = ts if last is None else max(last, ts)
    return CacheStats(
        total_records=total,
        unique_routes=len(routes),
        first_timestamp_ms=first,
        last_timestamp_ms=last,
    )
