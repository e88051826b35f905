"""Bounding-box helpers shared by the subscription, the vessel table and the CLI."""
from __future__ import annotations

import math
from dataclasses import dataclass


def is_position_fix(value: float | None, limit: float) -> bool:
    """True when *value* is a usable coordinate: finite, within ±limit and non-zero.

    An exact 0 is how the feed reports "no fix", never a position on the
    equator or the prime meridian.
    """
    if value is None or not math.isfinite(value):
        return False
    return value != 0 and -limit <= value <= limit


@dataclass(frozen=True)
class BoundingBox:
    lat_min: float
    lon_min: float
    lat_max: float
    lon_max: float

    def __post_init__(self) -> None:
        if not (-90 <= self.lat_min < self.lat_max <= 90):
            raise ValueError(
                f"Invalid latitude range: {self.lat_min} .. {self.lat_max}"
            )
        if not (-180 <= self.lon_min < self.lon_max <= 180):
            raise ValueError(
                f"Invalid longitude range: {self.lon_min} .. {self.lon_max}"
            )

    def contains(self, lat: float, lon: float) -> bool:
        """Strict containment; points on an edge are outside."""
        return self.lat_min < lat < self.lat_max and self.lon_min < lon < self.lon_max

    def as_subscription_box(self) -> list[list[float]]:
        """Return the box as aisstream expects it: [[lat_min, lon_min], [lat_max, lon_max]]."""
        return [[self.lat_min, self.lon_min], [self.lat_max, self.lon_max]]

    def __str__(self) -> str:
        return f"[{self.lat_min},{self.lon_min}] to [{self.lat_max},{self.lon_max}]"
