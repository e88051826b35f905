"""In-memory table of the latest known state of every tracked vessel.

Records are merged in place on every sighting (fields absent from a report
keep their previous value) and evicted once they go stale. The table is an
owned object: the collector and the normalizer receive it at construction.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable, Iterator

from straitfeed.schemas.vessel import VesselSnapshot
from straitfeed.utils.geo import BoundingBox, is_position_fix
from straitfeed.utils.vessel import ShipCategory, is_ferry_destination, ship_category

logger = logging.getLogger(__name__)

DEFAULT_LENGTH_M = 100


def is_valid_heading(value: float | None) -> bool:
    """True for a directional value in [0, 360); 360 and up mean "not available"."""
    return value is not None and math.isfinite(value) and 0 <= value < 360


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5)) % 360


@dataclass
class VesselUpdate:
    """A partial sighting; None means "not reported"."""
    name: str | None = None
    type_code: int | None = None
    lat: float | None = None
    lon: float | None = None
    speed: float | None = None
    true_heading: float | None = None
    cog: float | None = None
    length: int | None = None
    destination: str | None = None


@dataclass
class VesselRecord:
    mmsi: int
    name: str = ""
    category: ShipCategory = ShipCategory.CARGO
    lat: float = 0.0
    lon: float = 0.0
    speed: float = 0.0
    heading: int = 0
    length: int = DEFAULT_LENGTH_M
    last_update: float = field(default=0.0)

    @property
    def type_name(self) -> str:
        return self.category.label

    @property
    def has_position(self) -> bool:
        return not (self.lat == 0 and self.lon == 0)

    def merge(self, update: VesselUpdate) -> None:
        """Apply the non-empty, valid fields of *update* to this record."""
        if update.name is not None and update.name.strip():
            self.name = update.name.strip()

        if update.type_code is not None:
            self.category = ship_category(update.type_code)

        # Only passenger -> ferry is defined; other categories are left alone
        if self.category is ShipCategory.PASSENGER and is_ferry_destination(update.destination):
            self.category = ShipCategory.FERRY

        if is_position_fix(update.lat, 90):
            self.lat = round(update.lat, 6)
        if is_position_fix(update.lon, 180):
            self.lon = round(update.lon, 6)

        if update.speed is not None and math.isfinite(update.speed):
            self.speed = round(update.speed, 1)

        if is_valid_heading(update.true_heading):
            self.heading = int(update.true_heading)
        elif is_valid_heading(update.cog):
            self.heading = _round_half_up(update.cog)

        if update.length is not None and update.length > 0:
            self.length = update.length

    def to_snapshot(self) -> VesselSnapshot:
        return VesselSnapshot(
            mmsi=self.mmsi,
            name=self.name or f"ID {self.mmsi}",
            type=self.category.value,
            type_name=self.type_name,
            lat=self.lat,
            lon=self.lon,
            speed=self.speed,
            heading=self.heading,
            length=self.length,
        )


class VesselTable:
    """MMSI -> VesselRecord with merge-on-upsert and staleness eviction.

    Not thread-safe: the collector mutates and exports it from one thread.
    """

    def __init__(self, stale_after: float, clock: Callable[[], float] = time.time) -> None:
        self.stale_after = stale_after
        self._clock = clock
        self._records: dict[int, VesselRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, mmsi: object) -> bool:
        return mmsi in self._records

    def __iter__(self) -> Iterator[VesselRecord]:
        return iter(self._records.values())

    def get(self, mmsi: int) -> VesselRecord | None:
        return self._records.get(mmsi)

    def upsert(self, mmsi: int, *updates: VesselUpdate, now: float | None = None) -> VesselRecord:
        """Create the record if needed, merge *updates* in order, refresh last_update."""
        record = self._records.get(mmsi)
        if record is None:
            record = VesselRecord(mmsi=mmsi)
            self._records[mmsi] = record
        for update in updates:
            record.merge(update)
        record.last_update = self._clock() if now is None else now
        return record

    def evict_stale(self, now: float | None = None, stale_after: float | None = None) -> int:
        """Remove records idle for longer than *stale_after*; returns how many went."""
        if now is None:
            now = self._clock()
        if stale_after is None:
            stale_after = self.stale_after
        stale = [
            mmsi for mmsi, rec in self._records.items()
            if now - rec.last_update > stale_after
        ]
        for mmsi in stale:
            del self._records[mmsi]
        if stale:
            logger.debug("Evicted %d stale vessels", len(stale))
        return len(stale)

    def _in_box(self, bbox: BoundingBox) -> Iterator[VesselRecord]:
        for rec in self._records.values():
            if rec.has_position and bbox.contains(rec.lat, rec.lon):
                yield rec

    def count_in(self, bbox: BoundingBox) -> int:
        return sum(1 for _ in self._in_box(bbox))

    def snapshot(self, bbox: BoundingBox) -> list[VesselSnapshot]:
        """Evict stale vessels, then project those positioned inside *bbox*."""
        self.evict_stale()
        return [rec.to_snapshot() for rec in self._in_box(bbox)]
