"""aisstream message normalization.

Maps one decoded aisstream envelope onto a vessel table update:

    {"MessageType": "PositionReport",
     "MetaData": {"MMSI": 235012345, "ShipName": "...", "latitude": .., "longitude": ..},
     "Message": {"PositionReport": {...}}}

The metadata block is applied first and the type-specific report second, so
valid report fields take precedence. Every presence check goes through an
explicit typed predicate: booleans, non-numeric strings, NaN and infinities
count as "not reported".
"""
from __future__ import annotations

import logging
import math
from typing import Any

from straitfeed.modules.vessel_table import VesselTable, VesselUpdate
from straitfeed.utils.geo import is_position_fix

logger = logging.getLogger(__name__)

STATIC_DATA_TYPE = "ShipStaticData"
RECOGNIZED_MESSAGE_TYPES = (
    "PositionReport",
    "ShipStaticData",
    "StandardClassBPositionReport",
    "ExtendedClassBPositionReport",
)


# --- Typed presence predicates ---

def _as_float(value: Any) -> float | None:
    """Return *value* as a finite float, or None if absent or not numeric."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    try:
        value = float(value)
    except OverflowError:
        return None
    return value if math.isfinite(value) else None


def _as_int(value: Any) -> int | None:
    f = _as_float(value)
    if f is None or not f.is_integer():
        return None
    return int(f)


def _as_text(value: Any) -> str | None:
    """Trimmed, non-empty string or None."""
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def parse_mmsi(value: Any) -> int | None:
    """A usable vessel identifier is a positive integer (int or digit string)."""
    mmsi = _as_int(value)
    if mmsi is None or mmsi <= 0:
        return None
    return mmsi


# --- Mappers ---

def _map_metadata(meta: dict) -> VesselUpdate:
    update = VesselUpdate(name=_as_text(meta.get("ShipName")))
    lat = _as_float(meta.get("latitude"))
    lon = _as_float(meta.get("longitude"))
    # Metadata position counts only as a complete fix
    if is_position_fix(lat, 90) and is_position_fix(lon, 180):
        update.lat, update.lon = lat, lon
    return update


def _map_position_report(report: dict, msg_type: str) -> VesselUpdate:
    """Map a PositionReport or Class B position report body.

    ExtendedClassBPositionReport additionally carries the ship name and type.
    """
    update = VesselUpdate(
        lat=_as_float(report.get("Latitude")),
        lon=_as_float(report.get("Longitude")),
        speed=_as_float(report.get("Sog")),
        true_heading=_as_float(report.get("TrueHeading")),
        cog=_as_float(report.get("Cog")),
    )
    if msg_type == "ExtendedClassBPositionReport":
        update.name = _as_text(report.get("Name"))
        update.type_code = _as_int(report.get("Type"))
    return update


def _map_static_data(static: dict) -> VesselUpdate:
    """Map a ShipStaticData body: name, type, hull length (A + B) and destination."""
    update = VesselUpdate(
        name=_as_text(static.get("Name")),
        type_code=_as_int(static.get("Type")),
        destination=_as_text(static.get("Destination")),
    )
    dim = static.get("Dimension")
    if isinstance(dim, dict):
        to_bow = _as_int(dim.get("A")) or 0
        to_stern = _as_int(dim.get("B")) or 0
        if to_bow + to_stern > 0:
            update.length = to_bow + to_stern
    return update


class MessageNormalizer:
    """Routes decoded aisstream envelopes into a VesselTable."""

    def __init__(self, table: VesselTable) -> None:
        self.table = table

    def apply(self, msg: Any) -> int | None:
        """Apply one envelope; returns the MMSI updated, or None if discarded."""
        if not isinstance(msg, dict):
            return None

        msg_type = msg.get("MessageType")
        if msg_type not in RECOGNIZED_MESSAGE_TYPES:
            logger.debug("Ignoring message type %r", msg_type)
            return None

        body = msg.get("Message")
        report = body.get(msg_type) if isinstance(body, dict) else None
        if not isinstance(report, dict):
            return None

        meta = msg.get("MetaData")
        if not isinstance(meta, dict):
            meta = {}

        mmsi = parse_mmsi(meta.get("MMSI"))
        if mmsi is None:
            mmsi = parse_mmsi(report.get("UserID"))
        if mmsi is None:
            return None

        if msg_type == STATIC_DATA_TYPE:
            body_update = _map_static_data(report)
        else:
            body_update = _map_position_report(report, msg_type)

        self.table.upsert(mmsi, _map_metadata(meta), body_update)
        return mmsi
