"""Shared vessel classification utilities.

Maps AIS ship type codes onto the coarse categories used in the snapshot,
and recognises cross-channel ferry destinations.
"""
from __future__ import annotations

import enum


class ShipCategory(str, enum.Enum):
    CARGO = "cargo"
    TANKER = "tanker"
    CONTAINER = "container"
    FERRY = "ferry"
    FISHING = "fishing"
    PASSENGER = "passenger"
    TUG = "tug"

    @property
    def label(self) -> str:
        return _CATEGORY_LABELS[self]


_CATEGORY_LABELS: dict[ShipCategory, str] = {
    ShipCategory.CARGO: "Cargo",
    ShipCategory.TANKER: "Tanker",
    ShipCategory.CONTAINER: "Container",
    ShipCategory.FERRY: "Ferry",
    ShipCategory.FISHING: "Fishing",
    ShipCategory.PASSENGER: "Passenger",
    ShipCategory.TUG: "Tug",
}

# AIS ship type code -> category. 31-37 covers towing, dredging, diving,
# military, sailing and pleasure craft; 50-52 pilot, SAR and tugs; 40 is HSC.
_SHIP_TYPE_MAP: dict[int, ShipCategory] = {
    30: ShipCategory.FISHING,
    **{code: ShipCategory.TUG for code in range(31, 38)},
    40: ShipCategory.FISHING,
    **{code: ShipCategory.TUG for code in range(50, 53)},
    **{code: ShipCategory.PASSENGER for code in range(60, 70)},
    **{code: ShipCategory.CARGO for code in range(70, 80)},
    **{code: ShipCategory.TANKER for code in range(80, 90)},
}

# Cross-channel ports; a passenger vessel bound for one of these is a ferry
FERRY_DESTINATIONS: tuple[str, ...] = ("DOVER", "CALAIS", "DUNKERQUE", "DUNKIRK")


def ship_category(type_code: int) -> ShipCategory:
    """Convert an AIS ship type code to a category (cargo when unmapped)."""
    return _SHIP_TYPE_MAP.get(type_code, ShipCategory.CARGO)


def is_ferry_destination(destination: str | None) -> bool:
    """Case-insensitive substring match against the cross-channel ports."""
    if not destination:
        return False
    dest = destination.strip().upper()
    return any(port in dest for port in FERRY_DESTINATIONS)
