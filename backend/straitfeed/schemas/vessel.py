"""Pydantic schema for one entry of the persisted vessel snapshot."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VesselSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    mmsi: int
    name: str
    type: str
    type_name: str = Field(alias="typeName")
    lat: float
    lon: float
    speed: float
    heading: int
    length: int

    @field_validator("heading")
    @classmethod
    def heading_in_range(cls, v: int) -> int:
        if not 0 <= v < 360:
            raise ValueError("heading must be within 0-359")
        return v

    def to_json_dict(self) -> dict:
        """Public JSON shape: camelCase ``typeName``, fields in file order."""
        return self.model_dump(by_alias=True)
