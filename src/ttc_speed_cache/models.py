from dataclasses import dataclass
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

RoutesLookup = dict[str, str]


@dataclass(frozen=True)
class VehicleObservation:
    route_tag: str
    raw_speed: object = None


class SpeedRecord(NamedTuple):
    """One route's average speed for one collection cycle.

    Stored positionally as ``[timestamp_ms, route_tag, speed_kmh, vehicle_count]``.
    """

    timestamp_ms: int
    route_tag: str
    speed_kmh: float
    vehicle_count: int


class CollectResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = Field(..., description="Whether a batch was persisted")
    timestamp: str = Field(..., description="Cycle time (ISO 8601, UTC)")
    message: str | None = Field(None, description="Why nothing was persisted")
    date_key: str | None = Field(
        None, description="UTC date of the cycle", json_schema_extra={"example": "2026-01-21"}
    )
    time_key: str | None = Field(
        None, description="UTC hour and minute of the cycle", json_schema_extra={"example": "2359"}
    )
    records_collected: int = Field(0, description="Route records in this batch")
    speeds_location: str | None = Field(
        None, description="Location of the speed partition written by this call"
    )
    routes_location: str | None = Field(
        None, description="Location of the route lookup written by this call"
    )
    execution_time_ms: int | None = Field(None, description="Handler wall time")
    error: str | None = None
