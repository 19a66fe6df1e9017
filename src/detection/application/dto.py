"""
Detection Application DTOs
==========================

Pydantic models that validate raw telemetry records at the boundary and
serialise scan results for the API.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.detection.domain import Room, SensorReading


# ========== Telemetry (inbound) ==========

class SensorReadingDTO(BaseModel):
    """Validated sensor reading; accepts dicts or ORM rows."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    room_id: str
    occupancy: int = Field(..., ge=0)
    temperature: float
    noise_level: float
    air_quality: int = Field(..., ge=0, le=100)
    timestamp: datetime

    @field_validator("id", "room_id", mode="before")
    @classmethod
    def stringify_ids(cls, v):
        return str(v) if v is not None else v

    @field_validator("timestamp")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    def to_domain(self) -> SensorReading:
        return SensorReading(
            id=self.id,
            room_id=self.room_id,
            occupancy=self.occupancy,
            temperature=self.temperature,
            noise_level=self.noise_level,
            air_quality=self.air_quality,
            timestamp=self.timestamp,
        )


class RoomDTO(BaseModel):
    """Validated room reference record."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str = Field(..., min_length=1)
    capacity: int
    floor: int
    building: str

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, v):
        return str(v) if v is not None else v

    def to_domain(self) -> Room:
        return Room(
            id=self.id,
            name=self.name,
            capacity=self.capacity,
            floor=self.floor,
            building=self.building,
        )


# ========== Scan results (outbound) ==========

class ScanStatsResponse(BaseModel):
    readings_analyzed: int = Field(..., description="Readings in the scan window")
    violations_detected: int = Field(..., description="Readings classified as violations")
    tickets_created: int
    duplicates_suppressed: int = Field(..., description="Violations with an active ticket already open")
    readings_skipped: int = Field(..., description="Malformed readings or unknown rooms")
    tickets_failed: int = Field(0, description="Violations whose ticket could not be stored")
    timestamp: datetime


class ScanResponse(BaseModel):
    """Response for POST /detection/scan."""
    success: bool
    message: str
    stats: ScanStatsResponse
