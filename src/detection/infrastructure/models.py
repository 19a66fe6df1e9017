"""
Detection Infrastructure Models
===============================

SQLAlchemy ORM models for telemetry reference data.

Rooms and sensor readings are written by upstream producers; this service
only reads them.
"""

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database import Base


class RoomModel(Base):
    """
    Database model for Room.

    Maps to the 'rooms' table.
    """
    __tablename__ = "rooms"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    floor: Mapped[int] = mapped_column(Integer, nullable=False)
    building: Mapped[str] = mapped_column(String(100), nullable=False)


class SensorReadingModel(Base):
    """
    Database model for SensorReading.

    Maps to the 'sensor_readings' table (append-only).
    """
    __tablename__ = "sensor_readings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    room_id: Mapped[str] = mapped_column(String(64), ForeignKey("rooms.id"), nullable=False)
    occupancy: Mapped[int] = mapped_column(Integer, nullable=False)
    temperature: Mapped[float] = mapped_column(Float, nullable=False)
    noise_level: Mapped[float] = mapped_column(Float, nullable=False)
    air_quality: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_sensor_readings_timestamp", "timestamp"),
        Index("idx_sensor_readings_room_timestamp", "room_id", "timestamp"),
    )
