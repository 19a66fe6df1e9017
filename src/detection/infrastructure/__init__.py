"""
Detection Infrastructure Layer
==============================

Infrastructure implementations for violation detection:
- Models: SQLAlchemy ORM models for rooms and sensor readings
- Repositories: telemetry source
"""

from src.detection.infrastructure.models import RoomModel, SensorReadingModel
from src.detection.infrastructure.repositories import SQLAlchemyTelemetrySource

__all__ = [
    "RoomModel",
    "SensorReadingModel",
    "SQLAlchemyTelemetrySource",
]
