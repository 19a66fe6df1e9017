"""
Detection Infrastructure Repositories
=====================================

SQLAlchemy-backed telemetry source.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.detection.application import ITelemetrySource
from src.detection.infrastructure.models import RoomModel, SensorReadingModel
from src.core import RepositoryException


class SQLAlchemyTelemetrySource(ITelemetrySource):
    """
    Reads rooms and sensor readings; returns ORM rows for DTO validation.

    Lookups run in savepoints so one failed read leaves the scan's
    transaction, and the tickets it already created, intact.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_recent_readings(self, since: datetime) -> List[SensorReadingModel]:
        stmt = (
            select(SensorReadingModel)
            .where(SensorReadingModel.timestamp >= since)
            .order_by(SensorReadingModel.timestamp.desc())
        )
        try:
            async with self._session.begin_nested():
                result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to fetch sensor readings: {e}") from e
        return list(result.scalars().all())

    async def get_room(self, room_id: str) -> Optional[RoomModel]:
        try:
            async with self._session.begin_nested():
                return await self._session.get(RoomModel, room_id)
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to fetch room {room_id}: {e}",
                {"room_id": room_id}
            ) from e
