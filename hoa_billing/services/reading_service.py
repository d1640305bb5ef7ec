"""Service for meter readings used by utility billing."""

import logging
from datetime import date
from typing import Any

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from hoa_billing.models.meter_reading import MeterReading
from hoa_billing.services.errors import ValidationError

logger = logging.getLogger(__name__)


class MeterReadingService:
    """Service for recording and querying meter readings."""

    def __init__(self, session: Session) -> None:
        """Initialize service with database session.

        Args:
            session: SQLAlchemy session
        """
        self.session = session

    def add_reading(
        self,
        client_id: str,
        unit_id: str,
        reading_date: date,
        reading_value: int,
        ancillary: dict[str, int] | None = None,
    ) -> MeterReading:
        """Record a cumulative meter reading.

        Args:
            client_id: Client identifier
            unit_id: Unit identifier
            reading_date: Date of the reading
            reading_value: Cumulative meter value (whole units)
            ancillary: Ancillary service counts since the previous reading

        Returns:
            Created MeterReading

        Raises:
            ValidationError: Negative or non-integer values
        """
        if isinstance(reading_value, bool) or not isinstance(reading_value, int) or reading_value < 0:
            raise ValidationError(
                "reading_value must be a non-negative integer",
                {"unit_id": unit_id, "reading_value": reading_value},
            )
        for service, count in (ancillary or {}).items():
            if isinstance(count, bool) or not isinstance(count, int) or count < 0:
                raise ValidationError(
                    f"Ancillary count for {service} must be a non-negative integer",
                    {"unit_id": unit_id, "service": service},
                )

        reading = MeterReading(
            client_id=client_id,
            unit_id=unit_id,
            reading_date=reading_date,
            reading_value=reading_value,
            ancillary=dict(ancillary) if ancillary else None,
        )
        self.session.add(reading)
        self.session.commit()
        self.session.refresh(reading)
        logger.info(
            "Recorded meter reading %d for %s/%s on %s",
            reading_value,
            client_id,
            unit_id,
            reading_date,
        )
        return reading

    def get_unit_ids(self, client_id: str, on_or_before: date | None = None) -> list[str]:
        """Units that have at least one reading (optionally up to a date)."""
        stmt = select(MeterReading.unit_id).where(MeterReading.client_id == client_id)
        if on_or_before is not None:
            stmt = stmt.where(MeterReading.reading_date <= on_or_before)
        stmt = stmt.distinct().order_by(MeterReading.unit_id)
        return list(self.session.execute(stmt).scalars().all())

    def get_latest_reading_at_or_before(
        self,
        client_id: str,
        unit_id: str,
        on_or_before: date,
    ) -> MeterReading | None:
        """Latest reading for a unit at or before the given date."""
        stmt = (
            select(MeterReading)
            .where(
                MeterReading.client_id == client_id,
                MeterReading.unit_id == unit_id,
                MeterReading.reading_date <= on_or_before,
            )
            .order_by(desc(MeterReading.reading_date), desc(MeterReading.id))
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def get_readings_in_window(
        self,
        client_id: str,
        unit_id: str,
        after: date,
        on_or_before: date,
    ) -> list[MeterReading]:
        """Readings with ``after < reading_date <= on_or_before``, oldest first."""
        stmt = (
            select(MeterReading)
            .where(
                MeterReading.client_id == client_id,
                MeterReading.unit_id == unit_id,
                MeterReading.reading_date > after,
                MeterReading.reading_date <= on_or_before,
            )
            .order_by(MeterReading.reading_date, MeterReading.id)
        )
        return list(self.session.execute(stmt).scalars().all())

    @staticmethod
    def sum_ancillary(readings: list[MeterReading]) -> dict[str, int]:
        """Total ancillary service counts across readings."""
        totals: dict[str, int] = {}
        for reading in readings:
            for service, count in (reading.ancillary or {}).items():
                totals[service] = totals.get(service, 0) + int(count)
        return totals

    @staticmethod
    def describe(reading: MeterReading | None) -> dict[str, Any] | None:
        """Reading snapshot stored in bill ``details``."""
        if reading is None:
            return None
        return {"date": reading.reading_date.isoformat(), "value": reading.reading_value}


__all__ = ["MeterReadingService"]
