"""Meter reading model - raw input for metered utility billing."""

from datetime import date
from typing import Any

from sqlalchemy import JSON, Date, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from hoa_billing.models import Base, BaseModel


class MeterReading(Base, BaseModel):
    """Cumulative meter reading for one unit on one date.

    Attributes:
        client_id: Client (condominium) the unit belongs to
        unit_id: Unit identifier (e.g., "101", "PH-2")
        reading_date: Date the meter was read
        reading_value: Cumulative meter value in whole consumption units (m³)
        ancillary: Ancillary service counts since the previous reading,
            e.g. {"carWash": 2, "boatWash": 1}
    """

    __tablename__ = "meter_readings"

    client_id: Mapped[str] = mapped_column(String(100), nullable=False)
    unit_id: Mapped[str] = mapped_column(String(100), nullable=False)
    reading_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        comment="Date the meter was read",
    )
    reading_value: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Cumulative meter value",
    )
    ancillary: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,
        nullable=True,
        comment="Ancillary service counts, e.g. car/boat washes",
    )

    __table_args__ = (
        Index("idx_reading_client_unit_date", "client_id", "unit_id", "reading_date"),
        Index("idx_reading_client_date", "client_id", "reading_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<MeterReading(id={self.id}, unit_id={self.unit_id}, "
            f"date={self.reading_date}, value={self.reading_value})>"
        )


__all__ = ["MeterReading"]
