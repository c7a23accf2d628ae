from datetime import datetime

from sqlalchemy import Float, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from app.models.base import Base, utcnow


class DriverLocation(Base):
    """Latest position sample for a courier. One row per courier, overwritten on every push."""

    __tablename__ = "driver_locations"

    courier_id: Mapped[str] = mapped_column(String, ForeignKey("couriers.id", ondelete="CASCADE"), primary_key=True)

    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)
    accuracy: Mapped[float | None] = mapped_column(Float, nullable=True)  # metres
    heading: Mapped[float | None] = mapped_column(Float, nullable=True)   # degrees
    speed: Mapped[float | None] = mapped_column(Float, nullable=True)     # m/s

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
