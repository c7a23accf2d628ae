from datetime import date, datetime

from app.core.ids import gen_id
from sqlalchemy import CheckConstraint, Date, Float, ForeignKey, Index, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from app.models.base import Base, AuditMixin, enum_type, utcnow
from app.models.enums import DeliveryPriority, DeliveryStatus, EventLabel, FailureReason


class Delivery(AuditMixin, Base):
    __tablename__ = "deliveries"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("dly"))
    reference_no: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)

    status: Mapped[DeliveryStatus] = mapped_column(
        enum_type(DeliveryStatus), nullable=False, default=DeliveryStatus.PENDING, index=True
    )

    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_contact: Mapped[str | None] = mapped_column(String(200), nullable=True)

    package_type: Mapped[str | None] = mapped_column(String(120), nullable=True)
    package_weight: Mapped[float | None] = mapped_column(Float, nullable=True)
    package_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    delivery_priority: Mapped[DeliveryPriority] = mapped_column(
        enum_type(DeliveryPriority), nullable=False, default=DeliveryPriority.NORMAL
    )

    pickup_address: Mapped[str] = mapped_column(Text, nullable=False)
    dropoff_address: Mapped[str] = mapped_column(Text, nullable=False)

    # Geocode cache: coordinates are valid only while *_address_hash matches the current text
    pickup_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    pickup_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    dropoff_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    dropoff_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    pickup_address_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    dropoff_address_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    geocoded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Route cache: [[lat, lng], ...] valid only while route_cache_key matches current coordinates
    route_points: Mapped[list | None] = mapped_column(JSON, nullable=True)
    route_cache_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    route_cached_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    assigned_courier_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("couriers.id"), nullable=True, index=True
    )


class DeliveryEvent(Base):
    """Append-only timeline row. Never updated; removed only with its delivery."""

    __tablename__ = "delivery_events"
    __table_args__ = (
        Index("ix_delivery_events_timeline", "delivery_id", "created_at", "id"),
    )

    # Integer key doubles as the tie-breaker for events sharing a timestamp
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    delivery_id: Mapped[str] = mapped_column(
        String, ForeignKey("deliveries.id", ondelete="CASCADE"), nullable=False, index=True
    )

    status: Mapped[EventLabel] = mapped_column(enum_type(EventLabel), nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class ProofOfDelivery(Base):
    __tablename__ = "proofs_of_delivery"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("pod"))
    delivery_id: Mapped[str] = mapped_column(
        String, ForeignKey("deliveries.id", ondelete="CASCADE"), nullable=False, unique=True
    )

    recipient_name: Mapped[str] = mapped_column(String(200), nullable=False)
    photo_ref: Mapped[str] = mapped_column(Text, nullable=False)
    signature_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    delivered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class FailureRecord(Base):
    __tablename__ = "delivery_failures"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("dfl"))
    delivery_id: Mapped[str] = mapped_column(
        String, ForeignKey("deliveries.id", ondelete="CASCADE"), nullable=False, unique=True
    )

    reason: Mapped[FailureReason] = mapped_column(enum_type(FailureReason, length=40), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    photo_ref: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    failed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class DeliveryFeedback(Base):
    __tablename__ = "delivery_feedback"
    __table_args__ = (
        UniqueConstraint("delivery_id", "created_by", name="uq_feedback_delivery_author"),
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_feedback_rating_range"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("fbk"))
    delivery_id: Mapped[str] = mapped_column(
        String, ForeignKey("deliveries.id", ondelete="CASCADE"), nullable=False, index=True
    )

    rating: Mapped[int] = mapped_column(Integer, nullable=False)  # 1..5
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
