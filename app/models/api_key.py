import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from app.models.base import Base, enum_type, utcnow
from app.models.enums import ActorRole


class ApiKey(Base):
    __tablename__ = "api_keys"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: f"key_{uuid.uuid4().hex}")

    # Role: "admin"/"dispatcher" run dispatch, "driver" acts for courier_id, "customer" tracks and rates.
    role: Mapped[ActorRole] = mapped_column(enum_type(ActorRole), nullable=False)

    courier_id: Mapped[str | None] = mapped_column(String, ForeignKey("couriers.id"), nullable=True)
    label: Mapped[str | None] = mapped_column(String(200), nullable=True)

    key_prefix: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    key_hash: Mapped[str] = mapped_column(Text, nullable=False, unique=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    rotated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
