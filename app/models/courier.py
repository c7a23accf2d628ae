from app.core.ids import gen_id
from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, AuditMixin, enum_type
from app.models.enums import CourierStatus


class Courier(AuditMixin, Base):
    __tablename__ = "couriers"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("cou"))

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    # Availability as reported by dispatch; the lifecycle engine only reads name/existence.
    status: Mapped[CourierStatus] = mapped_column(
        enum_type(CourierStatus), nullable=False, default=CourierStatus.AVAILABLE
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
