from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.base import as_utc, utcnow
from app.models.delivery import Delivery, DeliveryEvent
from app.models.enums import EventLabel


log = logging.getLogger(__name__)

PENDING_BACKFILL_NOTE = "Order created"


class EventLog:
    """
    Append-only timeline of a delivery.

    Rows are only ever inserted here; they go away only when the delivery
    itself is deleted (see purge_for_delivery).
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def has_label(self, delivery_id: str, label: EventLabel) -> bool:
        stmt = (
            select(DeliveryEvent.id)
            .where(DeliveryEvent.delivery_id == delivery_id, DeliveryEvent.status == label)
            .limit(1)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none() is not None

    async def ensure_pending_event(self, delivery: Delivery, actor_id: str | None = None) -> bool:
        """
        Read-repair: make sure the timeline starts with a PENDING entry.

        Inserted at backfill time. If the delivery already has later events
        (rows written before the timeline existed), the entry is dated just
        before the earliest of them so ascending order still begins with it.
        Returns True when a row was inserted.
        """
        if await self.has_label(delivery.id, EventLabel.PENDING):
            return False

        earliest = (await self.db.execute(
            select(func.min(DeliveryEvent.created_at)).where(DeliveryEvent.delivery_id == delivery.id)
        )).scalar_one_or_none()

        created_at = utcnow()
        if earliest is not None:
            created_at = min(as_utc(delivery.created_at), as_utc(earliest) - timedelta(microseconds=1))

        self.db.add(DeliveryEvent(
            delivery_id=delivery.id,
            status=EventLabel.PENDING,
            note=PENDING_BACKFILL_NOTE,
            created_by=actor_id,
            created_at=created_at,
        ))
        await self.db.flush()
        log.info("event_log: backfilled PENDING delivery=%s", delivery.id)
        return True

    async def append(
        self,
        delivery_id: str,
        label: EventLabel,
        *,
        note: str | None = None,
        actor_id: str | None = None,
    ) -> DeliveryEvent:
        ev = DeliveryEvent(delivery_id=delivery_id, status=label, note=note, created_by=actor_id)
        self.db.add(ev)
        await self.db.flush()
        return ev

    async def timeline(self, delivery: Delivery, actor_id: str | None = None) -> list[DeliveryEvent]:
        await self.ensure_pending_event(delivery, actor_id)
        stmt = (
            select(DeliveryEvent)
            .where(DeliveryEvent.delivery_id == delivery.id)
            .order_by(DeliveryEvent.created_at.asc(), DeliveryEvent.id.asc())
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def purge_for_delivery(self, delivery_id: str) -> int:
        # Only the delivery delete path may call this
        result = await self.db.execute(delete(DeliveryEvent).where(DeliveryEvent.delivery_id == delivery_id))
        return int(result.rowcount or 0)
