from __future__ import annotations

import logging
import re
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvalidTransition, NotFound, PersistenceError, TerminalState, ValidationError
from app.core.ids import gen_reference_code
from app.models.delivery import Delivery, DeliveryFeedback, FailureRecord, ProofOfDelivery
from app.models.enums import DeliveryPriority, DeliveryStatus
from app.services.event_log import EventLog


log = logging.getLogger(__name__)

MAX_REFERENCE_ATTEMPTS = 5

_MDY = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")


def clean_str(v: Any) -> str | None:
    s = str(v if v is not None else "").strip()
    return s or None


def clean_num(v: Any) -> float | None:
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return float(v)
    s = str(v).strip()
    if not s:
        return None
    try:
        return float(s)
    except ValueError:
        raise ValidationError("package_weight must be a number", field="package_weight")


def normalize_delivery_date(v: Any) -> date | None:
    """Accepts YYYY-MM-DD or MM/DD/YYYY."""
    if isinstance(v, date):
        return v
    s = clean_str(v)
    if not s:
        return None

    try:
        return date.fromisoformat(s)
    except ValueError:
        pass

    m = _MDY.match(s)
    if m:
        try:
            return date(int(m.group(3)), int(m.group(1)), int(m.group(2)))
        except ValueError:
            pass

    raise ValidationError("Invalid delivery_date format. Use YYYY-MM-DD or MM/DD/YYYY.", field="delivery_date")


def normalize_priority(v: Any) -> DeliveryPriority:
    s = clean_str(v)
    if not s:
        return DeliveryPriority.NORMAL
    try:
        return DeliveryPriority(s.upper())
    except ValueError:
        raise ValidationError("Invalid delivery_priority", field="delivery_priority")


async def _unused_reference_code(db: AsyncSession) -> str:
    for _ in range(MAX_REFERENCE_ATTEMPTS):
        ref = gen_reference_code()
        taken = (await db.execute(select(Delivery.id).where(Delivery.reference_no == ref))).scalar_one_or_none()
        if taken is None:
            return ref
    raise PersistenceError("Could not allocate a reference code, retry the request")


async def create_delivery(
    *,
    db: AsyncSession,
    customer_name: str,
    pickup_address: str,
    dropoff_address: str,
    customer_contact: str | None = None,
    package_type: str | None = None,
    package_weight: Any = None,
    package_notes: str | None = None,
    delivery_date: Any = None,
    delivery_priority: Any = None,
    actor_id: str | None = None,
) -> Delivery:
    """
    Insert a PENDING delivery and its first timeline entry.

    Input is validated and normalized before anything is written.
    """
    name = clean_str(customer_name)
    pickup = clean_str(pickup_address)
    dropoff = clean_str(dropoff_address)
    missing = [f for f, v in (("customer_name", name), ("pickup_address", pickup), ("dropoff_address", dropoff)) if not v]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", field=missing[0])

    weight = clean_num(package_weight)
    when = normalize_delivery_date(delivery_date)
    priority = normalize_priority(delivery_priority)

    d = Delivery(
        reference_no=await _unused_reference_code(db),
        status=DeliveryStatus.PENDING,
        customer_name=name,
        customer_contact=clean_str(customer_contact),
        pickup_address=pickup,
        dropoff_address=dropoff,
        package_type=clean_str(package_type),
        package_weight=weight,
        package_notes=clean_str(package_notes),
        delivery_date=when,
        delivery_priority=priority,
        created_by=actor_id,
        updated_by=actor_id,
    )
    db.add(d)
    await db.flush()

    await EventLog(db).ensure_pending_event(d, actor_id)

    log.info("deliveries: created delivery=%s ref=%s", d.id, d.reference_no)
    return d


async def update_addresses(
    *,
    db: AsyncSession,
    delivery_id: str,
    pickup_address: str | None = None,
    dropoff_address: str | None = None,
    actor_id: str | None = None,
) -> tuple[Delivery, bool]:
    """
    Edit address text. Stored hashes stay as they are, so the geocode cache
    sees the mismatch on the next read. Returns (delivery, changed).
    """
    d = (await db.execute(select(Delivery).where(Delivery.id == delivery_id))).scalar_one_or_none()
    if not d:
        raise NotFound("Delivery not found")
    if d.status.is_terminal:
        raise TerminalState(d.status.value, d.status.value)

    changed = False
    for field, value in (("pickup_address", pickup_address), ("dropoff_address", dropoff_address)):
        if value is None:
            continue
        text = clean_str(value)
        if not text:
            raise ValidationError(f"{field} cannot be empty", field=field)
        if text != getattr(d, field):
            setattr(d, field, text)
            changed = True

    if changed:
        d.updated_by = actor_id
        await db.flush()
    return d, changed


async def get_delivery(db: AsyncSession, delivery_id: str) -> Delivery:
    d = (await db.execute(select(Delivery).where(Delivery.id == delivery_id))).scalar_one_or_none()
    if not d:
        raise NotFound("Delivery not found")
    return d


async def get_delivery_by_reference(db: AsyncSession, reference_no: str) -> Delivery:
    ref = clean_str(reference_no)
    if not ref:
        raise ValidationError("ref is required", field="ref")
    d = (await db.execute(select(Delivery).where(Delivery.reference_no == ref))).scalar_one_or_none()
    if not d:
        raise NotFound("Reference not found")
    return d


async def get_proof(db: AsyncSession, delivery_id: str) -> ProofOfDelivery:
    pod = (await db.execute(
        select(ProofOfDelivery).where(ProofOfDelivery.delivery_id == delivery_id)
    )).scalar_one_or_none()
    if not pod:
        raise NotFound("POD not found")
    return pod


async def get_failure(db: AsyncSession, delivery_id: str) -> FailureRecord:
    failure = (await db.execute(
        select(FailureRecord).where(FailureRecord.delivery_id == delivery_id)
    )).scalar_one_or_none()
    if not failure:
        raise NotFound("Failure record not found")
    return failure


async def submit_feedback(
    *,
    db: AsyncSession,
    delivery_id: str,
    rating: Any,
    comment: str | None,
    actor_id: str,
) -> DeliveryFeedback:
    """One rating per (delivery, author); re-rating replaces the earlier one."""
    try:
        r = int(rating)
    except (TypeError, ValueError):
        r = 0
    if isinstance(rating, bool) or r != rating or not 1 <= r <= 5:
        raise ValidationError("rating must be 1-5", field="rating")

    d = await get_delivery(db, delivery_id)
    if d.status != DeliveryStatus.DELIVERED:
        raise InvalidTransition(d.status.value, DeliveryStatus.DELIVERED.value, "Feedback allowed only after DELIVERED")

    fb = (await db.execute(
        select(DeliveryFeedback).where(
            DeliveryFeedback.delivery_id == d.id,
            DeliveryFeedback.created_by == actor_id,
        )
    )).scalar_one_or_none()
    if fb is None:
        fb = DeliveryFeedback(delivery_id=d.id, rating=r, created_by=actor_id)
        db.add(fb)
    fb.rating = r
    fb.comment = clean_str(comment)
    await db.flush()
    return fb
