from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import DeleteRejected, InvalidTransition, NotFound, TerminalState, ValidationError
from app.models.courier import Courier
from app.models.delivery import Delivery, DeliveryFeedback, FailureRecord, ProofOfDelivery
from app.models.enums import DeliveryStatus, DriverAction, EventLabel, FailureReason
from app.services.event_log import EventLog


log = logging.getLogger(__name__)

S = DeliveryStatus

# current -> statuses a write may leave it in
TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    S.PENDING: frozenset({S.ASSIGNED, S.FAILED, S.CANCELLED}),
    S.ASSIGNED: frozenset({S.ASSIGNED, S.IN_TRANSIT, S.FAILED, S.CANCELLED}),
    # IN_TRANSIT -> IN_TRANSIT covers re-logged progress and reassignment
    S.IN_TRANSIT: frozenset({S.IN_TRANSIT, S.DELIVERED, S.FAILED, S.CANCELLED}),
    S.DELIVERED: frozenset(),
    S.FAILED: frozenset(),
    S.CANCELLED: frozenset(),
}


def can_transition(current: DeliveryStatus, target: DeliveryStatus) -> bool:
    return target in TRANSITIONS[current]


def check_transition(current: DeliveryStatus, target: DeliveryStatus) -> None:
    if current.is_terminal:
        raise TerminalState(current.value, target.value)
    if not can_transition(current, target):
        raise InvalidTransition(current.value, target.value)


def _clean(v: str | None) -> str | None:
    s = (v or "").strip()
    return s or None


class DeliveryStateMachine:
    """
    Owns Delivery.status and every write that moves it.

    Each operation validates input, locks the row, checks the transition
    table, backfills the PENDING event, then applies a compare-and-set on
    the status it read. A concurrent writer that already moved the row makes
    the CAS match nothing, and the caller gets InvalidTransition against the
    status that won.

    Nothing here commits; the caller owns the transaction.
    """

    def __init__(self, db: AsyncSession, events: EventLog | None = None):
        self.db = db
        self.events = events or EventLog(db)

    async def load(self, delivery_id: str, *, courier_id: str | None = None, for_update: bool = False) -> Delivery:
        stmt = select(Delivery).where(Delivery.id == delivery_id)
        if courier_id is not None:
            # drivers only see deliveries assigned to them
            stmt = stmt.where(Delivery.assigned_courier_id == courier_id)
        if for_update:
            stmt = stmt.with_for_update()
        d = (await self.db.execute(stmt)).scalar_one_or_none()
        if not d:
            raise NotFound("Delivery not found" if courier_id is None else "Delivery not found or not assigned to you")
        return d

    async def _set_status(
        self,
        d: Delivery,
        expected: DeliveryStatus,
        target: DeliveryStatus,
        **values: Any,
    ) -> None:
        result = await self.db.execute(
            update(Delivery)
            .where(Delivery.id == d.id, Delivery.status == expected)
            .values(status=target, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = (await self.db.execute(select(Delivery.status).where(Delivery.id == d.id))).scalar_one_or_none()
            if current is None:
                raise NotFound("Delivery not found")
            log.info("state_machine: lost race delivery=%s expected=%s now=%s", d.id, expected.value, current.value)
            check_transition(current, target)
            raise InvalidTransition(
                current.value,
                target.value,
                f"Delivery changed concurrently: expected {expected.value}, now {current.value}",
                expected=expected.value,
            )
        await self.db.refresh(d)

    async def assign(self, delivery_id: str, courier_id: str, *, actor_id: str | None = None) -> Delivery:
        """
        Assign or reassign a courier.

        PENDING/ASSIGNED become ASSIGNED. Reassigning an IN_TRANSIT delivery
        swaps the courier and keeps the status.
        """
        courier = (await self.db.execute(select(Courier).where(Courier.id == courier_id))).scalar_one_or_none()
        if not courier:
            raise NotFound("Courier not found")

        d = await self.load(delivery_id, for_update=True)
        current = d.status
        target = S.IN_TRANSIT if current == S.IN_TRANSIT else S.ASSIGNED
        check_transition(current, target)

        previous = d.assigned_courier_id
        await self.events.ensure_pending_event(d, actor_id)
        await self._set_status(d, current, target, assigned_courier_id=courier_id, updated_by=actor_id)

        if previous and previous != courier_id:
            note = f"Reassigned {previous} -> {courier_id}"
        else:
            note = f"Assigned to courier {courier_id}"
        await self.events.append(d.id, EventLabel.ASSIGNED, note=note, actor_id=actor_id)

        log.info("state_machine: assign delivery=%s courier=%s status=%s", d.id, courier_id, d.status.value)
        return d

    async def advance_status(
        self,
        delivery_id: str,
        action: DriverAction | str,
        *,
        note: str | None = None,
        actor_id: str | None = None,
        courier_id: str | None = None,
    ) -> Delivery:
        """
        Driver progress: PICKED_UP or IN_TRANSIT.

        Both store IN_TRANSIT. The timeline keeps the driver's own label, and
        the first PICKED_UP also adds an IN_TRANSIT entry if none exists yet.
        """
        try:
            action = DriverAction(action)
        except ValueError:
            raise ValidationError("Invalid status", field="status")

        d = await self.load(delivery_id, courier_id=courier_id, for_update=True)
        current = d.status
        target = action.label.stored_status
        check_transition(current, target)

        await self.events.ensure_pending_event(d, actor_id)
        if current != target:
            await self._set_status(d, current, target, updated_by=actor_id)

        await self.events.append(d.id, action.label, note=_clean(note), actor_id=actor_id)

        if action is DriverAction.PICKED_UP and not await self.events.has_label(d.id, EventLabel.IN_TRANSIT):
            await self.events.append(d.id, EventLabel.IN_TRANSIT, note="In transit", actor_id=actor_id)

        log.info("state_machine: %s delivery=%s", action.value, d.id)
        return d

    async def submit_proof(
        self,
        delivery_id: str,
        *,
        recipient_name: str,
        photo_ref: str,
        signature_ref: str | None = None,
        note: str | None = None,
        actor_id: str | None = None,
        courier_id: str | None = None,
    ) -> tuple[Delivery, ProofOfDelivery]:
        recipient = _clean(recipient_name)
        if not recipient:
            raise ValidationError("recipient_name is required", field="recipient_name")
        photo = _clean(photo_ref)
        if not photo:
            raise ValidationError("photo is required", field="photo_ref")

        d = await self.load(delivery_id, courier_id=courier_id, for_update=True)
        current = d.status
        check_transition(current, S.DELIVERED)

        await self.events.ensure_pending_event(d, actor_id)

        # one row per delivery; a resubmission replaces it
        pod = (await self.db.execute(
            select(ProofOfDelivery).where(ProofOfDelivery.delivery_id == d.id)
        )).scalar_one_or_none()
        if pod is None:
            pod = ProofOfDelivery(delivery_id=d.id, recipient_name=recipient, photo_ref=photo)
            self.db.add(pod)
        pod.recipient_name = recipient
        pod.photo_ref = photo
        pod.signature_ref = _clean(signature_ref)
        pod.note = _clean(note)
        pod.created_by = actor_id
        await self.db.flush()

        await self._set_status(d, current, S.DELIVERED, updated_by=actor_id)
        await self.events.append(d.id, EventLabel.DELIVERED, note=f"POD submitted for {recipient}", actor_id=actor_id)

        log.info("state_machine: delivered delivery=%s", d.id)
        return d, pod

    async def report_failure(
        self,
        delivery_id: str,
        *,
        reason: FailureReason | str,
        notes: str | None = None,
        photo_ref: str | None = None,
        actor_id: str | None = None,
        courier_id: str | None = None,
    ) -> tuple[Delivery, FailureRecord]:
        try:
            reason = FailureReason(reason)
        except ValueError:
            raise ValidationError("Invalid reason", field="reason")

        d = await self.load(delivery_id, courier_id=courier_id, for_update=True)
        current = d.status
        check_transition(current, S.FAILED)

        await self.events.ensure_pending_event(d, actor_id)

        failure = (await self.db.execute(
            select(FailureRecord).where(FailureRecord.delivery_id == d.id)
        )).scalar_one_or_none()
        if failure is None:
            failure = FailureRecord(delivery_id=d.id, reason=reason)
            self.db.add(failure)
        failure.reason = reason
        failure.notes = _clean(notes)
        # keep an earlier photo when the new report has none
        failure.photo_ref = _clean(photo_ref) or failure.photo_ref
        failure.created_by = actor_id
        await self.db.flush()

        await self._set_status(d, current, S.FAILED, updated_by=actor_id)

        clean_notes = _clean(notes)
        note = f"Failed: {reason.value}" + (f" - {clean_notes}" if clean_notes else "")
        await self.events.append(d.id, EventLabel.FAILED, note=note, actor_id=actor_id)

        log.info("state_machine: failed delivery=%s reason=%s", d.id, reason.value)
        return d, failure

    async def cancel(self, delivery_id: str, *, actor_id: str | None = None, actor_role: str | None = None) -> Delivery:
        d = await self.load(delivery_id, for_update=True)
        current = d.status
        check_transition(current, S.CANCELLED)

        await self.events.ensure_pending_event(d, actor_id)
        await self._set_status(d, current, S.CANCELLED, updated_by=actor_id)
        await self.events.append(
            d.id,
            EventLabel.CANCELLED,
            note=f"Cancelled by {actor_role}" if actor_role else "Cancelled",
            actor_id=actor_id,
        )

        log.info("state_machine: cancelled delivery=%s", d.id)
        return d

    async def delete(self, delivery_id: str) -> str:
        """Remove a delivery and its dependents. DELIVERED deliveries are kept."""
        d = await self.load(delivery_id, for_update=True)
        if d.status == S.DELIVERED:
            raise DeleteRejected("Cannot delete a delivered delivery")

        await self.db.execute(delete(ProofOfDelivery).where(ProofOfDelivery.delivery_id == d.id))
        await self.db.execute(delete(FailureRecord).where(FailureRecord.delivery_id == d.id))
        await self.db.execute(delete(DeliveryFeedback).where(DeliveryFeedback.delivery_id == d.id))
        await self.events.purge_for_delivery(d.id)

        await self.db.delete(d)
        await self.db.flush()

        log.info("state_machine: deleted delivery=%s", delivery_id)
        return delivery_id
