import pytest
from sqlalchemy import func, select, update

from app.core.errors import DeleteRejected, InvalidTransition, NotFound, TerminalState, ValidationError
from app.models.delivery import Delivery, DeliveryEvent, FailureRecord, ProofOfDelivery
from app.models.enums import DeliveryStatus, EventLabel, FailureReason
from app.services.deliveries import create_delivery
from app.services.event_log import EventLog
from app.services.state_machine import TRANSITIONS, DeliveryStateMachine, can_transition

from tests.stubs import DROPOFF_ADDRESS, PICKUP_ADDRESS


async def _new_delivery(db) -> Delivery:
    d = await create_delivery(
        db=db,
        customer_name="Ada Customer",
        pickup_address=PICKUP_ADDRESS,
        dropoff_address=DROPOFF_ADDRESS,
    )
    await db.commit()
    return d


async def _labels(db, d) -> list[str]:
    return [e.status.value for e in await EventLog(db).timeline(d)]


async def _event_count(db, delivery_id: str) -> int:
    stmt = select(func.count()).select_from(DeliveryEvent).where(DeliveryEvent.delivery_id == delivery_id)
    return (await db.execute(stmt)).scalar_one()


async def _in_transit(db, courier_id: str) -> Delivery:
    d = await _new_delivery(db)
    sm = DeliveryStateMachine(db)
    await sm.assign(d.id, courier_id)
    await sm.advance_status(d.id, "PICKED_UP", courier_id=courier_id)
    await db.commit()
    return d


def test_terminal_states_allow_nothing():
    for s in (DeliveryStatus.DELIVERED, DeliveryStatus.FAILED, DeliveryStatus.CANCELLED):
        assert s.is_terminal
        assert TRANSITIONS[s] == frozenset()
    assert not can_transition(DeliveryStatus.PENDING, DeliveryStatus.DELIVERED)
    assert not can_transition(DeliveryStatus.PENDING, DeliveryStatus.IN_TRANSIT)
    assert can_transition(DeliveryStatus.IN_TRANSIT, DeliveryStatus.CANCELLED)


@pytest.mark.asyncio
async def test_assign_new_delivery(db_session, seed_actors):
    d = await _new_delivery(db_session)
    assert d.status == DeliveryStatus.PENDING
    assert d.reference_no.startswith("ORD-")

    d = await DeliveryStateMachine(db_session).assign(d.id, seed_actors["courier_id"], actor_id="key_x")
    await db_session.commit()

    assert d.status == DeliveryStatus.ASSIGNED
    assert d.assigned_courier_id == seed_actors["courier_id"]
    assert await _labels(db_session, d) == ["PENDING", "ASSIGNED"]


@pytest.mark.asyncio
async def test_assign_unknown_courier_is_not_found(db_session, seed_actors):
    d = await _new_delivery(db_session)
    with pytest.raises(NotFound):
        await DeliveryStateMachine(db_session).assign(d.id, "cou_missing")
    assert await _event_count(db_session, d.id) == 1


@pytest.mark.asyncio
async def test_picked_up_stores_in_transit_and_adds_one_auto_event(db_session, seed_actors):
    courier_id = seed_actors["courier_id"]
    d = await _new_delivery(db_session)
    sm = DeliveryStateMachine(db_session)
    await sm.assign(d.id, courier_id)
    before = await _event_count(db_session, d.id)

    d = await sm.advance_status(d.id, "PICKED_UP", courier_id=courier_id)
    assert d.status == DeliveryStatus.IN_TRANSIT
    assert await _event_count(db_session, d.id) == before + 2
    assert await _labels(db_session, d) == ["PENDING", "ASSIGNED", "PICKED_UP", "IN_TRANSIT"]

    # second pick-up is re-logged, the automatic IN_TRANSIT entry is not repeated
    await sm.advance_status(d.id, "PICKED_UP", courier_id=courier_id)
    labels = await _labels(db_session, d)
    assert labels.count("PICKED_UP") == 2
    assert labels.count("IN_TRANSIT") == 1
    assert d.status == DeliveryStatus.IN_TRANSIT


@pytest.mark.asyncio
async def test_in_transit_relog_is_allowed(db_session, seed_actors):
    courier_id = seed_actors["courier_id"]
    d = await _in_transit(db_session, courier_id)

    d = await DeliveryStateMachine(db_session).advance_status(d.id, "IN_TRANSIT", note=" traffic ", courier_id=courier_id)
    events = await EventLog(db_session).timeline(d)
    assert events[-1].status == EventLabel.IN_TRANSIT
    assert events[-1].note == "traffic"
    assert d.status == DeliveryStatus.IN_TRANSIT


@pytest.mark.asyncio
async def test_advance_rejects_unknown_action_and_pending(db_session, seed_actors):
    d = await _new_delivery(db_session)
    sm = DeliveryStateMachine(db_session)

    with pytest.raises(ValidationError):
        await sm.advance_status(d.id, "DELIVERED")

    with pytest.raises(InvalidTransition) as exc:
        await sm.advance_status(d.id, "PICKED_UP")
    assert exc.value.from_status == "PENDING"
    assert exc.value.to_status == "IN_TRANSIT"
    assert d.status == DeliveryStatus.PENDING
    assert await _event_count(db_session, d.id) == 1


@pytest.mark.asyncio
async def test_submit_proof_then_second_submit_fails(db_session, seed_actors):
    courier_id = seed_actors["courier_id"]
    d = await _in_transit(db_session, courier_id)
    sm = DeliveryStateMachine(db_session)

    d, pod = await sm.submit_proof(d.id, recipient_name="Jane Doe", photo_ref="uploads/pod-1.jpg", courier_id=courier_id)
    await db_session.commit()

    assert d.status == DeliveryStatus.DELIVERED
    row = (await db_session.execute(select(ProofOfDelivery).where(ProofOfDelivery.delivery_id == d.id))).scalar_one()
    assert row.recipient_name == "Jane Doe"
    events = await EventLog(db_session).timeline(d)
    assert events[-1].status == EventLabel.DELIVERED
    assert events[-1].note == "POD submitted for Jane Doe"

    with pytest.raises(InvalidTransition) as exc:
        await sm.submit_proof(d.id, recipient_name="Jane Doe", photo_ref="uploads/pod-2.jpg", courier_id=courier_id)
    assert isinstance(exc.value, TerminalState)


@pytest.mark.asyncio
async def test_submit_proof_validates_before_touching_the_row(db_session, seed_actors):
    courier_id = seed_actors["courier_id"]
    d = await _in_transit(db_session, courier_id)
    sm = DeliveryStateMachine(db_session)

    with pytest.raises(ValidationError):
        await sm.submit_proof(d.id, recipient_name="  ", photo_ref="uploads/p.jpg")
    with pytest.raises(ValidationError):
        await sm.submit_proof(d.id, recipient_name="Jane", photo_ref="")
    assert d.status == DeliveryStatus.IN_TRANSIT


@pytest.mark.asyncio
async def test_proof_and_failure_rejected_in_every_terminal_state(db_session, seed_actors):
    courier_id = seed_actors["courier_id"]
    sm = DeliveryStateMachine(db_session)

    delivered = await _in_transit(db_session, courier_id)
    await sm.submit_proof(delivered.id, recipient_name="R", photo_ref="p", courier_id=courier_id)

    failed = await _in_transit(db_session, courier_id)
    await sm.report_failure(failed.id, reason="NO_CONTACT", courier_id=courier_id)

    cancelled = await _in_transit(db_session, courier_id)
    await sm.cancel(cancelled.id, actor_role="dispatcher")
    await db_session.commit()

    for d in (delivered, failed, cancelled):
        with pytest.raises(TerminalState):
            await sm.submit_proof(d.id, recipient_name="R", photo_ref="p", courier_id=courier_id)
        with pytest.raises(TerminalState):
            await sm.report_failure(d.id, reason="OTHER", courier_id=courier_id)
        with pytest.raises(TerminalState):
            await sm.cancel(d.id)
        with pytest.raises(TerminalState):
            await sm.assign(d.id, courier_id)


@pytest.mark.asyncio
async def test_assigned_delivery_can_be_failed_before_pickup(db_session, seed_actors):
    courier_id = seed_actors["courier_id"]
    d = await _new_delivery(db_session)
    sm = DeliveryStateMachine(db_session)
    await sm.assign(d.id, courier_id)

    with pytest.raises(ValidationError):
        await sm.report_failure(d.id, reason="ALIENS", courier_id=courier_id)

    d, failure = await sm.report_failure(d.id, reason="CUSTOMER_UNAVAILABLE", courier_id=courier_id)
    await db_session.commit()

    assert d.status == DeliveryStatus.FAILED
    assert failure.reason == FailureReason.CUSTOMER_UNAVAILABLE
    assert await _labels(db_session, d) == ["PENDING", "ASSIGNED", "FAILED"]

    with pytest.raises(TerminalState):
        await sm.report_failure(d.id, reason="OTHER", courier_id=courier_id)


@pytest.mark.asyncio
async def test_pending_delivery_can_be_failed(db_session):
    d = await _new_delivery(db_session)
    d, _ = await DeliveryStateMachine(db_session).report_failure(d.id, reason="WRONG_ADDRESS")
    await db_session.commit()
    assert d.status == DeliveryStatus.FAILED


@pytest.mark.asyncio
async def test_report_failure_records_reason_and_note(db_session, seed_actors):
    courier_id = seed_actors["courier_id"]
    d = await _in_transit(db_session, courier_id)

    d, failure = await DeliveryStateMachine(db_session).report_failure(
        d.id, reason=FailureReason.WRONG_ADDRESS, notes="gate locked", photo_ref="uploads/gate.jpg", courier_id=courier_id
    )
    await db_session.commit()

    assert d.status == DeliveryStatus.FAILED
    row = (await db_session.execute(select(FailureRecord).where(FailureRecord.delivery_id == d.id))).scalar_one()
    assert row.reason == FailureReason.WRONG_ADDRESS
    assert row.photo_ref == "uploads/gate.jpg"
    events = await EventLog(db_session).timeline(d)
    assert events[-1].note == "Failed: WRONG_ADDRESS - gate locked"


@pytest.mark.asyncio
async def test_reassign_keeps_progress(db_session, seed_second_courier):
    c1, c2 = seed_second_courier["courier_id"], seed_second_courier["courier2_id"]
    d = await _in_transit(db_session, c1)

    d = await DeliveryStateMachine(db_session).assign(d.id, c2)
    await db_session.commit()

    assert d.status == DeliveryStatus.IN_TRANSIT
    assert d.assigned_courier_id == c2
    events = await EventLog(db_session).timeline(d)
    assert events[-1].status == EventLabel.ASSIGNED
    assert events[-1].note == f"Reassigned {c1} -> {c2}"


@pytest.mark.asyncio
async def test_driver_cannot_touch_other_couriers_delivery(db_session, seed_second_courier):
    d = await _new_delivery(db_session)
    sm = DeliveryStateMachine(db_session)
    await sm.assign(d.id, seed_second_courier["courier_id"])

    with pytest.raises(NotFound) as exc:
        await sm.advance_status(d.id, "PICKED_UP", courier_id=seed_second_courier["courier2_id"])
    assert exc.value.message == "Delivery not found or not assigned to you"


@pytest.mark.asyncio
async def test_status_write_against_moved_row_fails(db_session, seed_actors):
    d = await _new_delivery(db_session)
    sm = DeliveryStateMachine(db_session)
    await sm.assign(d.id, seed_actors["courier_id"])
    await db_session.commit()

    # another writer cancels after this one read ASSIGNED
    await db_session.execute(
        update(Delivery).where(Delivery.id == d.id).values(status=DeliveryStatus.CANCELLED)
        .execution_options(synchronize_session=False)
    )

    with pytest.raises(TerminalState):
        await sm._set_status(d, DeliveryStatus.ASSIGNED, DeliveryStatus.IN_TRANSIT)

    status = (await db_session.execute(select(Delivery.status).where(Delivery.id == d.id))).scalar_one()
    assert status == DeliveryStatus.CANCELLED


@pytest.mark.asyncio
async def test_lost_race_reports_expected_status(db_session, seed_actors):
    courier_id = seed_actors["courier_id"]
    d = await _new_delivery(db_session)
    sm = DeliveryStateMachine(db_session)
    await sm.assign(d.id, courier_id)
    await db_session.commit()

    # the driver picks up after this writer read ASSIGNED
    await db_session.execute(
        update(Delivery).where(Delivery.id == d.id).values(status=DeliveryStatus.IN_TRANSIT)
        .execution_options(synchronize_session=False)
    )

    with pytest.raises(InvalidTransition) as exc:
        await sm._set_status(d, DeliveryStatus.ASSIGNED, DeliveryStatus.CANCELLED)
    assert not isinstance(exc.value, TerminalState)
    assert exc.value.expected == "ASSIGNED"
    assert exc.value.details == [{"from": "IN_TRANSIT", "to": "CANCELLED", "expected": "ASSIGNED"}]
    assert "concurrently" in exc.value.message


@pytest.mark.asyncio
async def test_delete_rules(db_session, seed_actors):
    courier_id = seed_actors["courier_id"]
    sm = DeliveryStateMachine(db_session)

    delivered = await _in_transit(db_session, courier_id)
    await sm.submit_proof(delivered.id, recipient_name="R", photo_ref="p", courier_id=courier_id)
    await db_session.commit()
    with pytest.raises(DeleteRejected):
        await sm.delete(delivered.id)

    failed = await _in_transit(db_session, courier_id)
    await sm.report_failure(failed.id, reason="OTHER", courier_id=courier_id)
    await db_session.commit()

    assert await sm.delete(failed.id) == failed.id
    await db_session.commit()

    assert (await db_session.execute(select(Delivery.id).where(Delivery.id == failed.id))).scalar_one_or_none() is None
    assert await _event_count(db_session, failed.id) == 0
    leftover = (await db_session.execute(
        select(FailureRecord.id).where(FailureRecord.delivery_id == failed.id)
    )).scalar_one_or_none()
    assert leftover is None

    with pytest.raises(NotFound):
        await sm.delete(failed.id)
