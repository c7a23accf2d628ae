from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.schemas.common import ErrorResponse
from app.schemas.delivery import (
    DeliveryEventOut,
    DeliveryOut,
    FailureOut,
    FailureReport,
    LocationOut,
    LocationPush,
    ProofOut,
    ProofSubmit,
    StatusUpdate,
    delivery_out,
    event_out,
    location_out,
)
from app.services.auth import Actor, require_driver
from app.services.driver_locations import DriverLocationStore
from app.services.state_machine import DeliveryStateMachine

router = APIRouter(
    prefix="/driver",
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)


@router.post("/deliveries/{delivery_id}/status", response_model=DeliveryOut)
async def advance_status(
    delivery_id: str,
    payload: StatusUpdate,
    actor: Actor = Depends(require_driver),
    db: AsyncSession = Depends(get_db),
) -> DeliveryOut:
    d = await DeliveryStateMachine(db).advance_status(
        delivery_id,
        payload.status,
        note=payload.note,
        actor_id=actor.api_key_id,
        courier_id=actor.courier_id,
    )
    await db.commit()
    return delivery_out(d)


@router.post("/deliveries/{delivery_id}/pod", response_model=ProofOut)
async def submit_proof(
    delivery_id: str,
    payload: ProofSubmit,
    actor: Actor = Depends(require_driver),
    db: AsyncSession = Depends(get_db),
) -> ProofOut:
    _, pod = await DeliveryStateMachine(db).submit_proof(
        delivery_id,
        recipient_name=payload.recipient_name,
        photo_ref=payload.photo_ref,
        signature_ref=payload.signature_ref,
        note=payload.note,
        actor_id=actor.api_key_id,
        courier_id=actor.courier_id,
    )
    await db.commit()
    return ProofOut(
        id=pod.id,
        delivery_id=pod.delivery_id,
        recipient_name=pod.recipient_name,
        photo_ref=pod.photo_ref,
        signature_ref=pod.signature_ref,
        note=pod.note,
        delivered_at=pod.delivered_at,
    )


@router.post("/deliveries/{delivery_id}/fail", response_model=FailureOut)
async def report_failure(
    delivery_id: str,
    payload: FailureReport,
    actor: Actor = Depends(require_driver),
    db: AsyncSession = Depends(get_db),
) -> FailureOut:
    _, f = await DeliveryStateMachine(db).report_failure(
        delivery_id,
        reason=payload.reason,
        notes=payload.notes,
        photo_ref=payload.photo_ref,
        actor_id=actor.api_key_id,
        courier_id=actor.courier_id,
    )
    await db.commit()
    return FailureOut(
        id=f.id,
        delivery_id=f.delivery_id,
        reason=f.reason.value,
        notes=f.notes,
        photo_ref=f.photo_ref,
        failed_at=f.failed_at,
    )


@router.get("/deliveries/{delivery_id}/events", response_model=list[DeliveryEventOut])
async def driver_timeline(
    delivery_id: str,
    actor: Actor = Depends(require_driver),
    db: AsyncSession = Depends(get_db),
) -> list[DeliveryEventOut]:
    sm = DeliveryStateMachine(db)
    d = await sm.load(delivery_id, courier_id=actor.courier_id)
    events = await sm.events.timeline(d, actor.api_key_id)
    await db.commit()
    return [event_out(e) for e in events]


@router.post("/location", response_model=LocationOut)
async def push_location(
    payload: LocationPush,
    actor: Actor = Depends(require_driver),
    db: AsyncSession = Depends(get_db),
) -> LocationOut:
    loc = await DriverLocationStore(db).push_location(
        actor.courier_id,
        payload.lat,
        payload.lng,
        accuracy=payload.accuracy,
        heading=payload.heading,
        speed=payload.speed,
    )
    out = location_out(loc)
    await db.commit()
    return out


@router.get("/location", response_model=LocationOut | None)
async def get_location(
    actor: Actor = Depends(require_driver),
    db: AsyncSession = Depends(get_db),
) -> LocationOut | None:
    loc = await DriverLocationStore(db).get_location(actor.courier_id)
    # no sample yet is not an error
    return location_out(loc) if loc is not None else None
