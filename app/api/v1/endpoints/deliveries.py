from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.schemas.common import ErrorResponse
from app.schemas.delivery import (
    AddressUpdate,
    AddressUpdateOut,
    AssignRequest,
    DeletedOut,
    DeliveryCreate,
    DeliveryEventOut,
    DeliveryOut,
    FailureOut,
    FeedbackOut,
    FeedbackSubmit,
    ProofOut,
    delivery_out,
    event_out,
)
from app.services import deliveries as svc
from app.services.auth import Actor, get_actor, require_dispatcher
from app.services.event_log import EventLog
from app.services.geometry_refresh import schedule_geometry_refresh
from app.services.state_machine import DeliveryStateMachine

router = APIRouter(
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    }
)


@router.post("/deliveries", response_model=DeliveryOut, status_code=201)
async def create_delivery(
    payload: DeliveryCreate,
    actor: Actor = Depends(require_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> DeliveryOut:
    d = await svc.create_delivery(db=db, actor_id=actor.api_key_id, **payload.model_dump())
    await db.commit()
    return delivery_out(d)


@router.patch("/deliveries/{delivery_id}/addresses", response_model=AddressUpdateOut)
async def update_addresses(
    delivery_id: str,
    payload: AddressUpdate,
    actor: Actor = Depends(require_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> AddressUpdateOut:
    d, changed = await svc.update_addresses(
        db=db,
        delivery_id=delivery_id,
        pickup_address=payload.pickup_address,
        dropoff_address=payload.dropoff_address,
        actor_id=actor.api_key_id,
    )
    await db.commit()

    # enqueue after commit so the worker sees the new text
    queued = schedule_geometry_refresh(d.id) if changed else False
    return AddressUpdateOut(delivery=delivery_out(d), changed=changed, geometry_refresh_queued=queued)


@router.post("/deliveries/{delivery_id}/assign", response_model=DeliveryOut)
async def assign_delivery(
    delivery_id: str,
    payload: AssignRequest,
    actor: Actor = Depends(require_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> DeliveryOut:
    d = await DeliveryStateMachine(db).assign(delivery_id, payload.courier_id, actor_id=actor.api_key_id)
    await db.commit()
    schedule_geometry_refresh(d.id)
    return delivery_out(d)


@router.post("/deliveries/{delivery_id}/cancel", response_model=DeliveryOut)
async def cancel_delivery(
    delivery_id: str,
    actor: Actor = Depends(require_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> DeliveryOut:
    d = await DeliveryStateMachine(db).cancel(delivery_id, actor_id=actor.api_key_id, actor_role=actor.role.value)
    await db.commit()
    return delivery_out(d)


@router.delete("/deliveries/{delivery_id}", response_model=DeletedOut)
async def delete_delivery(
    delivery_id: str,
    actor: Actor = Depends(require_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> DeletedOut:
    deleted_id = await DeliveryStateMachine(db).delete(delivery_id)
    await db.commit()
    return DeletedOut(id=deleted_id)


@router.get("/deliveries/{delivery_id}/events", response_model=list[DeliveryEventOut])
async def delivery_timeline(
    delivery_id: str,
    actor: Actor = Depends(require_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> list[DeliveryEventOut]:
    d = await svc.get_delivery(db, delivery_id)
    events = await EventLog(db).timeline(d, actor.api_key_id)
    # timeline() may have backfilled the PENDING row
    await db.commit()
    return [event_out(e) for e in events]


@router.get("/deliveries/{delivery_id}/pod", response_model=ProofOut)
async def get_proof(
    delivery_id: str,
    actor: Actor = Depends(require_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> ProofOut:
    await svc.get_delivery(db, delivery_id)
    pod = await svc.get_proof(db, delivery_id)
    return ProofOut(
        id=pod.id,
        delivery_id=pod.delivery_id,
        recipient_name=pod.recipient_name,
        photo_ref=pod.photo_ref,
        signature_ref=pod.signature_ref,
        note=pod.note,
        delivered_at=pod.delivered_at,
    )


@router.get("/deliveries/{delivery_id}/failure", response_model=FailureOut)
async def get_failure(
    delivery_id: str,
    actor: Actor = Depends(require_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> FailureOut:
    await svc.get_delivery(db, delivery_id)
    f = await svc.get_failure(db, delivery_id)
    return FailureOut(
        id=f.id,
        delivery_id=f.delivery_id,
        reason=f.reason.value,
        notes=f.notes,
        photo_ref=f.photo_ref,
        failed_at=f.failed_at,
    )


@router.post("/deliveries/{delivery_id}/feedback", response_model=FeedbackOut)
async def submit_feedback(
    delivery_id: str,
    payload: FeedbackSubmit,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> FeedbackOut:
    fb = await svc.submit_feedback(
        db=db,
        delivery_id=delivery_id,
        rating=payload.rating,
        comment=payload.comment,
        actor_id=actor.api_key_id,
    )
    await db.commit()
    return FeedbackOut(
        id=fb.id,
        delivery_id=fb.delivery_id,
        rating=fb.rating,
        comment=fb.comment,
        created_at=fb.created_at,
    )
