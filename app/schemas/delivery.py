from datetime import date, datetime

from pydantic import BaseModel, Field


# Request bodies keep loose types where the service owns the validation rules
# (enum membership, date formats, ranges) so every rejection renders the same way.

class DeliveryCreate(BaseModel):
    customer_name: str
    pickup_address: str
    dropoff_address: str
    customer_contact: str | None = None
    package_type: str | None = None
    package_weight: float | str | None = None
    package_notes: str | None = None
    delivery_date: str | None = None
    delivery_priority: str | None = None


class AddressUpdate(BaseModel):
    pickup_address: str | None = None
    dropoff_address: str | None = None


class AssignRequest(BaseModel):
    courier_id: str


class StatusUpdate(BaseModel):
    status: str  # PICKED_UP | IN_TRANSIT
    note: str | None = None


class ProofSubmit(BaseModel):
    recipient_name: str
    photo_ref: str
    signature_ref: str | None = None
    note: str | None = None


class FailureReport(BaseModel):
    reason: str
    notes: str | None = None
    photo_ref: str | None = None


class FeedbackSubmit(BaseModel):
    rating: int
    comment: str | None = None


class LocationPush(BaseModel):
    lat: float
    lng: float
    accuracy: float | None = None
    heading: float | None = None
    speed: float | None = None


class DeliveryOut(BaseModel):
    id: str
    reference_no: str
    status: str
    customer_name: str
    customer_contact: str | None
    package_type: str | None
    package_weight: float | None
    package_notes: str | None
    delivery_date: date | None
    delivery_priority: str
    pickup_address: str
    dropoff_address: str
    assigned_courier_id: str | None
    created_at: datetime
    updated_at: datetime


class AddressUpdateOut(BaseModel):
    delivery: DeliveryOut
    changed: bool
    geometry_refresh_queued: bool = False


class DeliveryEventOut(BaseModel):
    id: int
    delivery_id: str
    status: str
    # stored status the label maps to; differs from `status` only for PICKED_UP
    stored_status: str
    note: str | None
    created_by: str | None
    created_at: datetime


class ProofOut(BaseModel):
    id: str
    delivery_id: str
    recipient_name: str
    photo_ref: str
    signature_ref: str | None
    note: str | None
    delivered_at: datetime


class FailureOut(BaseModel):
    id: str
    delivery_id: str
    reason: str
    notes: str | None
    photo_ref: str | None
    failed_at: datetime


class FeedbackOut(BaseModel):
    id: str
    delivery_id: str
    rating: int
    comment: str | None
    created_at: datetime


class DeletedOut(BaseModel):
    id: str
    deleted: bool = True


class PointOut(BaseModel):
    lat: float
    lng: float


class DriverOut(BaseModel):
    name: str


class DriverLocationOut(BaseModel):
    lat: float
    lng: float
    updated_at: datetime


class TrackingView(BaseModel):
    delivery: DeliveryOut
    driver: DriverOut | None
    driver_location: DriverLocationOut | None
    pickup: PointOut | None
    dropoff: PointOut | None
    route: list[list[float]] | None


class LocationOut(BaseModel):
    courier_id: str
    lat: float
    lng: float
    accuracy: float | None
    heading: float | None
    speed: float | None
    updated_at: datetime


class CourierLocationOut(LocationOut):
    courier_name: str
    age_seconds: int
    is_stale: bool


class CourierLocationList(BaseModel):
    stale_after_minutes: int
    items: list[CourierLocationOut] = Field(default_factory=list)


def delivery_out(d) -> DeliveryOut:
    return DeliveryOut(
        id=d.id,
        reference_no=d.reference_no,
        status=d.status.value,
        customer_name=d.customer_name,
        customer_contact=d.customer_contact,
        package_type=d.package_type,
        package_weight=d.package_weight,
        package_notes=d.package_notes,
        delivery_date=d.delivery_date,
        delivery_priority=d.delivery_priority.value,
        pickup_address=d.pickup_address,
        dropoff_address=d.dropoff_address,
        assigned_courier_id=d.assigned_courier_id,
        created_at=d.created_at,
        updated_at=d.updated_at,
    )


def event_out(e) -> DeliveryEventOut:
    return DeliveryEventOut(
        id=e.id,
        delivery_id=e.delivery_id,
        status=e.status.value,
        stored_status=e.status.stored_status.value,
        note=e.note,
        created_by=e.created_by,
        created_at=e.created_at,
    )


def location_out(loc) -> LocationOut:
    return LocationOut(
        courier_id=loc.courier_id,
        lat=loc.lat,
        lng=loc.lng,
        accuracy=loc.accuracy,
        heading=loc.heading,
        speed=loc.speed,
        updated_at=loc.updated_at,
    )
