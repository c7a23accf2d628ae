from __future__ import annotations

import enum


class DeliveryStatus(str, enum.Enum):
    """Stored status of a delivery row."""

    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.FAILED, DeliveryStatus.CANCELLED})


class EventLabel(str, enum.Enum):
    """
    Label written to the delivery timeline.

    A superset of DeliveryStatus: PICKED_UP is a timeline-only label, the
    stored status for that action is IN_TRANSIT.
    """

    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    PICKED_UP = "PICKED_UP"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def stored_status(self) -> DeliveryStatus:
        if self is EventLabel.PICKED_UP:
            return DeliveryStatus.IN_TRANSIT
        return DeliveryStatus(self.value)


class DriverAction(str, enum.Enum):
    PICKED_UP = "PICKED_UP"
    IN_TRANSIT = "IN_TRANSIT"

    @property
    def label(self) -> EventLabel:
        return EventLabel(self.value)


class FailureReason(str, enum.Enum):
    CUSTOMER_UNAVAILABLE = "CUSTOMER_UNAVAILABLE"
    WRONG_ADDRESS = "WRONG_ADDRESS"
    PACKAGE_DAMAGED = "PACKAGE_DAMAGED"
    REFUSED_BY_CUSTOMER = "REFUSED_BY_CUSTOMER"
    NO_CONTACT = "NO_CONTACT"
    RETURNED_TO_SENDER = "RETURNED_TO_SENDER"
    OTHER = "OTHER"


class DeliveryPriority(str, enum.Enum):
    NORMAL = "NORMAL"
    URGENT = "URGENT"


class CourierStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    BUSY = "BUSY"
    OFFLINE = "OFFLINE"


class ActorRole(str, enum.Enum):
    ADMIN = "admin"
    DISPATCHER = "dispatcher"
    DRIVER = "driver"
    CUSTOMER = "customer"
