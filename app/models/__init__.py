from app.models.base import Base  # noqa: F401

from app.models.courier import Courier  # noqa: F401
from app.models.api_key import ApiKey  # noqa: F401
from app.models.delivery import (  # noqa: F401
    Delivery,
    DeliveryEvent,
    DeliveryFeedback,
    FailureRecord,
    ProofOfDelivery,
)
from app.models.driver_location import DriverLocation  # noqa: F401
