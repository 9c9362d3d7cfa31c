from rental_engine.schemas.booking import (
    AttachDriverRequest,
    BookingCreate,
    BookingResponse,
    BookingUpdate,
    CancelRequest,
    CheckInRequest,
    CheckOutRequest,
    CheckOutResponse,
    PaymentSessionRequest,
    SettlementResponse,
    StatusChangeRequest,
    StatusHistoryEntry,
)
from rental_engine.schemas.driver import (
    AcceptResponse,
    DriverRequestResponse,
    DriverResponse,
    PresenceResponse,
    VerificationRequest,
    VerificationResponse,
)

__all__ = [
    "AttachDriverRequest", "BookingCreate", "BookingResponse", "BookingUpdate", "CancelRequest",
    "CheckInRequest", "CheckOutRequest", "CheckOutResponse", "PaymentSessionRequest",
    "SettlementResponse", "StatusChangeRequest", "StatusHistoryEntry",
    "AcceptResponse", "DriverRequestResponse", "DriverResponse", "PresenceResponse",
    "VerificationRequest", "VerificationResponse",
]
