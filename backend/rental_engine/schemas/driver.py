"""
Pydantic schemas for driver requests and document review.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from rental_engine.models.enums import DriverStatus, DriverType


class DriverRequestResponse(BaseModel):
    """An open request as shown to drivers."""

    booking_id: str
    vehicle_id: str
    pickup_date: datetime
    return_date: datetime
    pickup_location: str
    requested_at: datetime
    expires_at: datetime


class AcceptResponse(BaseModel):
    booking_id: str
    driver_id: str
    status: str


class VerificationRequest(BaseModel):
    license_verified: Optional[bool] = None
    insurance_verified: Optional[bool] = None


class DriverResponse(BaseModel):
    id: str
    user_id: str
    name: Optional[str]
    driver_type: DriverType
    verified: bool
    license_verified: bool
    insurance_verified: bool
    status: DriverStatus

    model_config = {"from_attributes": True}


class VerificationResponse(BaseModel):
    driver: DriverResponse
    bookings_moved: list[str]


class PresenceResponse(BaseModel):
    driver_id: str
    online: bool
