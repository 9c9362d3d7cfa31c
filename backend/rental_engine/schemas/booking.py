"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from rental_engine.models.enums import BookingStatus, DriverRequestStatus, PaymentStatus


class BookingCreate(BaseModel):
    vehicle_id: str
    pickup_date: datetime
    return_date: datetime
    pickup_location: str = Field(min_length=1, max_length=255)
    return_location: Optional[str] = Field(default=None, max_length=255)

    # Either an existing driver, or both documents for a new one, or neither
    driver_id: Optional[str] = None
    license_file_url: Optional[str] = Field(default=None, max_length=1024)
    insurance_file_url: Optional[str] = Field(default=None, max_length=1024)
    driver_name: Optional[str] = Field(default=None, max_length=255)

    request_driver: bool = False


class BookingUpdate(BaseModel):
    pickup_date: Optional[datetime] = None
    return_date: Optional[datetime] = None
    pickup_location: Optional[str] = Field(default=None, min_length=1, max_length=255)
    return_location: Optional[str] = Field(default=None, min_length=1, max_length=255)


class AttachDriverRequest(BaseModel):
    driver_id: Optional[str] = None
    license_file_url: Optional[str] = Field(default=None, max_length=1024)
    insurance_file_url: Optional[str] = Field(default=None, max_length=1024)
    driver_name: Optional[str] = Field(default=None, max_length=255)


class StatusHistoryEntry(BaseModel):
    status: BookingStatus
    changed_by: str
    notes: str
    timestamp: datetime

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: str
    user_id: str
    vehicle_id: str
    driver_id: Optional[str]
    status: BookingStatus

    pickup_date: datetime
    return_date: datetime
    rental_days: int
    pickup_location: str
    return_location: Optional[str]
    actual_pickup_at: Optional[datetime]
    actual_return_at: Optional[datetime]

    base_price: Decimal
    tax_amount: Decimal
    total_price: Decimal
    additional_charges: Decimal
    total_charges: Optional[Decimal]
    mileage_charge: Decimal
    fuel_charge: Decimal
    cleaning_charge: Decimal
    total_mileage: Optional[int]

    payment_status: PaymentStatus
    paid_at: Optional[datetime]

    request_driver: bool
    driver_assigned: bool
    driver_request_status: DriverRequestStatus
    accepted_driver_id: Optional[str]

    check_in_odometer: Optional[int]
    check_in_fuel_level: Optional[int]
    check_out_odometer: Optional[int]
    check_out_fuel_level: Optional[int]

    cancellation_reason: Optional[str]
    created_at: datetime
    status_history: list[StatusHistoryEntry] = []

    model_config = {"from_attributes": True}


class CheckInRequest(BaseModel):
    odometer: int = Field(ge=0)
    fuel_level: int
    notes: Optional[str] = None
    images: list[str] = []


class CheckOutRequest(BaseModel):
    odometer: int = Field(ge=0)
    fuel_level: int
    notes: Optional[str] = None
    images: list[str] = []
    damage_notes: Optional[str] = None
    cleaning_required: bool = False


class SettlementResponse(BaseModel):
    mileage_used: int
    mileage_overage: int
    mileage_charge: Decimal
    fuel_charge: Decimal
    cleaning_charge: Decimal
    total_additional: Decimal
    total_charges: Decimal

    model_config = {"from_attributes": True}


class CheckOutResponse(BaseModel):
    booking: BookingResponse
    settlement: SettlementResponse


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class StatusChangeRequest(BaseModel):
    status: BookingStatus
    note: str = Field(default="", max_length=500)


class PaymentSessionRequest(BaseModel):
    session_id: str = Field(min_length=1, max_length=255)
