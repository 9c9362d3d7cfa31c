"""
Closed enumerations shared by models, services and schemas.
"""

import enum

from sqlalchemy import Enum as SAEnum


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    LICENSE_REQUIRED = "license_required"
    VERIFICATION_PENDING = "verification_pending"
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    ACTIVE = "active"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    OVERDUE = "overdue"


class DriverRequestStatus(str, enum.Enum):
    NONE = "none"
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    DECLINED = "declined"


class PaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class VehicleStatus(str, enum.Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    RENTED = "rented"
    MAINTENANCE = "maintenance"
    UNAVAILABLE = "unavailable"


class DriverType(str, enum.Enum):
    RENTAL = "rental"  # the renter's own driver record
    PROFESSIONAL = "professional"  # driver-for-hire who accepts requests


class DriverStatus(str, enum.Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class RentalSessionStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class LoyaltyTier(str, enum.Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


def enum_column(enum_cls: type[enum.Enum]) -> SAEnum:
    """Store enum values (not names) as VARCHAR so every backend behaves the same."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
