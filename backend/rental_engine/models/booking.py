"""
Booking aggregate: one rental reservation and its full lifecycle.

Key design decisions:
- `status` is a closed enum; it is only ever changed through
  domain.state_machine.transition(), which also appends to status_history
- status_history is append-only and loaded eagerly (selectin) so the state
  machine can append inside an async session without lazy loading
- check-in / check-out snapshots are flattened onto the booking row; they are
  written once each and never edited
- `version` column enables optimistic locking; it is the compare-and-swap
  guard for the driver assignment race
- bookings are never deleted: cancellation and completion are terminal states
"""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from rental_engine.core.clock import utcnow
from rental_engine.db.base import Base, TimestampMixin, new_id
from rental_engine.models.enums import (
    BookingStatus,
    DriverRequestStatus,
    PaymentStatus,
    enum_column,
)


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    vehicle_id = Column(String(36), ForeignKey("vehicles.id"), nullable=False, index=True)
    driver_id = Column(String(36), ForeignKey("drivers.id"), nullable=True)

    # Rental window
    pickup_date = Column(DateTime(timezone=True), nullable=False)
    return_date = Column(DateTime(timezone=True), nullable=False)
    rental_days = Column(Integer, nullable=False)
    pickup_location = Column(String(255), nullable=False)
    return_location = Column(String(255), nullable=True)
    actual_pickup_at = Column(DateTime(timezone=True), nullable=True)
    actual_return_at = Column(DateTime(timezone=True), nullable=True)

    # Pricing
    base_price = Column(Numeric(10, 2), nullable=False)
    tax_amount = Column(Numeric(10, 2), nullable=False, default=0)
    total_price = Column(Numeric(10, 2), nullable=False)
    additional_charges = Column(Numeric(10, 2), nullable=False, default=0)
    total_charges = Column(Numeric(10, 2), nullable=True)
    mileage_charge = Column(Numeric(10, 2), nullable=False, default=0)
    fuel_charge = Column(Numeric(10, 2), nullable=False, default=0)
    cleaning_charge = Column(Numeric(10, 2), nullable=False, default=0)
    total_mileage = Column(Integer, nullable=True)

    # Rental terms captured at creation
    allowed_mileage = Column(Integer, nullable=False, default=200)
    mileage_rate = Column(Numeric(10, 2), nullable=False, default=0.5)
    cleaning_fee = Column(Numeric(10, 2), nullable=False, default=75)

    # Lifecycle
    status = Column(enum_column(BookingStatus), nullable=False, default=BookingStatus.PENDING)

    # Payment
    payment_status = Column(enum_column(PaymentStatus), nullable=False, default=PaymentStatus.UNPAID)
    payment_session_id = Column(String(255), nullable=True, unique=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    # Professional driver assignment
    request_driver = Column(Boolean, nullable=False, default=False)
    driver_assigned = Column(Boolean, nullable=False, default=False)
    driver_request_status = Column(
        enum_column(DriverRequestStatus), nullable=False, default=DriverRequestStatus.NONE
    )
    requested_at = Column(DateTime(timezone=True), nullable=True)
    accepted_driver_id = Column(String(36), ForeignKey("drivers.id"), nullable=True)

    # Check-in snapshot
    checked_in_at = Column(DateTime(timezone=True), nullable=True)
    checked_in_by = Column(String(64), nullable=True)
    check_in_odometer = Column(Integer, nullable=True)
    check_in_fuel_level = Column(Integer, nullable=True)
    check_in_notes = Column(Text, nullable=True)
    check_in_images = Column(JSON, nullable=True)

    # Check-out snapshot
    checked_out_at = Column(DateTime(timezone=True), nullable=True)
    checked_out_by = Column(String(64), nullable=True)
    check_out_odometer = Column(Integer, nullable=True)
    check_out_fuel_level = Column(Integer, nullable=True)
    check_out_notes = Column(Text, nullable=True)
    check_out_images = Column(JSON, nullable=True)
    damage_notes = Column(Text, nullable=True)
    cleaning_required = Column(Boolean, nullable=True)

    # Cancellation
    cancellation_reason = Column(String(500), nullable=True)
    cancelled_by = Column(String(64), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    status_history = relationship(
        "BookingStatusHistory",
        back_populates="booking",
        lazy="selectin",
        order_by="BookingStatusHistory.id",
        cascade="all, delete-orphan",
    )
    offers = relationship("DriverRequestOffer", back_populates="booking", lazy="selectin")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("return_date > pickup_date", name="check_booking_dates_ordered"),
        CheckConstraint("rental_days >= 1", name="check_booking_rental_days_positive"),
        CheckConstraint(
            "check_out_odometer IS NULL OR check_in_odometer IS NULL "
            "OR check_out_odometer >= check_in_odometer",
            name="check_booking_odometer_monotonic",
        ),
        Index("ix_bookings_user_created", "user_id", "created_at"),
        Index("ix_bookings_status", "status"),
        # Open driver requests: WHERE driver_request_status = 'pending' ORDER BY requested_at
        Index("ix_bookings_driver_request", "driver_request_status", "requested_at"),
        Index("ix_bookings_pickup_return", "pickup_date", "return_date"),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, user={self.user_id}, vehicle={self.vehicle_id}, status={self.status})>"


class BookingStatusHistory(Base):
    __tablename__ = "booking_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False, index=True)
    status = Column(enum_column(BookingStatus), nullable=False)
    changed_by = Column(String(64), nullable=False)
    notes = Column(String(500), nullable=False, default="")
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    booking = relationship("Booking", back_populates="status_history")

    def __repr__(self) -> str:
        return f"<BookingStatusHistory(booking={self.booking_id}, status={self.status}, by={self.changed_by})>"


class DriverRequestOffer(Base):
    """A driver an open request was broadcast to."""

    __tablename__ = "driver_request_offers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False, index=True)
    driver_id = Column(String(36), ForeignKey("drivers.id"), nullable=False, index=True)
    offered_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    booking = relationship("Booking", back_populates="offers")

    __table_args__ = (
        UniqueConstraint("booking_id", "driver_id", name="uq_offer_booking_driver"),
    )
