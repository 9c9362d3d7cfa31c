"""
Rental session: the period the renter physically holds the vehicle.
Opened at check-in, closed at check-out, one per booking.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from rental_engine.db.base import Base, TimestampMixin, new_id
from rental_engine.models.enums import RentalSessionStatus, enum_column


class RentalSession(Base, TimestampMixin):
    __tablename__ = "rental_sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False, unique=True)
    vehicle_id = Column(String(36), ForeignKey("vehicles.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    started_at = Column(DateTime(timezone=True), nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    start_odometer = Column(Integer, nullable=False)
    end_odometer = Column(Integer, nullable=True)
    start_fuel_level = Column(Integer, nullable=True)
    end_fuel_level = Column(Integer, nullable=True)
    pickup_location = Column(String(255), nullable=True)
    dropoff_location = Column(String(255), nullable=True)

    status = Column(enum_column(RentalSessionStatus), nullable=False, default=RentalSessionStatus.ACTIVE)

    def __repr__(self) -> str:
        return f"<RentalSession(booking={self.booking_id}, status={self.status})>"
