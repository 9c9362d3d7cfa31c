"""
Renter aggregate with rental statistics and loyalty standing.

Users are managed by the account service; the booking engine only reads them
and updates the rental counters at check-out, so the row is versioned like
the other contended aggregates.
"""

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from rental_engine.db.base import Base, TimestampMixin, new_id
from rental_engine.models.enums import LoyaltyTier, enum_column


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)

    # Rental statistics
    total_rentals = Column(Integer, nullable=False, default=0)
    first_rental_at = Column(DateTime(timezone=True), nullable=True)
    last_rental_at = Column(DateTime(timezone=True), nullable=True)

    # Loyalty
    loyalty_points = Column(Integer, nullable=False, default=0)
    loyalty_tier = Column(enum_column(LoyaltyTier), nullable=False, default=LoyaltyTier.BRONZE)

    version = Column(Integer, nullable=False, default=1)

    drivers = relationship("Driver", back_populates="user", foreign_keys="Driver.user_id")

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, rentals={self.total_rentals})>"
