"""
Driver records.

One table serves both kinds of driver:
- rental drivers: a renter's own license/insurance on file, owned by the user
- professional drivers: drivers-for-hire who accept open booking requests

`verified` is derived from the two document flags; sync_verification() keeps
it and `status` consistent whenever either flag changes.
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from rental_engine.db.base import Base, TimestampMixin, new_id
from rental_engine.models.enums import DriverStatus, DriverType, enum_column


class Driver(Base, TimestampMixin):
    __tablename__ = "drivers"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    driver_type = Column(enum_column(DriverType), nullable=False, default=DriverType.RENTAL)
    is_default = Column(Boolean, nullable=False, default=False)

    license_file_url = Column(String(1024), nullable=True)
    license_verified = Column(Boolean, nullable=False, default=False)
    license_verified_at = Column(DateTime(timezone=True), nullable=True)
    insurance_file_url = Column(String(1024), nullable=True)
    insurance_verified = Column(Boolean, nullable=False, default=False)
    insurance_verified_at = Column(DateTime(timezone=True), nullable=True)

    verified = Column(Boolean, nullable=False, default=False)
    status = Column(enum_column(DriverStatus), nullable=False, default=DriverStatus.PENDING)

    last_accepted_booking_id = Column(String(36), nullable=True)

    user = relationship("User", back_populates="drivers", foreign_keys=[user_id])

    @property
    def can_accept_requests(self) -> bool:
        return (
            self.driver_type == DriverType.PROFESSIONAL
            and self.verified
            and self.status == DriverStatus.VERIFIED
        )

    def sync_verification(self) -> None:
        self.verified = bool(self.license_verified and self.insurance_verified)
        if self.verified:
            self.status = DriverStatus.VERIFIED
        elif self.status == DriverStatus.VERIFIED:
            self.status = DriverStatus.PENDING

    def __repr__(self) -> str:
        return f"<Driver(id={self.id}, user={self.user_id}, type={self.driver_type}, verified={self.verified})>"
