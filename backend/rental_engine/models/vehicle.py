"""
Vehicle model: the externally managed fleet record the engine references.

Key design decisions:
- current_odometer / current_fuel_level only change through check-in and
  check-out, inside the same transaction as the booking transition
- `version` column enables optimistic locking so two handovers of the same
  vehicle cannot lose each other's odometer update
"""

from sqlalchemy import CheckConstraint, Column, Integer, Numeric, String

from rental_engine.db.base import Base, TimestampMixin, new_id
from rental_engine.models.enums import VehicleStatus, enum_column


class Vehicle(Base, TimestampMixin):
    __tablename__ = "vehicles"

    id = Column(String(36), primary_key=True, default=new_id)
    make = Column(String(100), nullable=False)
    model = Column(String(100), nullable=False)
    year = Column(Integer, nullable=True)
    license_plate = Column(String(32), nullable=True, unique=True)
    price_per_day = Column(Numeric(10, 2), nullable=False)
    status = Column(enum_column(VehicleStatus), nullable=False, default=VehicleStatus.AVAILABLE, index=True)

    current_odometer = Column(Integer, nullable=False, default=0)
    current_fuel_level = Column(Integer, nullable=False, default=100)
    fuel_tank_capacity = Column(Numeric(8, 2), nullable=False, default=60)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("price_per_day >= 0", name="check_vehicle_price_non_negative"),
        CheckConstraint("current_odometer >= 0", name="check_vehicle_odometer_non_negative"),
        CheckConstraint(
            "current_fuel_level >= 0 AND current_fuel_level <= 100",
            name="check_vehicle_fuel_level_range",
        ),
    )

    @property
    def display_name(self) -> str:
        return f"{self.make} {self.model}"

    def __repr__(self) -> str:
        return f"<Vehicle(id={self.id}, {self.make} {self.model}, status={self.status})>"
