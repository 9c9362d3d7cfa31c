"""
Settlement calculator: additional charges computed at check-out.

Pure and deterministic. Inputs are validated when SettlementInputs is built,
so an impossible reading (odometer going backwards, fuel outside 0-100) fails
before any charge is computed and is never silently clamped.

Charges:
  mileage   overage beyond the allowed mileage x mileage rate
  fuel      (fuel % lost / 100) x tank capacity x fuel rate per unit
  cleaning  cleaning fee, applied according to CleaningChargePolicy

All arithmetic is Decimal; money outputs are rounded half-up to cents.
"""

import enum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from rental_engine.core.exceptions import InvalidFuelLevel, InvalidOdometerReading
from rental_engine.domain.pricing import Number, to_money

DEFAULT_ALLOWED_MILEAGE = 200
DEFAULT_MILEAGE_RATE = Decimal("0.5")
DEFAULT_CLEANING_FEE = Decimal("75")
DEFAULT_FUEL_RATE_PER_UNIT = Decimal("3.1")
FULL_TANK = 100


class CleaningChargePolicy(str, enum.Enum):
    # Legacy formula: fee is charged when cleaning is NOT flagged as required.
    # Kept as the default until the business confirms the intended rule.
    WHEN_NOT_REQUIRED = "when_not_required"
    WHEN_REQUIRED = "when_required"


def _decimal(value: Number) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def validate_fuel_level(level: Optional[Number], field_name: str = "fuel_level") -> None:
    if level is None:
        return
    if not 0 <= _decimal(level) <= FULL_TANK:
        raise InvalidFuelLevel(**{field_name: level})


@dataclass(frozen=True)
class RentalTerms:
    allowed_mileage: int = DEFAULT_ALLOWED_MILEAGE
    mileage_rate: Decimal = DEFAULT_MILEAGE_RATE
    cleaning_fee: Decimal = DEFAULT_CLEANING_FEE


@dataclass(frozen=True)
class SettlementInputs:
    start_odometer: int
    end_odometer: int
    check_out_fuel_level: Number
    fuel_tank_capacity: Number
    check_in_fuel_level: Optional[Number] = None  # missing reading counts as a full tank
    cleaning_required: bool = False
    fuel_rate_per_unit: Number = DEFAULT_FUEL_RATE_PER_UNIT
    terms: RentalTerms = field(default_factory=RentalTerms)

    def __post_init__(self):
        if self.start_odometer is None or self.start_odometer < 0:
            raise InvalidOdometerReading("Check-in odometer reading is missing or negative",
                                         start_odometer=self.start_odometer)
        if self.end_odometer < self.start_odometer:
            raise InvalidOdometerReading(
                start_odometer=self.start_odometer, end_odometer=self.end_odometer
            )
        validate_fuel_level(self.check_in_fuel_level, "check_in_fuel_level")
        validate_fuel_level(self.check_out_fuel_level, "check_out_fuel_level")


@dataclass(frozen=True)
class SettlementBreakdown:
    mileage_used: int
    mileage_overage: int
    mileage_charge: Decimal
    fuel_deficit_pct: Decimal
    fuel_deficit_units: Decimal
    fuel_charge: Decimal
    cleaning_charge: Decimal
    total_additional: Decimal
    total_charges: Decimal

    def as_dict(self) -> dict:
        return {name: str(value) for name, value in self.__dict__.items()}


def cleaning_charge(cleaning_required: bool, fee: Number, policy: CleaningChargePolicy) -> Decimal:
    fee = _decimal(fee)
    if policy == CleaningChargePolicy.WHEN_REQUIRED:
        return fee if cleaning_required else Decimal("0")
    return Decimal("0") if cleaning_required else fee


def calculate_settlement(
    inputs: SettlementInputs,
    total_price: Number,
    policy: CleaningChargePolicy = CleaningChargePolicy.WHEN_NOT_REQUIRED,
) -> SettlementBreakdown:
    terms = inputs.terms

    mileage_used = max(0, inputs.end_odometer - inputs.start_odometer)
    mileage_overage = max(0, mileage_used - terms.allowed_mileage)
    mileage = mileage_overage * _decimal(terms.mileage_rate)

    check_in_fuel = _decimal(FULL_TANK if inputs.check_in_fuel_level is None else inputs.check_in_fuel_level)
    deficit_pct = max(Decimal("0"), check_in_fuel - _decimal(inputs.check_out_fuel_level))
    deficit_units = deficit_pct / FULL_TANK * _decimal(inputs.fuel_tank_capacity)
    fuel = deficit_units * _decimal(inputs.fuel_rate_per_unit)

    cleaning = cleaning_charge(inputs.cleaning_required, terms.cleaning_fee, policy)

    mileage_charge = to_money(mileage)
    fuel_charge = to_money(fuel)
    cleaning_total = to_money(cleaning)
    total_additional = mileage_charge + fuel_charge + cleaning_total

    return SettlementBreakdown(
        mileage_used=mileage_used,
        mileage_overage=mileage_overage,
        mileage_charge=mileage_charge,
        fuel_deficit_pct=deficit_pct,
        fuel_deficit_units=deficit_units,
        fuel_charge=fuel_charge,
        cleaning_charge=cleaning_total,
        total_additional=total_additional,
        total_charges=to_money(_decimal(total_price) + total_additional),
    )
