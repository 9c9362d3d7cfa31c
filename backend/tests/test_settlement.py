"""
Tests for the pure pricing, settlement and loyalty functions.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from rental_engine.core.exceptions import InvalidDateRange, InvalidFuelLevel, InvalidOdometerReading
from rental_engine.domain.loyalty import tier_for
from rental_engine.domain.pricing import quote, rental_days, to_money
from rental_engine.domain.settlement import (
    CleaningChargePolicy,
    RentalTerms,
    SettlementInputs,
    calculate_settlement,
)
from rental_engine.models.enums import LoyaltyTier

PICKUP = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


def inputs(**overrides) -> SettlementInputs:
    values = dict(
        start_odometer=1000,
        end_odometer=1250,
        check_in_fuel_level=100,
        check_out_fuel_level=80,
        fuel_tank_capacity=60,
        cleaning_required=False,
    )
    values.update(overrides)
    return SettlementInputs(**values)


# Pricing ---------------------------------------------------------------------

def test_quote_three_days():
    q = quote(PICKUP, PICKUP + timedelta(days=3), Decimal("100"), Decimal("0.08"))
    assert q.rental_days == 3
    assert q.base_price == Decimal("300.00")
    assert q.tax_amount == Decimal("24.00")
    assert q.total_price == Decimal("324.00")


def test_started_day_is_charged():
    assert rental_days(PICKUP, PICKUP + timedelta(days=1, hours=1)) == 2
    assert rental_days(PICKUP, PICKUP + timedelta(minutes=1)) == 1


@pytest.mark.parametrize("return_date", [PICKUP, PICKUP - timedelta(days=1)])
def test_return_must_follow_pickup(return_date):
    with pytest.raises(InvalidDateRange):
        quote(PICKUP, return_date, Decimal("100"), Decimal("0.08"))


def test_naive_datetimes_are_treated_as_utc():
    naive = PICKUP.replace(tzinfo=None)
    assert rental_days(naive, PICKUP + timedelta(days=2)) == 2


def test_money_rounds_half_up():
    assert to_money(Decimal("0.125")) == Decimal("0.13")
    assert to_money("2.675") == Decimal("2.68")


# Settlement ------------------------------------------------------------------

def test_reference_example():
    breakdown = calculate_settlement(inputs(), total_price=Decimal("324.00"))

    assert breakdown.mileage_used == 250
    assert breakdown.mileage_overage == 50
    assert breakdown.mileage_charge == Decimal("25.00")
    assert breakdown.fuel_deficit_units == Decimal("12")
    assert breakdown.fuel_charge == Decimal("37.20")
    assert breakdown.cleaning_charge == Decimal("75.00")
    assert breakdown.total_additional == Decimal("137.20")
    assert breakdown.total_charges == Decimal("461.20")


def test_settlement_is_deterministic():
    first = calculate_settlement(inputs(), total_price=Decimal("324.00"))
    second = calculate_settlement(inputs(), total_price=Decimal("324.00"))
    assert first == second


def test_within_allowance_and_full_tank_only_cleaning_applies():
    breakdown = calculate_settlement(inputs(end_odometer=1200, check_out_fuel_level=100), total_price=0)
    assert breakdown.mileage_charge == Decimal("0.00")
    assert breakdown.fuel_charge == Decimal("0.00")
    assert breakdown.total_additional == Decimal("75.00")


def test_returning_with_more_fuel_is_not_credited():
    breakdown = calculate_settlement(inputs(check_in_fuel_level=50, check_out_fuel_level=90), total_price=0)
    assert breakdown.fuel_deficit_pct == Decimal("0")
    assert breakdown.fuel_charge == Decimal("0.00")


def test_missing_check_in_fuel_counts_as_full_tank():
    breakdown = calculate_settlement(inputs(check_in_fuel_level=None, check_out_fuel_level=50), total_price=0)
    # 50% of 60 units at 3.1
    assert breakdown.fuel_charge == Decimal("93.00")


def test_cleaning_policy_when_not_required():
    charged = calculate_settlement(inputs(cleaning_required=False), total_price=0)
    waived = calculate_settlement(inputs(cleaning_required=True), total_price=0)
    assert charged.cleaning_charge == Decimal("75.00")
    assert waived.cleaning_charge == Decimal("0.00")


def test_cleaning_policy_when_required():
    policy = CleaningChargePolicy.WHEN_REQUIRED
    charged = calculate_settlement(inputs(cleaning_required=True), total_price=0, policy=policy)
    waived = calculate_settlement(inputs(cleaning_required=False), total_price=0, policy=policy)
    assert charged.cleaning_charge == Decimal("75.00")
    assert waived.cleaning_charge == Decimal("0.00")


def test_custom_rental_terms():
    terms = RentalTerms(allowed_mileage=100, mileage_rate=Decimal("0.25"), cleaning_fee=Decimal("40"))
    breakdown = calculate_settlement(inputs(terms=terms, check_out_fuel_level=100), total_price=0)
    assert breakdown.mileage_charge == Decimal("37.50")
    assert breakdown.cleaning_charge == Decimal("40.00")


def test_odometer_regression_rejected_before_calculation():
    with pytest.raises(InvalidOdometerReading):
        inputs(end_odometer=999)


def test_missing_start_odometer_rejected():
    with pytest.raises(InvalidOdometerReading):
        inputs(start_odometer=None)


@pytest.mark.parametrize("field,value", [
    ("check_out_fuel_level", 101),
    ("check_out_fuel_level", -1),
    ("check_in_fuel_level", 150),
])
def test_fuel_level_out_of_range_rejected(field, value):
    with pytest.raises(InvalidFuelLevel):
        inputs(**{field: value})


# Loyalty ---------------------------------------------------------------------

@pytest.mark.parametrize("rentals,tier", [
    (0, LoyaltyTier.BRONZE),
    (4, LoyaltyTier.BRONZE),
    (5, LoyaltyTier.SILVER),
    (9, LoyaltyTier.SILVER),
    (10, LoyaltyTier.GOLD),
    (19, LoyaltyTier.GOLD),
    (20, LoyaltyTier.PLATINUM),
    (150, LoyaltyTier.PLATINUM),
])
def test_loyalty_tiers(rentals, tier):
    assert tier_for(rentals) == tier
