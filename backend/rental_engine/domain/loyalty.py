"""
Loyalty policy: tier thresholds and per-rental points.
"""

from datetime import datetime

from rental_engine.models.enums import LoyaltyTier

# (minimum completed rentals, tier), highest first
TIER_THRESHOLDS: tuple[tuple[int, LoyaltyTier], ...] = (
    (20, LoyaltyTier.PLATINUM),
    (10, LoyaltyTier.GOLD),
    (5, LoyaltyTier.SILVER),
    (0, LoyaltyTier.BRONZE),
)


def tier_for(total_rentals: int) -> LoyaltyTier:
    for minimum, tier in TIER_THRESHOLDS:
        if total_rentals >= minimum:
            return tier
    return LoyaltyTier.BRONZE


def record_completed_rental(user, at: datetime, points: int) -> None:
    """Bump the renter's rental statistics and recompute the tier."""
    if user.first_rental_at is None:
        user.first_rental_at = at
    user.last_rental_at = at
    user.total_rentals = (user.total_rentals or 0) + 1
    user.loyalty_points = (user.loyalty_points or 0) + points
    user.loyalty_tier = tier_for(user.total_rentals)
