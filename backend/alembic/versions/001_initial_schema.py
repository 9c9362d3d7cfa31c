"""Initial schema: users, vehicles, drivers, bookings, status history, offers, rental sessions.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Users table (owned by the account service; the engine updates rental stats)
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("total_rentals", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("first_rental_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_rental_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("loyalty_points", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("loyalty_tier", sa.String(32), nullable=False, server_default=sa.text("'bronze'")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # Vehicles table
    op.create_table(
        "vehicles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("make", sa.String(100), nullable=False),
        sa.Column("model", sa.String(100), nullable=False),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("license_plate", sa.String(32), nullable=True, unique=True),
        sa.Column("price_per_day", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default=sa.text("'available'")),
        sa.Column("current_odometer", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("current_fuel_level", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.Column("fuel_tank_capacity", sa.Numeric(8, 2), nullable=False, server_default=sa.text("60")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.CheckConstraint("price_per_day >= 0", name="check_vehicle_price_non_negative"),
        sa.CheckConstraint("current_odometer >= 0", name="check_vehicle_odometer_non_negative"),
        sa.CheckConstraint(
            "current_fuel_level >= 0 AND current_fuel_level <= 100",
            name="check_vehicle_fuel_level_range",
        ),
    )
    op.create_index("ix_vehicles_status", "vehicles", ["status"])

    # Drivers table (renters' own drivers and professional drivers-for-hire)
    op.create_table(
        "drivers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("driver_type", sa.String(32), nullable=False, server_default=sa.text("'rental'")),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("license_file_url", sa.String(1024), nullable=True),
        sa.Column("license_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("license_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("insurance_file_url", sa.String(1024), nullable=True),
        sa.Column("insurance_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("insurance_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("status", sa.String(32), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("last_accepted_booking_id", sa.String(36), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_drivers_user_id", "drivers", ["user_id"])

    # Bookings table
    op.create_table(
        "bookings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("vehicle_id", sa.String(36), sa.ForeignKey("vehicles.id"), nullable=False),
        sa.Column("driver_id", sa.String(36), sa.ForeignKey("drivers.id"), nullable=True),
        sa.Column("pickup_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("return_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("rental_days", sa.Integer(), nullable=False),
        sa.Column("pickup_location", sa.String(255), nullable=False),
        sa.Column("return_location", sa.String(255), nullable=True),
        sa.Column("actual_pickup_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_return_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("base_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("tax_amount", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("additional_charges", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_charges", sa.Numeric(10, 2), nullable=True),
        sa.Column("mileage_charge", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("fuel_charge", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("cleaning_charge", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_mileage", sa.Integer(), nullable=True),
        sa.Column("allowed_mileage", sa.Integer(), nullable=False, server_default=sa.text("200")),
        sa.Column("mileage_rate", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0.5")),
        sa.Column("cleaning_fee", sa.Numeric(10, 2), nullable=False, server_default=sa.text("75")),
        sa.Column("status", sa.String(32), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("payment_status", sa.String(32), nullable=False, server_default=sa.text("'unpaid'")),
        sa.Column("payment_session_id", sa.String(255), nullable=True, unique=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("request_driver", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("driver_assigned", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("driver_request_status", sa.String(32), nullable=False, server_default=sa.text("'none'")),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_driver_id", sa.String(36), sa.ForeignKey("drivers.id"), nullable=True),
        sa.Column("checked_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("checked_in_by", sa.String(64), nullable=True),
        sa.Column("check_in_odometer", sa.Integer(), nullable=True),
        sa.Column("check_in_fuel_level", sa.Integer(), nullable=True),
        sa.Column("check_in_notes", sa.Text(), nullable=True),
        sa.Column("check_in_images", sa.JSON(), nullable=True),
        sa.Column("checked_out_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("checked_out_by", sa.String(64), nullable=True),
        sa.Column("check_out_odometer", sa.Integer(), nullable=True),
        sa.Column("check_out_fuel_level", sa.Integer(), nullable=True),
        sa.Column("check_out_notes", sa.Text(), nullable=True),
        sa.Column("check_out_images", sa.JSON(), nullable=True),
        sa.Column("damage_notes", sa.Text(), nullable=True),
        sa.Column("cleaning_required", sa.Boolean(), nullable=True),
        sa.Column("cancellation_reason", sa.String(500), nullable=True),
        sa.Column("cancelled_by", sa.String(64), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.CheckConstraint("return_date > pickup_date", name="check_booking_dates_ordered"),
        sa.CheckConstraint("rental_days >= 1", name="check_booking_rental_days_positive"),
        sa.CheckConstraint(
            "check_out_odometer IS NULL OR check_in_odometer IS NULL "
            "OR check_out_odometer >= check_in_odometer",
            name="check_booking_odometer_monotonic",
        ),
    )
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_vehicle_id", "bookings", ["vehicle_id"])
    # "My bookings, newest first"
    op.create_index("ix_bookings_user_created", "bookings", ["user_id", "created_at"])
    op.create_index("ix_bookings_status", "bookings", ["status"])
    # Open driver requests and the expiry sweep:
    # WHERE driver_request_status = 'pending' AND requested_at <= :cutoff
    op.create_index("ix_bookings_driver_request", "bookings", ["driver_request_status", "requested_at"])
    op.create_index("ix_bookings_pickup_return", "bookings", ["pickup_date", "return_date"])

    # Append-only status history
    op.create_table(
        "booking_status_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.String(36), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("changed_by", sa.String(64), nullable=False),
        sa.Column("notes", sa.String(500), nullable=False, server_default=sa.text("''")),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_booking_status_history_booking_id", "booking_status_history", ["booking_id"])

    # Drivers a request was broadcast to
    op.create_table(
        "driver_request_offers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.String(36), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("driver_id", sa.String(36), sa.ForeignKey("drivers.id"), nullable=False),
        sa.Column("offered_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("booking_id", "driver_id", name="uq_offer_booking_driver"),
    )
    op.create_index("ix_driver_request_offers_booking_id", "driver_request_offers", ["booking_id"])
    op.create_index("ix_driver_request_offers_driver_id", "driver_request_offers", ["driver_id"])

    # Rental sessions
    op.create_table(
        "rental_sessions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("booking_id", sa.String(36), sa.ForeignKey("bookings.id"), nullable=False, unique=True),
        sa.Column("vehicle_id", sa.String(36), sa.ForeignKey("vehicles.id"), nullable=False),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("start_odometer", sa.Integer(), nullable=False),
        sa.Column("end_odometer", sa.Integer(), nullable=True),
        sa.Column("start_fuel_level", sa.Integer(), nullable=True),
        sa.Column("end_fuel_level", sa.Integer(), nullable=True),
        sa.Column("pickup_location", sa.String(255), nullable=True),
        sa.Column("dropoff_location", sa.String(255), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default=sa.text("'active'")),
        *_timestamps(),
    )
    op.create_index("ix_rental_sessions_vehicle_id", "rental_sessions", ["vehicle_id"])
    op.create_index("ix_rental_sessions_user_id", "rental_sessions", ["user_id"])


def downgrade() -> None:
    op.drop_table("rental_sessions")
    op.drop_table("driver_request_offers")
    op.drop_table("booking_status_history")
    op.drop_table("bookings")
    op.drop_table("drivers")
    op.drop_table("vehicles")
    op.drop_table("users")
