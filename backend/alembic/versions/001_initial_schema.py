"""Initial schema: users, routes, vehicles, reservations and the seat-allocation ledger.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default=sa.text("'user'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.CheckConstraint("role IN ('user', 'admin', 'driver')", name="check_user_role"),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "routes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("route_code", sa.String(50), nullable=False, unique=True),
        sa.Column("route_name", sa.String(255), nullable=False),
        sa.Column("origin", sa.String(255), nullable=False),
        sa.Column("destination", sa.String(255), nullable=False),
        sa.Column("fare", sa.Numeric(10, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.CheckConstraint("fare > 0", name="check_route_fare_positive"),
    )
    op.create_index("ix_routes_id", "routes", ["id"])
    op.create_index("ix_routes_origin_destination", "routes", ["origin", "destination"])

    op.create_table(
        "vehicles",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("vehicle_number", sa.String(50), nullable=False, unique=True),
        sa.Column("vehicle_type", sa.String(20), nullable=False, server_default=sa.text("'standard'")),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("route_id", sa.Integer(), sa.ForeignKey("routes.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'available'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.CheckConstraint("capacity > 0", name="check_vehicle_capacity_positive"),
        sa.CheckConstraint(
            "vehicle_type IN ('standard', 'luxury', 'semi-luxury', 'sleeper')",
            name="check_vehicle_type",
        ),
        sa.CheckConstraint(
            "status IN ('available', 'in-transit', 'maintenance', 'out-of-service')",
            name="check_vehicle_status",
        ),
    )
    op.create_index("ix_vehicles_id", "vehicles", ["id"])
    op.create_index("ix_vehicles_route_id", "vehicles", ["route_id"])
    op.create_index("ix_vehicles_status", "vehicles", ["status"])

    op.create_table(
        "reservations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("slug", sa.String(50), nullable=False, unique=True),
        sa.Column("booking_reference", sa.String(20), nullable=False, unique=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("vehicle_id", sa.Integer(), sa.ForeignKey("vehicles.id"), nullable=False),
        sa.Column("travel_date", sa.Date(), nullable=False),
        sa.Column("seat_numbers", sa.JSON(), nullable=False),
        sa.Column("passenger_names", sa.JSON(), nullable=False),
        sa.Column("contact_phone", sa.String(15), nullable=False),
        sa.Column("contact_email", sa.String(255), nullable=False),
        sa.Column("boarding_point", sa.String(200), nullable=True),
        sa.Column("dropping_point", sa.String(200), nullable=True),
        sa.Column("special_requests", sa.Text(), nullable=True),
        sa.Column("fare_per_seat", sa.Numeric(10, 2), nullable=False),
        sa.Column("base_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("tax_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("payment_method", sa.String(20), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("booking_ip", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("integrity_hash", sa.String(64), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled', 'completed')",
            name="check_reservation_status",
        ),
        sa.CheckConstraint(
            "payment_status IN ('pending', 'paid', 'failed', 'refunded')",
            name="check_reservation_payment_status",
        ),
        sa.CheckConstraint(
            "payment_method IS NULL OR payment_method IN ('cash', 'card', 'upi', 'wallet')",
            name="check_reservation_payment_method",
        ),
        sa.CheckConstraint("total_amount >= 0", name="check_reservation_total_non_negative"),
    )
    op.create_index("ix_reservations_id", "reservations", ["id"])
    op.create_index("ix_reservations_user_id", "reservations", ["user_id"])
    op.create_index("ix_reservations_vehicle_id", "reservations", ["vehicle_id"])
    op.create_index("ix_reservations_travel_date", "reservations", ["travel_date"])
    op.create_index("ix_reservations_status", "reservations", ["status"])
    # Inventory reads: WHERE vehicle_id = ? AND travel_date = ? AND status IN (...)
    op.create_index(
        "ix_reservations_vehicle_date_status",
        "reservations",
        ["vehicle_id", "travel_date", "status"],
    )

    # SEAT-ALLOCATION LEDGER: one row per seat held by an active reservation.
    # The unique constraint is the double-booking guard: of two concurrent
    # inserts for the same seat, exactly one can commit.
    op.create_table(
        "seat_allocations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "reservation_id",
            sa.Integer(),
            sa.ForeignKey("reservations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("vehicle_id", sa.Integer(), sa.ForeignKey("vehicles.id"), nullable=False),
        sa.Column("travel_date", sa.Date(), nullable=False),
        sa.Column("seat_number", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("vehicle_id", "travel_date", "seat_number", name="uq_seat_allocation"),
        sa.CheckConstraint("seat_number > 0", name="check_seat_allocation_seat_positive"),
    )
    op.create_index("ix_seat_allocations_reservation_id", "seat_allocations", ["reservation_id"])


def downgrade() -> None:
    op.drop_table("seat_allocations")
    op.drop_table("reservations")
    op.drop_table("vehicles")
    op.drop_table("routes")
    op.drop_table("users")
