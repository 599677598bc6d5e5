"""Initial schema: users, listings, booking_requests with indexes and constraints.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
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
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "listings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.String(1000), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=True),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_capacity", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("remaining_capacity", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'active'")),
        *_timestamps(),
        sa.CheckConstraint("total_capacity > 0", name="check_listing_total_capacity_positive"),
        sa.CheckConstraint("remaining_capacity >= 0", name="check_listing_remaining_non_negative"),
        sa.CheckConstraint("remaining_capacity <= total_capacity", name="check_listing_remaining_lte_total"),
        sa.CheckConstraint(
            "status IN ('active', 'resolved', 'expired', 'cancelled')", name="check_listing_status"
        ),
        sa.CheckConstraint("kind IN ('room', 'ticket', 'ride', 'lostfound')", name="check_listing_kind"),
    )
    op.create_index("ix_listings_id", "listings", ["id"])
    op.create_index("ix_listings_owner_id", "listings", ["owner_id"])
    # Browse filters on kind and status
    op.create_index("ix_listings_kind_status", "listings", ["kind", "status"])
    # The expiry sweep: WHERE status = 'active' AND scheduled_at < now()
    op.create_index("ix_listings_status_scheduled_at", "listings", ["status", "scheduled_at"])

    op.create_table(
        "booking_requests",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "listing_id", sa.Integer(), sa.ForeignKey("listings.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("requester_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("quantity_requested", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("message", sa.String(1000), nullable=False),
        sa.Column("contact_method", sa.String(500), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("offered_price", sa.Numeric(10, 2), nullable=True),
        sa.Column("pickup_preference", sa.String(500), nullable=True),
        sa.Column("proof_description", sa.String(1000), nullable=True),
        sa.Column("move_in_date", sa.Date(), nullable=True),
        sa.Column("stay_duration", sa.String(100), nullable=True),
        sa.Column("occupants", sa.Integer(), nullable=True),
        sa.Column("response_message", sa.String(1000), nullable=True),
        sa.Column("agreed_price", sa.Numeric(10, 2), nullable=True),
        sa.Column("agreed_quantity", sa.Integer(), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("quantity_requested > 0", name="check_request_quantity_positive"),
        sa.CheckConstraint("requester_id <> owner_id", name="check_request_not_self"),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', 'cancelled')", name="check_request_status"
        ),
        sa.CheckConstraint(
            "agreed_quantity IS NULL OR (agreed_quantity > 0 AND agreed_quantity <= quantity_requested)",
            name="check_request_agreed_quantity",
        ),
    )
    op.create_index("ix_booking_requests_id", "booking_requests", ["id"])
    op.create_index("ix_booking_requests_listing_id", "booking_requests", ["listing_id"])
    op.create_index("ix_booking_requests_requester_id", "booking_requests", ["requester_id"])
    op.create_index("ix_booking_requests_owner_id", "booking_requests", ["owner_id"])
    # At most one pending request per requester per listing
    op.create_index(
        "uq_request_pending_per_requester",
        "booking_requests",
        ["listing_id", "requester_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )
    # The retention purge: WHERE kind = ? AND status IN (...) AND updated_at < cutoff
    op.create_index(
        "ix_booking_requests_kind_status_updated",
        "booking_requests",
        ["kind", "status", "updated_at"],
    )


def downgrade() -> None:
    op.drop_table("booking_requests")
    op.drop_table("listings")
    op.drop_table("users")
