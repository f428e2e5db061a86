"""
Delivery change requests

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "delivery_change_requests",
        sa.Column(
            "request_id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("shipment_id", UUID(as_uuid=True), sa.ForeignKey("shipments.shipment_id"), nullable=False),
        sa.Column("requested_by_user_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("change_type", sa.String(30), nullable=False),
        sa.Column("new_value", sa.Text, nullable=False),
        sa.Column("new_date", sa.DateTime),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text),
        sa.Column(
            "reviewed_by_user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("users.user_id", ondelete="SET NULL"),
        ),
        sa.Column("reviewed_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "change_type IN ('reschedule', 'update_instructions', 'change_address')",
            name="ck_change_request_type",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'applied')",
            name="ck_change_request_status",
        ),
    )
    op.create_index("ix_change_requests_shipment", "delivery_change_requests", ["shipment_id"])
    op.create_index("ix_change_requests_requested_by", "delivery_change_requests", ["requested_by_user_id"])
    op.create_index("ix_change_requests_status", "delivery_change_requests", ["status"])
    op.create_index("ix_change_requests_created", "delivery_change_requests", ["created_at"])


def downgrade() -> None:
    op.drop_table("delivery_change_requests")
