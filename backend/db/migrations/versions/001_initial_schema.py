"""
Initial schema - all 14 tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _pk(name: str) -> sa.Column:
    return sa.Column(name, UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()"))


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # 1. Users
    op.create_table(
        "users",
        _pk("user_id"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint(
            "role IN ('customer', 'driver', 'dispatcher', 'manager', 'admin')",
            name="ck_user_role",
        ),
    )

    # 2. Vehicles (before drivers: drivers reference an assigned vehicle)
    op.create_table(
        "vehicles",
        _pk("vehicle_id"),
        sa.Column("vehicle_code", sa.String(50), nullable=False, unique=True),
        sa.Column("capacity_volume", sa.Float, nullable=False),
        sa.Column("capacity_weight", sa.Float, nullable=False),
        sa.Column("home_base", sa.String(100), nullable=False),
        sa.Column("vehicle_type", sa.String(20), nullable=False, server_default="van"),
        sa.CheckConstraint("vehicle_type IN ('truck', 'van', 'bike')", name="ck_vehicle_type"),
    )

    # 3. Drivers
    op.create_table(
        "drivers",
        _pk("driver_id"),
        sa.Column("driver_code", sa.String(50), nullable=False, unique=True),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id"), nullable=False, unique=True),
        sa.Column(
            "assigned_vehicle_id",
            UUID(as_uuid=True),
            sa.ForeignKey("vehicles.vehicle_id", ondelete="SET NULL"),
        ),
        sa.Column("home_base", sa.String(100), nullable=False),
    )

    # 4. Dispatcher profiles
    op.create_table(
        "dispatcher_profiles",
        _pk("profile_id"),
        sa.Column("dispatcher_code", sa.String(50), nullable=False, unique=True),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id"), nullable=False, unique=True),
        sa.Column("assigned_region", sa.String(100), nullable=False),
        *_timestamps(),
    )

    # 5. Shipments
    op.create_table(
        "shipments",
        _pk("shipment_id"),
        sa.Column("tracking_number", sa.String(50), nullable=False, unique=True),
        sa.Column("order_id", sa.String(100)),
        sa.Column("customer_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("from_address", sa.Text, nullable=False),
        sa.Column("to_address", sa.Text, nullable=False),
        sa.Column("current_status", sa.String(30), nullable=False, server_default="pending"),
        sa.Column("service_level", sa.String(20), nullable=False, server_default="standard"),
        sa.Column("promised_delivery_date", sa.DateTime),
        sa.Column("last_scan_at", sa.DateTime),
        sa.Column("last_scan_location", sa.String(255)),
        sa.Column("is_vip", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("sla_risk_score", sa.Float, nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint(
            "current_status IN ('pending', 'picked_up', 'in_transit', 'out_for_delivery', "
            "'delivered', 'failed', 'returned')",
            name="ck_shipment_status",
        ),
        sa.CheckConstraint(
            "service_level IN ('standard', 'express', 'same_day')",
            name="ck_shipment_service_level",
        ),
        sa.CheckConstraint("sla_risk_score >= 0 AND sla_risk_score <= 1", name="ck_shipment_sla_risk_range"),
    )
    op.create_index("ix_shipments_customer", "shipments", ["customer_id"])
    op.create_index("ix_shipments_status", "shipments", ["current_status"])

    # 6. Shipment scans (append-only)
    op.create_table(
        "shipment_scans",
        _pk("scan_id"),
        sa.Column("shipment_id", UUID(as_uuid=True), sa.ForeignKey("shipments.shipment_id"), nullable=False),
        sa.Column("scan_type", sa.String(30), nullable=False),
        sa.Column("location", sa.String(255), nullable=False),
        sa.Column("timestamp", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("notes", sa.Text),
        sa.CheckConstraint(
            "scan_type IN ('pickup', 'depot_checkin', 'depot_checkout', 'out_for_delivery', "
            "'delivered', 'failed_attempt')",
            name="ck_scan_type",
        ),
    )
    op.create_index("ix_scans_shipment_time", "shipment_scans", ["shipment_id", "timestamp"])

    # 7. Routes
    op.create_table(
        "routes",
        _pk("route_id"),
        sa.Column("route_code", sa.String(50), nullable=False, unique=True),
        sa.Column("date", sa.Date, nullable=False),
        sa.Column("driver_id", UUID(as_uuid=True), sa.ForeignKey("drivers.driver_id", ondelete="SET NULL")),
        sa.Column("vehicle_id", UUID(as_uuid=True), sa.ForeignKey("vehicles.vehicle_id", ondelete="SET NULL")),
        sa.Column("region", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="planned"),
        sa.CheckConstraint("status IN ('planned', 'active', 'completed', 'cancelled')", name="ck_route_status"),
    )
    op.create_index("ix_routes_date", "routes", ["date"])
    op.create_index("ix_routes_region", "routes", ["region"])
    op.create_index("ix_routes_driver", "routes", ["driver_id"])

    # 8. Route stops
    op.create_table(
        "route_stops",
        _pk("stop_id"),
        sa.Column("route_id", UUID(as_uuid=True), sa.ForeignKey("routes.route_id"), nullable=False),
        sa.Column("shipment_id", UUID(as_uuid=True), sa.ForeignKey("shipments.shipment_id"), nullable=False),
        sa.Column("sequence_number", sa.Integer, nullable=False),
        sa.Column("planned_eta", sa.DateTime),
        sa.Column("actual_arrival", sa.DateTime),
        sa.Column("status", sa.String(30)),
        sa.UniqueConstraint("route_id", "sequence_number", name="uq_route_stop_sequence"),
        sa.UniqueConstraint("route_id", "shipment_id", name="uq_route_stop_shipment"),
        sa.CheckConstraint("sequence_number >= 1", name="ck_route_stop_sequence_positive"),
    )
    op.create_index("ix_route_stops_shipment", "route_stops", ["shipment_id"])

    # 9. Delivery issues
    op.create_table(
        "delivery_issues",
        _pk("issue_id"),
        sa.Column("shipment_id", UUID(as_uuid=True), sa.ForeignKey("shipments.shipment_id"), nullable=False),
        sa.Column("reported_by_user_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("issue_type", sa.String(30), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("severity_score", sa.Float, nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        sa.Column("resolution_notes", sa.Text),
        *_timestamps(),
        sa.CheckConstraint(
            "issue_type IN ('damaged', 'missing', 'wrong_address', 'missed_delivery', 'delay', 'other')",
            name="ck_issue_type",
        ),
        sa.CheckConstraint(
            "status IN ('open', 'investigating', 'resolved', 'closed')",
            name="ck_issue_status",
        ),
    )
    op.create_index("ix_issues_shipment", "delivery_issues", ["shipment_id"])
    op.create_index("ix_issues_status", "delivery_issues", ["status"])

    # 10. Escalation contacts
    op.create_table(
        "escalation_contacts",
        _pk("contact_id"),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("position", sa.String(100), nullable=False),
        sa.Column("contact_type", sa.String(20), nullable=False),
        sa.Column("timeout_seconds", sa.Integer, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.CheckConstraint("contact_type IN ('email', 'sms', 'slack', 'phone')", name="ck_contact_type"),
        sa.CheckConstraint("timeout_seconds >= 1", name="ck_contact_timeout_positive"),
    )

    # 11. Escalation logs
    op.create_table(
        "escalation_logs",
        _pk("log_id"),
        sa.Column("shipment_id", UUID(as_uuid=True), sa.ForeignKey("shipments.shipment_id"), nullable=False),
        sa.Column(
            "delivery_issue_id",
            UUID(as_uuid=True),
            sa.ForeignKey("delivery_issues.issue_id", ondelete="SET NULL"),
        ),
        sa.Column(
            "contact_id",
            UUID(as_uuid=True),
            sa.ForeignKey("escalation_contacts.contact_id"),
            nullable=False,
        ),
        sa.Column("attempt_number", sa.Integer, nullable=False),
        sa.Column("event_type", sa.String(20), nullable=False),
        sa.Column("payload", sa.JSON),
        sa.Column("ack_received", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("ack_method", sa.String(50)),
        sa.Column("acknowledged_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("event_type IN ('triggered', 'advanced')", name="ck_escalation_event_type"),
        sa.CheckConstraint("attempt_number >= 1", name="ck_escalation_attempt_positive"),
    )
    op.create_index("ix_escalation_logs_shipment", "escalation_logs", ["shipment_id", "created_at"])
    op.create_index("ix_escalation_logs_issue", "escalation_logs", ["delivery_issue_id"])

    # 12. Acknowledgments
    op.create_table(
        "acknowledgments",
        _pk("acknowledgment_id"),
        sa.Column("shipment_id", UUID(as_uuid=True), sa.ForeignKey("shipments.shipment_id"), nullable=False),
        sa.Column(
            "delivery_issue_id",
            UUID(as_uuid=True),
            sa.ForeignKey("delivery_issues.issue_id", ondelete="SET NULL"),
        ),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("method", sa.String(50), nullable=False),
        sa.Column("notes", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_acknowledgments_shipment", "acknowledgments", ["shipment_id"])

    # 13. Metric definitions
    op.create_table(
        "metric_definitions",
        _pk("metric_id"),
        sa.Column("key", sa.String(100), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("aggregation_type", sa.String(20), nullable=False),
        sa.Column("dimension", sa.String(20), nullable=False, server_default="global"),
        sa.Column("target_value", sa.Float, nullable=False),
        sa.Column("warning_threshold", sa.Float),
        sa.Column("critical_threshold", sa.Float),
        sa.Column("owner_role", sa.String(20), nullable=False, server_default="admin"),
        sa.Column("is_visible_on_dashboard", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("aggregation_type IN ('ratio', 'count', 'avg')", name="ck_metric_aggregation"),
        sa.CheckConstraint(
            "dimension IN ('global', 'region', 'route', 'driver')",
            name="ck_metric_dimension",
        ),
        sa.CheckConstraint(
            "owner_role IN ('customer', 'driver', 'dispatcher', 'manager', 'admin')",
            name="ck_metric_owner_role",
        ),
    )

    # 14. Metric snapshots
    op.create_table(
        "metric_snapshots",
        _pk("snapshot_id"),
        sa.Column(
            "metric_id",
            UUID(as_uuid=True),
            sa.ForeignKey("metric_definitions.metric_id"),
            nullable=False,
        ),
        sa.Column("value", sa.Float, nullable=False),
        sa.Column("time_range_start", sa.DateTime, nullable=False),
        sa.Column("time_range_end", sa.DateTime, nullable=False),
        sa.Column("computed_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("breakdown", sa.JSON),
    )
    op.create_index("ix_metric_snapshots_metric_time", "metric_snapshots", ["metric_id", "computed_at"])


def downgrade() -> None:
    tables = [
        "metric_snapshots",
        "metric_definitions",
        "acknowledgments",
        "escalation_logs",
        "escalation_contacts",
        "delivery_issues",
        "route_stops",
        "routes",
        "shipment_scans",
        "shipments",
        "dispatcher_profiles",
        "drivers",
        "vehicles",
        "users",
    ]
    for table in tables:
        op.drop_table(table)
