"""
Fleetline Database Models

Tables:
  People & fleet:
  1. users                 - Every actor (customer, driver, dispatcher, manager, admin)
  2. drivers               - Driver profile for a driver user
  3. dispatcher_profiles   - Dispatcher profile pinned to one region
  4. vehicles              - Fleet vehicles

  Tracking:
  5. shipments             - One parcel, owned by exactly one customer
  6. shipment_scans        - Append-only scan events
  7. routes                - Driver + vehicle + region + date grouping
  8. route_stops           - Ordered stops, one shipment each

  Issues & escalation:
  9. delivery_issues       - Reported delivery problems with a severity score
  10. escalation_contacts  - Ladder rungs, ranked by ascending timeout
  11. escalation_logs      - One row per notification attempt
  12. acknowledgments      - Who acknowledged an escalation and how

  Metrics:
  13. metric_definitions   - Named KPI formulas
  14. metric_snapshots     - Computed KPI values per time window

  Customer requests:
  15. delivery_change_requests - Reschedule / re-address requests awaiting review
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship

from db.session import Base

ROLES = ("customer", "driver", "dispatcher", "manager", "admin")
SHIPMENT_STATUSES = ("pending", "picked_up", "in_transit", "out_for_delivery", "delivered", "failed", "returned")
TERMINAL_SHIPMENT_STATUSES = ("delivered", "failed", "returned")
SERVICE_LEVELS = ("standard", "express", "same_day")
SCAN_TYPES = ("pickup", "depot_checkin", "depot_checkout", "out_for_delivery", "delivered", "failed_attempt")
VEHICLE_TYPES = ("truck", "van", "bike")
ROUTE_STATUSES = ("planned", "active", "completed", "cancelled")
ISSUE_TYPES = ("damaged", "missing", "wrong_address", "missed_delivery", "delay", "other")
ISSUE_STATUSES = ("open", "investigating", "resolved", "closed")
OPEN_ISSUE_STATUSES = ("open", "investigating")
CONTACT_TYPES = ("email", "sms", "slack", "phone")
ESCALATION_EVENT_TYPES = ("triggered", "advanced")
AGGREGATION_TYPES = ("ratio", "count", "avg")
METRIC_DIMENSIONS = ("global", "region", "route", "driver")
CHANGE_TYPES = ("reschedule", "update_instructions", "change_address")
CHANGE_STATUSES = ("pending", "approved", "rejected", "applied")


def _in(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


# ─── 1. Users ───────────────────────────────────────────────────────────────


class User(Base):
    __tablename__ = "users"

    user_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    role = Column(String(20), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (CheckConstraint(_in("role", ROLES), name="ck_user_role"),)

    shipments = relationship("Shipment", back_populates="customer")


# ─── 2. Drivers ─────────────────────────────────────────────────────────────


class Driver(Base):
    __tablename__ = "drivers"

    driver_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    driver_code = Column(String(50), nullable=False, unique=True)
    user_id = Column(GUID(), ForeignKey("users.user_id"), nullable=False, unique=True)
    assigned_vehicle_id = Column(GUID(), ForeignKey("vehicles.vehicle_id", ondelete="SET NULL"))
    home_base = Column(String(100), nullable=False)

    user = relationship("User")
    routes = relationship("Route", back_populates="driver")


# ─── 3. Dispatcher Profiles ─────────────────────────────────────────────────


class DispatcherProfile(Base):
    __tablename__ = "dispatcher_profiles"

    profile_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    dispatcher_code = Column(String(50), nullable=False, unique=True)
    user_id = Column(GUID(), ForeignKey("users.user_id"), nullable=False, unique=True)
    assigned_region = Column(String(100), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


# ─── 4. Vehicles ────────────────────────────────────────────────────────────


class Vehicle(Base):
    __tablename__ = "vehicles"

    vehicle_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    vehicle_code = Column(String(50), nullable=False, unique=True)
    capacity_volume = Column(Float, nullable=False)
    capacity_weight = Column(Float, nullable=False)
    home_base = Column(String(100), nullable=False)
    vehicle_type = Column(String(20), nullable=False, default="van")

    __table_args__ = (CheckConstraint(_in("vehicle_type", VEHICLE_TYPES), name="ck_vehicle_type"),)


# ─── 5. Shipments ───────────────────────────────────────────────────────────


class Shipment(Base):
    __tablename__ = "shipments"

    shipment_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tracking_number = Column(String(50), nullable=False, unique=True)
    order_id = Column(String(100))
    customer_id = Column(GUID(), ForeignKey("users.user_id"), nullable=False)
    from_address = Column(Text, nullable=False)
    to_address = Column(Text, nullable=False)
    current_status = Column(String(30), nullable=False, default="pending")
    service_level = Column(String(20), nullable=False, default="standard")
    promised_delivery_date = Column(DateTime)
    last_scan_at = Column(DateTime)
    last_scan_location = Column(String(255))
    is_vip = Column(Boolean, nullable=False, default=False)
    sla_risk_score = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_shipments_customer", "customer_id"),
        Index("ix_shipments_status", "current_status"),
        CheckConstraint(_in("current_status", SHIPMENT_STATUSES), name="ck_shipment_status"),
        CheckConstraint(_in("service_level", SERVICE_LEVELS), name="ck_shipment_service_level"),
        CheckConstraint("sla_risk_score >= 0 AND sla_risk_score <= 1", name="ck_shipment_sla_risk_range"),
    )

    customer = relationship("User", back_populates="shipments")
    scans = relationship("ShipmentScan", back_populates="shipment", order_by="ShipmentScan.timestamp")
    route_stops = relationship("RouteStop", back_populates="shipment")
    issues = relationship("DeliveryIssue", back_populates="shipment")


# ─── 6. Shipment Scans ──────────────────────────────────────────────────────


class ShipmentScan(Base):
    __tablename__ = "shipment_scans"

    scan_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    shipment_id = Column(GUID(), ForeignKey("shipments.shipment_id"), nullable=False)
    scan_type = Column(String(30), nullable=False)
    location = Column(String(255), nullable=False)
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow)
    notes = Column(Text)

    __table_args__ = (
        Index("ix_scans_shipment_time", "shipment_id", "timestamp"),
        CheckConstraint(_in("scan_type", SCAN_TYPES), name="ck_scan_type"),
    )

    shipment = relationship("Shipment", back_populates="scans")


# ─── 7. Routes ──────────────────────────────────────────────────────────────


class Route(Base):
    __tablename__ = "routes"

    route_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    route_code = Column(String(50), nullable=False, unique=True)
    date = Column(Date, nullable=False)
    driver_id = Column(GUID(), ForeignKey("drivers.driver_id", ondelete="SET NULL"))
    vehicle_id = Column(GUID(), ForeignKey("vehicles.vehicle_id", ondelete="SET NULL"))
    region = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, default="planned")

    __table_args__ = (
        Index("ix_routes_date", "date"),
        Index("ix_routes_region", "region"),
        Index("ix_routes_driver", "driver_id"),
        CheckConstraint(_in("status", ROUTE_STATUSES), name="ck_route_status"),
    )

    driver = relationship("Driver", back_populates="routes")
    vehicle = relationship("Vehicle")
    stops = relationship("RouteStop", back_populates="route", order_by="RouteStop.sequence_number")


# ─── 8. Route Stops ─────────────────────────────────────────────────────────


class RouteStop(Base):
    __tablename__ = "route_stops"

    stop_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    route_id = Column(GUID(), ForeignKey("routes.route_id"), nullable=False)
    shipment_id = Column(GUID(), ForeignKey("shipments.shipment_id"), nullable=False)
    sequence_number = Column(Integer, nullable=False)
    planned_eta = Column(DateTime)
    actual_arrival = Column(DateTime)
    status = Column(String(30))

    __table_args__ = (
        UniqueConstraint("route_id", "sequence_number", name="uq_route_stop_sequence"),
        UniqueConstraint("route_id", "shipment_id", name="uq_route_stop_shipment"),
        Index("ix_route_stops_shipment", "shipment_id"),
        CheckConstraint("sequence_number >= 1", name="ck_route_stop_sequence_positive"),
    )

    route = relationship("Route", back_populates="stops")
    shipment = relationship("Shipment", back_populates="route_stops")


# ─── 9. Delivery Issues ─────────────────────────────────────────────────────


class DeliveryIssue(Base):
    __tablename__ = "delivery_issues"

    issue_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    shipment_id = Column(GUID(), ForeignKey("shipments.shipment_id"), nullable=False)
    reported_by_user_id = Column(GUID(), ForeignKey("users.user_id"), nullable=False)
    issue_type = Column(String(30), nullable=False)
    description = Column(Text, nullable=False)
    severity_score = Column(Float, nullable=False, default=0.0)
    status = Column(String(20), nullable=False, default="open")
    resolution_notes = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_issues_shipment", "shipment_id"),
        Index("ix_issues_status", "status"),
        CheckConstraint(_in("issue_type", ISSUE_TYPES), name="ck_issue_type"),
        CheckConstraint(_in("status", ISSUE_STATUSES), name="ck_issue_status"),
    )

    shipment = relationship("Shipment", back_populates="issues")


# ─── 10. Escalation Contacts ────────────────────────────────────────────────


class EscalationContact(Base):
    __tablename__ = "escalation_contacts"

    contact_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(GUID(), ForeignKey("users.user_id"), nullable=False)
    position = Column(String(100), nullable=False)
    contact_type = Column(String(20), nullable=False)
    timeout_seconds = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(_in("contact_type", CONTACT_TYPES), name="ck_contact_type"),
        CheckConstraint("timeout_seconds >= 1", name="ck_contact_timeout_positive"),
    )

    user = relationship("User")


# ─── 11. Escalation Logs ────────────────────────────────────────────────────


class EscalationLog(Base):
    __tablename__ = "escalation_logs"

    log_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    shipment_id = Column(GUID(), ForeignKey("shipments.shipment_id"), nullable=False)
    delivery_issue_id = Column(GUID(), ForeignKey("delivery_issues.issue_id", ondelete="SET NULL"))
    contact_id = Column(GUID(), ForeignKey("escalation_contacts.contact_id"), nullable=False)
    attempt_number = Column(Integer, nullable=False)
    event_type = Column(String(20), nullable=False)
    payload = Column(JSON, default=dict)
    ack_received = Column(Boolean, nullable=False, default=False)
    ack_method = Column(String(50))
    acknowledged_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_escalation_logs_shipment", "shipment_id", "created_at"),
        Index("ix_escalation_logs_issue", "delivery_issue_id"),
        CheckConstraint(_in("event_type", ESCALATION_EVENT_TYPES), name="ck_escalation_event_type"),
        CheckConstraint("attempt_number >= 1", name="ck_escalation_attempt_positive"),
    )

    contact = relationship("EscalationContact")
    issue = relationship("DeliveryIssue")


# ─── 12. Acknowledgments ────────────────────────────────────────────────────


class Acknowledgment(Base):
    __tablename__ = "acknowledgments"

    acknowledgment_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    shipment_id = Column(GUID(), ForeignKey("shipments.shipment_id"), nullable=False)
    delivery_issue_id = Column(GUID(), ForeignKey("delivery_issues.issue_id", ondelete="SET NULL"))
    user_id = Column(GUID(), ForeignKey("users.user_id"), nullable=False)
    method = Column(String(50), nullable=False)
    notes = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_acknowledgments_shipment", "shipment_id"),)


# ─── 13. Metric Definitions ─────────────────────────────────────────────────


class MetricDefinition(Base):
    __tablename__ = "metric_definitions"

    metric_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    key = Column(String(100), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    aggregation_type = Column(String(20), nullable=False)
    dimension = Column(String(20), nullable=False, default="global")
    target_value = Column(Float, nullable=False)
    warning_threshold = Column(Float)
    critical_threshold = Column(Float)
    owner_role = Column(String(20), nullable=False, default="admin")
    is_visible_on_dashboard = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(_in("aggregation_type", AGGREGATION_TYPES), name="ck_metric_aggregation"),
        CheckConstraint(_in("dimension", METRIC_DIMENSIONS), name="ck_metric_dimension"),
        CheckConstraint(_in("owner_role", ROLES), name="ck_metric_owner_role"),
    )

    snapshots = relationship(
        "MetricSnapshot",
        back_populates="metric",
        cascade="all, delete-orphan",
        order_by="MetricSnapshot.computed_at.desc()",
    )


# ─── 14. Metric Snapshots ───────────────────────────────────────────────────


class MetricSnapshot(Base):
    __tablename__ = "metric_snapshots"

    snapshot_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    metric_id = Column(GUID(), ForeignKey("metric_definitions.metric_id"), nullable=False)
    value = Column(Float, nullable=False)
    time_range_start = Column(DateTime, nullable=False)
    time_range_end = Column(DateTime, nullable=False)
    computed_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    breakdown = Column(JSON)

    __table_args__ = (Index("ix_metric_snapshots_metric_time", "metric_id", "computed_at"),)

    metric = relationship("MetricDefinition", back_populates="snapshots")


# ─── 15. Delivery Change Requests ───────────────────────────────────────────


class DeliveryChangeRequest(Base):
    __tablename__ = "delivery_change_requests"

    request_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    shipment_id = Column(GUID(), ForeignKey("shipments.shipment_id"), nullable=False)
    requested_by_user_id = Column(GUID(), ForeignKey("users.user_id"), nullable=False)
    change_type = Column(String(30), nullable=False)
    new_value = Column(Text, nullable=False)
    new_date = Column(DateTime)
    status = Column(String(20), nullable=False, default="pending")
    notes = Column(Text)
    reviewed_by_user_id = Column(GUID(), ForeignKey("users.user_id", ondelete="SET NULL"))
    reviewed_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_change_requests_shipment", "shipment_id"),
        Index("ix_change_requests_requested_by", "requested_by_user_id"),
        Index("ix_change_requests_status", "status"),
        Index("ix_change_requests_created", "created_at"),
        CheckConstraint(_in("change_type", CHANGE_TYPES), name="ck_change_request_type"),
        CheckConstraint(_in("status", CHANGE_STATUSES), name="ck_change_request_status"),
    )

    shipment = relationship("Shipment")
    requested_by = relationship("User", foreign_keys=[requested_by_user_id])
    reviewed_by = relationship("User", foreign_keys=[reviewed_by_user_id])
