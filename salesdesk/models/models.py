from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship as orm_relationship

from ..config import Base
from ..constants import UNIT_AVAILABLE


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Unit(Base):
    __tablename__ = "units"

    id = Column(Integer, primary_key=True, autoincrement=False)
    code = Column(String, unique=True, nullable=False, index=True)
    unit_type = Column(String, nullable=True)
    model_code = Column(String, nullable=True, index=True)
    area = Column(Numeric(10, 2), nullable=True)
    garden_area = Column(Numeric(10, 2), nullable=True)
    building_number = Column(String, nullable=True)
    block_sector = Column(String, nullable=True)
    zone = Column(String, nullable=True)
    status = Column(String, nullable=False, default=UNIT_AVAILABLE)
    available = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    blocks = orm_relationship("UnitBlock", back_populates="unit")


class UnitModelPricing(Base):
    __tablename__ = "unit_model_pricing"

    id = Column(Integer, primary_key=True, autoincrement=False)
    model_code = Column(String, nullable=False, index=True)
    list_price = Column(Numeric(14, 2), nullable=False)
    maintenance_price = Column(Numeric(14, 2), nullable=False, default=0)
    garage_price = Column(Numeric(14, 2), nullable=False, default=0)
    annual_rate_percent = Column(Numeric(6, 3), nullable=False)
    duration_years = Column(Integer, nullable=False)
    frequency = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending_approval")
    requested_by = Column(Integer, nullable=True)
    approved_by = Column(Integer, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)


class Deal(Base):
    __tablename__ = "deals"

    id = Column(Integer, primary_key=True, autoincrement=False)
    title = Column(String, nullable=True)
    created_by = Column(Integer, nullable=False, index=True)
    creator_role = Column(String, nullable=False)
    unit_id = Column(Integer, ForeignKey("units.id"), nullable=True, index=True)
    status = Column(String, nullable=False, default="draft", index=True)
    override_status = Column(String, nullable=False, default="none")
    decision = Column(String, nullable=False)
    needs_override = Column(Boolean, nullable=False, default=False)
    edits_requested = Column(Boolean, nullable=False, default=False)
    payment_plan_id = Column(Integer, nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    details = Column(JSON, nullable=False, default=dict)
    manager_review_at = Column(DateTime, nullable=True)
    manager_review_by = Column(Integer, nullable=True)
    fm_review_at = Column(DateTime, nullable=True)
    fm_review_by = Column(Integer, nullable=True)
    override_requested_at = Column(DateTime, nullable=True)
    override_requested_by = Column(Integer, nullable=True)
    override_approved_at = Column(DateTime, nullable=True)
    override_approved_by = Column(Integer, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    unit = orm_relationship("Unit")


class ReservationForm(Base):
    __tablename__ = "reservation_forms"

    id = Column(Integer, primary_key=True, autoincrement=False)
    deal_id = Column(Integer, ForeignKey("deals.id"), nullable=False, index=True)
    payment_plan_id = Column(Integer, nullable=False)
    unit_id = Column(Integer, ForeignKey("units.id"), nullable=True)
    status = Column(String, nullable=False, default="draft", index=True)
    reservation_date = Column(Date, nullable=False)
    preliminary_payment = Column(Numeric(14, 2), nullable=False, default=0)
    language = Column(String, nullable=False, default="en")
    details = Column(JSON, nullable=False, default=dict)
    created_by = Column(Integer, nullable=False)
    reviewed_by = Column(Integer, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    deal = orm_relationship("Deal")


class Contract(Base):
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, autoincrement=False)
    reservation_form_id = Column(Integer, ForeignKey("reservation_forms.id"), nullable=False, index=True)
    deal_id = Column(Integer, ForeignKey("deals.id"), nullable=False)
    status = Column(String, nullable=False, default="draft", index=True)
    created_by = Column(Integer, nullable=False)
    approvers = Column(JSON, nullable=False, default=list)
    details = Column(JSON, nullable=False, default=dict)
    rejection_reason = Column(Text, nullable=True)
    executed_at = Column(DateTime, nullable=True)
    executed_by = Column(Integer, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    reservation_form = orm_relationship("ReservationForm")


class UnitBlock(Base):
    __tablename__ = "unit_blocks"

    id = Column(Integer, primary_key=True, autoincrement=False)
    unit_id = Column(Integer, ForeignKey("units.id"), nullable=False, index=True)
    deal_id = Column(Integer, ForeignKey("deals.id"), nullable=False, index=True)
    requested_by = Column(Integer, nullable=False)
    requested_role = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending", index=True)
    duration_days = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)
    approved_by = Column(Integer, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True, index=True)
    extension_count = Column(Integer, nullable=False, default=0)
    unblock_stage = Column(String, nullable=True)
    unblock_reason = Column(Text, nullable=True)
    unblock_requested_by = Column(Integer, nullable=True)
    decision_reason = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    unit = orm_relationship("Unit", back_populates="blocks")


class HistoryRecord(Base):
    __tablename__ = "history_records"

    id = Column(Integer, primary_key=True, index=True)
    entity = Column(String, nullable=False, index=True)
    entity_id = Column(Integer, nullable=False, index=True)
    action = Column(String, nullable=False)
    actor_id = Column(Integer, nullable=True)
    actor_role = Column(String, nullable=True)
    at = Column(DateTime, nullable=False, index=True)
    notes = Column(JSON, nullable=True)
    reconciled = Column(Boolean, nullable=False, default=False)


class AcceptanceThresholdsConfig(Base):
    __tablename__ = "acceptance_thresholds"

    id = Column(Integer, primary_key=True, autoincrement=False)
    bounds = Column(JSON, nullable=False, default=dict)
    active = Column(Boolean, nullable=False, default=True)
    approved_by = Column(Integer, nullable=True)
    approved_role = Column(String, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    role = Column(String, nullable=True, index=True)
    event = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    read_at = Column(DateTime, nullable=True)


class NotificationOutbox(Base):
    __tablename__ = "notification_outbox"

    id = Column(Integer, primary_key=True, index=True)
    event = Column(String, nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    roles = Column(JSON, nullable=False, default=list)
    user_ids = Column(JSON, nullable=False, default=list)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    delivered_at = Column(DateTime, nullable=True)


class IdSequence(Base):
    __tablename__ = "id_sequences"

    family = Column(String, primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)
