from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.db import Base


# -------------------------
# Helpers
# -------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def uuid_str() -> str:
    return str(uuid.uuid4())


# -------------------------
# Staff
# -------------------------


class User(Base):
    """
    Staff account as provisioned by the auth layer.

    Only the columns the case core reads are declared here: role, department
    and the supervisor link drive access scoping.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    role: Mapped[Optional[str]] = mapped_column(String(40), nullable=True, default="assistant")
    department: Mapped[Optional[str]] = mapped_column(String(40), nullable=True, index=True)
    supervisor_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    banned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


# -------------------------
# Cases
# -------------------------


class Case(Base):
    __tablename__ = "cases"
    __table_args__ = (
        Index("ix_cases_department", "department"),
        Index("ix_cases_assigned_lawyer_id", "assigned_lawyer_id"),
        Index("ix_cases_assigned_assistant_id", "assigned_assistant_id"),
        Index("ix_cases_assigned_sale_id", "assigned_sale_id"),
        Index("ix_cases_updated_at", "updated_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    # Bumped by exactly one on every committed write; guarded by WHERE version = expected.
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    case_type: Mapped[str] = mapped_column(String(30), nullable=False)
    case_level: Mapped[str] = mapped_column(String(4), nullable=False)
    case_category: Mapped[str] = mapped_column(String(30), nullable=False, default="work_injury")
    province: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)

    target_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    agency_fee_estimate: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    estimated_collection: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    monthly_salary: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    sales_commission: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    handling_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)

    data_source: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    has_contract: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    contract_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    clue_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    has_social_security: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    entry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    injury_location: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    injury_severity: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    injury_cause: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    work_injury_certified: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    appraisal_level: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    appraisal_estimate: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    existing_evidence: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    customer_cooperative: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    witness_cooperative: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    remark: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    contract_form: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    insurance_types: Mapped[Optional[list]] = mapped_column(JSON, nullable=True, default=list)

    department: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    assigned_sale_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    assigned_lawyer_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    assigned_assistant_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)

    case_status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    closed_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    void_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    creator_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    updater_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    participants: Mapped[List["CaseParticipant"]] = relationship(
        back_populates="case",
        cascade="all, delete-orphan",
        order_by="CaseParticipant.sort_order",
    )
    collections: Mapped[List["CaseCollection"]] = relationship(
        back_populates="case",
        cascade="all, delete-orphan",
    )
    timeline: Mapped[List["CaseTimeline"]] = relationship(
        back_populates="case",
        cascade="all, delete-orphan",
    )
    time_nodes: Mapped[List["CaseTimeNode"]] = relationship(
        back_populates="case",
        cascade="all, delete-orphan",
    )
    hearings: Mapped[List["CaseHearing"]] = relationship(
        back_populates="case",
        cascade="all, delete-orphan",
    )
    change_logs: Mapped[List["CaseChangeLog"]] = relationship(
        back_populates="case",
        cascade="all, delete-orphan",
    )


class CaseParticipant(Base):
    __tablename__ = "case_participants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    case_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("cases.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # claimant | respondent
    entity_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    id_number: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    is_dishonest: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    case = relationship("Case", back_populates="participants")


class CaseCollection(Base):
    __tablename__ = "case_collections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    case_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("cases.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    received_at: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    case = relationship("Case", back_populates="collections")


class CaseTimeline(Base):
    __tablename__ = "case_timeline"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    case_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("cases.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    occurred_on: Mapped[date] = mapped_column(Date, nullable=False)
    follower_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    note: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    case = relationship("Case", back_populates="timeline")


class CaseTimeNode(Base):
    __tablename__ = "case_time_nodes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    case_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("cases.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    node_type: Mapped[str] = mapped_column(String(60), nullable=False)
    occurred_on: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    case = relationship("Case", back_populates="time_nodes")


class CaseHearing(Base):
    __tablename__ = "case_hearings"
    __table_args__ = (
        Index("ix_case_hearings_trial_lawyer_id", "trial_lawyer_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    case_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("cases.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Presiding lawyer; naming a user here grants that user visibility of the case.
    trial_lawyer_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    hearing_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    hearing_location: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    tribunal: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    judge: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    case_number: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    contact_phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    trial_stage: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    hearing_result: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    case = relationship("Case", back_populates="hearings")


class CaseChangeLog(Base):
    """
    Append-only audit trail for case writes.

    Actor columns are copied at write time so history survives staff changes.
    """
    __tablename__ = "case_change_logs"
    __table_args__ = (
        Index("ix_case_change_logs_case_created", "case_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    case_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("cases.id", ondelete="CASCADE"),
        nullable=False,
    )
    actor_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    actor_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    actor_role: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    action: Mapped[str] = mapped_column(String(40), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    changes: Mapped[Optional[list]] = mapped_column(JSON, nullable=True, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    case = relationship("Case", back_populates="change_logs")
