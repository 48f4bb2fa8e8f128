"""
SQLAlchemy Models for the Data Accuracy Engine

Design Principles:
1. Projects and memberships are owned by the account layer; we only read them
2. Data points are written by the sync connectors and read here
3. Reports are append-only (history drives trends)
4. At most one active alert per (project, type), enforced by a partial unique index

Timestamps are stored as UTC.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime, Text,
    ForeignKey, Enum, Index, CheckConstraint, UniqueConstraint,
    JSON, text
)
from sqlalchemy.orm import declarative_base, relationship

from src.accuracy.models import AlertType, DataSource, Severity

Base = declarative_base()


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ACCOUNT TABLES (read-only for the engine)
# =============================================================================

class Organization(Base):
    """Organizations grouping projects"""
    __tablename__ = "organizations"

    id = Column(String(64), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False, default="")

    created_at = Column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    projects = relationship("Project", back_populates="organization")
    members = relationship("OrganizationMember", back_populates="organization", cascade="all, delete-orphan")


class OrganizationMember(Base):
    """Users belonging to an organization"""
    __tablename__ = "organization_members"

    id = Column(String(64), primary_key=True, default=_new_id)
    organization_id = Column(String(64), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(64), nullable=False)
    role = Column(String(50), default="member")

    organization = relationship("Organization", back_populates="members")

    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_org_member"),
        Index("idx_org_member_user", "user_id"),
    )


class Project(Base):
    """SEO projects (one site/property each)"""
    __tablename__ = "projects"

    id = Column(String(64), primary_key=True, default=_new_id)
    organization_id = Column(String(64), ForeignKey("organizations.id"), nullable=True)
    owner_user_id = Column(String(64), nullable=True)
    name = Column(String(255), nullable=False, default="")

    # True once at least one data source integration is active
    is_connected = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=_utcnow)

    organization = relationship("Organization", back_populates="projects")

    __table_args__ = (
        Index("idx_project_org", "organization_id"),
        Index("idx_project_owner", "owner_user_id"),
    )


# =============================================================================
# ACCURACY TABLES
# =============================================================================

class DataPointRecord(Base):
    """One observed metric value from one source"""
    __tablename__ = "accuracy_data_points"

    id = Column(String(64), primary_key=True, default=_new_id)
    project_id = Column(String(64), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)

    source = Column(Enum(DataSource), nullable=False)
    metric = Column(String(100), nullable=False)
    value = Column(Float, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)  # when the measured event occurred
    point_metadata = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("idx_data_point_lookup", "project_id", "metric", "timestamp"),
        Index("idx_data_point_source", "project_id", "metric", "source", "timestamp"),
    )


class AccuracyReportRecord(Base):
    """Persisted accuracy report (insert only)"""
    __tablename__ = "accuracy_reports"

    id = Column(String(64), primary_key=True, default=_new_id)
    project_id = Column(String(64), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    metric = Column(String(100), nullable=False)
    generated_at = Column(DateTime(timezone=True), nullable=False)

    # Scores
    confidence_score = Column(Integer, nullable=False)
    freshness_score = Column(Integer, nullable=False)
    is_accurate = Column(Boolean, nullable=False, default=True)

    # Inputs and findings as recorded at generation time
    primary_data_point = Column(JSON, nullable=False)
    comparison_data_points = Column(JSON, default=list)
    discrepancies = Column(JSON, default=list)
    breakdown = Column(JSON, nullable=True)

    __table_args__ = (
        CheckConstraint("confidence_score >= 0 AND confidence_score <= 100", name="ck_report_confidence"),
        CheckConstraint("freshness_score >= 0 AND freshness_score <= 100", name="ck_report_freshness"),
        Index("idx_report_project_time", "project_id", "generated_at"),
        Index("idx_report_metric_time", "project_id", "metric", "generated_at"),
    )


class AccuracyAlertRecord(Base):
    """Accuracy alerts; resolved rows are kept as history"""
    __tablename__ = "accuracy_alerts"

    id = Column(String(64), primary_key=True, default=_new_id)
    project_id = Column(String(64), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)

    type = Column(Enum(AlertType), nullable=False)
    severity = Column(Enum(Severity), nullable=False)
    metric = Column(String(100), nullable=True)
    message = Column(Text, nullable=False)
    data = Column(JSON, default=dict)

    triggered_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index(
            "uq_active_alert",
            "project_id",
            "type",
            unique=True,
            postgresql_where=text("resolved_at IS NULL"),
            sqlite_where=text("resolved_at IS NULL"),
        ),
        Index("idx_alert_project_time", "project_id", "triggered_at"),
    )


class NotificationSettingsRecord(Base):
    """Per-project alert overrides"""
    __tablename__ = "accuracy_notification_settings"

    project_id = Column(String(64), ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True)
    enabled = Column(Boolean, nullable=False, default=True)
    confidence_threshold = Column(Integer, nullable=True)
    freshness_threshold = Column(Integer, nullable=True)

    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
