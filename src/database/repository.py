"""
Repository Layer - SQLAlchemy implementation of AccuracyRepository

Wraps one Session. Handles all SQLAlchemy complexity internally: rows are
converted to engine value types on the way out, and any SQLAlchemyError is
rolled back and re-raised as RepositoryError so callers never see driver
exceptions.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.accuracy.errors import RepositoryError
from src.accuracy.models import (
    AccuracyReport,
    Alert,
    AlertType,
    ConfidenceBreakdown,
    DataPoint,
    DataSource,
    Discrepancy,
    NotificationSettings,
    ProjectRef,
    ensure_utc,
)
from src.accuracy.repository import AccuracyRepository

from .models import (
    AccuracyAlertRecord,
    AccuracyReportRecord,
    DataPointRecord,
    NotificationSettingsRecord,
    Organization,
    OrganizationMember,
    Project,
)

logger = logging.getLogger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored as UTC
    return ensure_utc(value) if value is not None else None


class SqlAlchemyAccuracyRepository(AccuracyRepository):
    """AccuracyRepository backed by a SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except IntegrityError as e:
            self.db.rollback()
            logger.error(f"Integrity error during {operation}: {e.orig}")
            raise RepositoryError(f"Conflict during {operation}", details={"operation": operation}) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error during {operation}: {e}")
            raise RepositoryError(f"Database error during {operation}", details={"operation": operation}) from e

    # =========================================================================
    # PROJECTS & MEMBERSHIP
    # =========================================================================

    def get_project(self, project_id: str) -> Optional[ProjectRef]:
        with self._guard("get_project"):
            project = self.db.get(Project, project_id)
            return _project_ref(project) if project else None

    def get_organization_projects(self, organization_id: str) -> Optional[List[ProjectRef]]:
        with self._guard("get_organization_projects"):
            if self.db.get(Organization, organization_id) is None:
                return None
            projects = (
                self.db.query(Project)
                .filter(Project.organization_id == organization_id)
                .order_by(Project.created_at)
                .all()
            )
            return [_project_ref(p) for p in projects]

    def get_user_projects(self, user_id: str) -> List[ProjectRef]:
        with self._guard("get_user_projects"):
            member_orgs = (
                self.db.query(OrganizationMember.organization_id)
                .filter(OrganizationMember.user_id == user_id)
            )
            projects = (
                self.db.query(Project)
                .filter(or_(
                    Project.owner_user_id == user_id,
                    Project.organization_id.in_(member_orgs.scalar_subquery()),
                ))
                .order_by(Project.created_at)
                .all()
            )
            return [_project_ref(p) for p in projects]

    def get_notification_settings(self, project_id: str) -> Optional[NotificationSettings]:
        with self._guard("get_notification_settings"):
            record = self.db.get(NotificationSettingsRecord, project_id)
            if record is None:
                return None
            return NotificationSettings(
                project_id=record.project_id,
                enabled=record.enabled,
                confidence_threshold=record.confidence_threshold,
                freshness_threshold=record.freshness_threshold,
            )

    # =========================================================================
    # DATA POINTS
    # =========================================================================

    def add_data_point(self, project_id: str, point: DataPoint) -> DataPoint:
        """Store a data point (write path of the sync connectors)."""
        with self._guard("add_data_point"):
            self.db.add(DataPointRecord(
                id=point.id,
                project_id=project_id,
                source=point.source,
                metric=point.metric,
                value=point.value,
                timestamp=point.timestamp,
                point_metadata=dict(point.metadata),
            ))
            self.db.commit()
            return point

    def get_data_points(
        self,
        project_id: str,
        metric: str,
        from_time: datetime,
        to_time: datetime,
    ) -> List[DataPoint]:
        with self._guard("get_data_points"):
            records = (
                self.db.query(DataPointRecord)
                .filter(
                    DataPointRecord.project_id == project_id,
                    DataPointRecord.metric == metric,
                    DataPointRecord.timestamp >= ensure_utc(from_time),
                    DataPointRecord.timestamp <= ensure_utc(to_time),
                )
                .order_by(DataPointRecord.timestamp.desc())
                .all()
            )
            return [_data_point(r) for r in records]

    def get_latest_data_point(
        self,
        project_id: str,
        metric: str,
        source: DataSource,
    ) -> Optional[DataPoint]:
        with self._guard("get_latest_data_point"):
            record = (
                self.db.query(DataPointRecord)
                .filter(
                    DataPointRecord.project_id == project_id,
                    DataPointRecord.metric == metric,
                    DataPointRecord.source == source,
                )
                .order_by(DataPointRecord.timestamp.desc())
                .first()
            )
            return _data_point(record) if record else None

    # =========================================================================
    # REPORTS
    # =========================================================================

    def save_report(self, report: AccuracyReport) -> None:
        with self._guard("save_report"):
            self.db.add(AccuracyReportRecord(
                id=report.id,
                project_id=report.project_id,
                metric=report.metric,
                generated_at=report.generated_at,
                confidence_score=report.confidence_score,
                freshness_score=report.freshness_score,
                is_accurate=report.is_accurate,
                primary_data_point=report.primary_data_point.to_dict(),
                comparison_data_points=[p.to_dict() for p in report.comparison_data_points],
                discrepancies=[d.to_dict() for d in report.discrepancies],
                breakdown=report.breakdown.to_dict() if report.breakdown else None,
            ))
            self.db.commit()

    def list_reports(
        self,
        project_id: str,
        metric: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[AccuracyReport]:
        with self._guard("list_reports"):
            query = self.db.query(AccuracyReportRecord).filter(
                AccuracyReportRecord.project_id == project_id
            )
            if metric is not None:
                query = query.filter(AccuracyReportRecord.metric == metric)
            if since is not None:
                query = query.filter(AccuracyReportRecord.generated_at >= ensure_utc(since))
            query = query.order_by(AccuracyReportRecord.generated_at.desc())
            if limit:
                query = query.limit(limit)
            return [_report(r) for r in query.all()]

    # =========================================================================
    # ALERTS
    # =========================================================================

    def get_active_alert(self, project_id: str, alert_type: AlertType) -> Optional[Alert]:
        with self._guard("get_active_alert"):
            record = (
                self.db.query(AccuracyAlertRecord)
                .filter(
                    AccuracyAlertRecord.project_id == project_id,
                    AccuracyAlertRecord.type == alert_type,
                    AccuracyAlertRecord.resolved_at.is_(None),
                )
                .first()
            )
            return _alert(record) if record else None

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        with self._guard("get_alert"):
            record = self.db.get(AccuracyAlertRecord, alert_id)
            return _alert(record) if record else None

    def create_alert(self, alert: Alert) -> Alert:
        with self._guard("create_alert"):
            record = AccuracyAlertRecord(id=alert.id, project_id=alert.project_id, type=alert.type)
            _apply_alert(record, alert)
            self.db.add(record)
            self.db.commit()
            return alert

    def update_alert(self, alert: Alert) -> Alert:
        with self._guard("update_alert"):
            record = self.db.get(AccuracyAlertRecord, alert.id)
            if record is None:
                raise RepositoryError(f"Alert {alert.id} does not exist", details={"alert_id": alert.id})
            _apply_alert(record, alert)
            self.db.commit()
            return alert

    def list_alerts(
        self,
        project_id: str,
        since: Optional[datetime] = None,
        active_only: bool = False,
    ) -> List[Alert]:
        with self._guard("list_alerts"):
            query = self.db.query(AccuracyAlertRecord).filter(
                AccuracyAlertRecord.project_id == project_id
            )
            if active_only:
                query = query.filter(AccuracyAlertRecord.resolved_at.is_(None))
            if since is not None:
                query = query.filter(AccuracyAlertRecord.triggered_at >= ensure_utc(since))
            records = query.order_by(AccuracyAlertRecord.triggered_at.desc()).all()
            return [_alert(r) for r in records]


# =============================================================================
# ROW CONVERSION
# =============================================================================

def _project_ref(project: Project) -> ProjectRef:
    return ProjectRef(
        id=project.id,
        organization_id=project.organization_id,
        owner_user_id=project.owner_user_id,
        name=project.name or "",
        is_connected=bool(project.is_connected),
    )


def _data_point(record: DataPointRecord) -> DataPoint:
    return DataPoint(
        id=record.id,
        source=record.source,
        metric=record.metric,
        value=record.value,
        timestamp=_as_utc(record.timestamp),
        metadata=dict(record.point_metadata or {}),
    )


def _report(record: AccuracyReportRecord) -> AccuracyReport:
    return AccuracyReport(
        id=record.id,
        project_id=record.project_id,
        metric=record.metric,
        generated_at=_as_utc(record.generated_at),
        primary_data_point=DataPoint.from_dict(record.primary_data_point),
        comparison_data_points=tuple(
            DataPoint.from_dict(p) for p in (record.comparison_data_points or [])
        ),
        confidence_score=record.confidence_score,
        freshness_score=record.freshness_score,
        discrepancies=tuple(Discrepancy.from_dict(d) for d in (record.discrepancies or [])),
        breakdown=ConfidenceBreakdown.from_dict(record.breakdown) if record.breakdown else None,
        is_accurate=record.is_accurate,
    )


def _alert(record: AccuracyAlertRecord) -> Alert:
    return Alert(
        id=record.id,
        project_id=record.project_id,
        type=record.type,
        severity=record.severity,
        message=record.message,
        metric=record.metric,
        data=dict(record.data or {}),
        triggered_at=_as_utc(record.triggered_at),
        updated_at=_as_utc(record.updated_at),
        resolved_at=_as_utc(record.resolved_at),
    )


def _apply_alert(record: AccuracyAlertRecord, alert: Alert) -> None:
    record.severity = alert.severity
    record.metric = alert.metric
    record.message = alert.message
    record.data = dict(alert.data)
    record.triggered_at = alert.triggered_at
    record.updated_at = alert.updated_at
    record.resolved_at = alert.resolved_at
