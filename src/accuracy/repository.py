"""
Accuracy Repository Interface

Everything the accuracy engine reads or writes goes through this interface.
The engine never opens a database connection on its own; callers inject a
repository (SQLAlchemy-backed in production, in-memory in tests).

Contract:
- Report persistence is an insert, never an update
- At most one active alert per (project_id, alert_type); a second insert
  must fail with RepositoryError
- Storage failures surface as RepositoryError
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from .errors import RepositoryError
from .models import (
    AccuracyReport,
    Alert,
    AlertType,
    DataPoint,
    DataSource,
    NotificationSettings,
    ProjectRef,
    ensure_utc,
)

logger = logging.getLogger(__name__)


class AccuracyRepository(ABC):
    """Abstract storage collaborator for the accuracy engine."""

    # ------------------------------------------------------------------
    # Projects & membership
    # ------------------------------------------------------------------

    @abstractmethod
    def get_project(self, project_id: str) -> Optional[ProjectRef]:
        """Project by id, or None if it does not exist."""
        pass

    @abstractmethod
    def get_organization_projects(self, organization_id: str) -> Optional[List[ProjectRef]]:
        """Projects of an organization, or None if the organization does not exist."""
        pass

    @abstractmethod
    def get_user_projects(self, user_id: str) -> List[ProjectRef]:
        """Projects the user owns or can reach through an organization membership."""
        pass

    @abstractmethod
    def get_notification_settings(self, project_id: str) -> Optional[NotificationSettings]:
        """Per-project alert overrides, or None for defaults."""
        pass

    # ------------------------------------------------------------------
    # Data points (read-only for the engine)
    # ------------------------------------------------------------------

    @abstractmethod
    def get_data_points(
        self,
        project_id: str,
        metric: str,
        from_time: datetime,
        to_time: datetime,
    ) -> List[DataPoint]:
        """Data points in [from_time, to_time], newest first."""
        pass

    @abstractmethod
    def get_latest_data_point(
        self,
        project_id: str,
        metric: str,
        source: DataSource,
    ) -> Optional[DataPoint]:
        """Most recent data point for a source, or None."""
        pass

    # ------------------------------------------------------------------
    # Reports (append-only)
    # ------------------------------------------------------------------

    @abstractmethod
    def save_report(self, report: AccuracyReport) -> None:
        """Insert a report."""
        pass

    @abstractmethod
    def list_reports(
        self,
        project_id: str,
        metric: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[AccuracyReport]:
        """Reports newest first, optionally filtered by metric and start time."""
        pass

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    @abstractmethod
    def get_active_alert(self, project_id: str, alert_type: AlertType) -> Optional[Alert]:
        pass

    @abstractmethod
    def get_alert(self, alert_id: str) -> Optional[Alert]:
        pass

    @abstractmethod
    def create_alert(self, alert: Alert) -> Alert:
        """Insert a new active alert. Fails if one is already active for the key."""
        pass

    @abstractmethod
    def update_alert(self, alert: Alert) -> Alert:
        """Replace the stored version of an existing alert."""
        pass

    @abstractmethod
    def list_alerts(
        self,
        project_id: str,
        since: Optional[datetime] = None,
        active_only: bool = False,
    ) -> List[Alert]:
        """Alerts newest first."""
        pass


class InMemoryAccuracyRepository(AccuracyRepository):
    """
    Thread-safe in-process repository.

    Used by the test suite and for local experiments without a database.
    Enforces the same single-active-alert rule as the SQL unique index.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._organizations: Set[str] = set()
        self._projects: Dict[str, ProjectRef] = {}
        self._members: Dict[str, Set[str]] = defaultdict(set)  # org_id -> user ids
        self._settings: Dict[str, NotificationSettings] = {}
        self._data_points: Dict[str, List[DataPoint]] = defaultdict(list)  # project_id -> points
        self._reports: List[AccuracyReport] = []
        self._alerts: Dict[str, Alert] = {}

    # ------------------------------------------------------------------
    # Seeding helpers (write path of the out-of-scope collaborators)
    # ------------------------------------------------------------------

    def add_organization(self, organization_id: str, member_user_ids: Iterable[str] = ()) -> None:
        with self._lock:
            self._organizations.add(organization_id)
            self._members[organization_id].update(member_user_ids)

    def add_project(self, project: ProjectRef) -> ProjectRef:
        with self._lock:
            if project.organization_id:
                self._organizations.add(project.organization_id)
            self._projects[project.id] = project
            return project

    def set_notification_settings(self, settings: NotificationSettings) -> None:
        with self._lock:
            self._settings[settings.project_id] = settings

    def add_data_point(self, project_id: str, point: DataPoint) -> DataPoint:
        with self._lock:
            self._data_points[project_id].append(point)
            return point

    # ------------------------------------------------------------------
    # Projects & membership
    # ------------------------------------------------------------------

    def get_project(self, project_id: str) -> Optional[ProjectRef]:
        with self._lock:
            return self._projects.get(project_id)

    def get_organization_projects(self, organization_id: str) -> Optional[List[ProjectRef]]:
        with self._lock:
            if organization_id not in self._organizations:
                return None
            return [p for p in self._projects.values() if p.organization_id == organization_id]

    def get_user_projects(self, user_id: str) -> List[ProjectRef]:
        with self._lock:
            orgs = {org_id for org_id, users in self._members.items() if user_id in users}
            return [
                p for p in self._projects.values()
                if p.owner_user_id == user_id or p.organization_id in orgs
            ]

    def get_notification_settings(self, project_id: str) -> Optional[NotificationSettings]:
        with self._lock:
            return self._settings.get(project_id)

    # ------------------------------------------------------------------
    # Data points
    # ------------------------------------------------------------------

    def get_data_points(
        self,
        project_id: str,
        metric: str,
        from_time: datetime,
        to_time: datetime,
    ) -> List[DataPoint]:
        from_time, to_time = ensure_utc(from_time), ensure_utc(to_time)
        with self._lock:
            points = [
                p for p in self._data_points.get(project_id, [])
                if p.metric == metric and from_time <= p.timestamp <= to_time
            ]
        return sorted(points, key=lambda p: p.timestamp, reverse=True)

    def get_latest_data_point(
        self,
        project_id: str,
        metric: str,
        source: DataSource,
    ) -> Optional[DataPoint]:
        with self._lock:
            points = [
                p for p in self._data_points.get(project_id, [])
                if p.metric == metric and p.source == source
            ]
        return max(points, key=lambda p: p.timestamp, default=None)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def save_report(self, report: AccuracyReport) -> None:
        with self._lock:
            if any(r.id == report.id for r in self._reports):
                raise RepositoryError(f"Report {report.id} already stored")
            self._reports.append(report)

    def list_reports(
        self,
        project_id: str,
        metric: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[AccuracyReport]:
        since = ensure_utc(since) if since else None
        with self._lock:
            reports = [
                r for r in self._reports
                if r.project_id == project_id
                and (metric is None or r.metric == metric)
                and (since is None or r.generated_at >= since)
            ]
        reports.sort(key=lambda r: r.generated_at, reverse=True)
        return reports[:limit] if limit else reports

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def get_active_alert(self, project_id: str, alert_type: AlertType) -> Optional[Alert]:
        with self._lock:
            for alert in self._alerts.values():
                if alert.project_id == project_id and alert.type == alert_type and alert.is_active:
                    return alert
        return None

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        with self._lock:
            return self._alerts.get(alert_id)

    def create_alert(self, alert: Alert) -> Alert:
        with self._lock:
            if self.get_active_alert(alert.project_id, alert.type) is not None:
                raise RepositoryError(
                    f"Active {alert.type.value} alert already exists for project {alert.project_id}"
                )
            self._alerts[alert.id] = alert
            return alert

    def update_alert(self, alert: Alert) -> Alert:
        with self._lock:
            if alert.id not in self._alerts:
                raise RepositoryError(f"Alert {alert.id} does not exist")
            self._alerts[alert.id] = alert
            return alert

    def list_alerts(
        self,
        project_id: str,
        since: Optional[datetime] = None,
        active_only: bool = False,
    ) -> List[Alert]:
        since = ensure_utc(since) if since else None
        with self._lock:
            alerts = [
                a for a in self._alerts.values()
                if a.project_id == project_id
                and (not active_only or a.is_active)
                and (since is None or a.triggered_at >= since)
            ]
        return sorted(alerts, key=lambda a: a.triggered_at, reverse=True)
