"""
Data Accuracy Engine

Single entry point wiring the report builder, notification manager and
status aggregator onto one repository. API routes and batch jobs construct
one engine per unit of work (e.g. per request/session); there is no
module-level instance.

Usage:
    from src.accuracy import DataAccuracyEngine, InMemoryAccuracyRepository

    engine = DataAccuracyEngine(repository)
    report, alerts = engine.generate_and_process("proj-1", "clicks", primary, [comparison])
    status = engine.get_project_accuracy_status("proj-1")
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

from .aggregator import AccuracyStatusAggregator
from .config import AlertThresholds, ScoringConfig
from .errors import AccuracyEngineError, AlertProcessingError
from .locks import KeyedLock
from .models import (
    AccuracyOverview,
    AccuracyReport,
    AccuracyTrend,
    Alert,
    AlertStatistics,
    DataPoint,
    DataSource,
    ProjectAccuracyStatus,
    utcnow,
)
from .notifications import NotificationManager
from .report import AccuracyReportBuilder
from .repository import AccuracyRepository

if TYPE_CHECKING:
    from src.utils.config import Settings

logger = logging.getLogger(__name__)


class DataAccuracyEngine:
    """Facade over the accuracy components sharing one repository."""

    def __init__(
        self,
        repository: AccuracyRepository,
        scoring_config: Optional[ScoringConfig] = None,
        thresholds: Optional[AlertThresholds] = None,
        lock: Optional[KeyedLock] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.scoring_config = scoring_config or ScoringConfig()
        self.thresholds = thresholds or AlertThresholds()

        self.notifications = NotificationManager(
            repository,
            thresholds=self.thresholds,
            lock=lock,
            clock=clock,
        )
        self.reports = AccuracyReportBuilder(
            repository,
            config=self.scoring_config,
            notifications=self.notifications,
            status_window_days=self.thresholds.status_window_days,
            clock=clock,
        )
        self.aggregator = AccuracyStatusAggregator(repository, self.reports)

    @classmethod
    def from_settings(
        cls,
        repository: AccuracyRepository,
        settings: "Settings",
        lock: Optional[KeyedLock] = None,
    ) -> "DataAccuracyEngine":
        return cls(
            repository,
            scoring_config=ScoringConfig.from_settings(settings),
            thresholds=AlertThresholds.from_settings(settings),
            lock=lock,
        )

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def generate_accuracy_report(
        self,
        project_id: str,
        metric: str,
        primary: Optional[DataPoint],
        comparisons: Optional[Sequence[DataPoint]] = None,
    ) -> AccuracyReport:
        return self.reports.generate_accuracy_report(project_id, metric, primary, comparisons)

    def generate_and_process(
        self,
        project_id: str,
        metric: str,
        primary: Optional[DataPoint],
        comparisons: Optional[Sequence[DataPoint]] = None,
    ) -> Tuple[AccuracyReport, List[Alert]]:
        """
        Generate and persist a report, then apply it to the alert state.

        Raises:
            AlertProcessingError: report persisted but alert processing failed
                (the report is attached to the error)
        """
        report = self.generate_accuracy_report(project_id, metric, primary, comparisons)
        return report, self._process_generated(report)

    def generate_report_from_store(
        self,
        project_id: str,
        metric: str,
        primary_source: DataSource,
        lookback_hours: Optional[float] = None,
        process_alerts: bool = True,
    ) -> Tuple[AccuracyReport, List[Alert]]:
        report = self.reports.generate_report_from_store(project_id, metric, primary_source, lookback_hours)
        if not process_alerts:
            return report, []
        return report, self._process_generated(report)

    def get_accuracy_history(
        self,
        project_id: str,
        metric: Optional[str] = None,
        days: int = 30,
    ) -> List[AccuracyReport]:
        return self.reports.get_accuracy_history(project_id, metric, days)

    def get_accuracy_trend(self, project_id: str, metric: str, days: int = 30) -> AccuracyTrend:
        return self.reports.get_accuracy_trend(project_id, metric, days)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_project_accuracy_status(self, project_id: str) -> ProjectAccuracyStatus:
        return self.reports.get_project_accuracy_status(project_id)

    def get_organization_status(self, organization_id: str) -> AccuracyOverview:
        return self.aggregator.get_organization_status(organization_id)

    def get_user_status(self, user_id: str) -> AccuracyOverview:
        return self.aggregator.get_user_status(user_id)

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def process_accuracy_report(self, report: AccuracyReport) -> List[Alert]:
        return self.notifications.process_accuracy_report(report)

    def get_active_alerts(self, project_id: str) -> List[Alert]:
        return self.notifications.get_active_alerts(project_id)

    def get_alert_statistics(self, project_id: str, days: int = 30) -> AlertStatistics:
        return self.notifications.get_alert_statistics(project_id, days)

    def resolve_alert(self, alert_id: str) -> Alert:
        return self.notifications.resolve_alert(alert_id)

    def record_api_limit(
        self,
        project_id: str,
        source: DataSource,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Alert:
        return self.notifications.record_api_limit(project_id, source, message, details)

    def clear_api_limit(self, project_id: str) -> Optional[Alert]:
        return self.notifications.clear_api_limit(project_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _process_generated(self, report: AccuracyReport) -> List[Alert]:
        try:
            return self.notifications.process_accuracy_report(report)
        except AccuracyEngineError as e:
            logger.error(f"Alert processing failed for report {report.id}: {e}")
            raise AlertProcessingError(
                f"Report {report.id} was stored but alert processing failed: {e}",
                report=report,
                cause=e,
            ) from e
