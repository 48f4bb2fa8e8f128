"""
Accuracy Report Builder

Orchestrates the confidence scorer and discrepancy detector for one
(project, metric) request and persists the resulting AccuracyReport.

The builder never decides which source is authoritative: the caller passes
the primary DataPoint explicitly (or names the primary source when building
from stored data).

Accuracy verdict per report:
    is_accurate = confidence >= 70 and no HIGH-severity discrepancy

Project status (rolling window, default 30 days):
    overall_accuracy   = % of reports judged accurate
    average_confidence = mean confidence_score
    data_freshness     = mean freshness_score
    critical_issues    = active HIGH/CRITICAL alerts
"""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence, TYPE_CHECKING

from .config import ScoringConfig
from .confidence import ConfidenceScorer
from .discrepancy import DiscrepancyDetector
from .errors import NotFoundError, ValidationError
from .helpers import mean
from .models import (
    AccuracyReport,
    AccuracyTrend,
    DataPoint,
    DataSource,
    ProjectAccuracyStatus,
    Severity,
    normalize_metric,
    utcnow,
)
from .repository import AccuracyRepository

if TYPE_CHECKING:
    from .notifications import NotificationManager

logger = logging.getLogger(__name__)

DEFAULT_STATUS_WINDOW_DAYS = 30


class AccuracyReportBuilder:
    """Scores, persists and summarizes accuracy reports."""

    def __init__(
        self,
        repository: AccuracyRepository,
        config: Optional[ScoringConfig] = None,
        scorer: Optional[ConfidenceScorer] = None,
        detector: Optional[DiscrepancyDetector] = None,
        notifications: Optional["NotificationManager"] = None,
        status_window_days: int = DEFAULT_STATUS_WINDOW_DAYS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.config = config or ScoringConfig()
        self.scorer = scorer or ConfidenceScorer(self.config)
        self.detector = detector or DiscrepancyDetector(self.config)
        self.notifications = notifications
        self.status_window_days = status_window_days
        self.clock = clock

    # ------------------------------------------------------------------
    # Report generation
    # ------------------------------------------------------------------

    def build_report(
        self,
        project_id: str,
        metric: str,
        primary: Optional[DataPoint],
        comparisons: Optional[Sequence[DataPoint]] = None,
        now: Optional[datetime] = None,
    ) -> AccuracyReport:
        """Score without persisting. Validates inputs first."""
        metric = self._validate_request(project_id, metric, primary, comparisons)
        comparisons = tuple(comparisons or ())
        now = now or self.clock()

        breakdown = self.scorer.score(primary, comparisons, now=now, metric=metric)
        discrepancies = tuple(self.detector.detect(primary, comparisons, metric=metric))
        freshness_score = self.scorer.freshness_score((primary, *comparisons), now, metric)

        is_accurate = (
            breakdown.score >= self.config.accurate_threshold
            and not any(d.severity == Severity.HIGH for d in discrepancies)
        )

        return AccuracyReport(
            project_id=project_id,
            metric=metric,
            generated_at=now,
            primary_data_point=primary,
            comparison_data_points=comparisons,
            confidence_score=breakdown.score,
            freshness_score=freshness_score,
            discrepancies=discrepancies,
            breakdown=breakdown,
            is_accurate=is_accurate,
        )

    def generate_accuracy_report(
        self,
        project_id: str,
        metric: str,
        primary: Optional[DataPoint],
        comparisons: Optional[Sequence[DataPoint]] = None,
    ) -> AccuracyReport:
        """
        Score a primary data point against its comparisons and persist the report.

        Raises:
            ValidationError: missing project_id, metric or primary
            NotFoundError: project does not exist
            RepositoryError: the report could not be persisted
        """
        self._validate_request(project_id, metric, primary, comparisons)
        self._require_project(project_id)

        report = self.build_report(project_id, metric, primary, comparisons)
        self.repository.save_report(report)

        logger.info(
            f"Accuracy report {report.id} for {project_id}/{report.metric}: "
            f"confidence={report.confidence_score} freshness={report.freshness_score} "
            f"discrepancies={len(report.discrepancies)}"
        )
        return report

    def generate_report_from_store(
        self,
        project_id: str,
        metric: str,
        primary_source: DataSource,
        lookback_hours: Optional[float] = None,
    ) -> AccuracyReport:
        """
        Build a report from stored data points.

        The latest point of ``primary_source`` is the primary; the latest point
        of every other source inside the lookback window is a comparison.
        Lookback defaults to 3× the metric's max age.
        """
        if not project_id:
            raise ValidationError("project_id is required")
        if not metric or not metric.strip():
            raise ValidationError("metric is required")
        primary_source = DataSource.parse(primary_source)
        metric = normalize_metric(metric)
        self._require_project(project_id)

        primary = self.repository.get_latest_data_point(project_id, metric, primary_source)
        if primary is None:
            raise NotFoundError(
                f"No {primary_source.name} data for {metric} in project {project_id}",
                details={"project_id": project_id, "metric": metric, "source": primary_source.name},
            )

        rule = self.config.rule_for(metric)
        lookback = lookback_hours or rule.max_age_hours * self.config.hard_floor_multiplier
        now = self.clock()
        window = self.repository.get_data_points(project_id, metric, now - timedelta(hours=lookback), now)

        latest_by_source = {}
        for point in window:  # newest first
            if point.source != primary_source and point.source not in latest_by_source:
                latest_by_source[point.source] = point
        comparisons = [latest_by_source[s] for s in DataSource if s in latest_by_source]

        return self.generate_accuracy_report(project_id, metric, primary, comparisons)

    # ------------------------------------------------------------------
    # History & trends
    # ------------------------------------------------------------------

    def get_accuracy_history(
        self,
        project_id: str,
        metric: Optional[str] = None,
        days: int = 30,
        limit: Optional[int] = None,
    ) -> List[AccuracyReport]:
        """Persisted reports from the last ``days`` days, newest first."""
        if days < 1:
            raise ValidationError("days must be at least 1", details={"days": days})
        self._require_project(project_id)

        since = self.clock() - timedelta(days=days)
        return self.repository.list_reports(
            project_id,
            metric=normalize_metric(metric) if metric else None,
            since=since,
            limit=limit,
        )

    def get_accuracy_trend(self, project_id: str, metric: str, days: int = 30) -> AccuracyTrend:
        """First vs. last report in the window plus discrepancy counts per source."""
        if not metric or not metric.strip():
            raise ValidationError("metric is required")
        metric = normalize_metric(metric)
        reports = self.get_accuracy_history(project_id, metric, days)
        if not reports:
            return AccuracyTrend(project_id=project_id, metric=metric, days=days, report_count=0)

        oldest, newest = reports[-1], reports[0]
        by_source = Counter(
            d.source_b.name for report in reports for d in report.discrepancies
        )
        return AccuracyTrend(
            project_id=project_id,
            metric=metric,
            days=days,
            report_count=len(reports),
            first_confidence=oldest.confidence_score,
            last_confidence=newest.confidence_score,
            confidence_delta=newest.confidence_score - oldest.confidence_score,
            first_freshness=oldest.freshness_score,
            last_freshness=newest.freshness_score,
            freshness_delta=newest.freshness_score - oldest.freshness_score,
            discrepancies_by_source=dict(by_source),
        )

    # ------------------------------------------------------------------
    # Project status
    # ------------------------------------------------------------------

    def compute_project_status(self, project_id: str) -> ProjectAccuracyStatus:
        """Unrounded status over the rolling window (used by roll-ups)."""
        self._require_project(project_id)

        since = self.clock() - timedelta(days=self.status_window_days)
        reports = self.repository.list_reports(project_id, since=since)

        active_alerts, critical_issues = 0, 0
        if self.notifications is not None:
            active_alerts, critical_issues = self.notifications.count_active_alerts(project_id)

        if not reports:
            return ProjectAccuracyStatus(
                project_id=project_id,
                critical_issues=critical_issues,
                active_alerts=active_alerts,
            )

        accurate = sum(1 for r in reports if r.is_accurate)
        return ProjectAccuracyStatus(
            project_id=project_id,
            overall_accuracy=accurate / len(reports) * 100,
            average_confidence=mean(r.confidence_score for r in reports),
            data_freshness=mean(r.freshness_score for r in reports),
            critical_issues=critical_issues,
            active_alerts=active_alerts,
            report_count=len(reports),
            last_checked=max(r.generated_at for r in reports),
        )

    def get_project_accuracy_status(self, project_id: str) -> ProjectAccuracyStatus:
        """Current accuracy status, rounded for display."""
        return self.compute_project_status(project_id).rounded()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_request(
        self,
        project_id: str,
        metric: str,
        primary: Optional[DataPoint],
        comparisons: Optional[Sequence[DataPoint]],
    ) -> str:
        missing = []
        if not project_id:
            missing.append("project_id")
        if not isinstance(metric, str) or not metric.strip():
            missing.append("metric")
        if primary is None:
            missing.append("primary_data_point")
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                details={"missing": missing},
            )

        metric = normalize_metric(metric)
        for point in (primary, *(comparisons or ())):
            if not isinstance(point, DataPoint):
                raise ValidationError(f"Expected DataPoint, got {type(point).__name__}")
            if point.metric != metric:
                raise ValidationError(
                    f"Data point {point.id} measures {point.metric!r}, not {metric!r}",
                    details={"data_point_id": point.id, "metric": point.metric},
                )
        return metric

    def _require_project(self, project_id: str) -> None:
        if not project_id:
            raise ValidationError("project_id is required")
        if self.repository.get_project(project_id) is None:
            raise NotFoundError(f"Project {project_id} not found", details={"project_id": project_id})
