"""
Accuracy Notification Manager

Turns freshly generated AccuracyReports into alert state transitions.

State machine per (project_id, alert_type):

    NONE ──cross threshold──> ACTIVE ──condition persists──> ACTIVE (refreshed)
                                │
                                └──condition gone──> RESOLVED (immutable history)

A recurrence after RESOLVED creates a new ACTIVE instance. Report-driven
alerts remember which metrics are failing; a report only clears its own
metric, and the alert resolves when none remain. Every
read-check-write runs under a per-key lock so concurrent report processing
cannot create two active alerts for the same key.

Report-driven triggers (defaults, see AlertThresholds):
    confidence_score < 80           -> CONFIDENCE_DROP
    freshness_score  < 70           -> DATA_STALENESS
    any HIGH-severity discrepancy   -> DISCREPANCY

API_LIMIT alerts are raised and cleared explicitly by the sync layer.
Delivery (email, webhooks) is out of scope; consumers read the alert stream.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import AlertThresholds
from .errors import NotFoundError, ValidationError
from .locks import InProcessKeyedLock, KeyedLock, alert_lock_key
from .models import (
    AccuracyReport,
    Alert,
    AlertStatistics,
    AlertType,
    DataSource,
    Severity,
    utcnow,
)
from .repository import AccuracyRepository

logger = logging.getLogger(__name__)

REPORT_ALERT_TYPES = (
    AlertType.CONFIDENCE_DROP,
    AlertType.DATA_STALENESS,
    AlertType.DISCREPANCY,
)

FAILING_METRICS = "failing_metrics"


# ============================================================================
# SEVERITY POLICY
# ============================================================================

def classify_confidence_severity(confidence_score: int) -> Severity:
    """Severity of a confidence drop by how low the score fell."""
    if confidence_score >= 80:
        return Severity.LOW
    elif confidence_score >= 60:
        return Severity.MEDIUM
    elif confidence_score >= 40:
        return Severity.HIGH
    return Severity.CRITICAL


def classify_staleness_severity(freshness_score: int) -> Severity:
    """Completely stale data (freshness 0) is HIGH, anything else MEDIUM."""
    return Severity.HIGH if freshness_score <= 0 else Severity.MEDIUM


@dataclass
class AlertCondition:
    """A threshold crossing found in a report."""
    severity: Severity
    message: str
    data: Dict[str, Any] = field(default_factory=dict)


# ============================================================================
# NOTIFICATION MANAGER
# ============================================================================

class NotificationManager:
    """Alert state machine backed by the accuracy repository."""

    def __init__(
        self,
        repository: AccuracyRepository,
        thresholds: Optional[AlertThresholds] = None,
        lock: Optional[KeyedLock] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.thresholds = thresholds or AlertThresholds()
        self.lock = lock or InProcessKeyedLock()
        self.clock = clock

    # ------------------------------------------------------------------
    # Report processing
    # ------------------------------------------------------------------

    def process_accuracy_report(self, report: AccuracyReport) -> List[Alert]:
        """
        Apply a report to the alert state.

        Returns:
            Alerts created, refreshed or resolved by this call

        Raises:
            NotFoundError: if the report's project does not exist
            RepositoryError: if alert persistence fails
        """
        if report is None:
            raise ValidationError("Accuracy report is required")
        self._require_project(report.project_id)

        settings = self.repository.get_notification_settings(report.project_id)
        thresholds = self.thresholds
        if settings is not None:
            if not settings.enabled:
                logger.info(f"Accuracy alerts disabled for project {report.project_id}")
                return []
            thresholds = thresholds.with_overrides(
                confidence=settings.confidence_threshold,
                freshness=settings.freshness_threshold,
            )

        conditions = self.evaluate(report, thresholds)

        changed = []
        for alert_type in REPORT_ALERT_TYPES:
            alert = self._transition(
                report.project_id,
                alert_type,
                conditions.get(alert_type),
                at=report.generated_at,
                metric=report.metric,
            )
            if alert is not None:
                changed.append(alert)
        return changed

    def evaluate(
        self,
        report: AccuracyReport,
        thresholds: Optional[AlertThresholds] = None,
    ) -> Dict[AlertType, AlertCondition]:
        """Threshold crossings in a report, keyed by alert type. Writes nothing."""
        thresholds = thresholds or self.thresholds
        conditions: Dict[AlertType, AlertCondition] = {}

        if report.confidence_score < thresholds.confidence:
            conditions[AlertType.CONFIDENCE_DROP] = AlertCondition(
                severity=classify_confidence_severity(report.confidence_score),
                message=(
                    f"Confidence score dropped to {report.confidence_score}% for {report.metric} "
                    f"(threshold {thresholds.confidence}%)"
                ),
                data={
                    "confidence_score": report.confidence_score,
                    "threshold": thresholds.confidence,
                    "previous_score": self._previous_confidence_score(report),
                    "report_id": report.id,
                },
            )

        if report.freshness_score < thresholds.freshness:
            newest = max(
                (report.primary_data_point, *report.comparison_data_points),
                key=lambda p: p.timestamp,
            )
            hours_old = round(newest.age_hours(report.generated_at), 1)
            conditions[AlertType.DATA_STALENESS] = AlertCondition(
                severity=classify_staleness_severity(report.freshness_score),
                message=(
                    f"Data for {report.metric} is {hours_old:.0f} hours old "
                    f"(freshness {report.freshness_score}%)"
                ),
                data={
                    "freshness_score": report.freshness_score,
                    "threshold": thresholds.freshness,
                    "hours_old": hours_old,
                    "last_update": newest.timestamp.isoformat(),
                    "report_id": report.id,
                },
            )

        flagged = report.discrepancies_at_least(thresholds.discrepancy_severity)
        if flagged:
            worst = max(flagged, key=lambda d: d.tolerance_ratio)
            severity = (
                Severity.CRITICAL
                if worst.tolerance_ratio > thresholds.critical_discrepancy_ratio
                else Severity.HIGH
            )
            conditions[AlertType.DISCREPANCY] = AlertCondition(
                severity=severity,
                message=(
                    f"Data discrepancy detected for {report.metric}: {worst.source_a.name} vs "
                    f"{worst.source_b.name} differ by {worst.percent_difference * 100:.0f}%"
                ),
                data={
                    "discrepancy_count": len(flagged),
                    "max_percent_difference": worst.percent_difference,
                    "max_tolerance_ratio": worst.tolerance_ratio,
                    "affected_sources": sorted(
                        {d.source_a.name for d in flagged} | {d.source_b.name for d in flagged}
                    ),
                    "report_id": report.id,
                },
            )

        return conditions

    # ------------------------------------------------------------------
    # Explicit alerts
    # ------------------------------------------------------------------

    def record_api_limit(
        self,
        project_id: str,
        source: DataSource,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Alert:
        """Raise or refresh the API_LIMIT alert when a source hits its quota."""
        self._require_project(project_id)
        source = DataSource.parse(source)
        condition = AlertCondition(
            severity=Severity.HIGH,
            message=message or f"{source.name} API limit reached; data for this project may be incomplete",
            data={"source": source.name, **(details or {})},
        )
        return self._transition(project_id, AlertType.API_LIMIT, condition, at=self.clock())

    def clear_api_limit(self, project_id: str) -> Optional[Alert]:
        """Resolve the API_LIMIT alert once the source is reachable again."""
        self._require_project(project_id)
        return self._transition(project_id, AlertType.API_LIMIT, None, at=self.clock())

    def resolve_alert(self, alert_id: str) -> Alert:
        """
        Manually dismiss an alert.

        Idempotent: resolving an already-resolved alert returns it unchanged.
        """
        if not alert_id:
            raise ValidationError("alert_id is required")
        alert = self.repository.get_alert(alert_id)
        if alert is None:
            raise NotFoundError(f"Alert {alert_id} not found", details={"alert_id": alert_id})

        with self.lock.hold(alert_lock_key(alert.project_id, alert.type)):
            current = self.repository.get_alert(alert_id)
            if current is None or not current.is_active:
                return current or alert
            resolved = self.repository.update_alert(current.resolved(self.clock()))

        logger.info(f"Alert {alert_id} ({alert.type.value}) dismissed for project {alert.project_id}")
        return resolved

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_active_alerts(self, project_id: str) -> List[Alert]:
        self._require_project(project_id)
        return self.repository.list_alerts(project_id, active_only=True)

    def count_active_alerts(self, project_id: str) -> Tuple[int, int]:
        """(active alerts, active alerts of HIGH or CRITICAL severity)."""
        active = self.repository.list_alerts(project_id, active_only=True)
        critical = sum(1 for a in active if a.severity.is_critical_issue)
        return len(active), critical

    def get_alert_statistics(self, project_id: str, days: int = 30) -> AlertStatistics:
        """Counts by severity and type for alerts triggered in the last ``days``."""
        if days < 1:
            raise ValidationError("days must be at least 1", details={"days": days})
        self._require_project(project_id)

        since = self.clock() - timedelta(days=days)
        stats = AlertStatistics(project_id=project_id, days=days)
        for alert in self.repository.list_alerts(project_id, since=since):
            stats.total += 1
            if alert.is_active:
                stats.active += 1
            else:
                stats.resolved += 1
            stats.by_severity[alert.severity.value] += 1
            stats.by_type[alert.type.value] += 1
        return stats

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(
        self,
        project_id: str,
        alert_type: AlertType,
        condition: Optional[AlertCondition],
        at: datetime,
        metric: Optional[str] = None,
    ) -> Optional[Alert]:
        """
        Apply one state transition under the key lock. Returns the changed alert.

        Report-driven alerts track the metrics currently failing in
        ``data["failing_metrics"]``. A report for another metric leaves the
        alert alone; the alert resolves once every failing metric has
        recovered.
        """
        with self.lock.hold(alert_lock_key(project_id, alert_type)):
            active = self.repository.get_active_alert(project_id, alert_type)
            if active is not None:
                # Out-of-order reports never move an alert back in time
                at = max(at, active.updated_at or active.triggered_at)

            if condition is None:
                if active is None:
                    return None
                failing = _failing_metrics(active)
                if metric is not None and failing and metric not in failing:
                    return None

                remaining = [m for m in failing if m != metric] if metric is not None else []
                if remaining:
                    updated = self.repository.update_alert(replace(
                        active,
                        updated_at=at,
                        data={**active.data, FAILING_METRICS: remaining},
                    ))
                    logger.info(
                        f"{alert_type.value} alert {active.id} for project {project_id}: "
                        f"{metric} recovered, still failing: {', '.join(remaining)}"
                    )
                    return updated

                resolved = self.repository.update_alert(active.resolved(at))
                logger.info(f"Resolved {alert_type.value} alert {active.id} for project {project_id}")
                return resolved

            if active is None:
                data = dict(condition.data)
                if metric is not None:
                    data[FAILING_METRICS] = [metric]
                created = self.repository.create_alert(Alert(
                    project_id=project_id,
                    type=alert_type,
                    severity=condition.severity,
                    message=condition.message,
                    triggered_at=at,
                    updated_at=at,
                    metric=metric,
                    data=data,
                ))
                logger.warning(
                    f"{alert_type.value} alert raised for project {project_id} "
                    f"[{condition.severity.value}]: {condition.message}"
                )
                return created

            data = dict(condition.data)
            if metric is not None:
                data[FAILING_METRICS] = sorted(set(_failing_metrics(active)) | {metric})
            refreshed = self.repository.update_alert(active.refreshed(
                severity=condition.severity,
                message=condition.message,
                at=at,
                metric=metric,
                data=data,
            ))
            logger.info(f"Refreshed {alert_type.value} alert {active.id} for project {project_id}")
            return refreshed

    def _previous_confidence_score(self, report: AccuracyReport) -> Optional[int]:
        for previous in self.repository.list_reports(report.project_id, report.metric, limit=2):
            if previous.id != report.id:
                return previous.confidence_score
        return None

    def _require_project(self, project_id: str) -> None:
        if not project_id:
            raise ValidationError("project_id is required")
        if self.repository.get_project(project_id) is None:
            raise NotFoundError(f"Project {project_id} not found", details={"project_id": project_id})


def _failing_metrics(alert: Alert) -> List[str]:
    metrics = alert.data.get(FAILING_METRICS)
    if metrics is None:
        return [alert.metric] if alert.metric else []
    return list(metrics)
