"""
Accuracy Engine Data Model

Value types shared by the scorer, detector, report builder, notification
manager and aggregator.

Design Principles:
1. Measurements are immutable - a DataPoint is superseded, never edited
2. Reports are immutable - new reports supersede old ones for trends
3. Alerts are versioned - a refresh or resolution produces a new value
4. Validation happens here, at construction, not inside the scoring math
"""

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from .errors import ValidationError
from .helpers import round_half_up


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_metric(metric: str) -> str:
    """Canonical metric name: trimmed and lowercase (' Clicks' -> 'clicks')."""
    return metric.strip().lower()


def parse_timestamp(value: Any, field_name: str = "timestamp") -> datetime:
    """Parse a datetime or ISO-8601 string into an aware UTC datetime."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str) and value.strip():
        try:
            return ensure_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
        except ValueError:
            pass
    raise ValidationError(
        f"Invalid {field_name}: expected datetime or ISO-8601 string",
        details={"field": field_name, "value": str(value)},
    )


# =============================================================================
# ENUMS
# =============================================================================

class DataSource(Enum):
    """Where a measurement came from."""
    SEARCH_CONSOLE = "search_console"
    ANALYTICS = "analytics"
    THIRD_PARTY = "third_party"
    INTERNAL = "internal"

    @classmethod
    def parse(cls, value: Any) -> "DataSource":
        """
        Resolve a source from an enum, its value, its name, or a
        provider-specific name used by the sync connectors.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().upper()
            if key in cls.__members__:
                return cls[key]
            if key in SOURCE_ALIASES:
                return SOURCE_ALIASES[key]
            for member in cls:
                if member.value == value.strip().lower():
                    return member
        raise ValidationError(
            f"Unknown data source: {value!r}",
            details={"field": "source", "allowed": [s.name for s in cls]},
        )


# Provider names as written by the sync connectors
SOURCE_ALIASES: Dict[str, DataSource] = {
    "GOOGLE_SEARCH_CONSOLE": DataSource.SEARCH_CONSOLE,
    "GSC": DataSource.SEARCH_CONSOLE,
    "GOOGLE_ANALYTICS": DataSource.ANALYTICS,
    "GA4": DataSource.ANALYTICS,
    "SERPAPI": DataSource.THIRD_PARTY,
    "DATAFORSEO": DataSource.THIRD_PARTY,
    "AHREFS_API": DataSource.THIRD_PARTY,
    "SEMRUSH_API": DataSource.THIRD_PARTY,
    "MOZ_API": DataSource.THIRD_PARTY,
    "INTERNAL_CRAWLER": DataSource.INTERNAL,
    "RANK_TRACKER": DataSource.INTERNAL,
}


class Severity(Enum):
    """Severity shared by discrepancies and alerts."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @property
    def is_critical_issue(self) -> bool:
        """HIGH and CRITICAL count as critical issues in status summaries."""
        return self.rank >= _SEVERITY_RANK[Severity.HIGH]


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class AlertType(Enum):
    """Kinds of accuracy problems the notification manager tracks."""
    CONFIDENCE_DROP = "CONFIDENCE_DROP"
    DATA_STALENESS = "DATA_STALENESS"
    DISCREPANCY = "DISCREPANCY"
    API_LIMIT = "API_LIMIT"


ALERT_TITLES: Dict[AlertType, str] = {
    AlertType.CONFIDENCE_DROP: "Data Confidence Alert",
    AlertType.DATA_STALENESS: "Stale Data Alert",
    AlertType.DISCREPANCY: "Data Discrepancy Alert",
    AlertType.API_LIMIT: "Data Source Limit Alert",
}


class MetricKind(Enum):
    """Decides which tolerance rule applies to a metric."""
    COUNT = "count"        # clicks, impressions, sessions - relative tolerance
    RANKING = "ranking"    # positions - absolute tolerance


# =============================================================================
# MEASUREMENTS
# =============================================================================

@dataclass(frozen=True)
class DataPoint:
    """One observed metric value from one source at one time."""
    source: DataSource
    metric: str
    value: float
    timestamp: datetime
    id: str = field(default_factory=lambda: str(uuid4()))
    metadata: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "source", DataSource.parse(self.source))

        if not isinstance(self.metric, str) or not self.metric.strip():
            raise ValidationError("Data point metric is required", details={"field": "metric"})
        object.__setattr__(self, "metric", normalize_metric(self.metric))

        if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
            raise ValidationError(
                "Data point value must be numeric",
                details={"field": "value", "value": repr(self.value)},
            )
        if not math.isfinite(self.value):
            raise ValidationError(
                "Data point value must be finite",
                details={"field": "value", "value": repr(self.value)},
            )

        object.__setattr__(self, "timestamp", parse_timestamp(self.timestamp))

        if not self.id:
            object.__setattr__(self, "id", str(uuid4()))

    def age_hours(self, now: datetime) -> float:
        """Hours between the measured event and ``now`` (negative if in the future)."""
        return (ensure_utc(now) - self.timestamp).total_seconds() / 3600

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source.name,
            "metric": self.metric,
            "value": self.value,
            "timestamp": self.timestamp.isoformat(),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], metric: Optional[str] = None) -> "DataPoint":
        """
        Build a DataPoint from a loosely-typed payload.

        ``metric`` fills in the metric when the payload omits it (API bodies
        usually name the metric once for the whole request).
        """
        if not isinstance(data, dict):
            raise ValidationError("Data point must be an object")

        missing = [
            name for name in ("source", "value", "timestamp")
            if data.get(name) is None
        ]
        if missing:
            raise ValidationError(
                f"Data point is missing required fields: {', '.join(missing)}",
                details={"missing": missing},
            )

        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ValidationError("Data point metadata must be an object", details={"field": "metadata"})

        return cls(
            id=data.get("id") or str(uuid4()),
            source=data["source"],
            metric=data.get("metric") or metric or "",
            value=data["value"],
            timestamp=data["timestamp"],
            metadata=metadata,
        )


# =============================================================================
# SCORING OUTPUT
# =============================================================================

@dataclass(frozen=True)
class Discrepancy:
    """A comparison pair whose values diverge beyond the metric tolerance."""
    source_a: DataSource
    source_b: DataSource
    value_a: float
    value_b: float
    percent_difference: float    # |a - b| / max(|a|, 1), a = primary
    absolute_difference: float   # |a - b|
    tolerance_ratio: float       # difference / tolerance (>1 by construction)
    severity: Severity
    explanation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_a": self.source_a.name,
            "source_b": self.source_b.name,
            "value_a": self.value_a,
            "value_b": self.value_b,
            "percent_difference": self.percent_difference,
            "absolute_difference": self.absolute_difference,
            "tolerance_ratio": self.tolerance_ratio,
            "severity": self.severity.value,
            "explanation": self.explanation,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Discrepancy":
        return cls(
            source_a=DataSource.parse(data["source_a"]),
            source_b=DataSource.parse(data["source_b"]),
            value_a=data["value_a"],
            value_b=data["value_b"],
            percent_difference=data["percent_difference"],
            absolute_difference=data.get("absolute_difference", abs(data["value_a"] - data["value_b"])),
            tolerance_ratio=data.get("tolerance_ratio", 0.0),
            severity=Severity(data["severity"]),
            explanation=data.get("explanation", ""),
        )


@dataclass(frozen=True)
class ConfidenceBreakdown:
    """Factors behind a confidence score (each 0-1, score 0-100)."""
    score: int
    reliability: float
    freshness: float
    agreement: float
    source_coverage: float
    comparisons: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "reliability": round(self.reliability, 4),
            "freshness": round(self.freshness, 4),
            "agreement": round(self.agreement, 4),
            "source_coverage": round(self.source_coverage, 4),
            "comparisons": self.comparisons,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConfidenceBreakdown":
        return cls(
            score=int(data["score"]),
            reliability=float(data["reliability"]),
            freshness=float(data["freshness"]),
            agreement=float(data["agreement"]),
            source_coverage=float(data.get("source_coverage", 0.0)),
            comparisons=int(data.get("comparisons", 0)),
        )


@dataclass(frozen=True)
class AccuracyReport:
    """Result of one scoring run for a (project, metric) pair."""
    project_id: str
    metric: str
    generated_at: datetime
    primary_data_point: DataPoint
    comparison_data_points: Tuple[DataPoint, ...]
    confidence_score: int
    freshness_score: int
    discrepancies: Tuple[Discrepancy, ...] = ()
    breakdown: Optional[ConfidenceBreakdown] = None
    is_accurate: bool = True
    id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def sources(self) -> List[DataSource]:
        """Distinct contributing sources, primary first."""
        seen: List[DataSource] = []
        for point in (self.primary_data_point, *self.comparison_data_points):
            if point.source not in seen:
                seen.append(point.source)
        return seen

    @property
    def worst_discrepancy(self) -> Optional[Discrepancy]:
        if not self.discrepancies:
            return None
        return max(self.discrepancies, key=lambda d: (d.severity.rank, d.tolerance_ratio))

    def discrepancies_at_least(self, severity: Severity) -> List[Discrepancy]:
        return [d for d in self.discrepancies if d.severity.rank >= severity.rank]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "metric": self.metric,
            "generated_at": self.generated_at.isoformat(),
            "primary_data_point": self.primary_data_point.to_dict(),
            "comparison_data_points": [p.to_dict() for p in self.comparison_data_points],
            "confidence_score": self.confidence_score,
            "freshness_score": self.freshness_score,
            "discrepancies": [d.to_dict() for d in self.discrepancies],
            "breakdown": self.breakdown.to_dict() if self.breakdown else None,
            "is_accurate": self.is_accurate,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccuracyReport":
        breakdown = data.get("breakdown")
        return cls(
            id=data["id"],
            project_id=data["project_id"],
            metric=data["metric"],
            generated_at=parse_timestamp(data["generated_at"], "generated_at"),
            primary_data_point=DataPoint.from_dict(data["primary_data_point"]),
            comparison_data_points=tuple(
                DataPoint.from_dict(p) for p in data.get("comparison_data_points", [])
            ),
            confidence_score=int(data["confidence_score"]),
            freshness_score=int(data["freshness_score"]),
            discrepancies=tuple(Discrepancy.from_dict(d) for d in data.get("discrepancies", [])),
            breakdown=ConfidenceBreakdown.from_dict(breakdown) if breakdown else None,
            is_accurate=bool(data.get("is_accurate", True)),
        )


# =============================================================================
# ALERTS
# =============================================================================

@dataclass(frozen=True)
class Alert:
    """
    A detected accuracy problem for a project.

    Active while ``resolved_at`` is None. Refreshing or resolving produces a
    new value with the same ``id``; resolved alerts are history.
    """
    project_id: str
    type: AlertType
    severity: Severity
    message: str
    triggered_at: datetime
    id: str = field(default_factory=lambda: str(uuid4()))
    metric: Optional[str] = None
    updated_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    data: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @property
    def is_active(self) -> bool:
        return self.resolved_at is None

    @property
    def title(self) -> str:
        return ALERT_TITLES.get(self.type, "Data Quality Alert")

    def refreshed(
        self,
        severity: Severity,
        message: str,
        at: datetime,
        metric: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> "Alert":
        return replace(
            self,
            severity=severity,
            message=message,
            metric=metric or self.metric,
            updated_at=at,
            data=dict(data) if data is not None else dict(self.data),
        )

    def resolved(self, at: datetime) -> "Alert":
        return replace(self, resolved_at=at, updated_at=at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "type": self.type.value,
            "title": self.title,
            "severity": self.severity.value,
            "metric": self.metric,
            "message": self.message,
            "data": dict(self.data),
            "triggered_at": self.triggered_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "is_active": self.is_active,
        }


@dataclass(frozen=True)
class NotificationSettings:
    """Per-project alerting overrides. None thresholds fall back to defaults."""
    project_id: str
    enabled: bool = True
    confidence_threshold: Optional[int] = None
    freshness_threshold: Optional[int] = None


@dataclass
class AlertStatistics:
    """Alert counts for a project over a time window."""
    project_id: str
    days: int
    total: int = 0
    active: int = 0
    resolved: int = 0
    by_severity: Dict[str, int] = field(default_factory=lambda: {s.value: 0 for s in Severity})
    by_type: Dict[str, int] = field(default_factory=lambda: {t.value: 0 for t in AlertType})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "days": self.days,
            "total": self.total,
            "active": self.active,
            "resolved": self.resolved,
            "by_severity": dict(self.by_severity),
            "by_type": dict(self.by_type),
        }


# =============================================================================
# STATUS SUMMARIES
# =============================================================================

@dataclass(frozen=True)
class ProjectRef:
    """What the engine needs to know about a project."""
    id: str
    organization_id: Optional[str] = None
    owner_user_id: Optional[str] = None
    name: str = ""
    is_connected: bool = False  # at least one active data source integration


@dataclass(frozen=True)
class ProjectAccuracyStatus:
    """
    Current-state summary for a project.

    Values are kept unrounded so roll-ups can average them without
    compounding rounding error; call ``rounded()`` for display.
    """
    project_id: str
    overall_accuracy: float = 0.0
    average_confidence: float = 0.0
    data_freshness: float = 0.0
    critical_issues: int = 0
    active_alerts: int = 0
    report_count: int = 0
    last_checked: Optional[datetime] = None

    @property
    def has_reports(self) -> bool:
        return self.report_count > 0

    def rounded(self) -> "ProjectAccuracyStatus":
        return replace(
            self,
            overall_accuracy=round_half_up(self.overall_accuracy),
            average_confidence=round_half_up(self.average_confidence),
            data_freshness=round_half_up(self.data_freshness),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "overall_accuracy": self.overall_accuracy,
            "average_confidence": self.average_confidence,
            "data_freshness": self.data_freshness,
            "critical_issues": self.critical_issues,
            "active_alerts": self.active_alerts,
            "report_count": self.report_count,
            "last_checked": self.last_checked.isoformat() if self.last_checked else None,
        }


@dataclass(frozen=True)
class AccuracyOverview:
    """Organization-wide or user-wide accuracy roll-up."""
    scope: str  # "organization" or "user"
    scope_id: str
    total_projects: int
    connected_projects: int
    average_accuracy: float
    average_confidence: float
    total_alerts: int
    connection_rate: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scope": self.scope,
            "scope_id": self.scope_id,
            "total_projects": self.total_projects,
            "connected_projects": self.connected_projects,
            "average_accuracy": self.average_accuracy,
            "average_confidence": self.average_confidence,
            "total_alerts": self.total_alerts,
            "connection_rate": self.connection_rate,
        }


@dataclass(frozen=True)
class AccuracyTrend:
    """How a metric's accuracy moved over a window of reports."""
    project_id: str
    metric: str
    days: int
    report_count: int
    first_confidence: Optional[int] = None
    last_confidence: Optional[int] = None
    confidence_delta: int = 0
    first_freshness: Optional[int] = None
    last_freshness: Optional[int] = None
    freshness_delta: int = 0
    discrepancies_by_source: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "metric": self.metric,
            "days": self.days,
            "report_count": self.report_count,
            "first_confidence": self.first_confidence,
            "last_confidence": self.last_confidence,
            "confidence_delta": self.confidence_delta,
            "first_freshness": self.first_freshness,
            "last_freshness": self.last_freshness,
            "freshness_delta": self.freshness_delta,
            "discrepancies_by_source": dict(self.discrepancies_by_source),
        }
