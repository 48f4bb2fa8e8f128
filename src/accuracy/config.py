"""
Accuracy Scoring Configuration

Tunable tables for the confidence model, discrepancy tolerances and alert
thresholds. The defaults are hand-tuned starting points, not derived
constants; every one of them can be overridden per deployment.

Source reliability (prior weight per source):
    SEARCH_CONSOLE  0.95   first-party Google data
    ANALYTICS       0.92   first-party, sampling and consent gaps
    INTERNAL        0.85   our own rank tracker / crawler
    THIRD_PARTY     0.75   SERP APIs, backlink indexes

Composite:
    score = round(100 * weight * (0.4 * freshness + 0.6 * agreement))
"""

from dataclasses import dataclass, field, replace
from typing import Dict, Mapping, Optional, Tuple, TYPE_CHECKING

from .models import DataSource, MetricKind, Severity, normalize_metric

if TYPE_CHECKING:
    from src.utils.config import Settings


# ============================================================================
# SOURCE RELIABILITY
# ============================================================================

DEFAULT_SOURCE_WEIGHTS: Dict[DataSource, float] = {
    DataSource.SEARCH_CONSOLE: 0.95,
    DataSource.ANALYTICS: 0.92,
    DataSource.INTERNAL: 0.85,
    DataSource.THIRD_PARTY: 0.75,
}


# ============================================================================
# METRIC RULES
# ============================================================================

@dataclass(frozen=True)
class MetricRule:
    """How a metric is compared and how quickly it goes stale."""
    kind: MetricKind
    tolerance: float  # relative (0.15 = 15%) for COUNT, absolute positions for RANKING
    max_age_hours: Optional[float] = None  # None follows ScoringConfig.default_max_age_hours
    expected_sources: Tuple[DataSource, ...] = (DataSource.SEARCH_CONSOLE,)

    @property
    def is_ranking(self) -> bool:
        return self.kind == MetricKind.RANKING


_GSC_GA = (DataSource.SEARCH_CONSOLE, DataSource.ANALYTICS)
_RANK_SOURCES = (DataSource.SEARCH_CONSOLE, DataSource.THIRD_PARTY, DataSource.INTERNAL)
_LINK_SOURCES = (DataSource.THIRD_PARTY, DataSource.INTERNAL)

COUNT_TOLERANCE = 0.15
RANKING_TOLERANCE = 2.0

DEFAULT_METRIC_RULES: Dict[str, MetricRule] = {
    # Daily traffic counts (max age follows default_max_age_hours)
    "clicks": MetricRule(MetricKind.COUNT, COUNT_TOLERANCE, None, _GSC_GA),
    "organic_clicks": MetricRule(MetricKind.COUNT, COUNT_TOLERANCE, None, _GSC_GA),
    "impressions": MetricRule(MetricKind.COUNT, COUNT_TOLERANCE, None, (DataSource.SEARCH_CONSOLE,)),
    "organic_impressions": MetricRule(MetricKind.COUNT, COUNT_TOLERANCE, None, (DataSource.SEARCH_CONSOLE,)),
    "ctr": MetricRule(MetricKind.COUNT, COUNT_TOLERANCE, None, (DataSource.SEARCH_CONSOLE,)),
    "sessions": MetricRule(MetricKind.COUNT, COUNT_TOLERANCE, None, (DataSource.ANALYTICS,)),
    "page_views": MetricRule(MetricKind.COUNT, COUNT_TOLERANCE, None, (DataSource.ANALYTICS,)),
    "bounce_rate": MetricRule(MetricKind.COUNT, COUNT_TOLERANCE, None, (DataSource.ANALYTICS,)),

    # Rankings (daily)
    "position": MetricRule(MetricKind.RANKING, RANKING_TOLERANCE, None, _RANK_SOURCES),
    "keyword_position": MetricRule(MetricKind.RANKING, RANKING_TOLERANCE, None, _RANK_SOURCES),
    "average_position": MetricRule(MetricKind.RANKING, RANKING_TOLERANCE, None, _RANK_SOURCES),

    # Link metrics refresh weekly
    "backlinks": MetricRule(MetricKind.COUNT, COUNT_TOLERANCE, 168, _LINK_SOURCES),
    "referring_domains": MetricRule(MetricKind.COUNT, COUNT_TOLERANCE, 168, _LINK_SOURCES),
    "domain_rating": MetricRule(MetricKind.COUNT, COUNT_TOLERANCE, 168, (DataSource.THIRD_PARTY,)),
}


# ============================================================================
# SCORING CONFIG
# ============================================================================

@dataclass(frozen=True)
class ScoringConfig:
    """Weights and tables for the confidence scorer and discrepancy detector."""
    source_weights: Mapping[DataSource, float] = field(
        default_factory=lambda: dict(DEFAULT_SOURCE_WEIGHTS), hash=False
    )
    metric_rules: Mapping[str, MetricRule] = field(
        default_factory=lambda: dict(DEFAULT_METRIC_RULES), hash=False
    )
    default_max_age_hours: float = 48.0  # daily metrics and unknown metrics
    default_tolerance: float = COUNT_TOLERANCE
    freshness_weight: float = 0.4
    agreement_weight: float = 0.6
    neutral_agreement: float = 0.8
    hard_floor_multiplier: float = 3.0
    accurate_threshold: int = 70

    def __post_init__(self):
        if abs(self.freshness_weight + self.agreement_weight - 1.0) > 1e-9:
            raise ValueError("freshness_weight and agreement_weight must sum to 1")
        for source, weight in self.source_weights.items():
            if not 0 <= weight <= 1:
                raise ValueError(f"Source weight for {source.name} must be within [0, 1]")
        if self.default_max_age_hours <= 0:
            raise ValueError("default_max_age_hours must be positive")

    def rule_for(self, metric: str) -> MetricRule:
        """
        Metric rule by name (case-insensitive); unknown metrics are count-like.

        Rules without their own max age get ``default_max_age_hours``.
        """
        rule = self.metric_rules.get(normalize_metric(metric))
        if rule is not None:
            if rule.max_age_hours is None:
                return replace(rule, max_age_hours=self.default_max_age_hours)
            return rule
        return MetricRule(
            kind=MetricKind.COUNT,
            tolerance=self.default_tolerance,
            max_age_hours=self.default_max_age_hours,
        )

    def weight_for(self, source: DataSource) -> float:
        return self.source_weights.get(source, min(self.source_weights.values(), default=0.5))

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ScoringConfig":
        return cls(
            default_max_age_hours=settings.ACCURACY_DEFAULT_MAX_AGE_HOURS,
            accurate_threshold=settings.ACCURACY_ACCURATE_THRESHOLD,
        )


# ============================================================================
# ALERT THRESHOLDS
# ============================================================================

@dataclass(frozen=True)
class AlertThresholds:
    """When a report turns into an alert."""
    confidence: int = 80            # CONFIDENCE_DROP below this
    freshness: int = 70             # DATA_STALENESS below this
    discrepancy_severity: Severity = Severity.HIGH
    critical_discrepancy_ratio: float = 8.0  # worst ratio above this -> CRITICAL
    status_window_days: int = 30

    def with_overrides(
        self,
        confidence: Optional[int] = None,
        freshness: Optional[int] = None,
    ) -> "AlertThresholds":
        return AlertThresholds(
            confidence=self.confidence if confidence is None else confidence,
            freshness=self.freshness if freshness is None else freshness,
            discrepancy_severity=self.discrepancy_severity,
            critical_discrepancy_ratio=self.critical_discrepancy_ratio,
            status_window_days=self.status_window_days,
        )

    @classmethod
    def from_settings(cls, settings: "Settings") -> "AlertThresholds":
        return cls(
            confidence=settings.ACCURACY_CONFIDENCE_ALERT_THRESHOLD,
            freshness=settings.ACCURACY_FRESHNESS_ALERT_THRESHOLD,
            status_window_days=settings.ACCURACY_STATUS_WINDOW_DAYS,
        )
