"""
SEO Data Accuracy Engine

Scores how trustworthy a metric value is by cross-checking it against other
sources, flags discrepancies, persists accuracy reports and keeps the
per-project alert state in sync.

Usage:
    from src.accuracy import (
        DataAccuracyEngine, InMemoryAccuracyRepository,
        DataPoint, DataSource, ProjectRef,
    )

    repo = InMemoryAccuracyRepository()
    repo.add_project(ProjectRef(id="proj-1"))

    engine = DataAccuracyEngine(repo)
    report, alerts = engine.generate_and_process(
        "proj-1", "clicks",
        DataPoint(DataSource.SEARCH_CONSOLE, "clicks", 1000, now),
        [DataPoint(DataSource.ANALYTICS, "clicks", 950, now)],
    )
"""

from .aggregator import AccuracyStatusAggregator
from .confidence import ConfidenceScorer
from .config import (
    DEFAULT_METRIC_RULES,
    DEFAULT_SOURCE_WEIGHTS,
    AlertThresholds,
    MetricRule,
    ScoringConfig,
)
from .discrepancy import DiscrepancyDetector, classify_discrepancy_severity
from .engine import DataAccuracyEngine
from .errors import (
    AccuracyEngineError,
    AlertProcessingError,
    NotFoundError,
    RepositoryError,
    ValidationError,
)
from .locks import InProcessKeyedLock, KeyedLock, RedisKeyedLock, create_keyed_lock
from .models import (
    AccuracyOverview,
    AccuracyReport,
    AccuracyTrend,
    Alert,
    AlertStatistics,
    AlertType,
    ConfidenceBreakdown,
    DataPoint,
    DataSource,
    Discrepancy,
    MetricKind,
    NotificationSettings,
    ProjectAccuracyStatus,
    ProjectRef,
    Severity,
)
from .notifications import NotificationManager
from .report import AccuracyReportBuilder
from .repository import AccuracyRepository, InMemoryAccuracyRepository

__all__ = [
    # Engine
    "DataAccuracyEngine",
    # Components
    "ConfidenceScorer",
    "DiscrepancyDetector",
    "AccuracyReportBuilder",
    "AccuracyStatusAggregator",
    "NotificationManager",
    "classify_discrepancy_severity",
    # Configuration
    "ScoringConfig",
    "AlertThresholds",
    "MetricRule",
    "DEFAULT_SOURCE_WEIGHTS",
    "DEFAULT_METRIC_RULES",
    # Storage
    "AccuracyRepository",
    "InMemoryAccuracyRepository",
    # Locks
    "KeyedLock",
    "InProcessKeyedLock",
    "RedisKeyedLock",
    "create_keyed_lock",
    # Models
    "DataPoint",
    "DataSource",
    "MetricKind",
    "Severity",
    "Discrepancy",
    "ConfidenceBreakdown",
    "AccuracyReport",
    "AlertType",
    "Alert",
    "AlertStatistics",
    "NotificationSettings",
    "ProjectRef",
    "ProjectAccuracyStatus",
    "AccuracyOverview",
    "AccuracyTrend",
    # Errors
    "AccuracyEngineError",
    "ValidationError",
    "NotFoundError",
    "RepositoryError",
    "AlertProcessingError",
]
