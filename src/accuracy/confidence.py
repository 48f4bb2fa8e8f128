"""
Confidence Scorer

Computes a 0-100 confidence score for a primary DataPoint given zero or more
comparison DataPoints for the same metric and time window.

Formula:
    Confidence = round(100 × Source_Weight × (
        Freshness × 0.40 +
        Agreement × 0.60
    ))

    Freshness = max(0, 1 - Age_Hours / Max_Age_Hours)
                (0 when Age_Hours > 3 × Max_Age_Hours)
    Agreement = max(0, 1 - mean(|primary - comp| / max(|primary|, 1)))
                (0.8 when there is nothing to compare against)
"""

import logging
from datetime import datetime
from typing import Iterable, Optional, Sequence

from .config import ScoringConfig
from .errors import ValidationError
from .helpers import clamp, mean, relative_difference, round_half_up
from .models import ConfidenceBreakdown, DataPoint, utcnow

logger = logging.getLogger(__name__)


class ConfidenceScorer:
    """Weighted factor model: source reliability × (freshness, agreement)."""

    def __init__(self, config: Optional[ScoringConfig] = None):
        self.config = config or ScoringConfig()

    # ------------------------------------------------------------------
    # Factors
    # ------------------------------------------------------------------

    def freshness_factor(
        self,
        point: DataPoint,
        now: datetime,
        metric: Optional[str] = None,
    ) -> float:
        """
        Linear decay from 1 (just measured) to 0 at the metric's max age.

        Points from the future (clock skew between sources) count as fresh.
        """
        max_age = self.config.rule_for(metric or point.metric).max_age_hours
        age_hours = point.age_hours(now)

        if age_hours > max_age * self.config.hard_floor_multiplier:
            return 0.0

        return clamp(1 - age_hours / max_age, 0.0, 1.0)

    def freshness_score(
        self,
        points: Iterable[DataPoint],
        now: datetime,
        metric: Optional[str] = None,
    ) -> int:
        """Freshness of the newest contributing point, scaled to 0-100."""
        points = list(points)
        if not points:
            return 0
        newest = max(points, key=lambda p: p.timestamp)
        return int(clamp(round_half_up(100 * self.freshness_factor(newest, now, metric))))

    def agreement_factor(
        self,
        primary: DataPoint,
        comparisons: Sequence[DataPoint],
    ) -> float:
        """1 minus the mean relative difference; neutral when uncorroborated."""
        differences = [relative_difference(primary.value, comp.value) for comp in comparisons]
        average = mean(differences)
        if average is None:
            return self.config.neutral_agreement
        return max(0.0, 1 - average)

    def source_coverage(self, metric: str, points: Iterable[DataPoint]) -> float:
        """Share of the metric's expected sources present among ``points``."""
        expected = set(self.config.rule_for(metric).expected_sources)
        if not expected:
            return 1.0
        present = {p.source for p in points}
        return len(expected & present) / len(expected)

    # ------------------------------------------------------------------
    # Score
    # ------------------------------------------------------------------

    def score(
        self,
        primary: Optional[DataPoint],
        comparisons: Optional[Sequence[DataPoint]] = None,
        now: Optional[datetime] = None,
        metric: Optional[str] = None,
    ) -> ConfidenceBreakdown:
        """
        Score a primary data point against its comparisons.

        Args:
            primary: The value considered authoritative (required)
            comparisons: Values for the same metric from other sources
            now: Reference time for freshness (defaults to current UTC time)
            metric: Metric name (defaults to the primary's metric)

        Returns:
            ConfidenceBreakdown with the integer score and its factors

        Raises:
            ValidationError: if ``primary`` is missing
        """
        if primary is None:
            raise ValidationError("Primary data point is required for confidence scoring")

        comparisons = list(comparisons or [])
        now = now or utcnow()
        metric = metric or primary.metric

        reliability = self.config.weight_for(primary.source)
        freshness = self.freshness_factor(primary, now, metric)
        agreement = self.agreement_factor(primary, comparisons)

        raw = 100 * reliability * (
            self.config.freshness_weight * freshness
            + self.config.agreement_weight * agreement
        )
        score = int(clamp(round_half_up(raw)))

        breakdown = ConfidenceBreakdown(
            score=score,
            reliability=reliability,
            freshness=freshness,
            agreement=agreement,
            source_coverage=self.source_coverage(metric, [primary, *comparisons]),
            comparisons=len(comparisons),
        )
        logger.debug(
            f"Confidence for {metric} ({primary.source.name}): {score} "
            f"[reliability={reliability:.2f}, freshness={freshness:.2f}, agreement={agreement:.2f}]"
        )
        return breakdown

    def calculate_confidence_score(
        self,
        primary: Optional[DataPoint],
        comparisons: Optional[Sequence[DataPoint]] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """Integer confidence score only."""
        return self.score(primary, comparisons, now=now).score
