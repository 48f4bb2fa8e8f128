"""
Discrepancy Detector

Compares a primary DataPoint against each comparison DataPoint and flags the
pairs whose values diverge beyond the metric's tolerance.

Tolerance rules (per metric, see config.DEFAULT_METRIC_RULES):
    COUNT metrics (clicks, impressions, ...): 15% relative to the primary
    RANKING metrics (position, ...):          2 absolute positions

Severity from Difference / Tolerance:
    <= 1×:    no record
    1× - 2×:  LOW
    2× - 4×:  MEDIUM
    > 4×:     HIGH

Relative differences always use the primary value as the reference
(denominator max(|primary|, 1)). The absolute difference is symmetric.
"""

import logging
from typing import Dict, List, Optional, Sequence

from .config import MetricRule, ScoringConfig
from .errors import ValidationError
from .helpers import absolute_difference, relative_difference
from .models import DataPoint, Discrepancy, Severity

logger = logging.getLogger(__name__)


SEVERITY_RATIO_THRESHOLDS: Dict[Severity, float] = {
    Severity.LOW: 1.0,     # above tolerance
    Severity.MEDIUM: 2.0,  # above 2× tolerance
    Severity.HIGH: 4.0,    # above 4× tolerance
}

DISCREPANCY_EXPLANATIONS: Dict[Severity, str] = {
    Severity.LOW: "Minor variance just outside the accepted tolerance",
    Severity.MEDIUM: "Moderate variance requiring attention",
    Severity.HIGH: "Significant variance indicating data quality or tracking issues",
}


def classify_discrepancy_severity(tolerance_ratio: float) -> Optional[Severity]:
    """Severity for a difference expressed in multiples of the tolerance."""
    if tolerance_ratio > SEVERITY_RATIO_THRESHOLDS[Severity.HIGH]:
        return Severity.HIGH
    elif tolerance_ratio > SEVERITY_RATIO_THRESHOLDS[Severity.MEDIUM]:
        return Severity.MEDIUM
    elif tolerance_ratio > SEVERITY_RATIO_THRESHOLDS[Severity.LOW]:
        return Severity.LOW
    return None


class DiscrepancyDetector:
    """Tolerance-based divergence detection, deterministic in its inputs."""

    def __init__(self, config: Optional[ScoringConfig] = None):
        self.config = config or ScoringConfig()

    def tolerance_ratio(
        self,
        primary: DataPoint,
        comparison: DataPoint,
        rule: MetricRule,
    ) -> float:
        if rule.tolerance <= 0:
            return float("inf") if primary.value != comparison.value else 0.0

        if rule.is_ranking:
            difference = absolute_difference(primary.value, comparison.value)
        else:
            difference = relative_difference(primary.value, comparison.value)
        return difference / rule.tolerance

    def compare(
        self,
        primary: DataPoint,
        comparison: DataPoint,
        metric: Optional[str] = None,
    ) -> Optional[Discrepancy]:
        """Discrepancy record for one pair, or None when within tolerance."""
        rule = self.config.rule_for(metric or primary.metric)
        ratio = self.tolerance_ratio(primary, comparison, rule)
        severity = classify_discrepancy_severity(ratio)
        if severity is None:
            return None

        return Discrepancy(
            source_a=primary.source,
            source_b=comparison.source,
            value_a=primary.value,
            value_b=comparison.value,
            percent_difference=relative_difference(primary.value, comparison.value),
            absolute_difference=absolute_difference(primary.value, comparison.value),
            tolerance_ratio=ratio,
            severity=severity,
            explanation=DISCREPANCY_EXPLANATIONS[severity],
        )

    def detect(
        self,
        primary: Optional[DataPoint],
        comparisons: Optional[Sequence[DataPoint]] = None,
        metric: Optional[str] = None,
    ) -> List[Discrepancy]:
        """
        One record per comparison that exceeds tolerance, in comparison order.

        Raises:
            ValidationError: if ``primary`` is missing
        """
        if primary is None:
            raise ValidationError("Primary data point is required for discrepancy detection")

        discrepancies = []
        for comparison in comparisons or []:
            discrepancy = self.compare(primary, comparison, metric)
            if discrepancy is not None:
                discrepancies.append(discrepancy)

        if discrepancies:
            logger.debug(
                f"{len(discrepancies)} discrepancies for {metric or primary.metric}: "
                + ", ".join(f"{d.source_b.name}={d.severity.value}" for d in discrepancies)
            )
        return discrepancies
