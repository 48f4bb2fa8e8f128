"""
Pytest Configuration and Shared Fixtures

Provides common fixtures and configuration for all test modules.
"""

import pytest
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from src.accuracy import (
    AccuracyReport,
    DataAccuracyEngine,
    DataPoint,
    DataSource,
    InMemoryAccuracyRepository,
    ProjectRef,
)


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# Clock
# ============================================================================

@pytest.fixture
def now() -> datetime:
    """Fixed reference time shared by data points and the engine clock."""
    return NOW


@pytest.fixture
def clock(now) -> Callable[[], datetime]:
    return lambda: now


# ============================================================================
# Data Point Fixtures
# ============================================================================

@pytest.fixture
def make_point(now) -> Callable[..., DataPoint]:
    """Factory for DataPoints relative to ``now``."""
    def _make(
        value: float,
        source: DataSource = DataSource.SEARCH_CONSOLE,
        metric: str = "clicks",
        hours_old: float = 0,
    ) -> DataPoint:
        return DataPoint(
            source=source,
            metric=metric,
            value=value,
            timestamp=now - timedelta(hours=hours_old),
        )
    return _make


@pytest.fixture
def make_report(now, make_point) -> Callable[..., AccuracyReport]:
    """Factory for reports with a given confidence, bypassing the scorer."""
    def _make(
        confidence: int,
        project_id: str = "proj-1",
        freshness: int = 100,
        metric: str = "clicks",
        generated_at: Optional[datetime] = None,
        discrepancies=(),
        is_accurate: bool = True,
    ) -> AccuracyReport:
        return AccuracyReport(
            project_id=project_id,
            metric=metric,
            generated_at=generated_at or now,
            primary_data_point=make_point(100, metric=metric),
            comparison_data_points=(),
            confidence_score=confidence,
            freshness_score=freshness,
            discrepancies=tuple(discrepancies),
            is_accurate=is_accurate,
        )
    return _make


# ============================================================================
# Repository & Engine Fixtures
# ============================================================================

@pytest.fixture
def repository() -> InMemoryAccuracyRepository:
    """In-memory repository with one organization and two projects."""
    repo = InMemoryAccuracyRepository()
    repo.add_organization("org-1", member_user_ids=["user-member"])
    repo.add_project(ProjectRef(
        id="proj-1",
        organization_id="org-1",
        owner_user_id="user-owner",
        name="Main site",
        is_connected=True,
    ))
    repo.add_project(ProjectRef(
        id="proj-2",
        organization_id="org-1",
        owner_user_id="user-owner",
        name="Blog",
        is_connected=False,
    ))
    return repo


@pytest.fixture
def engine(repository, clock) -> DataAccuracyEngine:
    return DataAccuracyEngine(repository, clock=clock)
