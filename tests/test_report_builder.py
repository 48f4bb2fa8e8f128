"""
Test Suite for the Accuracy Report Builder

Tests report generation, persistence, history, trends and project status.
"""

import pytest
from datetime import timedelta

from src.accuracy import (
    AlertProcessingError,
    AlertType,
    DataAccuracyEngine,
    DataSource,
    Discrepancy,
    InMemoryAccuracyRepository,
    NotFoundError,
    ProjectRef,
    RepositoryError,
    Severity,
    ValidationError,
)


class FailingReportRepository(InMemoryAccuracyRepository):
    """Storage that accepts reads but cannot store reports."""

    def save_report(self, report):
        raise RepositoryError("disk full")


class FailingAlertRepository(InMemoryAccuracyRepository):
    """Storage that stores reports but cannot create alerts."""

    def create_alert(self, alert):
        raise RepositoryError("alerts table locked")


class TestGenerateReport:
    """Test generate_accuracy_report."""

    def test_scores_and_persists(self, engine, repository, make_point):
        primary = make_point(100)
        comparison = make_point(110, source=DataSource.ANALYTICS)

        report = engine.generate_accuracy_report("proj-1", "clicks", primary, [comparison])

        assert report.confidence_score == 89
        assert report.freshness_score == 100
        assert report.discrepancies == ()
        assert report.is_accurate is True
        assert report.breakdown.source_coverage == pytest.approx(1.0)
        assert repository.list_reports("proj-1") == [report]

    def test_discrepancies_are_attached(self, engine, make_point):
        primary = make_point(100)
        comparison = make_point(150, source=DataSource.ANALYTICS)

        report = engine.generate_accuracy_report("proj-1", "clicks", primary, [comparison])

        assert len(report.discrepancies) == 1
        assert report.discrepancies[0].severity == Severity.MEDIUM

    def test_high_discrepancy_is_not_accurate_despite_score(self, engine, make_point):
        """Score 81 clears the bar but a HIGH discrepancy still fails the verdict."""
        primary = make_point(100)
        comparisons = [
            make_point(100, source=DataSource.ANALYTICS),
            make_point(100, source=DataSource.INTERNAL),
            make_point(100, source=DataSource.INTERNAL),
            make_point(200, source=DataSource.THIRD_PARTY),
        ]

        report = engine.generate_accuracy_report("proj-1", "clicks", primary, comparisons)

        assert report.confidence_score == 81
        assert report.is_accurate is False

    def test_missing_fields_raise_validation_error(self, engine):
        with pytest.raises(ValidationError) as exc_info:
            engine.generate_accuracy_report("", "", None)

        assert exc_info.value.details["missing"] == ["project_id", "metric", "primary_data_point"]
        assert exc_info.value.http_status == 400

    def test_unknown_project_raises_not_found(self, engine, make_point):
        with pytest.raises(NotFoundError):
            engine.generate_accuracy_report("nope", "clicks", make_point(100))

    def test_metric_mismatch_raises(self, engine, make_point):
        with pytest.raises(ValidationError):
            engine.generate_accuracy_report("proj-1", "clicks", make_point(100, metric="sessions"))

    def test_metric_match_is_case_insensitive(self, engine, make_point):
        report = engine.generate_accuracy_report("proj-1", " Clicks", make_point(100))

        assert report.metric == "clicks"

    def test_metric_casing_shares_one_history(self, engine, make_point):
        engine.generate_accuracy_report("proj-1", "Clicks", make_point(100))
        engine.generate_accuracy_report("proj-1", "clicks", make_point(100, metric="CLICKS"))

        assert len(engine.get_accuracy_history("proj-1", "clicks")) == 2
        assert len(engine.get_accuracy_history("proj-1", "CLICKS")) == 2
        assert engine.get_accuracy_trend("proj-1", "Clicks").report_count == 2

    def test_data_point_metric_is_canonical(self, make_point):
        assert make_point(100, metric=" Impressions ").metric == "impressions"

    def test_persistence_failure_propagates(self, clock, make_point):
        repo = FailingReportRepository()
        repo.add_project(ProjectRef(id="proj-1"))
        engine = DataAccuracyEngine(repo, clock=clock)

        with pytest.raises(RepositoryError):
            engine.generate_accuracy_report("proj-1", "clicks", make_point(100))


class TestGenerateAndProcess:
    """Test report generation followed by alert processing."""

    def test_low_confidence_raises_alert(self, engine, make_point):
        primary = make_point(100, source=DataSource.THIRD_PARTY)

        report, alerts = engine.generate_and_process("proj-1", "clicks", primary)

        assert report.confidence_score == 66
        assert [a.type for a in alerts] == [AlertType.CONFIDENCE_DROP]
        assert alerts[0].data["report_id"] == report.id

    def test_alert_failure_keeps_report(self, clock, make_point):
        repo = FailingAlertRepository()
        repo.add_project(ProjectRef(id="proj-1"))
        engine = DataAccuracyEngine(repo, clock=clock)

        with pytest.raises(AlertProcessingError) as exc_info:
            engine.generate_and_process("proj-1", "clicks", make_point(100, source=DataSource.THIRD_PARTY))

        error = exc_info.value
        assert error.report.confidence_score == 66
        assert isinstance(error.cause, RepositoryError)
        assert repo.list_reports("proj-1") == [error.report]


class TestReportFromStore:
    """Test building reports from stored data points."""

    def test_latest_point_per_source(self, engine, repository, make_point):
        repository.add_data_point("proj-1", make_point(100, hours_old=1))
        repository.add_data_point("proj-1", make_point(50, hours_old=10))
        repository.add_data_point("proj-1", make_point(105, source=DataSource.ANALYTICS, hours_old=2))
        repository.add_data_point("proj-1", make_point(10, source=DataSource.ANALYTICS, hours_old=5))
        # Outside the default lookback (3 × 48h)
        repository.add_data_point("proj-1", make_point(300, source=DataSource.THIRD_PARTY, hours_old=500))

        report, alerts = engine.generate_report_from_store("proj-1", "clicks", DataSource.SEARCH_CONSOLE)

        assert report.primary_data_point.value == 100
        assert [p.value for p in report.comparison_data_points] == [105]
        assert report.discrepancies == ()
        assert alerts == []

    def test_no_primary_data_raises_not_found(self, engine, repository, make_point):
        repository.add_data_point("proj-1", make_point(105, source=DataSource.ANALYTICS))

        with pytest.raises(NotFoundError):
            engine.generate_report_from_store("proj-1", "clicks", "SEARCH_CONSOLE")

    def test_metric_name_is_case_insensitive(self, engine, repository, make_point):
        repository.add_data_point("proj-1", make_point(100, metric="Clicks"))

        report, _ = engine.generate_report_from_store("proj-1", "CLICKS", DataSource.SEARCH_CONSOLE)

        assert report.metric == "clicks"
        assert len(engine.get_accuracy_history("proj-1", "clicks")) == 1


class TestHistoryAndTrend:
    """Test history queries and trends."""

    def test_history_window_and_order(self, engine, repository, make_report, now):
        recent = make_report(90, generated_at=now - timedelta(days=1))
        older = make_report(80, generated_at=now - timedelta(days=10))
        expired = make_report(70, generated_at=now - timedelta(days=40))
        for report in (older, expired, recent):
            repository.save_report(report)

        history = engine.get_accuracy_history("proj-1", days=30)

        assert [r.id for r in history] == [recent.id, older.id]

    def test_history_metric_filter(self, engine, repository, make_report):
        clicks = make_report(90, metric="clicks")
        sessions = make_report(80, metric="sessions")
        repository.save_report(clicks)
        repository.save_report(sessions)

        assert [r.id for r in engine.get_accuracy_history("proj-1", metric="sessions")] == [sessions.id]

    def test_history_rejects_bad_window(self, engine):
        with pytest.raises(ValidationError):
            engine.get_accuracy_history("proj-1", days=0)

    def test_trend(self, engine, repository, make_report, now):
        discrepancy = Discrepancy(
            source_a=DataSource.SEARCH_CONSOLE,
            source_b=DataSource.THIRD_PARTY,
            value_a=100,
            value_b=200,
            percent_difference=1.0,
            absolute_difference=100,
            tolerance_ratio=6.7,
            severity=Severity.HIGH,
        )
        repository.save_report(make_report(60, freshness=50, generated_at=now - timedelta(days=5)))
        repository.save_report(make_report(
            85,
            freshness=90,
            generated_at=now - timedelta(days=1),
            discrepancies=[discrepancy],
        ))

        trend = engine.get_accuracy_trend("proj-1", "clicks", days=30)

        assert trend.report_count == 2
        assert trend.first_confidence == 60
        assert trend.last_confidence == 85
        assert trend.confidence_delta == 25
        assert trend.freshness_delta == 40
        assert trend.discrepancies_by_source == {"THIRD_PARTY": 1}

    def test_trend_without_reports(self, engine):
        trend = engine.get_accuracy_trend("proj-1", "clicks")

        assert trend.report_count == 0
        assert trend.first_confidence is None


class TestProjectStatus:
    """Test get_project_accuracy_status."""

    def test_status_over_window(self, engine, repository, make_report, now):
        repository.save_report(make_report(90, generated_at=now - timedelta(days=1)))
        repository.save_report(make_report(60, generated_at=now - timedelta(days=2), is_accurate=False))
        repository.save_report(make_report(75, freshness=70, generated_at=now - timedelta(days=3)))
        repository.save_report(make_report(10, generated_at=now - timedelta(days=45)))

        status = engine.get_project_accuracy_status("proj-1")

        assert status.report_count == 3
        assert status.overall_accuracy == 67
        assert status.average_confidence == 75
        assert status.data_freshness == 90
        assert status.last_checked == now - timedelta(days=1)

    def test_status_counts_active_alerts(self, engine):
        engine.record_api_limit("proj-1", DataSource.THIRD_PARTY)

        status = engine.get_project_accuracy_status("proj-1")

        assert status.active_alerts == 1
        assert status.critical_issues == 1

    def test_status_without_reports(self, engine):
        status = engine.get_project_accuracy_status("proj-2")

        assert status.report_count == 0
        assert status.average_confidence == 0
        assert status.last_checked is None

    def test_unknown_project(self, engine):
        with pytest.raises(NotFoundError):
            engine.get_project_accuracy_status("missing")
