"""
Test Suite for the Notification Manager

Tests the alert state machine: create, refresh, resolve, recurrence,
per-project settings, explicit API limit alerts and concurrent processing.
"""

import threading

import pytest
from datetime import timedelta

from src.accuracy import (
    AlertType,
    DataSource,
    Discrepancy,
    NotFoundError,
    NotificationManager,
    NotificationSettings,
    Severity,
)
from src.accuracy.notifications import (
    classify_confidence_severity,
    classify_staleness_severity,
)


@pytest.fixture
def manager(repository, clock) -> NotificationManager:
    return NotificationManager(repository, clock=clock)


def _discrepancy(ratio: float, severity: Severity = Severity.HIGH) -> Discrepancy:
    return Discrepancy(
        source_a=DataSource.SEARCH_CONSOLE,
        source_b=DataSource.THIRD_PARTY,
        value_a=100,
        value_b=100 + ratio * 15,
        percent_difference=ratio * 0.15,
        absolute_difference=ratio * 15,
        tolerance_ratio=ratio,
        severity=severity,
    )


class TestConfidenceDropLifecycle:
    """Create, refresh, resolve."""

    def test_create_refresh_resolve(self, manager, repository, make_report, now):
        first = manager.process_accuracy_report(make_report(65))

        assert len(first) == 1
        alert = first[0]
        assert alert.type == AlertType.CONFIDENCE_DROP
        assert alert.severity == Severity.MEDIUM
        assert alert.is_active
        assert alert.triggered_at == now

        later = now + timedelta(hours=1)
        second = manager.process_accuracy_report(make_report(70, generated_at=later))

        assert [a.id for a in second] == [alert.id]
        assert second[0].updated_at == later
        assert "70%" in second[0].message
        assert len(repository.list_alerts("proj-1", active_only=True)) == 1

        resolved_at = now + timedelta(hours=2)
        third = manager.process_accuracy_report(make_report(85, generated_at=resolved_at))

        assert [a.id for a in third] == [alert.id]
        assert third[0].resolved_at == resolved_at
        assert manager.get_active_alerts("proj-1") == []

    def test_healthy_reports_after_resolution_do_not_recreate(self, manager, repository, make_report):
        manager.process_accuracy_report(make_report(65))
        manager.process_accuracy_report(make_report(85))

        assert manager.process_accuracy_report(make_report(85)) == []
        assert manager.process_accuracy_report(make_report(85)) == []
        assert len(repository.list_alerts("proj-1")) == 1

    def test_recurrence_creates_new_instance(self, manager, repository, make_report):
        original = manager.process_accuracy_report(make_report(65))[0]
        manager.process_accuracy_report(make_report(85))

        recurrence = manager.process_accuracy_report(make_report(50))[0]

        assert recurrence.id != original.id
        assert recurrence.severity == Severity.HIGH
        assert len(repository.list_alerts("proj-1")) == 2
        assert not repository.get_alert(original.id).is_active

    def test_previous_score_recorded(self, manager, repository, make_report, now):
        repository.save_report(make_report(90, generated_at=now - timedelta(hours=1)))
        current = make_report(65)
        repository.save_report(current)

        alert = manager.process_accuracy_report(current)[0]

        assert alert.data["previous_score"] == 90
        assert alert.data["confidence_score"] == 65
        assert alert.data["threshold"] == 80


class TestMultipleMetrics:
    """Alerts are keyed per type; each report only speaks for its own metric."""

    def test_healthy_other_metric_keeps_alert(self, manager, repository, make_report, now):
        alert = manager.process_accuracy_report(make_report(60))[0]

        healthy = make_report(95, metric="impressions", generated_at=now + timedelta(minutes=1))
        assert manager.process_accuracy_report(healthy) == []

        again = manager.process_accuracy_report(make_report(60, generated_at=now + timedelta(minutes=2)))

        assert [a.id for a in again] == [alert.id]
        assert len(repository.list_alerts("proj-1")) == 1
        assert repository.get_alert(alert.id).is_active

    def test_resolves_when_every_failing_metric_recovers(self, manager, repository, make_report, now):
        alert = manager.process_accuracy_report(make_report(60))[0]
        manager.process_accuracy_report(make_report(55, metric="impressions"))

        assert repository.get_alert(alert.id).data["failing_metrics"] == ["clicks", "impressions"]

        partial = manager.process_accuracy_report(make_report(90, generated_at=now + timedelta(hours=1)))

        assert partial[0].is_active
        assert partial[0].data["failing_metrics"] == ["impressions"]

        done = manager.process_accuracy_report(
            make_report(90, metric="impressions", generated_at=now + timedelta(hours=2))
        )

        assert done[0].id == alert.id
        assert done[0].resolved_at == now + timedelta(hours=2)
        assert len(repository.list_alerts("proj-1")) == 1

    def test_statistics_not_inflated_by_alternating_metrics(self, manager, make_report, now):
        for hour in range(4):
            at = now + timedelta(hours=hour)
            manager.process_accuracy_report(make_report(60, generated_at=at))
            manager.process_accuracy_report(make_report(95, metric="impressions", generated_at=at))

        stats = manager.get_alert_statistics("proj-1", days=30)

        assert stats.total == 1
        assert stats.active == 1


class TestOutOfOrderReports:
    """Late reports never move alert timestamps backwards."""

    def test_refresh_keeps_latest_updated_at(self, manager, make_report, now):
        manager.process_accuracy_report(make_report(65))
        manager.process_accuracy_report(make_report(70, generated_at=now + timedelta(hours=2)))

        late = manager.process_accuracy_report(make_report(68, generated_at=now + timedelta(hours=1)))

        assert late[0].updated_at == now + timedelta(hours=2)

    def test_resolution_is_not_before_last_update(self, manager, make_report, now):
        manager.process_accuracy_report(make_report(65, generated_at=now + timedelta(hours=3)))

        resolved = manager.process_accuracy_report(make_report(90, generated_at=now + timedelta(hours=1)))

        assert resolved[0].resolved_at == now + timedelta(hours=3)


class TestOtherReportAlerts:
    """Staleness and discrepancy alerts."""

    def test_stale_data(self, manager, make_report):
        alerts = manager.process_accuracy_report(make_report(90, freshness=50))

        assert [a.type for a in alerts] == [AlertType.DATA_STALENESS]
        assert alerts[0].severity == Severity.MEDIUM
        assert alerts[0].data["freshness_score"] == 50

    def test_completely_stale_data_is_high(self, manager, make_report):
        alert = manager.process_accuracy_report(make_report(90, freshness=0))[0]

        assert alert.severity == Severity.HIGH

    def test_high_discrepancy(self, manager, make_report):
        alerts = manager.process_accuracy_report(make_report(90, discrepancies=[_discrepancy(5.0)]))

        assert [a.type for a in alerts] == [AlertType.DISCREPANCY]
        assert alerts[0].severity == Severity.HIGH
        assert alerts[0].data["affected_sources"] == ["SEARCH_CONSOLE", "THIRD_PARTY"]

    def test_extreme_discrepancy_is_critical(self, manager, make_report):
        alert = manager.process_accuracy_report(make_report(90, discrepancies=[_discrepancy(9.0)]))[0]

        assert alert.severity == Severity.CRITICAL

    def test_medium_discrepancy_does_not_alert(self, manager, make_report):
        report = make_report(90, discrepancies=[_discrepancy(3.0, Severity.MEDIUM)])

        assert manager.process_accuracy_report(report) == []

    def test_all_conditions_at_once(self, manager, make_report):
        report = make_report(30, freshness=0, discrepancies=[_discrepancy(5.0)])

        alerts = manager.process_accuracy_report(report)

        assert {a.type for a in alerts} == {
            AlertType.CONFIDENCE_DROP,
            AlertType.DATA_STALENESS,
            AlertType.DISCREPANCY,
        }


class TestNotificationSettings:
    """Per-project overrides."""

    def test_disabled_alerts(self, manager, repository, make_report):
        repository.set_notification_settings(NotificationSettings(project_id="proj-1", enabled=False))

        assert manager.process_accuracy_report(make_report(10)) == []
        assert repository.list_alerts("proj-1") == []

    def test_threshold_override(self, manager, repository, make_report):
        repository.set_notification_settings(
            NotificationSettings(project_id="proj-1", confidence_threshold=60)
        )

        assert manager.process_accuracy_report(make_report(65)) == []
        assert len(manager.process_accuracy_report(make_report(55))) == 1

    def test_unknown_project(self, manager, make_report):
        with pytest.raises(NotFoundError):
            manager.process_accuracy_report(make_report(65, project_id="missing"))


class TestExplicitAlerts:
    """API limit alerts and manual resolution."""

    def test_api_limit_raise_refresh_clear(self, manager, make_report):
        first = manager.record_api_limit("proj-1", "DATAFORSEO", details={"retry_after": 3600})
        second = manager.record_api_limit("proj-1", DataSource.THIRD_PARTY)

        assert first.type == AlertType.API_LIMIT
        assert first.data == {"source": "THIRD_PARTY", "retry_after": 3600}
        assert second.id == first.id

        # Healthy reports leave API limit alerts alone
        manager.process_accuracy_report(make_report(95))
        assert [a.type for a in manager.get_active_alerts("proj-1")] == [AlertType.API_LIMIT]

        cleared = manager.clear_api_limit("proj-1")
        assert cleared.id == first.id
        assert not cleared.is_active
        assert manager.clear_api_limit("proj-1") is None

    def test_resolve_alert_is_idempotent(self, manager, make_report):
        alert = manager.process_accuracy_report(make_report(65))[0]

        resolved = manager.resolve_alert(alert.id)
        again = manager.resolve_alert(alert.id)

        assert not resolved.is_active
        assert again.resolved_at == resolved.resolved_at

    def test_resolve_unknown_alert(self, manager):
        with pytest.raises(NotFoundError):
            manager.resolve_alert("missing")


class TestAlertStatistics:
    """Counts by severity and type."""

    def test_statistics(self, manager, make_report, now):
        manager.process_accuracy_report(make_report(65, freshness=50))
        manager.process_accuracy_report(make_report(95))
        manager.record_api_limit("proj-1", DataSource.ANALYTICS)

        stats = manager.get_alert_statistics("proj-1", days=30)

        assert stats.total == 3
        assert stats.active == 1
        assert stats.resolved == 2
        assert stats.by_type["CONFIDENCE_DROP"] == 1
        assert stats.by_type["DATA_STALENESS"] == 1
        assert stats.by_type["API_LIMIT"] == 1
        assert stats.by_type["DISCREPANCY"] == 0
        assert stats.by_severity["MEDIUM"] == 2
        assert stats.by_severity["HIGH"] == 1

    def test_statistics_window(self, manager, make_report, now):
        manager.process_accuracy_report(make_report(30, generated_at=now - timedelta(days=60)))

        assert manager.get_alert_statistics("proj-1", days=30).total == 0
        assert manager.get_alert_statistics("proj-1", days=90).total == 1


class TestConcurrency:
    """Concurrent processing of the same key."""

    def test_parallel_reports_create_one_alert(self, manager, repository, make_report):
        reports = [make_report(65) for _ in range(20)]
        errors = []
        barrier = threading.Barrier(len(reports))

        def worker(report):
            barrier.wait()
            try:
                manager.process_accuracy_report(report)
            except Exception as e:  # collected and asserted below
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(r,)) for r in reports]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(repository.list_alerts("proj-1")) == 1
        assert len(repository.list_alerts("proj-1", active_only=True)) == 1


class TestSeverityPolicy:
    """Alert severity classification."""

    def test_confidence_severity(self):
        assert classify_confidence_severity(79) == Severity.MEDIUM
        assert classify_confidence_severity(80) == Severity.LOW
        assert classify_confidence_severity(60) == Severity.MEDIUM
        assert classify_confidence_severity(59) == Severity.HIGH
        assert classify_confidence_severity(39) == Severity.CRITICAL

    def test_staleness_severity(self):
        assert classify_staleness_severity(0) == Severity.HIGH
        assert classify_staleness_severity(1) == Severity.MEDIUM
