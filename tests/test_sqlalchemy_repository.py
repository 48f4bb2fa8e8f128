"""
Test Suite for the SQLAlchemy Repository

Runs the engine end to end against in-memory SQLite.
"""

import pytest
from datetime import timedelta
from sqlalchemy.orm import sessionmaker

from src.accuracy import (
    Alert,
    AlertType,
    DataAccuracyEngine,
    DataSource,
    RepositoryError,
    Severity,
)
from src.database import (
    NotificationSettingsRecord,
    Organization,
    OrganizationMember,
    Project,
    SqlAlchemyAccuracyRepository,
    create_db_engine,
    init_db,
)


@pytest.fixture
def db():
    engine = create_db_engine("sqlite://")
    init_db(engine=engine)
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()

    session.add(Organization(id="org-1", name="Acme"))
    session.add(OrganizationMember(organization_id="org-1", user_id="alice"))
    session.add(Project(id="proj-1", organization_id="org-1", name="Main site", is_connected=True))
    session.add(Project(id="proj-2", organization_id="org-1", name="Blog"))
    session.add(Project(id="proj-3", owner_user_id="bob", name="Side project", is_connected=True))
    session.commit()

    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def repo(db) -> SqlAlchemyAccuracyRepository:
    return SqlAlchemyAccuracyRepository(db)


@pytest.fixture
def sql_engine(repo, clock) -> DataAccuracyEngine:
    return DataAccuracyEngine(repo, clock=clock)


class TestProjects:
    """Project and membership lookups."""

    def test_get_project(self, repo):
        project = repo.get_project("proj-1")

        assert project.organization_id == "org-1"
        assert project.is_connected is True
        assert repo.get_project("missing") is None

    def test_organization_projects(self, repo):
        assert sorted(p.id for p in repo.get_organization_projects("org-1")) == ["proj-1", "proj-2"]
        assert repo.get_organization_projects("org-missing") is None

    def test_user_projects(self, repo):
        assert sorted(p.id for p in repo.get_user_projects("alice")) == ["proj-1", "proj-2"]
        assert [p.id for p in repo.get_user_projects("bob")] == ["proj-3"]
        assert repo.get_user_projects("nobody") == []

    def test_notification_settings(self, db, repo):
        db.add(NotificationSettingsRecord(project_id="proj-1", enabled=False, confidence_threshold=50))
        db.commit()

        settings = repo.get_notification_settings("proj-1")

        assert settings.enabled is False
        assert settings.confidence_threshold == 50
        assert repo.get_notification_settings("proj-2") is None


class TestDataPoints:
    """Data point queries."""

    def test_window_and_latest(self, repo, make_point, now):
        repo.add_data_point("proj-1", make_point(100, hours_old=1))
        repo.add_data_point("proj-1", make_point(90, hours_old=30))
        repo.add_data_point("proj-1", make_point(105, source=DataSource.ANALYTICS, hours_old=2))

        window = repo.get_data_points("proj-1", "clicks", now - timedelta(hours=24), now)
        latest = repo.get_latest_data_point("proj-1", "clicks", DataSource.SEARCH_CONSOLE)

        assert [p.value for p in window] == [100, 105]
        assert latest.value == 100
        assert latest.timestamp == now - timedelta(hours=1)
        assert latest.timestamp.tzinfo is not None


class TestReports:
    """Report persistence through the engine."""

    def test_report_round_trip(self, sql_engine, repo, make_point):
        primary = make_point(100)
        comparison = make_point(150, source=DataSource.ANALYTICS)

        report = sql_engine.generate_accuracy_report("proj-1", "clicks", primary, [comparison])
        stored = repo.list_reports("proj-1")

        assert len(stored) == 1
        assert stored[0].id == report.id
        assert stored[0].generated_at == report.generated_at
        assert stored[0].confidence_score == report.confidence_score
        assert stored[0].discrepancies == report.discrepancies
        assert stored[0].breakdown == report.breakdown
        assert stored[0].primary_data_point == primary

    def test_duplicate_report_rejected(self, sql_engine, repo, make_point):
        report = sql_engine.generate_accuracy_report("proj-1", "clicks", make_point(100))

        with pytest.raises(RepositoryError):
            repo.save_report(report)

        # Session is usable after the rollback
        assert len(repo.list_reports("proj-1")) == 1

    def test_history_filters(self, repo, make_report, now):
        repo.save_report(make_report(90, generated_at=now - timedelta(days=1)))
        repo.save_report(make_report(80, metric="sessions", generated_at=now - timedelta(days=2)))
        repo.save_report(make_report(70, generated_at=now - timedelta(days=40)))

        recent = repo.list_reports("proj-1", since=now - timedelta(days=30))
        clicks = repo.list_reports("proj-1", metric="clicks", limit=1)

        assert [r.confidence_score for r in recent] == [90, 80]
        assert [r.confidence_score for r in clicks] == [90]

    def test_project_status(self, sql_engine, make_point):
        sql_engine.generate_and_process("proj-1", "clicks", make_point(100))

        status = sql_engine.get_project_accuracy_status("proj-1")

        assert status.report_count == 1
        assert status.average_confidence == 84
        assert status.active_alerts == 0


class TestAlerts:
    """Alert persistence and the single-active-alert index."""

    def test_alert_lifecycle(self, sql_engine, repo, make_report, now):
        created = sql_engine.process_accuracy_report(make_report(65))[0]
        sql_engine.process_accuracy_report(make_report(70, generated_at=now + timedelta(hours=1)))
        sql_engine.process_accuracy_report(make_report(90, generated_at=now + timedelta(hours=2)))

        stored = repo.get_alert(created.id)

        assert stored.type == AlertType.CONFIDENCE_DROP
        assert stored.resolved_at == now + timedelta(hours=2)
        assert "70%" in stored.message
        assert repo.list_alerts("proj-1", active_only=True) == []
        assert len(repo.list_alerts("proj-1")) == 1

    def test_second_active_alert_rejected(self, repo, now):
        first = Alert(
            project_id="proj-1",
            type=AlertType.DISCREPANCY,
            severity=Severity.HIGH,
            message="first",
            triggered_at=now,
        )
        repo.create_alert(first)

        with pytest.raises(RepositoryError):
            repo.create_alert(Alert(
                project_id="proj-1",
                type=AlertType.DISCREPANCY,
                severity=Severity.HIGH,
                message="second",
                triggered_at=now,
            ))

        # A resolved alert does not block a new one
        repo.update_alert(first.resolved(now))
        repo.create_alert(Alert(
            project_id="proj-1",
            type=AlertType.DISCREPANCY,
            severity=Severity.LOW,
            message="third",
            triggered_at=now,
        ))
        assert len(repo.list_alerts("proj-1")) == 2

    def test_update_unknown_alert(self, repo, now):
        with pytest.raises(RepositoryError):
            repo.update_alert(Alert(
                project_id="proj-1",
                type=AlertType.API_LIMIT,
                severity=Severity.HIGH,
                message="ghost",
                triggered_at=now,
            ))

    def test_organization_roll_up(self, sql_engine, make_point):
        sql_engine.generate_and_process("proj-1", "clicks", make_point(100))
        sql_engine.record_api_limit("proj-2", "SERPAPI")

        overview = sql_engine.get_organization_status("org-1")

        assert overview.total_projects == 2
        assert overview.connected_projects == 1
        assert overview.connection_rate == 50
        assert overview.average_confidence == 84
        assert overview.total_alerts == 1
