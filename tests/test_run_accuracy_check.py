"""
Test Suite for the Accuracy Check Runner

Runs the command-line entry point end to end against in-memory SQLite.
"""

import pytest
from datetime import datetime, timedelta, timezone
from sqlalchemy.orm import sessionmaker

from scripts import run_accuracy_check as runner
from src.accuracy import DataPoint, DataSource
from src.database import (
    AccuracyAlertRecord,
    AccuracyReportRecord,
    Project,
    SqlAlchemyAccuracyRepository,
    create_db_engine,
    init_db,
)
from src.database import session as db_session


@pytest.fixture
def db_engine(monkeypatch):
    """Point the global session factory at a fresh in-memory database."""
    engine = create_db_engine("sqlite://")
    init_db(engine=engine)
    monkeypatch.setattr(db_session, "_engine", engine)
    monkeypatch.setattr(db_session, "_SessionLocal", None)
    yield engine
    engine.dispose()


@pytest.fixture
def seeded(db_engine):
    """One connected project with fresh Search Console and Analytics clicks."""
    session = sessionmaker(bind=db_engine, expire_on_commit=False)()
    session.add(Project(id="proj-1", name="Main site", is_connected=True))
    session.commit()

    repo = SqlAlchemyAccuracyRepository(session)
    now = datetime.now(timezone.utc)
    repo.add_data_point("proj-1", DataPoint(DataSource.SEARCH_CONSOLE, "clicks", 100, now - timedelta(minutes=5)))
    repo.add_data_point("proj-1", DataPoint(DataSource.ANALYTICS, "clicks", 105, now - timedelta(minutes=10)))

    yield session
    session.close()


class TestRunAccuracyCheck:
    """Exit codes and persisted results."""

    def test_accurate_metric_exits_zero(self, seeded, capsys):
        exit_code = runner.run_accuracy_check("proj-1", ["clicks"])

        assert exit_code == 0
        assert seeded.query(AccuracyReportRecord).count() == 1
        assert seeded.query(AccuracyAlertRecord).count() == 0

        output = capsys.readouterr().out
        assert "clicks" in output
        assert "OK" in output
        assert "Project status" in output

    def test_metric_without_primary_data_exits_one(self, seeded):
        exit_code = runner.run_accuracy_check("proj-1", ["clicks", "sessions"])

        assert exit_code == 1
        # The metric that had data is still scored
        assert seeded.query(AccuracyReportRecord).count() == 1

    def test_unknown_project_exits_one(self, seeded):
        assert runner.run_accuracy_check("missing", ["clicks"]) == 1

    def test_main_parses_arguments(self, seeded, monkeypatch):
        monkeypatch.setattr(
            "sys.argv",
            ["run_accuracy_check.py", "proj-1", "Clicks", "--primary-source", "ANALYTICS"],
        )

        with pytest.raises(SystemExit) as exc_info:
            runner.main()

        assert exc_info.value.code == 0
        report = seeded.query(AccuracyReportRecord).one()
        assert report.metric == "clicks"
