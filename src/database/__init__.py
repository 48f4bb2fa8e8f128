"""
Accuracy Database Layer

Usage:
    from src.database import init_db, get_db_context, SqlAlchemyAccuracyRepository

    init_db()

    with get_db_context() as db:
        repo = SqlAlchemyAccuracyRepository(db)
        status_reports = repo.list_reports("proj-1")
"""

# Models
from .models import (
    Base,
    Organization,
    OrganizationMember,
    Project,
    DataPointRecord,
    AccuracyReportRecord,
    AccuracyAlertRecord,
    NotificationSettingsRecord,
)

# Session management
from .session import (
    get_db,
    get_db_context,
    init_db,
    check_db_connection,
    create_db_engine,
    get_engine,
    get_session_factory,
)

# Repository
from .repository import SqlAlchemyAccuracyRepository

__all__ = [
    # Models
    "Base",
    "Organization",
    "OrganizationMember",
    "Project",
    "DataPointRecord",
    "AccuracyReportRecord",
    "AccuracyAlertRecord",
    "NotificationSettingsRecord",
    # Session
    "get_db",
    "get_db_context",
    "init_db",
    "check_db_connection",
    "create_db_engine",
    "get_engine",
    "get_session_factory",
    # Repository
    "SqlAlchemyAccuracyRepository",
]
