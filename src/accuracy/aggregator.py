"""
Accuracy Status Aggregator

Rolls project-level accuracy status up to organization-wide and user-wide
overviews. No new scoring: means over the constituent projects, rounded
once at the output.

    connection_rate = connected_projects / total_projects × 100   (0 if no projects)

Projects without any report in the status window count towards
total_projects but not towards the accuracy/confidence means.
"""

import logging
from typing import List

from .errors import NotFoundError, ValidationError
from .helpers import mean, round_half_up
from .models import AccuracyOverview, ProjectRef
from .report import AccuracyReportBuilder
from .repository import AccuracyRepository

logger = logging.getLogger(__name__)


class AccuracyStatusAggregator:
    """Organization and user roll-ups of ProjectAccuracyStatus."""

    def __init__(self, repository: AccuracyRepository, report_builder: AccuracyReportBuilder):
        self.repository = repository
        self.report_builder = report_builder

    def get_organization_status(self, organization_id: str) -> AccuracyOverview:
        if not organization_id:
            raise ValidationError("organization_id is required")

        projects = self.repository.get_organization_projects(organization_id)
        if projects is None:
            raise NotFoundError(
                f"Organization {organization_id} not found",
                details={"organization_id": organization_id},
            )
        return self._summarize("organization", organization_id, projects)

    def get_user_status(self, user_id: str) -> AccuracyOverview:
        if not user_id:
            raise ValidationError("user_id is required")
        return self._summarize("user", user_id, self.repository.get_user_projects(user_id))

    def _summarize(self, scope: str, scope_id: str, projects: List[ProjectRef]) -> AccuracyOverview:
        statuses = [self.report_builder.compute_project_status(p.id) for p in projects]
        reported = [s for s in statuses if s.has_reports]

        total_projects = len(projects)
        connected_projects = sum(1 for p in projects if p.is_connected)
        average_accuracy = mean(s.overall_accuracy for s in reported) or 0.0
        average_confidence = mean(s.average_confidence for s in reported) or 0.0
        connection_rate = connected_projects / total_projects * 100 if total_projects else 0.0

        overview = AccuracyOverview(
            scope=scope,
            scope_id=scope_id,
            total_projects=total_projects,
            connected_projects=connected_projects,
            average_accuracy=round_half_up(average_accuracy),
            average_confidence=round_half_up(average_confidence),
            total_alerts=sum(s.active_alerts for s in statuses),
            connection_rate=round_half_up(connection_rate),
        )
        logger.debug(
            f"{scope} {scope_id}: {total_projects} projects, "
            f"{len(reported)} with reports, confidence {overview.average_confidence}"
        )
        return overview
