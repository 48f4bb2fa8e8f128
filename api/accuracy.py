"""
API Endpoints for Data Accuracy

Handles:
1. Generate accuracy reports (explicit data points or from stored data)
2. Report history and trends
3. Project, organization and user accuracy status
4. Active alerts, alert statistics and manual resolution
5. API limit alerts raised by the sync connectors
"""

import logging
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from src.accuracy import (
    AccuracyEngineError,
    AlertProcessingError,
    DataAccuracyEngine,
    DataPoint,
    KeyedLock,
    create_keyed_lock,
)
from src.database.repository import SqlAlchemyAccuracyRepository
from src.database.session import get_db
from src.utils.config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/accuracy",
    tags=["Accuracy"],
)


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class DataPointInput(BaseModel):
    """One measurement as submitted by a client."""
    source: str = Field(..., description="SEARCH_CONSOLE, ANALYTICS, THIRD_PARTY, INTERNAL or a provider alias")
    value: float
    timestamp: datetime
    metric: Optional[str] = None
    id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class GenerateReportRequest(BaseModel):
    """Request to score a primary data point against comparisons."""
    metric: Optional[str] = None
    primary_data_point: Optional[DataPointInput] = None
    comparison_data_points: List[DataPointInput] = Field(default_factory=list)


class StoredReportRequest(BaseModel):
    """Request to score the latest stored data for a metric."""
    metric: str
    primary_source: str = "SEARCH_CONSOLE"
    lookback_hours: Optional[float] = Field(default=None, gt=0)


class ApiLimitRequest(BaseModel):
    """Sync connector reporting an exhausted API quota."""
    source: str
    message: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class ReportWithAlertsResponse(BaseModel):
    """Generated report plus the alerts it changed."""
    report: Dict[str, Any]
    alerts: List[Dict[str, Any]]


class ReportListResponse(BaseModel):
    """Report history."""
    reports: List[Dict[str, Any]]
    total: int


class AlertListResponse(BaseModel):
    """Active alerts."""
    alerts: List[Dict[str, Any]]
    total: int


# =============================================================================
# DEPENDENCIES
# =============================================================================

@lru_cache
def get_alert_lock() -> KeyedLock:
    """Process-wide alert lock (shared across requests)."""
    return create_keyed_lock(get_settings())


def get_accuracy_engine(db: Session = Depends(get_db)) -> DataAccuracyEngine:
    """One engine per request, bound to the request's session."""
    return DataAccuracyEngine.from_settings(
        SqlAlchemyAccuracyRepository(db),
        get_settings(),
        lock=get_alert_lock(),
    )


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def to_http_error(error: AccuracyEngineError) -> HTTPException:
    """Map an engine error to an HTTP error with a structured body."""
    if error.http_status >= 500:
        logger.error(f"{error.__class__.__name__}: {error.message}")
    return HTTPException(status_code=error.http_status, detail=error.to_dict())


def _to_data_point(payload: Optional[DataPointInput], metric: Optional[str]) -> Optional[DataPoint]:
    if payload is None:
        return None
    return DataPoint.from_dict(payload.model_dump(exclude_none=True), metric=metric)


# =============================================================================
# REPORT ENDPOINTS
# =============================================================================

@router.post("/projects/{project_id}/reports", response_model=ReportWithAlertsResponse, status_code=201)
def generate_report(
    project_id: str,
    request: GenerateReportRequest,
    engine: DataAccuracyEngine = Depends(get_accuracy_engine),
):
    """Score the submitted data points, store the report and update alerts."""
    try:
        primary = _to_data_point(request.primary_data_point, request.metric)
        comparisons = [_to_data_point(p, request.metric) for p in request.comparison_data_points]
        report, alerts = engine.generate_and_process(project_id, request.metric, primary, comparisons)
    except AlertProcessingError as e:
        # Report is stored; surface its id so the client does not resubmit
        raise HTTPException(
            status_code=e.http_status,
            detail={**e.to_dict(), "report": e.report.to_dict()},
        )
    except AccuracyEngineError as e:
        raise to_http_error(e)

    return ReportWithAlertsResponse(
        report=report.to_dict(),
        alerts=[a.to_dict() for a in alerts],
    )


@router.post("/projects/{project_id}/reports/from-store", response_model=ReportWithAlertsResponse, status_code=201)
def generate_report_from_store(
    project_id: str,
    request: StoredReportRequest,
    engine: DataAccuracyEngine = Depends(get_accuracy_engine),
):
    """Score the latest stored data points for a metric."""
    try:
        report, alerts = engine.generate_report_from_store(
            project_id,
            request.metric,
            request.primary_source,
            lookback_hours=request.lookback_hours,
        )
    except AlertProcessingError as e:
        raise HTTPException(
            status_code=e.http_status,
            detail={**e.to_dict(), "report": e.report.to_dict()},
        )
    except AccuracyEngineError as e:
        raise to_http_error(e)

    return ReportWithAlertsResponse(
        report=report.to_dict(),
        alerts=[a.to_dict() for a in alerts],
    )


@router.get("/projects/{project_id}/reports", response_model=ReportListResponse)
def get_report_history(
    project_id: str,
    metric: Optional[str] = None,
    days: int = Query(30, ge=1, le=365),
    engine: DataAccuracyEngine = Depends(get_accuracy_engine),
):
    """Stored reports for the last ``days`` days, newest first."""
    try:
        reports = engine.get_accuracy_history(project_id, metric, days)
    except AccuracyEngineError as e:
        raise to_http_error(e)
    return ReportListResponse(reports=[r.to_dict() for r in reports], total=len(reports))


@router.get("/projects/{project_id}/trend")
def get_trend(
    project_id: str,
    metric: str,
    days: int = Query(30, ge=1, le=365),
    engine: DataAccuracyEngine = Depends(get_accuracy_engine),
):
    try:
        return engine.get_accuracy_trend(project_id, metric, days).to_dict()
    except AccuracyEngineError as e:
        raise to_http_error(e)


# =============================================================================
# STATUS ENDPOINTS
# =============================================================================

@router.get("/projects/{project_id}/status")
def get_project_status(
    project_id: str,
    engine: DataAccuracyEngine = Depends(get_accuracy_engine),
):
    try:
        return engine.get_project_accuracy_status(project_id).to_dict()
    except AccuracyEngineError as e:
        raise to_http_error(e)


@router.get("/organizations/{organization_id}/status")
def get_organization_status(
    organization_id: str,
    engine: DataAccuracyEngine = Depends(get_accuracy_engine),
):
    try:
        return engine.get_organization_status(organization_id).to_dict()
    except AccuracyEngineError as e:
        raise to_http_error(e)


@router.get("/users/{user_id}/status")
def get_user_status(
    user_id: str,
    engine: DataAccuracyEngine = Depends(get_accuracy_engine),
):
    try:
        return engine.get_user_status(user_id).to_dict()
    except AccuracyEngineError as e:
        raise to_http_error(e)


# =============================================================================
# ALERT ENDPOINTS
# =============================================================================

@router.get("/projects/{project_id}/alerts", response_model=AlertListResponse)
def get_active_alerts(
    project_id: str,
    engine: DataAccuracyEngine = Depends(get_accuracy_engine),
):
    try:
        alerts = engine.get_active_alerts(project_id)
    except AccuracyEngineError as e:
        raise to_http_error(e)
    return AlertListResponse(alerts=[a.to_dict() for a in alerts], total=len(alerts))


@router.get("/projects/{project_id}/alerts/stats")
def get_alert_statistics(
    project_id: str,
    days: int = Query(30, ge=1, le=365),
    engine: DataAccuracyEngine = Depends(get_accuracy_engine),
):
    try:
        return engine.get_alert_statistics(project_id, days).to_dict()
    except AccuracyEngineError as e:
        raise to_http_error(e)


@router.post("/alerts/{alert_id}/resolve")
def resolve_alert(
    alert_id: str,
    engine: DataAccuracyEngine = Depends(get_accuracy_engine),
):
    """Dismiss an alert. Resolving twice is a no-op."""
    try:
        return engine.resolve_alert(alert_id).to_dict()
    except AccuracyEngineError as e:
        raise to_http_error(e)


@router.post("/projects/{project_id}/api-limit", status_code=201)
def record_api_limit(
    project_id: str,
    request: ApiLimitRequest,
    engine: DataAccuracyEngine = Depends(get_accuracy_engine),
):
    try:
        return engine.record_api_limit(project_id, request.source, request.message, request.details).to_dict()
    except AccuracyEngineError as e:
        raise to_http_error(e)


@router.delete("/projects/{project_id}/api-limit")
def clear_api_limit(
    project_id: str,
    engine: DataAccuracyEngine = Depends(get_accuracy_engine),
):
    try:
        alert = engine.clear_api_limit(project_id)
    except AccuracyEngineError as e:
        raise to_http_error(e)
    return {"resolved": alert.to_dict() if alert else None}
