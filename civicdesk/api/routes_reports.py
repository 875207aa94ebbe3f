"""
Report Command Routes

Creating reports, commenting and status triage, plus the agent dashboard.

Security:
- Session cookie required for every endpoint
- Role read from the identity store on each request, not from the cookie
- CSRF double-submit check on writes when enforced
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..core import CivicDeskError, ReportService
from ..schemas import Comment, Identity, MediaUpload, Report
from ..web.deps import get_reports, require_agent, require_identity, to_http, verify_csrf
from .routes_public import parse_report_id, parse_status_filter


router = APIRouter(prefix="/api/reports", tags=["Reports API"])
agent_router = APIRouter(prefix="/api/agent", tags=["Agent API"])


# ============================================================
# Request/Response Models
# ============================================================

class CreateReportRequest(BaseModel):
    title: str
    description: str
    location: str
    media: list[MediaUpload] = Field(default_factory=list)


class CommentRequest(BaseModel):
    text: str


class StatusRequest(BaseModel):
    status: str


class DashboardStats(BaseModel):
    total: int
    pending: int
    watched: int
    observed: int
    success: int


class DashboardResponse(BaseModel):
    stats: DashboardStats
    reports: list[Report]


# ============================================================
# Command Endpoints
# ============================================================

@router.post(
    "",
    response_model=Report,
    status_code=201,
    dependencies=[Depends(verify_csrf)],
)
def create_report(
    body: CreateReportRequest,
    identity: Identity = Depends(require_identity),
    reports: ReportService = Depends(get_reports),
):
    """Submit a new problem report. It starts pending."""
    try:
        return reports.create_report(
            title=body.title,
            description=body.description,
            location=body.location,
            actor=identity,
            media=body.media,
        )
    except CivicDeskError as e:
        raise to_http(e)


@router.post(
    "/{report_id}/comments",
    response_model=Comment,
    status_code=201,
    dependencies=[Depends(verify_csrf)],
)
def add_comment(
    report_id: str,
    body: CommentRequest,
    identity: Identity = Depends(require_identity),
    reports: ReportService = Depends(get_reports),
):
    """Comment on a report. Any logged-in identity may comment."""
    rid = parse_report_id(report_id)
    try:
        return reports.add_comment(rid, body.text, actor=identity)
    except CivicDeskError as e:
        raise to_http(e)


@router.patch(
    "/{report_id}/status",
    response_model=Report,
    dependencies=[Depends(verify_csrf)],
)
def update_status(
    report_id: str,
    body: StatusRequest,
    identity: Identity = Depends(require_identity),
    reports: ReportService = Depends(get_reports),
):
    """Change a report's status. Municipality agents only."""
    rid = parse_report_id(report_id)
    try:
        return reports.update_status(rid, body.status, actor=identity)
    except CivicDeskError as e:
        raise to_http(e)


# ============================================================
# Agent Dashboard
# ============================================================

@agent_router.get("/dashboard", response_model=DashboardResponse)
def dashboard(
    status: Optional[str] = None,
    identity: Identity = Depends(require_agent),
    reports: ReportService = Depends(get_reports),
):
    """
    Status counts over every report, plus the feed narrowed to one status.
    """
    status_filter = parse_status_filter(status)
    try:
        stats, items = reports.dashboard(identity, status=status_filter)
    except CivicDeskError as e:
        raise to_http(e)
    return DashboardResponse(stats=DashboardStats(**stats), reports=items)
