"""
Public API Routes

Read-only endpoints for the report feed. No session needed.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response

from ..core import CivicDeskError, ReportService
from ..schemas import Report, ReportStatus
from ..web.deps import get_reports, to_http


router = APIRouter(prefix="/api/public", tags=["Public API"])


# Default cache for public read endpoints (30 seconds)
CACHE_CONTROL_PUBLIC = "public, max-age=30"


def parse_status_filter(status: Optional[str]) -> Optional[ReportStatus]:
    """
    Parse a status query parameter.

    Absent, empty or "all" means no status filter.
    """
    if not status or status == "all":
        return None
    try:
        return ReportStatus(status)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown status: {status}")


def parse_report_id(report_id: str) -> UUID:
    try:
        return UUID(report_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid report ID")


@router.get("/reports", response_model=list[Report])
def list_reports(
    response: Response,
    q: str = "",
    status: Optional[str] = None,
    reports: ReportService = Depends(get_reports),
):
    """
    The public feed, most recently updated first.

    q matches title, description or location (case-insensitive);
    status narrows to one status.
    """
    status_filter = parse_status_filter(status)
    response.headers["Cache-Control"] = CACHE_CONTROL_PUBLIC
    return reports.list_reports(query=q, status=status_filter)


@router.get("/reports/{report_id}", response_model=Report)
def get_report(
    report_id: str,
    response: Response,
    reports: ReportService = Depends(get_reports),
):
    """Get one report with its media and comments."""
    rid = parse_report_id(report_id)
    try:
        report = reports.get_report(rid)
    except CivicDeskError as e:
        raise to_http(e)
    response.headers["Cache-Control"] = CACHE_CONTROL_PUBLIC
    return report
