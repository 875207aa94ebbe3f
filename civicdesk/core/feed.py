"""
Feed queries over an in-memory list of reports.

Plain linear scans: the feed is small and lives in memory. No indexing,
no pagination.
"""

from typing import Iterable, Optional

from ..schemas import Report, ReportStatus


def sort_feed(reports: Iterable[Report]) -> list[Report]:
    """Most recently updated first."""
    return sorted(reports, key=lambda r: r.updated_at, reverse=True)


def matches_query(report: Report, query: str) -> bool:
    """Case-insensitive substring match on title, description or location."""
    if not query:
        return True
    needle = query.lower()
    return (
        needle in report.title.lower()
        or needle in report.description.lower()
        or needle in report.location.lower()
    )


def filter_reports(
    reports: Iterable[Report],
    query: str = "",
    status: Optional[ReportStatus] = None,
) -> list[Report]:
    """
    Apply the feed's search box and status filter.

    Order of the input is preserved.
    """
    return [
        r for r in reports
        if matches_query(r, query) and (status is None or r.status == status)
    ]


def status_counts(reports: Iterable[Report]) -> dict[str, int]:
    """Totals for the agent dashboard: total plus one entry per status."""
    counts = {"total": 0}
    counts.update({s.value: 0 for s in ReportStatus})
    for r in reports:
        counts["total"] += 1
        counts[r.status.value] += 1
    return counts
