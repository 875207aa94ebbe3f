"""
Report Service - Report Lifecycle

Reports are created pending, triaged by agents, commented on by anyone
logged in, and never deleted.

Rules (enforced in code):
- Title, description and location are required
- Only identities with UPDATE_STATUS (agents) can change status
- Any status can move to any other status, including back to pending
- Status changes and comments refresh updated_at
- updated_at never goes backwards and never precedes created_at
- Comments are append-only

No status history is kept. The comment list is the only trail, and it
is not linked to status changes.
"""

from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Union
from uuid import UUID, uuid4

from ..db.store import RecordNotFoundError, ReportStore
from ..observability import get_logger, get_metrics
from ..schemas import Comment, Identity, MediaUpload, Report, ReportStatus
from .errors import NotFoundError, ValidationError
from .feed import filter_reports, sort_feed, status_counts
from .media import build_media
from .permissions import Capability, require_capability


logger = get_logger(__name__)

PROBLEM_NOT_FOUND = "Problem not found"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReportService:
    """
    The core report service.

    Handles business rules and the status workflow. Storage is delegated
    to a ReportStore implementation.

    TIMESTAMP GUARANTEES:
    - created_at == updated_at on creation
    - Every mutation stamps max(now, previous updated_at), so a clock
      step backwards cannot reorder the feed or break updated_at >= created_at
    - Comment timestamps never precede the previous comment
    """

    def __init__(
        self,
        store: Optional[ReportStore] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            store: ReportStore implementation. If None, an InMemoryReportStore.
            clock: Source of timezone-aware "now" (injectable for tests).
        """
        if store is None:
            from ..db.store import InMemoryReportStore
            store = InMemoryReportStore()

        self._store = store
        self._clock = clock

    @property
    def store(self) -> ReportStore:
        """Get the underlying report store."""
        return self._store

    @property
    def report_count(self) -> int:
        return self._store.count()

    def _now_after(self, previous: datetime) -> datetime:
        now = self._clock()
        return now if now > previous else previous

    # ================================================================
    # QUERIES
    # ================================================================

    def get_report(self, report_id: UUID) -> Report:
        """Get a report or raise NotFoundError."""
        report = self._store.get_by_id(report_id)
        if report is None:
            raise NotFoundError(PROBLEM_NOT_FOUND)
        return report

    def list_reports(
        self,
        query: str = "",
        status: Optional[ReportStatus] = None,
    ) -> list[Report]:
        """
        The public feed: most recently updated first, optionally filtered
        by a search string and a status.
        """
        return filter_reports(sort_feed(self._store.list_all()), query=query, status=status)

    def dashboard(
        self,
        actor: Optional[Identity],
        status: Optional[ReportStatus] = None,
    ) -> tuple[dict[str, int], list[Report]]:
        """
        Agent dashboard: counts over all reports plus the (optionally
        status-filtered) feed.
        """
        require_capability(actor, Capability.VIEW_DASHBOARD)
        reports = sort_feed(self._store.list_all())
        return status_counts(reports), filter_reports(reports, status=status)

    # ================================================================
    # COMMANDS
    # ================================================================

    def create_report(
        self,
        title: str,
        description: str,
        location: str,
        actor: Optional[Identity],
        media: Optional[Iterable[MediaUpload]] = None,
    ) -> Report:
        """
        Register a new report.

        The report starts pending with no comments; the author is the actor.
        """
        require_capability(actor, Capability.CREATE_REPORT)

        title = (title or "").strip()
        description = (description or "").strip()
        location = (location or "").strip()
        if not title or not description or not location:
            raise ValidationError(
                "Missing information: title, description and location are required"
            )

        attachments = [build_media(m) for m in (media or [])]

        now = self._clock()
        report = Report(
            id=uuid4(),
            title=title,
            description=description,
            location=location,
            status=ReportStatus.PENDING,
            created_at=now,
            updated_at=now,
            author_id=actor.id,
            author_name=actor.name,
            media=attachments,
            comments=[],
        )
        self._store.create(report)

        get_metrics().increment("reports_created")
        logger.info(
            "Report created",
            report_id=str(report.id),
            author_id=str(actor.id),
            media_count=len(attachments),
        )
        return report

    def update_status(
        self,
        report_id: UUID,
        status: Union[ReportStatus, str],
        actor: Optional[Identity],
    ) -> Report:
        """
        Set a report's status.

        Only agents may do this. Any transition is allowed, including
        setting the current status again (which refreshes updated_at).
        """
        require_capability(actor, Capability.UPDATE_STATUS)

        try:
            new_status = ReportStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown status: {status}")

        previous: dict[str, ReportStatus] = {}

        def apply(report: Report) -> Report:
            previous["status"] = report.status
            return report.model_copy(update={
                "status": new_status,
                "updated_at": self._now_after(report.updated_at),
            })

        try:
            updated = self._store.update(report_id, apply)
        except RecordNotFoundError:
            raise NotFoundError(PROBLEM_NOT_FOUND)

        old_status = previous["status"]
        get_metrics().increment("status_changes")
        if new_status == ReportStatus.PENDING and old_status != ReportStatus.PENDING:
            # Allowed, but worth a trail: nothing else records the reset
            logger.warning(
                "Report reset to pending",
                report_id=str(report_id),
                previous_status=old_status.value,
                agent_id=str(actor.id),
            )
        else:
            logger.info(
                "Report status changed",
                report_id=str(report_id),
                previous_status=old_status.value,
                status=new_status.value,
                agent_id=str(actor.id),
            )
        return updated

    def add_comment(
        self,
        report_id: UUID,
        text: str,
        actor: Optional[Identity],
    ) -> Comment:
        """
        Append a comment to a report.

        Any logged-in identity may comment on any report. The report's
        updated_at moves forward, bringing it to the top of the feed.
        """
        require_capability(actor, Capability.COMMENT)

        text = (text or "").strip()
        if not text:
            raise ValidationError("Comment text is required")

        created: dict[str, Comment] = {}

        def apply(report: Report) -> Report:
            floor = report.updated_at
            if report.comments:
                floor = max(floor, report.comments[-1].created_at)
            stamp = self._now_after(floor)
            comment = Comment(
                id=uuid4(),
                text=text,
                author_id=actor.id,
                author_name=actor.name,
                created_at=stamp,
            )
            created["comment"] = comment
            return report.model_copy(update={
                "comments": report.comments + [comment],
                "updated_at": stamp,
            })

        try:
            self._store.update(report_id, apply)
        except RecordNotFoundError:
            raise NotFoundError(PROBLEM_NOT_FOUND)

        comment = created["comment"]
        get_metrics().increment("comments_added")
        logger.info(
            "Comment added",
            report_id=str(report_id),
            comment_id=str(comment.id),
            author_id=str(actor.id),
        )
        return comment

    def import_report(self, report: Report) -> Report:
        """
        Store a fully formed report as-is (seeding and migrations).

        Bypasses the workflow rules; schema invariants still apply.
        """
        return self._store.create(report)
