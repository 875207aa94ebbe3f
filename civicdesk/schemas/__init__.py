# Canonical Schemas for Civic Desk
# Reports, the people who file them, and the agents who triage them.

from .report import (
    Report,
    ReportStatus,
    STATUS_LABELS,
    Media,
    MediaKind,
    MediaUpload,
    Comment,
)
from .identity import Identity, StoredIdentity, SessionRecord, Role

__all__ = [
    # Report
    "Report",
    "ReportStatus",
    "STATUS_LABELS",
    "Media",
    "MediaKind",
    "MediaUpload",
    "Comment",
    # Identity
    "Identity",
    "StoredIdentity",
    "SessionRecord",
    "Role",
]
