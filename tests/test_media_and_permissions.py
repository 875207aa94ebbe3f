"""
Tests for attachment validation, the capability table and the in-memory stores.
"""

import base64
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from civicdesk.core import (
    AuthenticationError,
    Capability,
    PermissionDeniedError,
    ValidationError,
    has_capability,
    require_capability,
)
from civicdesk.core.media import MAX_MEDIA_MB, build_media, parse_data_url, validate_avatar
from civicdesk.db.store import (
    DuplicateRecordError,
    InMemoryIdentityStore,
    InMemoryReportStore,
    RecordNotFoundError,
    StoreError,
)
from civicdesk.schemas import (
    Identity,
    MediaKind,
    MediaUpload,
    Report,
    ReportStatus,
    Role,
    StoredIdentity,
)


NOW = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def identity(role: Role) -> Identity:
    return Identity(id=uuid4(), name="Someone", email="someone@example.com", role=role, created_at=NOW)


class TestMedia:
    """Photos and videos attached to reports."""

    def test_parse_base64_data_url(self):
        mime, payload = parse_data_url("data:image/PNG;base64," + base64.b64encode(b"abc").decode())
        assert mime == "image/png"
        assert payload == b"abc"

    def test_parse_plain_data_url(self):
        assert parse_data_url("data:,hello") == ("text/plain", b"hello")

    def test_malformed_data_url(self):
        with pytest.raises(ValidationError, match="Malformed data URL"):
            parse_data_url("data:image/png;base64")

    def test_malformed_base64(self):
        with pytest.raises(ValidationError, match="Malformed base64"):
            parse_data_url("data:image/png;base64,@@@")

    def test_kind_inferred_from_mime(self):
        assert build_media(MediaUpload(url="data:image/jpeg;base64,AAAA")).kind == MediaKind.IMAGE
        assert build_media(MediaUpload(url="data:video/webm;base64,AAAA")).kind == MediaKind.VIDEO

    def test_explicit_kind_wins(self):
        media = build_media(MediaUpload(url="data:image/gif;base64,AAAA", kind=MediaKind.VIDEO))
        assert media.kind == MediaKind.VIDEO

    def test_remote_url_needs_kind(self):
        with pytest.raises(ValidationError, match="Media kind is required"):
            build_media(MediaUpload(url="https://example.com/a.jpg"))

        media = build_media(MediaUpload(url="https://example.com/a.jpg", kind=MediaKind.IMAGE))
        assert media.url == "https://example.com/a.jpg"

    def test_other_schemes_rejected(self):
        with pytest.raises(ValidationError, match="http\\(s\\) URL or a data URL"):
            build_media(MediaUpload(url="file:///etc/passwd", kind=MediaKind.IMAGE))

    def test_size_limit(self):
        limit = MAX_MEDIA_MB * 1024 * 1024
        ok = "data:image/png;base64," + base64.b64encode(b"\0" * limit).decode()
        too_big = "data:image/png;base64," + base64.b64encode(b"\0" * (limit + 1)).decode()

        build_media(MediaUpload(url=ok))
        with pytest.raises(ValidationError, match="Maximum file size is 5MB"):
            build_media(MediaUpload(url=too_big))

    def test_avatar_must_be_image(self):
        with pytest.raises(ValidationError, match="Please upload an image file"):
            validate_avatar("data:video/mp4;base64,AAAA")
        assert validate_avatar("data:image/png;base64,AAAA").startswith("data:image/png")


class TestPermissions:
    """Capability table per role."""

    @pytest.mark.parametrize("capability,citizen_has,agent_has", [
        (Capability.CREATE_REPORT, True, True),
        (Capability.COMMENT, True, True),
        (Capability.UPDATE_STATUS, False, True),
        (Capability.VIEW_DASHBOARD, False, True),
    ])
    def test_capability_table(self, capability, citizen_has, agent_has):
        assert has_capability(identity(Role.CITIZEN), capability) is citizen_has
        assert has_capability(identity(Role.AGENT), capability) is agent_has

    def test_nobody_has_nothing(self):
        assert not has_capability(None, Capability.COMMENT)
        with pytest.raises(AuthenticationError, match="Not authenticated"):
            require_capability(None, Capability.COMMENT)

    def test_denied_message(self):
        with pytest.raises(PermissionDeniedError, match="Only municipality agents can update problem status"):
            require_capability(identity(Role.CITIZEN), Capability.UPDATE_STATUS)

    def test_require_returns_identity(self):
        agent = identity(Role.AGENT)
        assert require_capability(agent, Capability.VIEW_DASHBOARD) is agent


class TestInMemoryStores:
    """Repository behaviour shared with the PostgreSQL stores."""

    @pytest.fixture
    def report(self):
        return Report(
            id=uuid4(),
            title="Pothole",
            description="Deep",
            location="Highway",
            status=ReportStatus.PENDING,
            created_at=NOW,
            updated_at=NOW,
            author_id=uuid4(),
            author_name="John Doe",
        )

    @pytest.fixture
    def stored_identity(self):
        return StoredIdentity(
            id=uuid4(),
            name="John Doe",
            email="User@Example.com",
            role=Role.CITIZEN,
            created_at=NOW,
            password_hash="$argon2id$placeholder",
        )

    def test_report_roundtrip_is_a_copy(self, report):
        store = InMemoryReportStore()
        store.create(report)

        fetched = store.get_by_id(report.id)
        fetched.comments.append(None)

        assert store.get_by_id(report.id).comments == []

    def test_duplicate_report_id(self, report):
        store = InMemoryReportStore()
        store.create(report)
        with pytest.raises(DuplicateRecordError):
            store.create(report)

    def test_update_applies_mutation(self, report):
        store = InMemoryReportStore()
        store.create(report)

        updated = store.update(report.id, lambda r: r.model_copy(update={"status": ReportStatus.WATCHED}))

        assert updated.status == ReportStatus.WATCHED
        assert store.get_by_id(report.id).status == ReportStatus.WATCHED

    def test_update_missing_report(self):
        with pytest.raises(RecordNotFoundError):
            InMemoryReportStore().update(uuid4(), lambda r: r)

    def test_update_cannot_change_id(self, report):
        store = InMemoryReportStore()
        store.create(report)
        with pytest.raises(StoreError):
            store.update(report.id, lambda r: r.model_copy(update={"id": uuid4()}))

    def test_failed_mutation_leaves_report_unchanged(self, report):
        store = InMemoryReportStore()
        store.create(report)

        def explode(r):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            store.update(report.id, explode)
        assert store.get_by_id(report.id) == report

    def test_identity_email_index(self, stored_identity):
        store = InMemoryIdentityStore()
        store.create(stored_identity)

        assert store.get_by_email("user@example.com").id == stored_identity.id
        with pytest.raises(DuplicateRecordError):
            store.create(stored_identity.model_copy(update={"id": uuid4()}))

    def test_identity_email_immutable(self, stored_identity):
        store = InMemoryIdentityStore()
        store.create(stored_identity)
        with pytest.raises(StoreError):
            store.update(stored_identity.id, lambda i: i.model_copy(update={"email": "other@example.com"}))

    def test_identity_delete(self, stored_identity):
        store = InMemoryIdentityStore()
        store.create(stored_identity)

        assert store.delete(stored_identity.id) is True
        assert store.delete(stored_identity.id) is False
        assert store.get_by_email(stored_identity.email) is None
        assert store.count() == 0
