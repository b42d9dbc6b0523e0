"""Unit tests for docvault.documents.service — Document lifecycle."""

from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from conftest import BASE_TIME, hours
from docvault.db.models import Document, DocumentTag
from docvault.documents.models import SearchCriteria, format_file_size, friendly_type
from docvault.documents.service import DocumentService
from docvault.engine.errors import (
    ForbiddenError,
    InvalidCriteriaError,
    NotFoundError,
    StorageFailureError,
)
from docvault.search.composer import QueryComposer
from docvault.security.access import AccessPolicyEvaluator, PermissionLevel
from docvault.tags.store import TagChanges, TagRelationStore


def _create(service, **overrides):
    params = dict(
        owner_id=3,
        title="Annual report",
        file_name="annual.pdf",
        file_path="2024/annual.pdf",
        file_size=2048,
        mime_type="application/pdf",
    )
    params.update(overrides)
    return service.create_document(**params)


def _document_count(session):
    return session.execute(select(func.count()).select_from(Document)).scalar_one()


@pytest.fixture
def tags(tag):
    tag(id=1, name="finance")
    tag(id=2, name="legal")


class TestCreateDocument:
    def test_create_with_tags(self, session, users, tags, usage):
        summary = _create(DocumentService(session), tag_ids=[2, 1], is_public=True)
        assert summary.title == "Annual report"
        assert summary.creator_name == "Carol Owner"
        assert [t.name for t in summary.tags] == ["finance", "legal"]
        assert summary.friendly_type == "pdf"
        assert summary.formatted_size == "2 KB"
        assert usage(1) == (1, 1)

    def test_unknown_tag_writes_nothing(self, session, users, tags):
        with pytest.raises(NotFoundError):
            _create(DocumentService(session), tag_ids=[1, 99])
        assert _document_count(session) == 0

    def test_failed_tag_attach_rolls_back_document(self, session, users, tags):
        service = DocumentService(session)
        with patch.object(TagRelationStore, "attach", return_value=1):
            with pytest.raises(StorageFailureError):
                _create(service, tag_ids=[1, 2])
        assert _document_count(session) == 0
        assert session.execute(select(func.count()).select_from(DocumentTag)).scalar_one() == 0

    def test_unknown_owner_is_storage_failure(self, session, users):
        with pytest.raises(StorageFailureError) as exc:
            _create(DocumentService(session), owner_id=999)
        assert exc.value.operation == "create_document"
        assert _document_count(session) == 0

    @pytest.mark.parametrize("overrides", [{"title": "  "}, {"file_size": -1}])
    def test_invalid_input(self, session, users, overrides):
        with pytest.raises(InvalidCriteriaError):
            _create(DocumentService(session), **overrides)


class TestFindByHash:
    def test_returns_oldest_live_document(self, session, doc):
        doc(id=1, title="Copy", file_hash="abc", created_at=BASE_TIME + hours(2))
        doc(id=2, title="Original", file_hash="abc", created_at=BASE_TIME + hours(1))
        doc(id=3, title="Deleted", file_hash="abc", created_at=BASE_TIME, is_deleted=True)
        assert DocumentService(session).find_by_hash("abc").id == 2

    def test_unknown_hash(self, session, users):
        assert DocumentService(session).find_by_hash("zzz") is None


class TestGetDocument:
    def test_owner_can_read(self, session, doc):
        doc(id=7)
        assert DocumentService(session).get_document(7, requester_id=3).id == 7

    def test_anonymous_private_forbidden(self, session, doc):
        doc(id=7)
        with pytest.raises(ForbiddenError):
            DocumentService(session).get_document(7)

    def test_missing_and_deleted(self, session, doc):
        doc(id=8, is_deleted=True)
        service = DocumentService(session)
        with pytest.raises(NotFoundError):
            service.get_document(99, requester_id=3)
        with pytest.raises(NotFoundError):
            service.get_document(8, requester_id=3)

    def test_count_view(self, session, doc):
        doc(id=7, is_public=True)
        service = DocumentService(session)
        service.get_document(7, count_view=True)
        assert service.get_document(7, count_view=True).view_count == 2
        assert service.get_document(7).view_count == 2


class TestUpdates:
    def test_write_grant_can_update_metadata(self, session, doc):
        doc(id=7)
        AccessPolicyEvaluator(session).grant(7, 4, PermissionLevel.WRITE, granted_by=3)
        summary = DocumentService(session).update_document(7, 4, title="Renamed", description="New")
        assert summary.title == "Renamed"
        assert summary.description == "New"

    def test_read_grant_cannot_update(self, session, doc):
        doc(id=7)
        AccessPolicyEvaluator(session).grant(7, 4, PermissionLevel.READ, granted_by=3)
        with pytest.raises(ForbiddenError):
            DocumentService(session).update_document(7, 4, title="Nope")

    def test_visibility_change_needs_admin(self, session, doc):
        doc(id=7)
        AccessPolicyEvaluator(session).grant(7, 4, PermissionLevel.WRITE, granted_by=3)
        service = DocumentService(session)
        with pytest.raises(ForbiddenError):
            service.update_document(7, 4, is_public=True)
        with pytest.raises(ForbiddenError):
            service.set_visibility(7, 4, True)
        assert service.set_visibility(7, 3, True).is_public is True

    def test_set_tags_replaces(self, session, doc, tags):
        doc(id=7)
        service = DocumentService(session)
        TagRelationStore(session).attach(7, [1])
        assert service.set_tags(7, 3, [2]) == TagChanges(added=1, removed=1)
        assert [t.name for t in TagRelationStore(session).tags_for(7)] == ["legal"]

    def test_set_tags_requires_write(self, session, doc, tags):
        doc(id=7, is_public=True)
        with pytest.raises(ForbiddenError):
            DocumentService(session).set_tags(7, 4, [1])


class TestDeleteDocument:
    def test_soft_delete_detaches_tags(self, session, doc, tags, usage):
        doc(id=7, is_public=True, title="Doomed")
        TagRelationStore(session).attach(7, [1, 2])
        service = DocumentService(session)

        assert service.delete_document(7, 3) is True

        row = session.get(Document, 7)
        assert row.is_deleted is True
        assert row.deleted_by == 3
        assert row.deleted_at is not None
        assert usage(1) == (0, 0)
        assert usage(2) == (0, 0)
        assert QueryComposer(session).search(SearchCriteria(keyword="doomed")).total == 0
        with pytest.raises(NotFoundError):
            service.get_document(7, requester_id=3)

    def test_delete_requires_admin(self, session, doc):
        doc(id=7)
        AccessPolicyEvaluator(session).grant(7, 4, PermissionLevel.WRITE, granted_by=3)
        with pytest.raises(ForbiddenError):
            DocumentService(session).delete_document(7, 4)
        assert session.get(Document, 7).is_deleted is False

    def test_admin_grant_can_delete(self, session, doc):
        doc(id=7)
        AccessPolicyEvaluator(session).grant(7, 4, PermissionLevel.ADMIN, granted_by=3)
        assert DocumentService(session).delete_document(7, 4) is True


class TestCountersAndStats:
    def test_record_download(self, session, doc):
        doc(id=7)
        service = DocumentService(session)
        service.record_download(7)
        service.record_download(7)
        assert service.get_document(7, requester_id=3).download_count == 2

    def test_record_download_on_deleted(self, session, doc):
        doc(id=7, is_deleted=True)
        with pytest.raises(NotFoundError):
            DocumentService(session).record_download(7)

    def test_stats(self, session, doc):
        doc(id=1, is_public=True, file_size=100, view_count=3, download_count=1)
        doc(id=2, is_public=False, file_size=50, owner_id=5)
        doc(id=3, is_public=True, file_size=1000, is_deleted=True)
        stats = DocumentService(session).stats(owner_id=3)
        assert stats.total_documents == 2
        assert stats.public_documents == 1
        assert stats.private_documents == 1
        assert stats.total_size == 150
        assert stats.total_views == 3
        assert stats.total_downloads == 1
        assert stats.owner_documents == 1

    def test_stats_without_owner(self, session, users):
        stats = DocumentService(session).stats()
        assert stats.total_documents == 0
        assert stats.owner_documents is None

    def test_list_owned(self, session, doc):
        doc(id=1)
        doc(id=2, owner_id=5)
        doc(id=3, is_deleted=True)
        assert [d.id for d in DocumentService(session).list_owned(3)] == [1]

    @pytest.mark.parametrize("call", [
        lambda service: service.stats(),
        lambda service: service.list_owned(3),
        lambda service: service.find_by_hash("abc"),
    ])
    def test_read_failures_are_wrapped(self, session, users, call):
        error = OperationalError("SELECT", {}, Exception("database is locked"))
        with patch.object(session, "execute", side_effect=error):
            with pytest.raises(StorageFailureError) as exc:
                call(DocumentService(session))
        assert exc.value.kind == "storage_failure"


class TestDisplayHelpers:
    @pytest.mark.parametrize("size,text", [
        (0, "0 B"), (512, "512 B"), (1024, "1 KB"), (1536, "1.5 KB"), (5 * 1024 ** 2, "5 MB"),
    ])
    def test_format_file_size(self, size, text):
        assert format_file_size(size) == text

    @pytest.mark.parametrize("mime,label", [
        ("image/png", "image"),
        ("application/pdf", "pdf"),
        ("application/msword", "word"),
        ("application/vnd.ms-excel", "excel"),
        ("application/vnd.ms-powerpoint", "powerpoint"),
        ("text/csv", "text"),
        ("application/zip", "other"),
        (None, "other"),
    ])
    def test_friendly_type(self, mime, label):
        assert friendly_type(mime) == label
