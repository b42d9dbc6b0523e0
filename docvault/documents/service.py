"""
DocVault Document Service — Document lifecycle on top of the core engine.

Handles:
- Create-document-with-tags and delete-document-with-tags as atomic units
- Metadata / visibility updates guarded by the Access Policy Evaluator
- View and download counters
- Duplicate detection by content hash
- Repository statistics

Multi-step writes run inside atomic(): either every row changes or none
does. Storage errors there are re-raised as StorageFailureError.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Generator, List, Optional, Sequence

from sqlalchemy import case, false, func, select, true, update
from sqlalchemy.orm import Session

from docvault.db.base import utcnow
from docvault.db.models import Document, Tag, User
from docvault.db.session import atomic, storage_errors
from docvault.documents.models import DocumentStats, DocumentSummary
from docvault.engine.errors import InvalidCriteriaError, NotFoundError, StorageFailureError
from docvault.engine.logging import log, log_document_event
from docvault.security.access import AccessDecision, AccessPolicyEvaluator, PermissionLevel
from docvault.tags.store import TagChanges, TagRelationStore

logger = logging.getLogger("docvault.documents.service")


class DocumentService:
    """
    Document operations bound to one session.

    Usage:
        service = DocumentService(session)
        doc = service.create_document(owner_id=3, title="Q3 report", file_name="q3.pdf",
                                      file_path="2024/q3.pdf", file_size=1024,
                                      mime_type="application/pdf", tag_ids=[1, 2])
    """

    def __init__(self, session: Session):
        self._session = session
        self._access = AccessPolicyEvaluator(session)
        self._tags = TagRelationStore(session)

    @contextmanager
    def _unit(self, operation: str, document_id: Optional[int] = None) -> Generator[None, None, None]:
        with storage_errors(operation, resource_type="document", resource_id=document_id):
            with atomic(self._session):
                yield

    def _get_live(self, document_id: int) -> Document:
        with storage_errors("load_document", resource_type="document", resource_id=document_id):
            document = self._session.get(Document, document_id)
        if document is None or document.is_deleted:
            raise NotFoundError(
                f"Document {document_id} not found",
                resource_type="document",
                resource_id=document_id,
            )
        return document

    def _summary(self, document: Document) -> DocumentSummary:
        with storage_errors("load_owner", resource_type="user", resource_id=document.owner_id):
            owner = self._session.get(User, document.owner_id)
        creator = (owner.full_name or owner.username) if owner else None
        return DocumentSummary.from_row(document, creator, self._tags.tags_for(document.id))

    def _require_tags_exist(self, tag_ids: Sequence[int]) -> None:
        wanted = set(tag_ids)
        if not wanted:
            return
        with storage_errors("load_tags", resource_type="tag"):
            found = set(self._session.execute(select(Tag.id).where(Tag.id.in_(wanted))).scalars())
        missing = sorted(wanted - found)
        if missing:
            raise NotFoundError(
                f"Unknown tag id(s): {missing}",
                resource_type="tag",
                resource_id=missing[0],
            )

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------

    def create_document(
        self,
        owner_id: int,
        title: str,
        file_name: str,
        file_path: str,
        file_size: int,
        mime_type: str,
        description: Optional[str] = None,
        file_hash: Optional[str] = None,
        is_public: bool = False,
        tag_ids: Optional[Sequence[int]] = None,
    ) -> DocumentSummary:
        """
        Create a document and its tag associations in one atomic unit.

        Raises:
            InvalidCriteriaError: blank title or negative size.
            NotFoundError: a tag id does not exist (nothing is written).
            StorageFailureError: the transaction failed (nothing is written).
        """
        if not title or not title.strip():
            raise InvalidCriteriaError("Document title must not be blank", field="title")
        if file_size < 0:
            raise InvalidCriteriaError("file_size must not be negative", field="file_size")
        tag_ids = list(dict.fromkeys(tag_ids or []))
        self._require_tags_exist(tag_ids)

        document = Document(
            title=title.strip(),
            description=description,
            file_name=file_name,
            file_path=file_path,
            file_size=file_size,
            mime_type=mime_type,
            file_hash=file_hash,
            is_public=is_public,
            owner_id=owner_id,
            created_by=owner_id,
            view_count=0,
            download_count=0,
            is_deleted=False,
        )
        with self._unit("create_document"):
            self._session.add(document)
            self._session.flush()
            if tag_ids:
                added = self._tags.attach(document.id, tag_ids)
                if added != len(tag_ids):
                    raise StorageFailureError(
                        f"Only {added} of {len(tag_ids)} tags could be attached",
                        operation="create_document",
                        resource_type="document",
                    )

        log(log_document_event("document_created", document.id, requester_id=owner_id))
        logger.info(f"Created document {document.id} '{document.title}' for user {owner_id}")
        return self._summary(document)

    def find_by_hash(self, file_hash: str) -> Optional[DocumentSummary]:
        """The canonical (oldest) live document with this content hash."""
        with storage_errors("find_by_hash", resource_type="document"):
            document = self._session.execute(
                select(Document)
                .where(Document.file_hash == file_hash, Document.is_deleted == false())
                .order_by(Document.created_at, Document.id)
                .limit(1)
            ).scalar_one_or_none()
        return self._summary(document) if document else None

    def get_document(
        self,
        document_id: int,
        requester_id: Optional[int] = None,
        count_view: bool = False,
    ) -> DocumentSummary:
        """
        Fetch one readable document.

        Raises:
            NotFoundError: absent or soft-deleted.
            ForbiddenError: requester may not read it.
        """
        document = self._get_live(document_id)
        self._access.require(document, requester_id, PermissionLevel.READ)
        if count_view:
            self._increment(document_id, Document.view_count)
            with storage_errors("count_view", resource_type="document", resource_id=document_id):
                self._session.refresh(document)
        return self._summary(document)

    def access_for(self, document_id: int, requester_id: Optional[int]) -> AccessDecision:
        return self._access.evaluate(self._get_live(document_id), requester_id)

    def update_document(
        self,
        document_id: int,
        requester_id: int,
        title: Optional[str] = None,
        description: Optional[str] = None,
        is_public: Optional[bool] = None,
    ) -> DocumentSummary:
        """Update metadata. Requires write; changing visibility requires admin."""
        document = self._get_live(document_id)
        required = PermissionLevel.ADMIN if is_public is not None else PermissionLevel.WRITE
        self._access.require(document, requester_id, required)

        if title is not None:
            if not title.strip():
                raise InvalidCriteriaError("Document title must not be blank", field="title")
            document.title = title.strip()
        if description is not None:
            document.description = description
        if is_public is not None:
            document.is_public = is_public
        document.updated_by = requester_id

        with self._unit("update_document", document_id):
            self._session.flush()

        log(log_document_event("document_updated", document_id, requester_id=requester_id))
        return self._summary(document)

    def set_visibility(self, document_id: int, requester_id: int, is_public: bool) -> DocumentSummary:
        document = self._get_live(document_id)
        self._access.require(document, requester_id, PermissionLevel.ADMIN)
        document.is_public = is_public
        document.updated_by = requester_id
        with self._unit("set_visibility", document_id):
            self._session.flush()
        log(log_document_event(
            "document_visibility_changed", document_id,
            requester_id=requester_id, details={"is_public": is_public},
        ))
        return self._summary(document)

    def delete_document(self, document_id: int, requester_id: int) -> bool:
        """Soft-delete a document and drop its tag associations atomically."""
        document = self._get_live(document_id)
        self._access.require(document, requester_id, PermissionLevel.ADMIN)

        with self._unit("delete_document", document_id):
            document.is_deleted = True
            document.deleted_at = utcnow()
            document.deleted_by = requester_id
            self._session.flush()
            self._tags.detach_all(document_id)

        log(log_document_event("document_deleted", document_id, requester_id=requester_id))
        logger.info(f"Soft-deleted document {document_id} by user {requester_id}")
        return True

    def set_tags(self, document_id: int, requester_id: int, tag_ids: Sequence[int]) -> TagChanges:
        """Replace a document's tag set. Requires write."""
        document = self._get_live(document_id)
        self._access.require(document, requester_id, PermissionLevel.WRITE)
        with self._unit("set_tags", document_id):
            return self._tags.replace(document_id, tag_ids)

    # -------------------------------------------------------------------
    # Counters & statistics
    # -------------------------------------------------------------------

    def _increment(self, document_id: int, column) -> None:
        with storage_errors(f"increment_{column.key}", resource_type="document", resource_id=document_id):
            self._session.execute(
                update(Document)
                .where(Document.id == document_id, Document.is_deleted == false())
                .values({column: column + 1})
                .execution_options(synchronize_session=False)
            )

    def record_download(self, document_id: int) -> None:
        self._get_live(document_id)
        self._increment(document_id, Document.download_count)

    def stats(self, owner_id: Optional[int] = None) -> DocumentStats:
        live = Document.is_deleted == false()
        with storage_errors("document_stats"):
            row = self._session.execute(
                select(
                    func.count(Document.id),
                    func.coalesce(func.sum(case((Document.is_public == true(), 1), else_=0)), 0),
                    func.coalesce(func.sum(Document.file_size), 0),
                    func.coalesce(func.sum(Document.view_count), 0),
                    func.coalesce(func.sum(Document.download_count), 0),
                ).where(live)
            ).one()
            total, public, size, views, downloads = row

            owner_count = None
            if owner_id is not None:
                owner_count = self._session.execute(
                    select(func.count(Document.id)).where(live, Document.owner_id == owner_id)
                ).scalar_one()

        return DocumentStats(
            total_documents=total,
            public_documents=public,
            private_documents=total - public,
            total_size=size,
            total_views=views,
            total_downloads=downloads,
            owner_documents=owner_count,
        )

    def list_owned(self, owner_id: int) -> List[DocumentSummary]:
        with storage_errors("list_owned", resource_type="user", resource_id=owner_id):
            rows = self._session.execute(
                select(Document)
                .where(Document.owner_id == owner_id, Document.is_deleted == false())
                .order_by(Document.created_at.desc(), Document.id.desc())
            ).scalars().all()
        return [self._summary(document) for document in rows]
