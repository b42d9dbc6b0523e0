"""
DocVault Tag Relation Store — Document ↔ Tag associations and usage counters.

Owns the ``document_tags`` junction and the denormalized ``tags.usage_count``.
The counter is a derived cache: every association change re-derives it with
``count(*)`` for the affected tag, and resync_all_counters() repairs drift.

Batch operations are best-effort per tag: each tag's change runs in its own
savepoint, storage errors are logged and skipped, and returned counts only
reflect successful changes.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Sequence

from pydantic import BaseModel
from sqlalchemy import delete, distinct, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docvault.db.models import DocumentTag, Tag
from docvault.db.session import storage_errors
from docvault.documents.models import TagRef
from docvault.engine.logging import log, log_system_event, log_tag_event

logger = logging.getLogger("docvault.tags.store")


class TagChanges(BaseModel):
    added: int = 0
    removed: int = 0


class TagStats(BaseModel):
    total_associations: int = 0
    documents_with_tags: int = 0
    average_tags_per_document: float = 0.0
    tags_in_use: int = 0


def _unique(ids: Iterable[int]) -> List[int]:
    return list(dict.fromkeys(ids))


class TagRelationStore:
    """
    Tag association store bound to one session.

    Usage:
        store = TagRelationStore(session)
        store.attach(10, [1, 2])
        changes = store.replace(10, [2, 3])   # TagChanges(added=1, removed=1)
    """

    def __init__(self, session: Session):
        self._session = session

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------

    def attach(self, document_id: int, tag_ids: Sequence[int]) -> int:
        """Associate tags with a document. Already-attached tags are no-ops."""
        added, failed = self._attach_each(document_id, _unique(tag_ids))
        log(log_tag_event("tags_attached", document_id, added=added, failed=failed))
        return added

    def detach(self, document_id: int, tag_ids: Sequence[int]) -> int:
        """Remove associations. Tags that are not attached are no-ops."""
        removed, failed = self._detach_each(document_id, _unique(tag_ids))
        log(log_tag_event("tags_detached", document_id, removed=removed, failed=failed))
        return removed

    def replace(self, document_id: int, tag_ids: Sequence[int]) -> TagChanges:
        """
        Make the document's tag set equal ``tag_ids``.

        Only the difference is applied: tags present in both the current and
        desired sets are never touched.
        """
        desired = _unique(tag_ids)
        current = set(self._current_tag_ids(document_id))
        to_remove = [tag_id for tag_id in sorted(current) if tag_id not in set(desired)]
        to_add = [tag_id for tag_id in desired if tag_id not in current]

        removed, failed_remove = self._detach_each(document_id, to_remove)
        added, failed_add = self._attach_each(document_id, to_add)

        log(log_tag_event(
            "tags_replaced", document_id,
            added=added, removed=removed, failed=failed_remove + failed_add,
        ))
        return TagChanges(added=added, removed=removed)

    def detach_all(self, document_id: int) -> int:
        """Remove every association of a document (used on document deletion)."""
        current = self._current_tag_ids(document_id)
        removed, failed = self._detach_each(document_id, current)
        log(log_tag_event("tags_detached_all", document_id, removed=removed, failed=failed))
        return removed

    def detach_tag(self, tag_id: int) -> int:
        """
        Remove a tag from every document it is attached to (used before a
        forced tag delete). Runs in one savepoint; storage errors propagate.
        """
        with storage_errors("detach_tag", resource_type="tag", resource_id=tag_id):
            with self._session.begin_nested():
                result = self._session.execute(
                    delete(DocumentTag).where(DocumentTag.tag_id == tag_id)
                )
                self._recompute(tag_id)
        log(log_tag_event("tag_detached_everywhere", None, removed=result.rowcount))
        return result.rowcount

    def _attach_each(self, document_id: int, tag_ids: List[int]):
        added = 0
        failed: List[int] = []
        for tag_id in tag_ids:
            try:
                with self._session.begin_nested():
                    exists = self._session.execute(
                        select(DocumentTag.id).where(
                            DocumentTag.document_id == document_id,
                            DocumentTag.tag_id == tag_id,
                        )
                    ).first()
                    if exists is not None:
                        continue
                    self._session.execute(
                        insert(DocumentTag).values(document_id=document_id, tag_id=tag_id)
                    )
                    self._recompute(tag_id)
                added += 1
            except SQLAlchemyError as e:
                logger.warning(f"Failed to attach tag {tag_id} to document {document_id}: {e}")
                failed.append(tag_id)
        return added, failed

    def _detach_each(self, document_id: int, tag_ids: List[int]):
        removed = 0
        failed: List[int] = []
        for tag_id in tag_ids:
            try:
                with self._session.begin_nested():
                    result = self._session.execute(
                        delete(DocumentTag).where(
                            DocumentTag.document_id == document_id,
                            DocumentTag.tag_id == tag_id,
                        )
                    )
                    if result.rowcount == 0:
                        continue
                    self._recompute(tag_id)
                removed += 1
            except SQLAlchemyError as e:
                logger.warning(f"Failed to detach tag {tag_id} from document {document_id}: {e}")
                failed.append(tag_id)
        return removed, failed

    # -------------------------------------------------------------------
    # Usage counters
    # -------------------------------------------------------------------

    def _recompute(self, tag_id: int) -> None:
        live = (
            select(func.count())
            .select_from(DocumentTag)
            .where(DocumentTag.tag_id == tag_id)
            .scalar_subquery()
        )
        self._session.execute(
            update(Tag)
            .where(Tag.id == tag_id)
            .values(usage_count=live)
            .execution_options(synchronize_session="fetch")
        )

    def recompute_usage(self, tag_id: int) -> int:
        """Re-derive one tag's usage_count from the junction table."""
        with storage_errors("recompute_usage", resource_type="tag", resource_id=tag_id):
            self._recompute(tag_id)
            return self._session.execute(
                select(Tag.usage_count).where(Tag.id == tag_id)
            ).scalar_one_or_none() or 0

    def resync_all_counters(self) -> int:
        """
        Repair every tag's usage_count. Idempotent.

        Returns:
            Number of tags whose stored counter was wrong.
        """
        live = (
            select(DocumentTag.tag_id, func.count().label("live"))
            .group_by(DocumentTag.tag_id)
            .subquery()
        )
        with storage_errors("resync_all_counters", resource_type="tag"):
            drifted = self._session.execute(
                select(Tag.id)
                .outerjoin(live, live.c.tag_id == Tag.id)
                .where(Tag.usage_count != func.coalesce(live.c.live, 0))
            ).scalars().all()

            for tag_id in drifted:
                self._recompute(tag_id)
        if drifted:
            logger.warning(f"Resynced usage_count for {len(drifted)} drifted tag(s)")
        log(log_system_event("tag_counters_resynced", details={"drifted": len(drifted)}))
        return len(drifted)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------

    def _current_tag_ids(self, document_id: int) -> List[int]:
        with storage_errors("load_document_tags", resource_type="document", resource_id=document_id):
            return list(self._session.execute(
                select(DocumentTag.tag_id)
                .where(DocumentTag.document_id == document_id)
                .order_by(DocumentTag.tag_id)
            ).scalars())

    def batch_tags_for(self, document_ids: Sequence[int]) -> Dict[int, List[TagRef]]:
        """
        Tags for many documents in one query, each list ordered by name.
        Every requested id is present in the result (empty list when untagged).
        """
        result: Dict[int, List[TagRef]] = {doc_id: [] for doc_id in document_ids}
        if not result:
            return result

        with storage_errors("batch_tags_for", resource_type="document"):
            rows = self._session.execute(
                select(DocumentTag.document_id, Tag.id, Tag.name, Tag.color)
                .join(Tag, Tag.id == DocumentTag.tag_id)
                .where(DocumentTag.document_id.in_(list(result)))
                .order_by(DocumentTag.document_id, Tag.name, Tag.id)
            ).all()
        for document_id, tag_id, name, color in rows:
            result[document_id].append(TagRef(id=tag_id, name=name, color=color))
        return result

    def tags_for(self, document_id: int) -> List[TagRef]:
        return self.batch_tags_for([document_id])[document_id]

    def stats(self) -> TagStats:
        with storage_errors("tag_stats", resource_type="tag"):
            total, documents, tags_in_use = self._session.execute(
                select(
                    func.count(DocumentTag.id),
                    func.count(distinct(DocumentTag.document_id)),
                    func.count(distinct(DocumentTag.tag_id)),
                )
            ).one()
        average = round(total / documents, 2) if documents else 0.0
        return TagStats(
            total_associations=total,
            documents_with_tags=documents,
            average_tags_per_document=average,
            tags_in_use=tags_in_use,
        )
