"""
DocVault Query Composer — Access-scoped, paginated, ranked document search.

One SearchPredicates value drives both the count and the page query, so
``total`` always describes exactly the set being paged through. Tags for
the returned page are loaded with a single batched lookup.
"""

from __future__ import annotations

import logging
import time
from typing import List, Optional

from sqlalchemy import case, distinct, func, select
from sqlalchemy.orm import Session

from docvault.db.models import Document, User
from docvault.db.session import storage_errors
from docvault.documents.models import (
    DocumentSummary,
    SearchCriteria,
    SearchPage,
)
from docvault.engine.config import SearchConfig, get_config
from docvault.engine.errors import InvalidCriteriaError
from docvault.engine.logging import log, log_search_event
from docvault.search.predicates import LIKE_ESCAPE, PredicateBuilder, SearchPredicates, like_pattern
from docvault.tags.store import TagRelationStore

logger = logging.getLogger("docvault.search.composer")

SORT_COLUMNS = {
    "created": Document.created_at,
    "size": Document.file_size,
    "view_count": Document.view_count,
    "download_count": Document.download_count,
}


class QueryComposer:
    """
    Turns SearchCriteria into one result page for a requester.

    Usage:
        composer = QueryComposer(session)
        page = composer.search(SearchCriteria(keyword="report", tag_ids=[1, 2], match_all=True), requester_id=4)
    """

    def __init__(self, session: Session, config: Optional[SearchConfig] = None):
        self._session = session
        self._config = config or get_config().search
        self._tags = TagRelationStore(session)

    def predicates_for(self, criteria: SearchCriteria, requester_id: Optional[int]) -> SearchPredicates:
        builder = PredicateBuilder(
            requester_id=requester_id,
            include_granted=self._config.include_granted_in_default_scope,
        )
        return builder.build(criteria)

    def resolve_page_size(self, criteria: SearchCriteria) -> int:
        page_size = criteria.page_size
        if page_size is None:
            page_size = self._config.default_page_size
        if page_size < 1 or page_size > self._config.max_page_size:
            raise InvalidCriteriaError(
                f"page_size must be between 1 and {self._config.max_page_size}, got {page_size}",
                field="page_size",
            )
        return page_size

    def search(self, criteria: SearchCriteria, requester_id: Optional[int] = None) -> SearchPage:
        """
        Run a search.

        Raises:
            InvalidCriteriaError: malformed criteria (page bounds, match_all
                without tags, inverted date range).
            StorageFailureError: the count or page query failed.
        """
        started = time.perf_counter()
        if criteria.page < 1:
            raise InvalidCriteriaError(f"page must be >= 1, got {criteria.page}", field="page")
        page_size = self.resolve_page_size(criteria)
        predicates = self.predicates_for(criteria, requester_id)

        total = self.count(predicates)
        offset = (criteria.page - 1) * page_size

        items: List[DocumentSummary] = []
        if offset < total:
            with storage_errors("search", resource_type="document"):
                items = self._fetch_page(predicates, criteria, offset, page_size)

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        log(log_search_event(
            requester_id=requester_id,
            total=total,
            page=criteria.page,
            page_size=page_size,
            duration_ms=elapsed_ms,
            keyword=criteria.keyword,
            tag_ids=criteria.tag_ids,
        ))
        logger.debug(f"Search returned {len(items)}/{total} rows in {elapsed_ms}ms")

        return SearchPage(
            items=items,
            total=total,
            page=criteria.page,
            page_size=page_size,
            has_more=offset + len(items) < total,
            search_time_ms=elapsed_ms,
        )

    def count(self, predicates: SearchPredicates) -> int:
        with storage_errors("search_count", resource_type="document"):
            return self._session.execute(
                select(func.count(distinct(Document.id))).where(*predicates.all())
            ).scalar_one()

    def _order_by(self, criteria: SearchCriteria, keyword: Optional[str]) -> list:
        descending = criteria.sort_direction == "desc"

        if criteria.sort_key == "relevance":
            clauses = []
            if keyword:
                title_match = case(
                    (Document.title.ilike(like_pattern(keyword), escape=LIKE_ESCAPE), 0),
                    else_=1,
                )
                clauses.append(title_match.asc())
            recency = Document.created_at
            clauses.append(recency.desc() if descending else recency.asc())
        else:
            column = SORT_COLUMNS[criteria.sort_key]
            clauses = [column.desc() if descending else column.asc()]

        # Stable pagination across rows with equal sort values
        clauses.append(Document.id.desc())
        return clauses

    def _fetch_page(
        self,
        predicates: SearchPredicates,
        criteria: SearchCriteria,
        offset: int,
        limit: int,
    ) -> List[DocumentSummary]:
        query = (
            select(Document, User.full_name, User.username)
            .join(User, User.id == Document.owner_id)
            .where(*predicates.all())
            .order_by(*self._order_by(criteria, predicates.keyword))
            .offset(offset)
            .limit(limit)
        )
        rows = self._session.execute(query).all()
        tags = self._tags.batch_tags_for([row[0].id for row in rows])

        return [
            DocumentSummary.from_row(document, full_name or username, tags[document.id])
            for document, full_name, username in rows
        ]

