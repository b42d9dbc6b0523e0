"""
DocVault Facet Aggregator — Type / tag / creator breakdowns for refinement.

Each facet is an independent grouped aggregation over the composer's base
predicates (scope, keyword, owner, dates). Tag and type filters are left
out because they are the dimensions being broken down. Facets are a
refinement aid: a storage failure yields empty facets, never an error.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import case, distinct, func, literal, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docvault.db.models import Document, DocumentTag, Tag, User
from docvault.documents.models import FacetCount, SearchCriteria, SearchFacets
from docvault.engine.config import SearchConfig, get_config
from docvault.search.predicates import PredicateBuilder, SearchPredicates

logger = logging.getLogger("docvault.search.facets")

# Ordered: the first matching rule labels the document
TYPE_LABEL_RULES = [
    ("image", ["image/%"]),
    ("pdf", ["%pdf%"]),
    ("word", ["%word%", "%document%"]),
    ("excel", ["%excel%", "%sheet%"]),
    ("powerpoint", ["%powerpoint%", "%presentation%"]),
    ("text", ["text/%"]),
]


def type_label_expression():
    """SQL CASE mapping mime_type to a facet label, 'other' when nothing matches."""
    whens = [
        (or_(*[Document.mime_type.ilike(p) for p in patterns]), literal(label))
        for label, patterns in TYPE_LABEL_RULES
    ]
    return case(*whens, else_=literal("other"))


class FacetAggregator:
    def __init__(self, session: Session, config: Optional[SearchConfig] = None):
        self._session = session
        self._config = config or get_config().search

    def facets(self, criteria: SearchCriteria, requester_id: Optional[int] = None) -> SearchFacets:
        """
        Compute all facets for the criteria (pagination and sort ignored).

        Invalid criteria still raise; storage failures degrade to empty facets.
        """
        builder = PredicateBuilder(
            requester_id=requester_id,
            include_granted=self._config.include_granted_in_default_scope,
        )
        predicates = builder.build(criteria)

        try:
            return SearchFacets(
                by_type=self.by_type(predicates),
                by_tag=self.by_tag(predicates),
                by_creator=self.by_creator(predicates),
            )
        except SQLAlchemyError as e:
            logger.error(f"Facet computation failed, returning empty facets: {e}")
            return SearchFacets()

    def by_type(self, predicates: SearchPredicates) -> List[FacetCount]:
        labelled = (
            select(Document.id, type_label_expression().label("label"))
            .where(*predicates.base)
            .subquery()
        )
        cnt = func.count(labelled.c.id)
        rows = self._session.execute(
            select(labelled.c.label, cnt.label("cnt"))
            .group_by(labelled.c.label)
            .order_by(cnt.desc(), labelled.c.label)
        ).all()
        return [FacetCount(label=row.label, count=row.cnt) for row in rows]

    def by_tag(self, predicates: SearchPredicates) -> List[FacetCount]:
        doc_count = func.count(distinct(Document.id))
        rows = self._session.execute(
            select(Tag.id, Tag.name, doc_count.label("cnt"))
            .join(DocumentTag, DocumentTag.tag_id == Tag.id)
            .join(Document, Document.id == DocumentTag.document_id)
            .where(*predicates.base)
            .group_by(Tag.id, Tag.name)
            .order_by(doc_count.desc(), Tag.name)
            .limit(self._config.facet_tag_limit)
        ).all()
        return [FacetCount(label=row.name, count=row.cnt, key=row.id) for row in rows]

    def by_creator(self, predicates: SearchPredicates) -> List[FacetCount]:
        doc_count = func.count(distinct(Document.id))
        rows = self._session.execute(
            select(User.id, User.username, User.full_name, doc_count.label("cnt"))
            .join(Document, Document.owner_id == User.id)
            .where(*predicates.base)
            .group_by(User.id, User.username, User.full_name)
            .order_by(doc_count.desc(), User.username)
            .limit(self._config.facet_creator_limit)
        ).all()
        return [
            FacetCount(label=row.full_name or row.username, count=row.cnt, key=row.id)
            for row in rows
        ]
