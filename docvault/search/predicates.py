"""
DocVault Predicate Builder — Typed SQLAlchemy clauses for document searches.

The composer's count and page queries and the facet aggregator all take
their WHERE clauses from one SearchPredicates value, so the three can
never disagree about which documents are in scope.

Clauses are split in two groups:
- base:       soft-delete, access scope/visibility, keyword, owner, dates
- dimensions: tag set, type category, exact MIME (the facet breakdowns)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional

from sqlalchemy import distinct, false, func, or_, select, true

from docvault.db.base import as_utc
from docvault.db.models import Document, DocumentTag
from docvault.documents.models import SearchCriteria
from docvault.engine.errors import InvalidCriteriaError
from docvault.security.access import private_scope_predicate, scope_predicate

LIKE_ESCAPE = "\\"

# Coarse type categories → MIME LIKE patterns (any pattern matches)
TYPE_CATEGORY_PATTERNS = {
    "image": ["image/%"],
    "document": ["%pdf%", "%word%", "%document%"],
    "spreadsheet": ["%excel%", "%sheet%"],
    "presentation": ["%powerpoint%", "%presentation%"],
    "text": ["text/%"],
}


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so user text matches literally."""
    return (
        text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def like_pattern(text: str) -> str:
    """Substring LIKE pattern for ``text``."""
    return f"%{escape_like(text)}%"


@dataclass
class SearchPredicates:
    """Accumulated WHERE clauses for one search."""

    base: List[Any] = field(default_factory=list)
    dimensions: List[Any] = field(default_factory=list)
    keyword: Optional[str] = None

    def all(self) -> List[Any]:
        return [*self.base, *self.dimensions]


class PredicateBuilder:
    """
    Builds SearchPredicates from validated criteria for one requester.

    Usage:
        predicates = PredicateBuilder(requester_id=4).build(criteria)
        count_q = select(func.count(distinct(Document.id))).where(*predicates.all())
    """

    def __init__(self, requester_id: Optional[int] = None, include_granted: bool = False):
        self._requester_id = requester_id
        self._include_granted = include_granted

    def build(self, criteria: SearchCriteria) -> SearchPredicates:
        self.validate(criteria)
        predicates = SearchPredicates(keyword=criteria.keyword)

        predicates.base.append(Document.is_deleted == false())
        predicates.base.append(self.visibility_clause(criteria.visibility))
        if criteria.keyword:
            predicates.base.append(self.keyword_clause(criteria.keyword))
        if criteria.owner_id is not None:
            predicates.base.append(Document.owner_id == criteria.owner_id)
        if criteria.date_from is not None:
            predicates.base.append(Document.created_at >= as_utc(criteria.date_from))
        if criteria.date_to is not None:
            predicates.base.append(Document.created_at <= as_utc(criteria.date_to))

        if criteria.tag_ids:
            predicates.dimensions.append(self.tag_clause(criteria.tag_ids, criteria.match_all))
        if criteria.type_category:
            predicates.dimensions.append(self.type_clause(criteria.type_category))
        if criteria.mime_type:
            predicates.dimensions.append(Document.mime_type == criteria.mime_type)

        return predicates

    @staticmethod
    def validate(criteria: SearchCriteria) -> None:
        """Reject malformed filter combinations."""
        if criteria.match_all and not criteria.tag_ids:
            raise InvalidCriteriaError(
                "match_all requires at least one tag id", field="tag_ids",
            )
        if (
            criteria.date_from is not None
            and criteria.date_to is not None
            and as_utc(criteria.date_from) > as_utc(criteria.date_to)
        ):
            raise InvalidCriteriaError(
                "date_from must not be later than date_to", field="date_from",
            )

    def visibility_clause(self, visibility: Optional[str]):
        if visibility == "public":
            return Document.is_public == true()
        if visibility == "private":
            return private_scope_predicate(self._requester_id, self._include_granted)
        return scope_predicate(self._requester_id, self._include_granted)

    @staticmethod
    def keyword_clause(keyword: str):
        pattern = like_pattern(keyword)
        return or_(
            Document.title.ilike(pattern, escape=LIKE_ESCAPE),
            Document.description.ilike(pattern, escape=LIKE_ESCAPE),
            Document.file_name.ilike(pattern, escape=LIKE_ESCAPE),
        )

    @staticmethod
    def tag_clause(tag_ids: List[int], match_all: bool):
        """
        Union: any listed tag. Intersection: grouped per document, the number
        of distinct matching tags must equal the size of the requested set.
        """
        ids = list(dict.fromkeys(tag_ids))
        matching = select(DocumentTag.document_id).where(DocumentTag.tag_id.in_(ids))
        if match_all:
            matching = matching.group_by(DocumentTag.document_id).having(
                func.count(distinct(DocumentTag.tag_id)) == len(ids)
            )
        return Document.id.in_(matching)

    @staticmethod
    def type_clause(category: str):
        patterns = TYPE_CATEGORY_PATTERNS[category]
        return or_(*[Document.mime_type.ilike(p) for p in patterns])
