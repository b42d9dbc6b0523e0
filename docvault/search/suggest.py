"""
DocVault Search Suggestions — Title completions, popular tags and keywords.

Suggestions only ever look at public, non-deleted documents, so they are
safe to show to anonymous users.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import false, func, select, true
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docvault.db.models import Document, DocumentTag, Tag
from docvault.documents.models import TagRef
from docvault.engine.config import SearchConfig, get_config
from docvault.search.predicates import LIKE_ESCAPE, like_pattern

logger = logging.getLogger("docvault.search.suggest")

# Title words are split on whitespace and common punctuation (ASCII and CJK)
_WORD_SPLIT = re.compile(r"[\s\-_.,，。、]+")
_MIN_WORD_LENGTH = 2
_WORDS_PER_TITLE = 3


class SearchSuggestions(BaseModel):
    suggestions: List[str] = Field(default_factory=list)
    popular_tags: List[TagRef] = Field(default_factory=list)


def extract_keywords(title: str) -> List[str]:
    """First few meaningful words of a title, lower-cased."""
    words = [w for w in _WORD_SPLIT.split(title or "") if len(w) >= _MIN_WORD_LENGTH]
    return [w.lower() for w in words[:_WORDS_PER_TITLE]]


class SearchSuggester:
    def __init__(self, session: Session, config: Optional[SearchConfig] = None):
        self._session = session
        self._config = config or get_config().search

    def _public(self):
        return [Document.is_public == true(), Document.is_deleted == false()]

    def suggest(self, keyword: str = "", limit: Optional[int] = None) -> SearchSuggestions:
        """Titles containing ``keyword`` (most viewed first) plus popular tags."""
        limit = limit or self._config.suggestion_limit
        try:
            titles: List[str] = []
            keyword = (keyword or "").strip()
            if keyword:
                rows = self._session.execute(
                    select(Document.title, func.max(Document.view_count), func.max(Document.created_at))
                    .where(*self._public(), Document.title.ilike(like_pattern(keyword), escape=LIKE_ESCAPE))
                    .group_by(Document.title)
                    .order_by(func.max(Document.view_count).desc(), func.max(Document.created_at).desc())
                    .limit(limit)
                ).all()
                titles = [row[0] for row in rows]
            return SearchSuggestions(suggestions=titles, popular_tags=self.popular_tags())
        except SQLAlchemyError as e:
            logger.error(f"Suggestion lookup failed: {e}")
            return SearchSuggestions()

    def popular_tags(self, limit: int = 10) -> List[TagRef]:
        """Tags ranked by how many public documents carry them."""
        doc_count = func.count(DocumentTag.document_id)
        try:
            rows = self._session.execute(
                select(Tag.id, Tag.name, Tag.color)
                .join(DocumentTag, DocumentTag.tag_id == Tag.id)
                .join(Document, Document.id == DocumentTag.document_id)
                .where(*self._public())
                .group_by(Tag.id, Tag.name, Tag.color)
                .order_by(doc_count.desc(), Tag.name)
                .limit(limit)
            ).all()
        except SQLAlchemyError as e:
            logger.error(f"Popular tag lookup failed: {e}")
            return []
        return [TagRef(id=row.id, name=row.name, color=row.color) for row in rows]

    def popular_keywords(self, limit: int = 20) -> List[str]:
        """
        Keywords drawn from the most viewed/downloaded public titles.

        Up to three words per title, de-duplicated in popularity order.
        """
        popularity = Document.view_count + Document.download_count
        try:
            titles = self._session.execute(
                select(Document.title)
                .where(*self._public(), Document.title != "")
                .order_by(popularity.desc(), Document.created_at.desc(), Document.id.desc())
                .limit(limit * 2)
            ).scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Popular keyword lookup failed: {e}")
            return []

        keywords: List[str] = []
        seen = set()
        for title in titles:
            for word in extract_keywords(title):
                if word not in seen:
                    seen.add(word)
                    keywords.append(word)
        return keywords[:limit]
