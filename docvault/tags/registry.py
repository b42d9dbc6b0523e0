"""
DocVault Tag Registry — Tag catalogue CRUD and lookups.

Names are unique and case-sensitive. A tag still attached to documents can
only be deleted with ``force=True``, which drops its associations first.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from docvault.db.models import DEFAULT_TAG_COLOR, DocumentTag, Tag
from docvault.db.session import atomic, storage_errors
from docvault.engine.errors import ConflictError, InvalidCriteriaError, NotFoundError
from docvault.search.predicates import like_pattern
from docvault.tags.store import TagRelationStore

logger = logging.getLogger("docvault.tags.registry")


class TagInfo(BaseModel):
    id: int
    name: str
    color: str
    description: Optional[str] = None
    usage_count: int = 0
    created_by: Optional[int] = None

    @classmethod
    def from_row(cls, tag: Tag) -> "TagInfo":
        return cls(
            id=tag.id,
            name=tag.name,
            color=tag.color,
            description=tag.description,
            usage_count=tag.usage_count,
            created_by=tag.created_by,
        )


class TagRegistry:
    def __init__(self, session: Session):
        self._session = session

    def _get_row(self, tag_id: int) -> Tag:
        with storage_errors("load_tag", resource_type="tag", resource_id=tag_id):
            tag = self._session.get(Tag, tag_id)
        if tag is None:
            raise NotFoundError(f"Tag {tag_id} not found", resource_type="tag", resource_id=tag_id)
        return tag

    def _ensure_name_free(self, name: str, exclude_id: Optional[int] = None) -> None:
        query = select(Tag.id).where(Tag.name == name)
        if exclude_id is not None:
            query = query.where(Tag.id != exclude_id)
        with storage_errors("check_tag_name", resource_type="tag"):
            taken = self._session.execute(query).first() is not None
        if taken:
            raise ConflictError(f"Tag name '{name}' already exists", resource_type="tag", name=name)

    @staticmethod
    def _clean_name(name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise InvalidCriteriaError("Tag name must not be blank", field="name")
        return name

    def create(
        self,
        name: str,
        created_by: Optional[int] = None,
        color: Optional[str] = None,
        description: Optional[str] = None,
    ) -> TagInfo:
        """
        Create a tag.

        Raises:
            ConflictError: a tag with exactly this name exists.
        """
        name = self._clean_name(name)
        self._ensure_name_free(name)
        tag = Tag(
            name=name,
            color=color or DEFAULT_TAG_COLOR,
            description=description,
            created_by=created_by,
            usage_count=0,
        )
        with storage_errors("create_tag", resource_type="tag"):
            try:
                with atomic(self._session):
                    self._session.add(tag)
                    self._session.flush()
            except IntegrityError as e:
                # Lost a race with a concurrent insert of the same name
                raise ConflictError(f"Tag name '{name}' already exists", resource_type="tag", name=name) from e
        logger.info(f"Created tag '{name}' (id={tag.id})")
        return TagInfo.from_row(tag)

    def update(
        self,
        tag_id: int,
        name: Optional[str] = None,
        color: Optional[str] = None,
        description: Optional[str] = None,
    ) -> TagInfo:
        tag = self._get_row(tag_id)
        if name is not None:
            name = self._clean_name(name)
            if name != tag.name:
                self._ensure_name_free(name, exclude_id=tag_id)
                tag.name = name
        if color is not None:
            tag.color = color
        if description is not None:
            tag.description = description
        with storage_errors("update_tag", resource_type="tag", resource_id=tag_id):
            with atomic(self._session):
                self._session.flush()
        return TagInfo.from_row(tag)

    def delete(self, tag_id: int, force: bool = False) -> bool:
        """
        Delete a tag.

        Raises:
            NotFoundError: unknown tag.
            ConflictError: tag is still attached and ``force`` is False.
        """
        tag = self._get_row(tag_id)
        with storage_errors("delete_tag", resource_type="tag", resource_id=tag_id):
            in_use = self._session.execute(
                select(DocumentTag.id).where(DocumentTag.tag_id == tag_id).limit(1)
            ).first() is not None
        if in_use and not force:
            raise ConflictError(
                f"Tag '{tag.name}' is still attached to documents",
                resource_type="tag",
                resource_id=tag_id,
            )

        with storage_errors("delete_tag", resource_type="tag", resource_id=tag_id):
            with atomic(self._session):
                if in_use:
                    TagRelationStore(self._session).detach_tag(tag_id)
                self._session.delete(tag)
                self._session.flush()
        logger.info(f"Deleted tag {tag_id} (force={force})")
        return True

    def get(self, tag_id: int) -> TagInfo:
        return TagInfo.from_row(self._get_row(tag_id))

    def get_by_name(self, name: str) -> Optional[TagInfo]:
        with storage_errors("get_tag_by_name", resource_type="tag"):
            tag = self._session.execute(select(Tag).where(Tag.name == name)).scalar_one_or_none()
        return TagInfo.from_row(tag) if tag else None

    def _fetch(self, operation: str, query) -> List[TagInfo]:
        with storage_errors(operation, resource_type="tag"):
            rows = self._session.execute(query).scalars().all()
        return [TagInfo.from_row(tag) for tag in rows]

    def list_all(self) -> List[TagInfo]:
        return self._fetch("list_tags", select(Tag).order_by(Tag.name))

    def search(self, text: str, limit: int = 20) -> List[TagInfo]:
        """Tags whose name contains ``text`` (case-insensitive), most used first."""
        return self._fetch(
            "search_tags",
            select(Tag)
            .where(Tag.name.ilike(like_pattern(text), escape="\\"))
            .order_by(Tag.usage_count.desc(), Tag.name)
            .limit(limit),
        )

    def popular(self, limit: int = 10) -> List[TagInfo]:
        return self._fetch(
            "popular_tags",
            select(Tag)
            .where(Tag.usage_count > 0)
            .order_by(Tag.usage_count.desc(), Tag.name)
            .limit(limit),
        )

    def by_creator(self, user_id: int) -> List[TagInfo]:
        return self._fetch(
            "tags_by_creator",
            select(Tag).where(Tag.created_by == user_id).order_by(Tag.name),
        )
