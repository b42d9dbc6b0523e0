"""
DocVault Search & Document Models — Pydantic definitions exchanged with callers.

SearchCriteria: validated, type-coerced filter set for the Query Composer
DocumentSummary: one row of a result page (with tags, creator, labels)
SearchPage: a page of summaries plus the total over the whole filtered set
SearchFacets: type / tag / creator breakdowns over the same base set
DocumentStats: repository totals
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from docvault.db.base import as_utc
from docvault.db.models import Document

TypeCategory = Literal["image", "document", "spreadsheet", "presentation", "text"]
Visibility = Literal["public", "private"]
SortKey = Literal["relevance", "created", "size", "view_count", "download_count"]
SortDirection = Literal["asc", "desc"]


class TagRef(BaseModel):
    """A tag as attached to a document."""

    id: int
    name: str
    color: str


class SearchCriteria(BaseModel):
    """
    Heterogeneous search filters. Every field is optional; an empty
    criteria object means "everything the requester may see".

    Cross-field rules (match_all needs tags, date range order, page bounds)
    are checked by the Query Composer and reported as InvalidCriteriaError.
    """

    keyword: Optional[str] = Field(default=None, description="Case-insensitive substring")
    tag_ids: Optional[List[int]] = Field(default=None, description="Tag identities to filter on")
    match_all: bool = Field(default=False, description="Require every tag (AND) instead of any (OR)")
    type_category: Optional[TypeCategory] = None
    mime_type: Optional[str] = Field(default=None, description="Exact MIME type")
    owner_id: Optional[int] = None
    visibility: Optional[Visibility] = None
    date_from: Optional[datetime] = Field(default=None, description="Inclusive lower bound on created_at")
    date_to: Optional[datetime] = Field(default=None, description="Inclusive upper bound on created_at")
    sort_key: SortKey = "relevance"
    sort_direction: SortDirection = "desc"
    page: int = 1
    page_size: Optional[int] = Field(default=None, description="Defaults to search.default_page_size")

    @field_validator("keyword")
    @classmethod
    def normalize_keyword(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("tag_ids")
    @classmethod
    def dedupe_tag_ids(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        if v is None:
            return None
        return list(dict.fromkeys(v))


class DocumentSummary(BaseModel):
    """A document row as returned in search results."""

    id: int
    title: str
    description: Optional[str] = None
    file_name: str
    file_size: int
    mime_type: str
    is_public: bool
    owner_id: int
    creator_name: Optional[str] = None
    view_count: int = 0
    download_count: int = 0
    created_at: datetime
    updated_at: Optional[datetime] = None
    tags: List[TagRef] = Field(default_factory=list)
    friendly_type: str = "other"
    formatted_size: str = "0 B"

    @classmethod
    def from_row(
        cls,
        document: Document,
        creator_name: Optional[str] = None,
        tags: Optional[List[TagRef]] = None,
    ) -> "DocumentSummary":
        return cls(
            id=document.id,
            title=document.title,
            description=document.description,
            file_name=document.file_name,
            file_size=document.file_size,
            mime_type=document.mime_type,
            is_public=document.is_public,
            owner_id=document.owner_id,
            creator_name=creator_name,
            view_count=document.view_count,
            download_count=document.download_count,
            created_at=as_utc(document.created_at),
            updated_at=as_utc(document.updated_at),
            tags=tags or [],
            friendly_type=friendly_type(document.mime_type),
            formatted_size=format_file_size(document.file_size),
        )


class SearchPage(BaseModel):
    items: List[DocumentSummary]
    total: int
    page: int
    page_size: int
    has_more: bool
    search_time_ms: float = 0.0


class FacetCount(BaseModel):
    """One bucket of a facet breakdown. ``key`` is the tag/creator id when applicable."""

    label: str
    count: int
    key: Optional[int] = None


class SearchFacets(BaseModel):
    by_type: List[FacetCount] = Field(default_factory=list)
    by_tag: List[FacetCount] = Field(default_factory=list)
    by_creator: List[FacetCount] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.by_type or self.by_tag or self.by_creator)


class DocumentStats(BaseModel):
    total_documents: int = 0
    public_documents: int = 0
    private_documents: int = 0
    total_size: int = 0
    total_views: int = 0
    total_downloads: int = 0
    owner_documents: Optional[int] = None


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------

_SIZE_UNITS = ["B", "KB", "MB", "GB", "TB"]


def format_file_size(size: int) -> str:
    """Human-readable byte size: 0 B, 512 B, 1.5 KB, 2 MB."""
    if size <= 0:
        return "0 B"
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {_SIZE_UNITS[unit]}"


def friendly_type(mime_type: Optional[str]) -> str:
    """Map a MIME type to the display label used by the type facet."""
    mime = (mime_type or "").lower()
    if mime.startswith("image/"):
        return "image"
    if "pdf" in mime:
        return "pdf"
    if "word" in mime or "document" in mime:
        return "word"
    if "excel" in mime or "sheet" in mime:
        return "excel"
    if "powerpoint" in mime or "presentation" in mime:
        return "powerpoint"
    if mime.startswith("text/"):
        return "text"
    return "other"
