"""
DocVault Documents — Search/result models and the document lifecycle service.

The service lives in ``docvault.documents.service``; it is not re-exported
here because the tag store depends on these models.
"""

from docvault.documents.models import (  # noqa: F401
    DocumentStats,
    DocumentSummary,
    FacetCount,
    SearchCriteria,
    SearchFacets,
    SearchPage,
    TagRef,
)

__all__ = [
    "DocumentStats",
    "DocumentSummary",
    "FacetCount",
    "SearchCriteria",
    "SearchFacets",
    "SearchPage",
    "TagRef",
]
