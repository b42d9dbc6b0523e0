"""
DocVault — Access-control-aware document retrieval engine.

Components (leaf to root):
    tags.store          Tag Relation Store (associations + usage counters)
    tags.registry       Tag catalogue
    security.access     Access Policy Evaluator and grants
    search.predicates   Shared predicate builder
    search.composer     Query Composer
    search.facets       Facet Aggregator
    search.suggest      Title / tag / keyword suggestions
    sharing.links       Share-Link Manager
    documents.service   Document lifecycle

Every component takes a SQLAlchemy Session in its constructor.
"""

__version__ = "1.0.0"
__all__ = ["engine", "db", "documents", "search", "security", "sharing", "tags"]
