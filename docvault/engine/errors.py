"""
DocVault Error Hierarchy — Structured exceptions for the retrieval engine.

Every error carries a machine-readable ``kind`` plus a human message so the
calling layer (HTTP, CLI) can pick a transport status without parsing text.

Hierarchy:
    DocVaultError
    ├── NotFoundError         — Document / tag / link absent or soft-deleted
    ├── ForbiddenError        — Access policy denies the requested level
    ├── ConflictError         — Duplicate tag name, share token collision
    ├── InvalidCriteriaError  — Malformed filter combination
    └── StorageFailureError   — Underlying engine error / transaction abort
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class DocVaultError(Exception):
    """
    Base error for all DocVault engine failures.
    All context is serializable to JSON for the structured event log.
    """

    kind: str = "error"

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.resource_type: Optional[str] = context.get("resource_type")
        self.resource_id: Optional[Any] = context.get("resource_id")
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to a JSON-compatible dict."""
        return {
            "kind": self.kind,
            "error_type": self.error_type,
            "message": self.message,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("resource_type", "resource_id")
            },
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.resource_type:
            parts.append(f"resource={self.resource_type}:{self.resource_id}")
        return " | ".join(parts)


class NotFoundError(DocVaultError):
    """Document, tag or share link does not exist (or is soft-deleted)."""

    kind = "not_found"


class ForbiddenError(DocVaultError):
    """
    Access denied by the access policy.
    Includes the requester and the level that was required.
    """

    kind = "forbidden"

    def __init__(self, message: str, **context: Any):
        self.requester_id: Optional[int] = context.get("requester_id")
        self.required_level: Optional[str] = context.get("required_level")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["requester_id"] = self.requester_id
        d["required_level"] = self.required_level
        return d


class ConflictError(DocVaultError):
    """Uniqueness violated: duplicate tag name or share token collision."""

    kind = "conflict"


class InvalidCriteriaError(DocVaultError):
    """
    Search criteria or operation arguments are malformed
    (e.g. match_all requested with an empty tag set).
    """

    kind = "invalid_criteria"

    def __init__(self, message: str, **context: Any):
        self.field: Optional[str] = context.get("field")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["field"] = self.field
        return d


class StorageFailureError(DocVaultError):
    """The storage engine failed or a transaction was aborted."""

    kind = "storage_failure"

    def __init__(self, message: str, **context: Any):
        self.operation: Optional[str] = context.get("operation")
        super().__init__(message, **context)
