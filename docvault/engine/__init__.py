"""DocVault Engine — Errors, configuration, structured event logging."""

from docvault.engine.errors import (  # noqa: F401
    ConflictError,
    DocVaultError,
    ForbiddenError,
    InvalidCriteriaError,
    NotFoundError,
    StorageFailureError,
)

__all__ = [
    "DocVaultError",
    "NotFoundError",
    "ForbiddenError",
    "ConflictError",
    "InvalidCriteriaError",
    "StorageFailureError",
]
