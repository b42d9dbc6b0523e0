"""
DocVault Database Base — SQLAlchemy declarative base and mixins.

Provides:
- Base: SQLAlchemy declarative base for all DocVault models
- AuditMixin: created_at, updated_at, created_by, updated_by
- SoftDeleteMixin: is_deleted, deleted_at, deleted_by
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, Integer
from sqlalchemy.orm import DeclarativeBase


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a timestamp to aware UTC.

    Naive values (as read back from SQLite) are taken to be UTC already;
    aware values are converted.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all DocVault models."""
    pass


class AuditMixin:
    """Adds created_at, updated_at, created_by, updated_by columns."""
    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
    created_by = Column(Integer, nullable=True)
    updated_by = Column(Integer, nullable=True)


class SoftDeleteMixin:
    """Adds is_deleted, deleted_at, deleted_by columns for soft delete support."""
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by = Column(Integer, nullable=True)
