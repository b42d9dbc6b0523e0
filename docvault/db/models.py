"""
DocVault Models — SQLAlchemy models for the document repository.

Tables defined here:
1. users              — Account rows (creator labels, grant targets)
2. documents          — File metadata, visibility, counters (soft delete)
3. tags               — Tag catalogue with denormalized usage_count
4. document_tags      — Document ↔ Tag junction
5. permission_grants  — Per-document read/write/admin grants
6. share_links        — Anonymous, time- and count-bounded access tokens
"""

from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from docvault.db.base import AuditMixin, Base, SoftDeleteMixin, utcnow

DEFAULT_TAG_COLOR = "#1890ff"


# ---------------------------------------------------------------------------
# 1. Users
# ---------------------------------------------------------------------------

class User(Base, AuditMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    full_name = Column(String(200), nullable=True)
    email = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    @property
    def display_name(self) -> str:
        return self.full_name or self.username

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}')>"


# ---------------------------------------------------------------------------
# 2. Documents
# ---------------------------------------------------------------------------

class Document(Base, AuditMixin, SoftDeleteMixin):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    file_name = Column(String(255), nullable=False)
    file_path = Column(String(500), nullable=False)
    file_size = Column(BigInteger, default=0, nullable=False)
    mime_type = Column(String(100), nullable=False)
    file_hash = Column(String(128), nullable=True, index=True)
    is_public = Column(Boolean, default=False, nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    view_count = Column(Integer, default=0, nullable=False)
    download_count = Column(Integer, default=0, nullable=False)

    owner = relationship("User", lazy="select")

    __table_args__ = (
        CheckConstraint("file_size >= 0", name="ck_documents_file_size"),
        Index("idx_documents_owner_deleted", "owner_id", "is_deleted"),
    )

    def __repr__(self) -> str:
        return f"<Document(id={self.id}, title='{self.title}', public={self.is_public})>"


# ---------------------------------------------------------------------------
# 3. Tags
# ---------------------------------------------------------------------------

class Tag(Base, AuditMixin):
    __tablename__ = "tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Case-sensitive: "Report" and "report" are distinct tags
    name = Column(String(50), unique=True, nullable=False)
    color = Column(String(7), default=DEFAULT_TAG_COLOR, nullable=False)
    description = Column(Text, nullable=True)
    usage_count = Column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<Tag(id={self.id}, name='{self.name}', usage={self.usage_count})>"


# ---------------------------------------------------------------------------
# 4. Document ↔ Tag junction
# ---------------------------------------------------------------------------

class DocumentTag(Base):
    __tablename__ = "document_tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(
        Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    tag_id = Column(
        Integer, ForeignKey("tags.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("document_id", "tag_id", name="uq_document_tags"),
    )


# ---------------------------------------------------------------------------
# 5. Permission grants
# ---------------------------------------------------------------------------

class PermissionGrant(Base):
    __tablename__ = "permission_grants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    resource_id = Column(
        Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    grantee_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    level = Column(String(10), nullable=False)
    granted_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("resource_id", "grantee_id", name="uq_permission_grants"),
        CheckConstraint(
            "level IN ('read', 'write', 'admin')",
            name="ck_permission_grants_level",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<PermissionGrant(resource={self.resource_id}, "
            f"grantee={self.grantee_id}, level='{self.level}')>"
        )


# ---------------------------------------------------------------------------
# 6. Share links
# ---------------------------------------------------------------------------

class ShareLink(Base):
    __tablename__ = "share_links"

    id = Column(Integer, primary_key=True, autoincrement=True)
    token = Column(String(128), unique=True, nullable=False, index=True)
    document_id = Column(
        Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    expires_at = Column(DateTime(timezone=True), nullable=True)
    password_hash = Column(String(255), nullable=True)
    download_limit = Column(Integer, nullable=True)
    download_count = Column(Integer, default=0, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "download_limit IS NULL OR download_limit > 0",
            name="ck_share_links_download_limit",
        ),
    )

    def __repr__(self) -> str:
        return f"<ShareLink(id={self.id}, document={self.document_id}, count={self.download_count})>"
