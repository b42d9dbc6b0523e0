"""
DocVault Access Policy — Visibility and per-document permission levels.

Implements:
- resolve_access(): pure rule evaluation over document + grant level
- AccessPolicyEvaluator: fetches the requester's grant and delegates
- Grant administration (grant / revoke / list)
- scope_predicate(): the same rules expressed as a SQL predicate so
  searches enforce visibility in the query rather than by post-filtering
- Password utilities (bcrypt) for share links

Rules, in order:
    1. Public document → readable by everyone (authenticated or not)
    2. Requester is the owner → read + write + admin
    3. Explicit grant → level per hierarchy (admin ⊃ write ⊃ read)
    4. Otherwise → nothing

Grants are re-read on every evaluate() call; nothing is cached.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import List, Optional

import bcrypt
from pydantic import BaseModel
from sqlalchemy import and_, delete, false, or_, select, true
from sqlalchemy.orm import Session

from docvault.db.models import Document, PermissionGrant, User
from docvault.db.session import atomic, storage_errors
from docvault.engine.errors import ForbiddenError, InvalidCriteriaError, NotFoundError
from docvault.engine.logging import log, log_access_denied

logger = logging.getLogger("docvault.security.access")


class PermissionLevel(str, enum.Enum):
    READ = "read"
    WRITE = "write"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    def covers(self, other: "PermissionLevel") -> bool:
        return self.rank >= other.rank


_LEVEL_RANK = {
    PermissionLevel.READ: 1,
    PermissionLevel.WRITE: 2,
    PermissionLevel.ADMIN: 3,
}

# Permission hierarchy: higher includes lower
PERMISSION_HIERARCHY = {
    PermissionLevel.ADMIN: {PermissionLevel.ADMIN, PermissionLevel.WRITE, PermissionLevel.READ},
    PermissionLevel.WRITE: {PermissionLevel.WRITE, PermissionLevel.READ},
    PermissionLevel.READ: {PermissionLevel.READ},
}


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of one access evaluation. Threaded through callers as a value."""

    can_read: bool = False
    can_write: bool = False
    can_admin: bool = False
    is_owner: bool = False

    def allows(self, level: PermissionLevel) -> bool:
        if level == PermissionLevel.ADMIN:
            return self.can_admin
        if level == PermissionLevel.WRITE:
            return self.can_write
        return self.can_read


DENY_ALL = AccessDecision()


def resolve_access(
    document: Document,
    requester_id: Optional[int],
    grant_level: Optional[PermissionLevel] = None,
) -> AccessDecision:
    """Apply the access rules to a document and the requester's grant (if any)."""
    if requester_id is not None and document.owner_id == requester_id:
        return AccessDecision(can_read=True, can_write=True, can_admin=True, is_owner=True)

    implied = PERMISSION_HIERARCHY.get(grant_level, set()) if grant_level else set()
    return AccessDecision(
        can_read=bool(document.is_public) or PermissionLevel.READ in implied,
        can_write=PermissionLevel.WRITE in implied,
        can_admin=PermissionLevel.ADMIN in implied,
        is_owner=False,
    )


def scope_predicate(requester_id: Optional[int], include_granted: bool = False):
    """
    SQL predicate for "documents the requester may read by default".

    No requester → public only. With a requester → public OR owned, plus
    OR granted when ``include_granted`` is set.
    """
    if requester_id is None:
        return Document.is_public == true()
    clauses = [Document.is_public == true(), Document.owner_id == requester_id]
    if include_granted:
        clauses.append(granted_predicate(requester_id))
    return or_(*clauses)


def private_scope_predicate(requester_id: Optional[int], include_granted: bool = False):
    """Predicate for an explicit ``visibility=private`` filter."""
    if requester_id is None:
        return false()
    own = Document.owner_id == requester_id
    if include_granted:
        own = or_(own, granted_predicate(requester_id))
    return and_(Document.is_public == false(), own)


def granted_predicate(requester_id: int):
    """Document has any grant (read or higher) for the requester."""
    return Document.id.in_(
        select(PermissionGrant.resource_id).where(PermissionGrant.grantee_id == requester_id)
    )


class AccessPolicyEvaluator:
    """
    Evaluates access decisions and administers grants for one session.

    Usage:
        evaluator = AccessPolicyEvaluator(session)
        decision = evaluator.evaluate(document, requester_id=4)
        evaluator.require(document, 4, PermissionLevel.WRITE)
    """

    def __init__(self, session: Session):
        self._session = session

    def grant_level(self, document_id: int, requester_id: int) -> Optional[PermissionLevel]:
        with storage_errors("evaluate_access", resource_type="document", resource_id=document_id):
            level = self._session.execute(
                select(PermissionGrant.level).where(
                    PermissionGrant.resource_id == document_id,
                    PermissionGrant.grantee_id == requester_id,
                )
            ).scalar_one_or_none()
        return PermissionLevel(level) if level else None

    def evaluate(self, document: Document, requester_id: Optional[int] = None) -> AccessDecision:
        """Decide what the requester may do with the document."""
        if requester_id is None or document.owner_id == requester_id:
            return resolve_access(document, requester_id)
        return resolve_access(document, requester_id, self.grant_level(document.id, requester_id))

    def require(
        self,
        document: Document,
        requester_id: Optional[int],
        level: PermissionLevel = PermissionLevel.READ,
    ) -> AccessDecision:
        """
        Evaluate and enforce a minimum level.

        Raises:
            ForbiddenError: when the decision does not cover ``level``.
        """
        level = PermissionLevel(level)
        decision = self.evaluate(document, requester_id)
        if not decision.allows(level):
            log(log_access_denied(document.id, requester_id, level.value))
            raise ForbiddenError(
                f"Requester lacks {level.value} access to document {document.id}",
                resource_type="document",
                resource_id=document.id,
                requester_id=requester_id,
                required_level=level.value,
            )
        return decision

    # -------------------------------------------------------------------
    # Grant administration
    # -------------------------------------------------------------------

    def _active_document(self, document_id: int) -> Document:
        with storage_errors("load_document", resource_type="document", resource_id=document_id):
            document = self._session.get(Document, document_id)
        if document is None or document.is_deleted:
            raise NotFoundError(
                f"Document {document_id} not found",
                resource_type="document",
                resource_id=document_id,
            )
        return document

    def grant(
        self,
        document_id: int,
        grantee_id: int,
        level: PermissionLevel,
        granted_by: Optional[int] = None,
    ) -> PermissionGrant:
        """
        Grant (or re-grant, replacing the level) access to a non-owner.

        Raises:
            NotFoundError: document absent or soft-deleted, or unknown grantee.
            InvalidCriteriaError: the grantee owns the document.
            StorageFailureError: the upsert failed (the session stays usable).
        """
        level = PermissionLevel(level)
        document = self._active_document(document_id)
        if document.owner_id == grantee_id:
            raise InvalidCriteriaError(
                "The owner already holds full access; grants to the owner are not allowed",
                field="grantee_id",
                resource_type="document",
                resource_id=document_id,
            )

        with storage_errors("grant", resource_type="document", resource_id=document_id):
            grantee = self._session.get(User, grantee_id)
            if grantee is None:
                raise NotFoundError(
                    f"User {grantee_id} not found",
                    resource_type="user",
                    resource_id=grantee_id,
                )

            with atomic(self._session):
                row = self._session.execute(
                    select(PermissionGrant).where(
                        PermissionGrant.resource_id == document_id,
                        PermissionGrant.grantee_id == grantee_id,
                    )
                ).scalar_one_or_none()
                if row is None:
                    row = PermissionGrant(
                        resource_id=document_id,
                        grantee_id=grantee_id,
                        level=level.value,
                        granted_by=granted_by,
                    )
                    self._session.add(row)
                else:
                    row.level = level.value
                    row.granted_by = granted_by
                self._session.flush()
        logger.info(f"Granted {level.value} on document {document_id} to user {grantee_id}")
        return row

    def revoke(self, document_id: int, grantee_id: int) -> bool:
        with storage_errors("revoke", resource_type="document", resource_id=document_id):
            result = self._session.execute(
                delete(PermissionGrant).where(
                    PermissionGrant.resource_id == document_id,
                    PermissionGrant.grantee_id == grantee_id,
                )
            )
        return result.rowcount > 0

    def list_grants(self, document_id: int) -> List[GrantInfo]:
        with storage_errors("list_grants", resource_type="document", resource_id=document_id):
            rows = self._session.execute(
                select(PermissionGrant)
                .where(PermissionGrant.resource_id == document_id)
                .order_by(PermissionGrant.created_at, PermissionGrant.id)
            ).scalars().all()
        return [
            GrantInfo(
                document_id=row.resource_id,
                grantee_id=row.grantee_id,
                level=PermissionLevel(row.level),
                granted_by=row.granted_by,
            )
            for row in rows
        ]


class GrantInfo(BaseModel):
    document_id: int
    grantee_id: int
    level: PermissionLevel
    granted_by: Optional[int] = None


# ---------------------------------------------------------------------------
# Password Utilities
# ---------------------------------------------------------------------------

def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its bcrypt hash."""
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
