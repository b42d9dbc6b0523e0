"""
DocVault Share-Link Manager — Anonymous, bounded access to one document.

Link lifecycle:
    active ──(expires_at passes)──────────▶ expired    (terminal)
    active ──(download_count hits limit)──▶ exhausted  (terminal)

Rows persist in both terminal states until revoked or purged.

Redemption checks, in order: token exists (and its document is live) →
not expired → below the download limit → password. The final increment
is a conditional UPDATE, so concurrent redemptions can never push the
count past the limit; a zero rowcount means another redemption won.

Authorization for list_for()/revoke() happens at the call site via the
Access Policy Evaluator.
"""

from __future__ import annotations

import enum
import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from pydantic import BaseModel
from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from docvault.db.base import as_utc, utcnow
from docvault.db.models import Document, ShareLink, User
from docvault.db.session import atomic, storage_errors
from docvault.documents.models import DocumentSummary
from docvault.engine.config import SharingConfig, get_config
from docvault.engine.errors import (
    ConflictError,
    InvalidCriteriaError,
    NotFoundError,
)
from docvault.engine.logging import log, log_share_event, log_system_event
from docvault.security.access import hash_password, verify_password

logger = logging.getLogger("docvault.sharing.links")


class ExpiryPolicy(str, enum.Enum):
    NEVER = "never"
    ONE_DAY = "1d"
    SEVEN_DAYS = "7d"
    THIRTY_DAYS = "30d"

    def resolve(self, now: datetime) -> Optional[datetime]:
        """Absolute expiry for a link created at ``now`` (None = never)."""
        days = _EXPIRY_DAYS[self]
        return None if days is None else now + timedelta(days=days)


_EXPIRY_DAYS = {
    ExpiryPolicy.NEVER: None,
    ExpiryPolicy.ONE_DAY: 1,
    ExpiryPolicy.SEVEN_DAYS: 7,
    ExpiryPolicy.THIRTY_DAYS: 30,
}


class LinkState(str, enum.Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"


class RedemptionStatus(str, enum.Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"
    PASSWORD_REQUIRED = "password_required"
    PASSWORD_MISMATCH = "password_mismatch"


class ShareLinkInfo(BaseModel):
    id: int
    token: str
    document_id: int
    expires_at: Optional[datetime] = None
    has_password: bool = False
    download_limit: Optional[int] = None
    download_count: int = 0
    created_by: int
    created_at: datetime
    state: LinkState = LinkState.ACTIVE

    @classmethod
    def from_row(cls, link: ShareLink, now: Optional[datetime] = None) -> "ShareLinkInfo":
        return cls(
            id=link.id,
            token=link.token,
            document_id=link.document_id,
            expires_at=as_utc(link.expires_at),
            has_password=link.password_hash is not None,
            download_limit=link.download_limit,
            download_count=link.download_count,
            created_by=link.created_by,
            created_at=as_utc(link.created_at),
            state=link_state(link, now or utcnow()),
        )


class RedemptionResult(BaseModel):
    status: RedemptionStatus
    document: Optional[DocumentSummary] = None
    link: Optional[ShareLinkInfo] = None

    @property
    def ok(self) -> bool:
        return self.status == RedemptionStatus.OK


def link_state(link: ShareLink, now: datetime) -> LinkState:
    """Expiry wins over exhaustion when both apply."""
    expires_at = as_utc(link.expires_at)
    if expires_at is not None and expires_at <= now:
        return LinkState.EXPIRED
    if link.download_limit is not None and link.download_count >= link.download_limit:
        return LinkState.EXHAUSTED
    return LinkState.ACTIVE


class ShareLinkManager:
    """
    Issues, redeems and retires share links for one session.

    Usage:
        manager = ShareLinkManager(session)
        info = manager.create(7, "7d", creator_id=3, download_limit=1)
        result = manager.redeem(info.token)
    """

    def __init__(
        self,
        session: Session,
        config: Optional[SharingConfig] = None,
        token_factory: Optional[Callable[[int], str]] = None,
    ):
        self._session = session
        self._config = config or get_config().sharing
        self._token_factory = token_factory or secrets.token_urlsafe

    # -------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------

    def create(
        self,
        document_id: int,
        expiry: str | ExpiryPolicy | None,
        creator_id: int,
        password: Optional[str] = None,
        download_limit: Optional[int] = None,
    ) -> ShareLinkInfo:
        """
        Issue a new link for a live document.

        Raises:
            NotFoundError: document absent or soft-deleted, or unknown creator.
            InvalidCriteriaError: unknown expiry or non-positive download limit.
            ConflictError: generated token collides with an existing link.
            StorageFailureError: the insert failed for any other reason.
        """
        if self._live_document(document_id) is None:
            raise NotFoundError(
                f"Document {document_id} not found",
                resource_type="document",
                resource_id=document_id,
            )
        self._require_creator(creator_id)

        try:
            policy = ExpiryPolicy(expiry or self._config.default_expiry)
        except ValueError:
            raise InvalidCriteriaError(
                f"Unknown expiry '{expiry}', expected one of {[p.value for p in ExpiryPolicy]}",
                field="expiry",
            ) from None
        if download_limit is not None and download_limit < 1:
            raise InvalidCriteriaError("download_limit must be at least 1", field="download_limit")

        token = self._token_factory(self._config.token_bytes)
        if self._token_taken(token):
            raise ConflictError("Share token collision", resource_type="share_link")

        now = utcnow()
        link = ShareLink(
            token=token,
            document_id=document_id,
            expires_at=policy.resolve(now),
            password_hash=hash_password(password, self._config.password_rounds) if password else None,
            download_limit=download_limit,
            download_count=0,
            created_by=creator_id,
            created_at=now,
        )
        with storage_errors("create_share_link", resource_type="document", resource_id=document_id):
            try:
                with atomic(self._session):
                    self._session.add(link)
                    self._session.flush()
            except IntegrityError as e:
                # Only a concurrent insert of the same token is a conflict
                if self._token_taken(token):
                    raise ConflictError("Share token collision", resource_type="share_link") from e
                raise

        log(log_share_event("share_link_created", link.id, document_id, "created", requester_id=creator_id))
        logger.info(f"Created share link {link.id} for document {document_id} (expiry={policy.value})")
        return ShareLinkInfo.from_row(link, now)

    def _require_creator(self, creator_id: int) -> None:
        with storage_errors("create_share_link", resource_type="user", resource_id=creator_id):
            creator = self._session.get(User, creator_id)
        if creator is None:
            raise NotFoundError(
                f"User {creator_id} not found",
                resource_type="user",
                resource_id=creator_id,
            )

    def _token_taken(self, token: str) -> bool:
        with storage_errors("create_share_link", resource_type="share_link"):
            return self._session.execute(
                select(ShareLink.id).where(ShareLink.token == token)
            ).first() is not None

    # -------------------------------------------------------------------
    # Redemption
    # -------------------------------------------------------------------

    def _load(self, token: str) -> Optional[ShareLink]:
        with storage_errors("load_share_link", resource_type="share_link"):
            return self._session.execute(
                select(ShareLink).where(ShareLink.token == token)
            ).scalar_one_or_none()

    def _live_document(self, document_id: int) -> Optional[Document]:
        with storage_errors("load_document", resource_type="document", resource_id=document_id):
            document = self._session.get(Document, document_id)
        if document is None or document.is_deleted:
            return None
        return document

    def redeem(self, token: str, password: Optional[str] = None) -> RedemptionResult:
        """
        Validate a token and count one download.

        Never raises for an unusable link; the reason is the result status.

        Raises:
            StorageFailureError: a lookup or the conditional increment failed
                in storage.
        """
        link = self._load(token)
        document = self._live_document(link.document_id) if link is not None else None
        if link is None or document is None:
            return self._refuse(RedemptionStatus.NOT_FOUND, link)

        now = utcnow()
        state = link_state(link, now)
        if state == LinkState.EXPIRED:
            return self._refuse(RedemptionStatus.EXPIRED, link, now)
        if state == LinkState.EXHAUSTED:
            return self._refuse(RedemptionStatus.EXHAUSTED, link, now)

        if link.password_hash:
            if not password:
                return self._refuse(RedemptionStatus.PASSWORD_REQUIRED, link, now)
            if not verify_password(password, link.password_hash):
                return self._refuse(RedemptionStatus.PASSWORD_MISMATCH, link, now)

        with storage_errors("redeem", resource_type="share_link", resource_id=link.id):
            with atomic(self._session):
                result = self._session.execute(
                    update(ShareLink)
                    .where(
                        ShareLink.id == link.id,
                        or_(
                            ShareLink.download_limit.is_(None),
                            ShareLink.download_count < ShareLink.download_limit,
                        ),
                    )
                    .values(download_count=ShareLink.download_count + 1)
                    .execution_options(synchronize_session=False)
                )
                counted = result.rowcount == 1

        fresh = self._reload(link.id)
        if not counted:
            return self._refuse(RedemptionStatus.EXHAUSTED, fresh, now)

        log(log_share_event("share_link_redeemed", link.id, link.document_id, "ok"))
        return RedemptionResult(
            status=RedemptionStatus.OK,
            document=DocumentSummary.from_row(document),
            link=ShareLinkInfo.from_row(fresh, now),
        )

    def _reload(self, link_id: int) -> ShareLink:
        with storage_errors("load_share_link", resource_type="share_link", resource_id=link_id):
            return self._session.execute(
                select(ShareLink)
                .where(ShareLink.id == link_id)
                .execution_options(populate_existing=True)
            ).scalar_one()

    def _refuse(
        self,
        status: RedemptionStatus,
        link: Optional[ShareLink],
        now: Optional[datetime] = None,
    ) -> RedemptionResult:
        log(log_share_event(
            "share_link_refused",
            link.id if link is not None else None,
            link.document_id if link is not None else None,
            status.value,
        ))
        return RedemptionResult(
            status=status,
            link=ShareLinkInfo.from_row(link, now) if link is not None else None,
        )

    # -------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------

    def inspect(self, token: str) -> ShareLinkInfo:
        """
        Current state of a link without counting a download.

        Raises:
            NotFoundError: unknown token or the document was deleted.
        """
        link = self._load(token)
        if link is None or self._live_document(link.document_id) is None:
            raise NotFoundError("Share link not found", resource_type="share_link")
        return ShareLinkInfo.from_row(link)

    def list_for(self, document_id: int) -> List[ShareLinkInfo]:
        """All links for a document, newest first."""
        now = utcnow()
        with storage_errors("list_share_links", resource_type="document", resource_id=document_id):
            rows = self._session.execute(
                select(ShareLink)
                .where(ShareLink.document_id == document_id)
                .order_by(ShareLink.created_at.desc(), ShareLink.id.desc())
            ).scalars().all()
        return [ShareLinkInfo.from_row(link, now) for link in rows]

    def revoke(self, link_id: int) -> bool:
        with storage_errors("revoke_share_link", resource_type="share_link", resource_id=link_id):
            result = self._session.execute(delete(ShareLink).where(ShareLink.id == link_id))
        revoked = result.rowcount > 0
        if revoked:
            log(log_share_event("share_link_revoked", link_id, None, "revoked"))
        return revoked

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete links whose expiry has passed. Returns the number removed."""
        now = now or utcnow()
        with storage_errors("purge_share_links", resource_type="share_link"):
            result = self._session.execute(
                delete(ShareLink).where(
                    ShareLink.expires_at.is_not(None),
                    ShareLink.expires_at <= now,
                )
                .execution_options(synchronize_session=False)
            )
        log(log_system_event("share_links_purged", details={"removed": result.rowcount}))
        return result.rowcount
