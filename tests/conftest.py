"""
DocVault Test Suite — Shared fixtures and configuration.

Run:  pytest tests/ -v
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from docvault.db.models import Document, DocumentTag, Tag, User


BASE_TIME = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Environment setup (fresh config per test, fast bcrypt)
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_config():
    """Reset global singletons between tests."""
    import docvault.engine.config as cfg_mod
    import docvault.engine.logging as log_mod
    from docvault.engine.config import DocVaultConfig, SharingConfig

    cfg_mod._config = DocVaultConfig(sharing=SharingConfig(password_rounds=4))
    yield
    cfg_mod._config = None
    log_mod.shutdown_logging()


@pytest.fixture
def session_factory():
    """In-memory SQLite database (StaticPool) with all tables created."""
    from docvault.db.session import init_db

    factory = init_db("sqlite://", create_tables=True)
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def users(session):
    """Users 1–5; user 3 owns most fixtures, user 4 is the usual requester."""
    rows = [
        User(id=1, username="alice", full_name="Alice Admin"),
        User(id=2, username="bob", full_name="Bob Builder"),
        User(id=3, username="carol", full_name="Carol Owner"),
        User(id=4, username="dave", full_name=None),
        User(id=5, username="erin", full_name="Erin Editor"),
    ]
    session.add_all(rows)
    session.flush()
    return {u.id: u for u in rows}


# ---------------------------------------------------------------------------
# Row builders
# ---------------------------------------------------------------------------

def make_document(
    session,
    id: Optional[int] = None,
    owner_id: int = 3,
    title: str = "Untitled",
    description: Optional[str] = None,
    file_name: Optional[str] = None,
    mime_type: str = "application/pdf",
    file_size: int = 1024,
    is_public: bool = False,
    created_at: Optional[datetime] = None,
    is_deleted: bool = False,
    **extra,
) -> Document:
    doc = Document(
        id=id,
        owner_id=owner_id,
        title=title,
        description=description,
        file_name=file_name or f"{title.lower().replace(' ', '_')}.bin",
        file_path=f"store/{title}",
        file_size=file_size,
        mime_type=mime_type,
        is_public=is_public,
        created_at=created_at or BASE_TIME,
        updated_at=created_at or BASE_TIME,
        is_deleted=is_deleted,
        view_count=extra.pop("view_count", 0),
        download_count=extra.pop("download_count", 0),
        **extra,
    )
    session.add(doc)
    session.flush()
    return doc


def make_tag(session, id: Optional[int] = None, name: str = "tag", created_by: Optional[int] = None) -> Tag:
    tag = Tag(id=id, name=name, created_by=created_by, usage_count=0)
    session.add(tag)
    session.flush()
    return tag


def live_usage(session, tag_id: int) -> int:
    from sqlalchemy import func, select

    return session.execute(
        select(func.count()).select_from(DocumentTag).where(DocumentTag.tag_id == tag_id)
    ).scalar_one()


def stored_usage(session, tag_id: int) -> int:
    from sqlalchemy import select

    return session.execute(select(Tag.usage_count).where(Tag.id == tag_id)).scalar_one()


def hours(n: int) -> timedelta:
    return timedelta(hours=n)


@pytest.fixture
def doc(session, users):
    """Document builder bound to the test session: doc(id=7, owner_id=3, ...)."""
    def _build(**kwargs) -> Document:
        return make_document(session, **kwargs)
    return _build


@pytest.fixture
def tag(session, users):
    """Tag builder bound to the test session: tag(id=1, name='a')."""
    def _build(**kwargs) -> Tag:
        return make_tag(session, **kwargs)
    return _build


@pytest.fixture
def usage(session):
    """(stored usage_count, live association count) for a tag."""
    def _read(tag_id: int):
        return stored_usage(session, tag_id), live_usage(session, tag_id)
    return _read
