"""
DocVault CLI — Database bootstrap and maintenance commands.

Commands:
- docvault init-db              — Create all tables
- docvault resync-tags          — Repair every tag's usage counter
- docvault stats                — Print repository statistics as JSON
- docvault purge-links --expired — Delete share links past their expiry
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional

import yaml
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from docvault.engine.config import DocVaultConfig, load_config
from docvault.engine.logging import init_logging, shutdown_logging

logger = logging.getLogger("docvault.cli")


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="docvault",
        description="DocVault — access-aware document retrieval engine",
    )
    parser.add_argument("--config", help="Path to docvault.yaml (default: auto-discover)")
    parser.add_argument("--db-url", help="Override database.url from the config")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init-db", help="Create database tables")
    subparsers.add_parser("resync-tags", help="Recompute every tag's usage counter")

    stats_parser = subparsers.add_parser("stats", help="Print repository statistics")
    stats_parser.add_argument("--owner", type=int, help="Also count documents of this owner")

    purge_parser = subparsers.add_parser("purge-links", help="Delete share links")
    purge_parser.add_argument(
        "--expired", action="store_true", help="Delete links whose expiry has passed"
    )

    args = parser.parse_args(argv)

    commands = {
        "init-db": cmd_init_db,
        "resync-tags": cmd_resync_tags,
        "stats": cmd_stats,
        "purge-links": cmd_purge_links,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 0
    try:
        return handler(args)
    finally:
        shutdown_logging()


def _load(args: argparse.Namespace) -> Optional[DocVaultConfig]:
    try:
        config = load_config(args.config)
    except (OSError, yaml.YAMLError, ValidationError) as e:
        print(f"[ERROR] Failed to load config: {e}")
        return None
    if args.db_url:
        config.database.url = args.db_url
    logging.basicConfig(level=config.logging.level.upper())
    if config.logging.events_enabled:
        queue = config.logging.async_queue
        init_logging(
            log_dir=config.logging.directory,
            flush_interval_ms=queue.flush_interval_ms,
            flush_batch_size=queue.flush_batch_size,
            max_queue_size=queue.max_queue_size,
        )
    return config


def _factory(config: DocVaultConfig, create_tables: bool = False) -> sessionmaker:
    from docvault.db.session import init_db

    db = config.database
    return init_db(
        db.url,
        create_tables=create_tables,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
        pool_recycle=db.pool_recycle,
        pool_pre_ping=db.pool_pre_ping,
    )


def cmd_init_db(args: argparse.Namespace) -> int:
    config = _load(args)
    if config is None:
        return 1
    try:
        _factory(config, create_tables=True)
    except SQLAlchemyError as e:
        print(f"[ERROR] Failed to create tables: {e}")
        return 1
    print(f"[OK] Database tables created ({config.database.url})")
    return 0


def cmd_resync_tags(args: argparse.Namespace) -> int:
    from docvault.db.session import session_scope
    from docvault.tags.store import TagRelationStore

    config = _load(args)
    if config is None:
        return 1
    try:
        with session_scope(_factory(config)) as session:
            drifted = TagRelationStore(session).resync_all_counters()
    except SQLAlchemyError as e:
        print(f"[ERROR] Resync failed: {e}")
        return 1
    print(f"[OK] Resynced tag counters ({drifted} corrected)")
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    from docvault.db.session import session_scope
    from docvault.documents.service import DocumentService
    from docvault.tags.store import TagRelationStore

    config = _load(args)
    if config is None:
        return 1
    try:
        with session_scope(_factory(config)) as session:
            report = {
                "documents": DocumentService(session).stats(owner_id=args.owner).model_dump(),
                "tags": TagRelationStore(session).stats().model_dump(),
            }
    except SQLAlchemyError as e:
        print(f"[ERROR] Failed to compute statistics: {e}")
        return 1
    print(json.dumps(report, indent=2))
    return 0


def cmd_purge_links(args: argparse.Namespace) -> int:
    from docvault.db.session import session_scope
    from docvault.sharing.links import ShareLinkManager

    if not args.expired:
        print("[ERROR] Nothing to purge: pass --expired")
        return 1
    config = _load(args)
    if config is None:
        return 1
    try:
        with session_scope(_factory(config)) as session:
            removed = ShareLinkManager(session, config=config.sharing).purge_expired()
    except SQLAlchemyError as e:
        print(f"[ERROR] Purge failed: {e}")
        return 1
    print(f"[OK] Removed {removed} expired share link(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
