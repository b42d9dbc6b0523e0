"""
DocVault Logging System — Structured JSON event log with async queue.

Implements:
- FileLogger: Per-area, per-category JSONL files (daily rotation)
- AsyncLogQueue: In-memory queue with background flush
- Log entry builders for search, tag, share-link, access and document events

Operational messages still go through stdlib ``logging`` module loggers;
this module records the structured audit trail next to them.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import defaultdict
from datetime import date, datetime, timezone
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, Dict, List, Optional

logger = logging.getLogger("docvault.engine.logging")

# Event areas and their permitted categories
AREA_CATEGORIES = {
    "search": ["execution", "performance"],
    "tags": ["execution"],
    "sharing": ["execution", "security"],
    "documents": ["execution", "security"],
    "access": ["security"],
    "system": ["execution"],
}


class LogEntry:
    """A structured log entry destined for a specific file."""

    __slots__ = ("area", "category", "data")

    def __init__(self, area: str, category: str, data: Dict[str, Any]):
        self.area = area
        self.category = category
        self.data = data

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, separators=(",", ":"))


class FileLogger:
    """
    Writes structured JSON log entries to per-area, per-category files.
    Files rotate daily: logs/{area}/{category}/{YYYY-MM-DD}.jsonl

    Thread-safe: one lock per file path.
    """

    def __init__(self, log_dir: str = "logs"):
        self._log_dir = Path(log_dir)
        self._file_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._ensure_directories()

    def _ensure_directories(self) -> None:
        for area, categories in AREA_CATEGORIES.items():
            for cat in categories:
                (self._log_dir / area / cat).mkdir(parents=True, exist_ok=True)

    def write(self, entry: LogEntry) -> None:
        """Write a single log entry to the appropriate file."""
        self.write_batch([entry])

    def write_batch(self, entries: List[LogEntry]) -> None:
        """Write a batch of log entries, grouping by file path."""
        grouped: Dict[str, List[LogEntry]] = defaultdict(list)
        for entry in entries:
            grouped[str(self._resolve_path(entry.area, entry.category))].append(entry)

        for file_path, batch in grouped.items():
            with self._file_locks[file_path]:
                with open(file_path, "a", encoding="utf-8") as f:
                    for entry in batch:
                        f.write(entry.to_json())
                        f.write("\n")

    def _resolve_path(self, area: str, category: str) -> Path:
        today = date.today().isoformat()
        return self._log_dir / area / category / f"{today}.jsonl"

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def read_today(self, area: str, category: str) -> List[Dict[str, Any]]:
        """Read back today's entries for one area/category (oldest first)."""
        path = self._resolve_path(area, category)
        if not path.exists():
            return []
        entries: List[Dict[str, Any]] = []
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
        return entries


class AsyncLogQueue:
    """
    In-memory queue with a background flush thread.

    Entries are pushed non-blocking. A background thread flushes to FileLogger
    every flush_interval_ms OR when flush_batch_size entries accumulate,
    whichever comes first.
    """

    def __init__(
        self,
        file_logger: FileLogger,
        flush_interval_ms: int = 100,
        flush_batch_size: int = 50,
        max_queue_size: int = 10000,
    ):
        self._logger = file_logger
        self._flush_interval = flush_interval_ms / 1000.0
        self._flush_batch_size = flush_batch_size
        self._queue: Queue[LogEntry] = Queue(maxsize=max_queue_size)
        self._running = False
        self._flush_thread: Optional[threading.Thread] = None
        self._dropped_count = 0

    def start(self) -> None:
        """Start the background flush thread."""
        if self._running:
            return
        self._running = True
        self._flush_thread = threading.Thread(
            target=self._flush_loop,
            name="docvault-log-flush",
            daemon=True,
        )
        self._flush_thread.start()
        logger.info("Async log queue started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the flush thread and drain remaining entries."""
        self._running = False
        if self._flush_thread and self._flush_thread.is_alive():
            self._flush_thread.join(timeout=timeout)
        self._drain()
        logger.info(f"Async log queue stopped (dropped: {self._dropped_count})")

    def push(self, entry: LogEntry) -> bool:
        """
        Push a log entry to the queue. Non-blocking.

        Returns:
            True if queued, False if dropped (queue full).
        """
        try:
            self._queue.put_nowait(entry)
            return True
        except Full:
            self._dropped_count += 1
            return False

    def _flush_loop(self) -> None:
        while self._running:
            batch = self._collect_batch()
            if batch:
                try:
                    self._logger.write_batch(batch)
                except OSError as e:
                    logger.error(f"Log flush error: {e}")
            else:
                time.sleep(self._flush_interval)

    def _collect_batch(self) -> List[LogEntry]:
        batch: List[LogEntry] = []
        deadline = time.monotonic() + self._flush_interval

        while len(batch) < self._flush_batch_size:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                batch.append(self._queue.get(timeout=min(remaining, 0.01)))
            except Empty:
                if batch:
                    break
                continue

        return batch

    def _drain(self) -> None:
        batch: List[LogEntry] = []
        while not self._queue.empty():
            try:
                batch.append(self._queue.get_nowait())
            except Empty:
                break
        if batch:
            try:
                self._logger.write_batch(batch)
            except OSError as e:
                logger.error(f"Log drain error: {e}")

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    @property
    def dropped_count(self) -> int:
        return self._dropped_count


# ---------------------------------------------------------------------------
# Log Entry Builders
# ---------------------------------------------------------------------------

def _base_entry(
    event: str,
    level: str,
    requester_id: Optional[int] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Build a base log entry with common fields."""
    entry: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
    }
    if requester_id is not None:
        entry["requester_id"] = requester_id
    entry.update(extra)
    return entry


def log_search_event(
    requester_id: Optional[int],
    total: int,
    page: int,
    page_size: int,
    duration_ms: float,
    keyword: Optional[str] = None,
    tag_ids: Optional[List[int]] = None,
) -> LogEntry:
    """Build a search execution log entry."""
    data = _base_entry(
        event="search_executed",
        level="INFO",
        requester_id=requester_id,
        total=total,
        page=page,
        page_size=page_size,
        duration_ms=duration_ms,
    )
    if keyword:
        data["keyword"] = keyword
    if tag_ids:
        data["tag_ids"] = tag_ids
    return LogEntry("search", "execution", data)


def log_tag_event(
    event: str,
    document_id: Optional[int],
    added: int = 0,
    removed: int = 0,
    failed: Optional[List[int]] = None,
) -> LogEntry:
    """Build a tag association change log entry."""
    data = _base_entry(
        event=event,
        level="WARNING" if failed else "INFO",
        document_id=document_id,
        added=added,
        removed=removed,
    )
    if failed:
        data["failed_tag_ids"] = failed
    return LogEntry("tags", "execution", data)


def log_share_event(
    event: str,
    link_id: Optional[int],
    document_id: Optional[int],
    outcome: str,
    requester_id: Optional[int] = None,
) -> LogEntry:
    """Build a share-link lifecycle log entry (create / redeem / revoke)."""
    level = "INFO" if outcome in ("ok", "created", "revoked") else "WARNING"
    data = _base_entry(
        event=event,
        level=level,
        requester_id=requester_id,
        link_id=link_id,
        document_id=document_id,
        outcome=outcome,
    )
    category = "execution" if level == "INFO" else "security"
    return LogEntry("sharing", category, data)


def log_access_denied(
    document_id: int,
    requester_id: Optional[int],
    required_level: str,
) -> LogEntry:
    """Build an access-denied security log entry."""
    data = _base_entry(
        event="access_denied",
        level="WARNING",
        requester_id=requester_id,
        document_id=document_id,
        required_level=required_level,
    )
    return LogEntry("access", "security", data)


def log_document_event(
    event: str,
    document_id: int,
    requester_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
) -> LogEntry:
    """Build a document lifecycle log entry (created, updated, deleted)."""
    data = _base_entry(
        event=event,
        level="INFO",
        requester_id=requester_id,
        document_id=document_id,
    )
    if details:
        data["details"] = details
    return LogEntry("documents", "execution", data)


def log_system_event(
    event: str,
    level: str = "INFO",
    details: Optional[Dict[str, Any]] = None,
) -> LogEntry:
    """Build a system event log entry (startup, resync, purge)."""
    data = _base_entry(event=event, level=level)
    if details:
        data["details"] = details
    return LogEntry("system", "execution", data)


# ---------------------------------------------------------------------------
# Convenience: Global Log Queue Singleton
# ---------------------------------------------------------------------------

_global_queue: Optional[AsyncLogQueue] = None


def init_logging(
    log_dir: str = "logs",
    flush_interval_ms: int = 100,
    flush_batch_size: int = 50,
    max_queue_size: int = 10000,
) -> AsyncLogQueue:
    """Initialize the global async log queue."""
    global _global_queue
    file_logger = FileLogger(log_dir=log_dir)
    _global_queue = AsyncLogQueue(
        file_logger=file_logger,
        flush_interval_ms=flush_interval_ms,
        flush_batch_size=flush_batch_size,
        max_queue_size=max_queue_size,
    )
    _global_queue.start()
    return _global_queue


def get_log_queue() -> Optional[AsyncLogQueue]:
    """Get the global async log queue."""
    return _global_queue


def log(entry: LogEntry) -> bool:
    """Push a log entry to the global queue. Non-blocking."""
    if _global_queue is None:
        logger.debug(f"Log queue not initialized, {entry.data.get('event')} entry dropped")
        return False
    return _global_queue.push(entry)


def shutdown_logging() -> None:
    """Flush and stop the global log queue."""
    global _global_queue
    if _global_queue:
        _global_queue.stop()
        _global_queue = None
