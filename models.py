#!/usr/bin/env python3
"""
Records and the persistent key-value store.

This module holds the article, channel and summary records together with the
SQLite-backed ordered key-value store that persists them, keeping data access
separate from the fetching and enrichment logic.
"""

from dataclasses import dataclass, asdict, field
from enum import Enum
from os import path, access, R_OK
import json
from sqlite3 import connect, Row
from asyncio import Queue, create_task, wait_for, TimeoutError, CancelledError, Event
from uuid import uuid4
from typing import Dict, List, Optional, Any, Tuple

from config import config, get_logger
from errors import StoreError
from telemetry import trace_span

# Module-specific logger
logger = get_logger("models")

EPOCH_RFC3339 = "1970-01-01T00:00:00+00:00"


class ReadStatus(str, Enum):
    """Lifecycle state of a stored article."""

    FRESH = "Fresh"
    SAVED = "Saved"
    ARCHIVED = "Archived"


class OutcomeKind(str, Enum):
    RESOLVED = "resolved"
    FALLBACK = "fallback"
    MISSING = "missing"


@dataclass(frozen=True)
class Outcome:
    """Result of an ordered fallback policy, tagged with the tier that produced it."""

    kind: OutcomeKind
    value: Optional[str] = None

    @classmethod
    def resolved(cls, value: str) -> "Outcome":
        return cls(OutcomeKind.RESOLVED, value)

    @classmethod
    def fallback(cls, value: str) -> "Outcome":
        return cls(OutcomeKind.FALLBACK, value)

    @classmethod
    def missing(cls) -> "Outcome":
        return cls(OutcomeKind.MISSING)

    @property
    def is_missing(self) -> bool:
        return self.kind is OutcomeKind.MISSING

    def value_or(self, default: str) -> str:
        return default if self.is_missing or self.value is None else self.value


@dataclass
class FeedEntry:
    """A single normalized feed entry (transient, never persisted)."""

    link: str
    title: str = ""
    summary: str = ""
    published: str = EPOCH_RFC3339
    image: Optional[str] = None


@dataclass
class Article:
    """A stored article, keyed by its canonical link."""

    link: str
    channel: str
    title: str
    published: str
    image: str = ""
    summary: str = ""
    read_status: ReadStatus = ReadStatus.FRESH

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['read_status'] = self.read_status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Article":
        return cls(
            link=data['link'],
            channel=data.get('channel', ''),
            title=data.get('title', ''),
            published=data.get('published', EPOCH_RFC3339),
            image=data.get('image') or '',
            summary=data.get('summary') or '',
            read_status=ReadStatus(data.get('read_status', ReadStatus.FRESH.value)),
        )


@dataclass
class Channel:
    """Display metadata for one feed source."""

    rss_url: str
    title: str = ""
    icon: str = ""
    dominant_color: str = ""
    category: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.title and self.icon and self.dominant_color)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Channel":
        return cls(
            rss_url=data['rss_url'],
            title=data.get('title') or '',
            icon=data.get('icon') or '',
            dominant_color=data.get('dominant_color') or '',
            category=data.get('category') or '',
        )


@dataclass
class Summary:
    """A machine-generated (title, summary) pair."""

    title: str
    summary: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Summary":
        return cls(title=data['title'], summary=data['summary'])


@dataclass
class FeedReport:
    """Outcome counters for one feed-processing pass over a source."""

    slug: str
    new: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


def initialize_database(conn) -> None:
    """Initialize the database with the schema from the SQL file."""
    cursor = conn.cursor()
    try:
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='kv'")
        if cursor.fetchone() is None:
            logger.info("Database is new or empty. Initializing schema.")
            cursor.executescript(_read_schema_file())
            conn.commit()
            logger.info("Database schema initialized successfully")
        else:
            logger.debug("Database already exists with proper schema")
    except Exception as e:
        logger.error(f"Error initializing database: {e}")
        raise
    finally:
        cursor.close()


def _read_schema_file() -> str:
    """Read the schema from the SQL file."""
    schema_path = config.SCHEMA_FILE_PATH

    if not path.isfile(schema_path):
        raise FileNotFoundError(f"Schema file not found at {schema_path}")
    if not access(schema_path, R_OK):
        raise PermissionError(f"No read permission for schema file at {schema_path}")
    file_size = path.getsize(schema_path)
    max_size = config.SCHEMA_FILE_SIZE_LIMIT_MB * 1024 * 1024
    if file_size > max_size:
        raise ValueError(f"Schema file too large: {file_size} bytes (limit: {max_size} bytes)")

    with open(schema_path, 'r', encoding='utf-8') as f:
        return f.read()


class DatabaseQueue:
    """An ordered key-value store whose operations run through a single queue worker.

    Every operation is executed by one worker coroutine, so each key operation
    is atomic. Values are JSON documents.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.queue = Queue()
        self.results: Dict[str, Dict] = {}
        self.events: Dict[str, Event] = {}
        self.conn = None
        self.running = False
        self.worker_task = None
        self._ready: Optional[Event] = None

    async def start(self) -> None:
        """Start the database worker and wait until the schema is ready."""
        if self.running:
            return

        self.running = True
        self._ready = Event()
        self.worker_task = create_task(self._worker())
        await self._ready.wait()
        if self.conn is None:
            self.running = False
            raise StoreError(f"Could not open database at {self.db_path}")
        logger.info("Database worker started")

    async def stop(self) -> None:
        """Stop the database worker."""
        if not self.running:
            return

        self.running = False
        if self.worker_task:
            self.worker_task.cancel()
            try:
                await self.worker_task
            except CancelledError:
                pass

        if self.conn:
            self.conn.close()
            self.conn = None

        # Release any waiters left behind
        for event in self.events.values():
            event.set()
        self.events.clear()
        self.results.clear()

        logger.info("Database worker stopped")

    async def _worker(self) -> None:
        """Worker coroutine processing database operations."""
        if not path.isfile(self.db_path):
            logger.info(f"Database file {self.db_path} does not exist. A new database will be created.")
        else:
            logger.info(f"Using existing database at {self.db_path}")

        try:
            self.conn = connect(self.db_path)
            self.conn.row_factory = Row
            initialize_database(self.conn)
        except Exception as e:
            logger.error(f"Failed to open database {self.db_path}: {e}")
            if self.conn:
                self.conn.close()
            self.conn = None
            return
        finally:
            self._ready.set()

        while self.running:
            try:
                try:
                    operation_id, operation_name, params = await wait_for(self.queue.get(), timeout=1.0)
                except TimeoutError:
                    continue

                try:
                    if operation_name.startswith('_') or not hasattr(self, operation_name):
                        self.results[operation_id] = {"error": f"Unknown operation: {operation_name}"}
                    else:
                        method = getattr(self, operation_name)
                        self.results[operation_id] = {"result": method(**params)}
                except Exception as e:
                    logger.error(f"Database operation error in {operation_name}: {e}")
                    self.results[operation_id] = {"error": str(e)}
                finally:
                    if operation_id in self.events:
                        self.events[operation_id].set()
                    self.queue.task_done()

            except CancelledError:
                logger.debug("Database worker cancelled")
                break

    @trace_span(
        "db.execute",
        tracer_name="db",
        static_attrs={"db.system": "sqlite"},
        attr_from_args=lambda self, operation_name, **params: {
            "db.operation": operation_name,
        },
    )
    async def execute(self, operation_name: str, **params) -> Any:
        """Execute a database operation by name, raising StoreError on failure."""
        if not self.running:
            raise StoreError(f"Database worker is not running ({operation_name})")

        operation_id = str(uuid4())
        event = Event()
        self.events[operation_id] = event

        try:
            await self.queue.put((operation_id, operation_name, params))
            await event.wait()

            result = self.results.pop(operation_id, None)
            if result is None:
                raise StoreError(f"Database worker stopped before completing {operation_name}")
            if "error" in result:
                raise StoreError(result["error"])
            return result["result"]
        finally:
            self.events.pop(operation_id, None)

    # Typed helpers used by the pipeline components
    async def get(self, key: str) -> Optional[Any]:
        return await self.execute('get_value', key=key)

    async def put(self, key: str, value: Any) -> None:
        await self.execute('put_value', key=key, value=value)

    async def contains(self, key: str) -> bool:
        return await self.execute('contains_key', key=key)

    async def scan_prefix(self, prefix: str) -> List[Tuple[str, Any]]:
        return await self.execute('scan_prefix_values', prefix=prefix)

    # Key-value operations (executed by the worker)
    def get_value(self, key: str) -> Optional[Any]:
        """Return the decoded value stored under key, or None."""
        cursor = self.conn.cursor()
        try:
            cursor.execute("SELECT value FROM kv WHERE key = ?", (key,))
            row = cursor.fetchone()
            return json.loads(row['value']) if row else None
        finally:
            cursor.close()

    def put_value(self, key: str, value: Any) -> bool:
        """Insert or replace the value stored under key."""
        cursor = self.conn.cursor()
        try:
            cursor.execute(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                (key, json.dumps(value, ensure_ascii=False)),
            )
            self.conn.commit()
            return True
        finally:
            cursor.close()

    def contains_key(self, key: str) -> bool:
        cursor = self.conn.cursor()
        try:
            cursor.execute("SELECT 1 FROM kv WHERE key = ?", (key,))
            return cursor.fetchone() is not None
        finally:
            cursor.close()

    def scan_prefix_values(self, prefix: str) -> List[Tuple[str, Any]]:
        """Return (key, value) pairs whose key starts with prefix, in key order."""
        cursor = self.conn.cursor()
        try:
            cursor.execute(
                "SELECT key, value FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            )
            return [(row['key'], json.loads(row['value'])) for row in cursor.fetchall()]
        finally:
            cursor.close()

    def count_prefix(self, prefix: str) -> int:
        """Return the number of keys starting with prefix."""
        cursor = self.conn.cursor()
        try:
            cursor.execute("SELECT COUNT(*) FROM kv WHERE substr(key, 1, ?) = ?", (len(prefix), prefix))
            result = cursor.fetchone()
            return int(result[0]) if result else 0
        finally:
            cursor.close()
