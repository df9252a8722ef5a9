"""Conversation store, audit log and checkpoint rows on SQLite."""

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from switchyard.logging import get_logger

log = get_logger(__name__)


def _utcnow_iso() -> str:
    """Return current UTC timestamp in ISO format."""
    return datetime.now(UTC).isoformat()


def generate_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Conversation:
    """A stored conversation."""

    id: str
    title: str
    created_at: str = field(default_factory=_utcnow_iso)
    updated_at: str = field(default_factory=_utcnow_iso)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class StoredMessage:
    """A persisted conversation message."""

    id: str
    conversation_id: str
    role: str  # "user", "assistant", "system", "tool"
    content: str
    provider: str | None = None
    model: str | None = None
    token_count: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=_utcnow_iso)


@dataclass
class ApiCallRecord:
    """One backend call attempt."""

    provider: str
    success: bool
    status_code: int | None = None
    request_id: str | None = None
    latency_ms: int = 0
    tokens_used: int = 0
    error_message: str | None = None
    created_at: str = field(default_factory=_utcnow_iso)


@dataclass
class FailoverEvent:
    """A change of the active backend during send."""

    from_provider: str | None
    to_provider: str
    reason: str
    context_size: int
    success: bool = True
    created_at: str = field(default_factory=_utcnow_iso)


@dataclass
class CheckpointRecord:
    """Pre-mutation snapshot of a file."""

    id: str
    file_path: str
    content: bytes | None
    file_existed: bool
    timestamp: float


_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        metadata TEXT NOT NULL DEFAULT '{}'
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_conversations_updated ON conversations(updated_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS messages (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL UNIQUE,
        conversation_id TEXT NOT NULL,
        role TEXT NOT NULL CHECK(role IN ('user', 'assistant', 'system', 'tool')),
        content TEXT NOT NULL,
        provider TEXT,
        model TEXT,
        tokens INTEGER,
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        FOREIGN KEY (conversation_id) REFERENCES conversations(id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, seq)",
    """
    CREATE TABLE IF NOT EXISTS api_logs (
        id TEXT PRIMARY KEY,
        provider TEXT NOT NULL,
        request_id TEXT,
        success INTEGER NOT NULL,
        status_code INTEGER,
        latency_ms INTEGER,
        tokens_used INTEGER,
        error_message TEXT,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_api_logs_provider ON api_logs(provider, created_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS failover_events (
        id TEXT PRIMARY KEY,
        from_provider TEXT,
        to_provider TEXT NOT NULL,
        reason TEXT,
        context_size INTEGER,
        success INTEGER NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS checkpoints (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL UNIQUE,
        file_path TEXT NOT NULL,
        content BLOB,
        file_existed INTEGER NOT NULL,
        timestamp REAL NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_checkpoints_timestamp ON checkpoints(timestamp DESC)",
    """
    CREATE TABLE IF NOT EXISTS settings (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
)


class Database:
    """Single SQLite database behind every persistent concern."""

    def __init__(self, db_path: Path | str):
        """Initialize database wrapper.

        Args:
            db_path: Database file path
        """
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db: aiosqlite.Connection | None = None

    async def _ensure_db(self) -> aiosqlite.Connection:
        """Ensure database is initialized."""
        if self._db is None:
            self._db = await aiosqlite.connect(str(self.db_path))
            for statement in _SCHEMA:
                await self._db.execute(statement)
            await self._db.commit()
            log.debug("Database connected", path=str(self.db_path))
        return self._db

    async def initialize(self) -> None:
        await self._ensure_db()

    # Conversations

    async def create_conversation(
        self,
        title: str = "New Conversation",
        metadata: dict[str, Any] | None = None,
    ) -> str:
        db = await self._ensure_db()
        conversation = Conversation(id=generate_id(), title=title, metadata=metadata or {})
        await db.execute(
            "INSERT INTO conversations (id, title, created_at, updated_at, metadata) VALUES (?, ?, ?, ?, ?)",
            (
                conversation.id,
                conversation.title,
                conversation.created_at,
                conversation.updated_at,
                json.dumps(conversation.metadata),
            ),
        )
        await db.commit()
        log.debug("Conversation created", conversation_id=conversation.id, title=title)
        return conversation.id

    @staticmethod
    def _row_to_conversation(row: Any) -> Conversation:
        return Conversation(
            id=row[0],
            title=row[1],
            created_at=row[2],
            updated_at=row[3],
            metadata=json.loads(row[4] or "{}"),
        )

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        db = await self._ensure_db()
        async with db.execute(
            "SELECT id, title, created_at, updated_at, metadata FROM conversations WHERE id = ?",
            (conversation_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_conversation(row) if row else None

    async def list_conversations(self, limit: int = 10) -> list[Conversation]:
        db = await self._ensure_db()
        async with db.execute(
            """
            SELECT id, title, created_at, updated_at, metadata
            FROM conversations
            ORDER BY updated_at DESC
            LIMIT ?
            """,
            (limit,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_conversation(row) for row in rows]

    # Messages

    async def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        provider: str | None = None,
        model: str | None = None,
        tokens: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Append a message and bump the conversation timestamp."""
        db = await self._ensure_db()
        message_id = generate_id()
        now = _utcnow_iso()
        await db.execute(
            """
            INSERT INTO messages (id, conversation_id, role, content, provider, model, tokens, metadata, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                message_id,
                conversation_id,
                role,
                content,
                provider,
                model,
                tokens,
                json.dumps(metadata or {}),
                now,
            ),
        )
        await db.execute(
            "UPDATE conversations SET updated_at = ? WHERE id = ?",
            (now, conversation_id),
        )
        await db.commit()
        log.debug("Message added", conversation_id=conversation_id, role=role, provider=provider)
        return message_id

    async def get_messages(self, conversation_id: str, limit: int = 50) -> list[StoredMessage]:
        """Return the most recent messages, newest first."""
        db = await self._ensure_db()
        async with db.execute(
            """
            SELECT id, conversation_id, role, content, provider, model, tokens, metadata, created_at
            FROM messages
            WHERE conversation_id = ?
            ORDER BY seq DESC
            LIMIT ?
            """,
            (conversation_id, limit),
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            StoredMessage(
                id=row[0],
                conversation_id=row[1],
                role=row[2],
                content=row[3],
                provider=row[4],
                model=row[5],
                token_count=row[6],
                metadata=json.loads(row[7] or "{}"),
                created_at=row[8],
            )
            for row in rows
        ]

    async def count_messages(self, conversation_id: str) -> int:
        db = await self._ensure_db()
        async with db.execute(
            "SELECT COUNT(*) FROM messages WHERE conversation_id = ?",
            (conversation_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    # Audit log

    async def log_api_call(self, record: ApiCallRecord) -> None:
        db = await self._ensure_db()
        await db.execute(
            """
            INSERT INTO api_logs (id, provider, request_id, success, status_code, latency_ms, tokens_used, error_message, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                generate_id(),
                record.provider,
                record.request_id,
                1 if record.success else 0,
                record.status_code,
                record.latency_ms,
                record.tokens_used,
                record.error_message,
                record.created_at,
            ),
        )
        await db.commit()

    async def get_api_logs(self, provider: str | None = None, limit: int = 100) -> list[ApiCallRecord]:
        """Return the most recent ``limit`` call log rows, oldest first."""
        db = await self._ensure_db()
        query = (
            "SELECT provider, success, status_code, request_id, latency_ms, tokens_used, error_message, created_at "
            "FROM api_logs"
        )
        params: tuple[Any, ...] = ()
        if provider:
            query += " WHERE provider = ?"
            params = (provider,)
        query += " ORDER BY rowid DESC LIMIT ?"
        async with db.execute(query, (*params, limit)) as cursor:
            rows = await cursor.fetchall()
        rows = list(reversed(rows))
        return [
            ApiCallRecord(
                provider=row[0],
                success=bool(row[1]),
                status_code=row[2],
                request_id=row[3],
                latency_ms=row[4] or 0,
                tokens_used=row[5] or 0,
                error_message=row[6],
                created_at=row[7],
            )
            for row in rows
        ]

    async def log_failover(
        self,
        from_provider: str | None,
        to_provider: str,
        reason: str,
        context_size: int,
        success: bool = True,
    ) -> None:
        db = await self._ensure_db()
        event = FailoverEvent(
            from_provider=from_provider,
            to_provider=to_provider,
            reason=reason,
            context_size=context_size,
            success=success,
        )
        await db.execute(
            """
            INSERT INTO failover_events (id, from_provider, to_provider, reason, context_size, success, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                generate_id(),
                event.from_provider,
                event.to_provider,
                event.reason,
                event.context_size,
                1 if event.success else 0,
                event.created_at,
            ),
        )
        await db.commit()
        log.info("Failover logged", from_provider=from_provider, to_provider=to_provider, reason=reason)

    async def get_failover_events(self, limit: int = 50) -> list[FailoverEvent]:
        """Return the most recent ``limit`` failover events, oldest first."""
        db = await self._ensure_db()
        async with db.execute(
            """
            SELECT from_provider, to_provider, reason, context_size, success, created_at
            FROM failover_events
            ORDER BY rowid DESC
            LIMIT ?
            """,
            (limit,),
        ) as cursor:
            rows = await cursor.fetchall()
        rows = list(reversed(rows))
        return [
            FailoverEvent(
                from_provider=row[0],
                to_provider=row[1],
                reason=row[2],
                context_size=row[3],
                success=bool(row[4]),
                created_at=row[5],
            )
            for row in rows
        ]

    # Checkpoints

    async def save_checkpoint(
        self,
        file_path: str,
        content: bytes | None,
        file_existed: bool,
        timestamp: float,
    ) -> str:
        db = await self._ensure_db()
        checkpoint_id = generate_id()
        await db.execute(
            "INSERT INTO checkpoints (id, file_path, content, file_existed, timestamp) VALUES (?, ?, ?, ?, ?)",
            (checkpoint_id, file_path, content, 1 if file_existed else 0, timestamp),
        )
        await db.commit()
        return checkpoint_id

    @staticmethod
    def _row_to_checkpoint(row: Any) -> CheckpointRecord:
        content = row[2]
        # Rows written before content became a BLOB hold UTF-8 text.
        if isinstance(content, str):
            content = content.encode("utf-8")
        return CheckpointRecord(
            id=row[0],
            file_path=row[1],
            content=content,
            file_existed=bool(row[3]),
            timestamp=float(row[4]),
        )

    async def get_checkpoint(self, checkpoint_id: str) -> CheckpointRecord | None:
        db = await self._ensure_db()
        async with db.execute(
            "SELECT id, file_path, content, file_existed, timestamp FROM checkpoints WHERE id = ?",
            (checkpoint_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_checkpoint(row) if row else None

    async def get_recent_checkpoints(self, limit: int = 20) -> list[CheckpointRecord]:
        db = await self._ensure_db()
        async with db.execute(
            """
            SELECT id, file_path, content, file_existed, timestamp
            FROM checkpoints
            ORDER BY timestamp DESC, seq DESC
            LIMIT ?
            """,
            (limit,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_checkpoint(row) for row in rows]

    async def delete_checkpoints_before(self, cutoff: float) -> int:
        db = await self._ensure_db()
        cursor = await db.execute("DELETE FROM checkpoints WHERE timestamp < ?", (cutoff,))
        await db.commit()
        return cursor.rowcount

    # Settings

    async def get_setting(self, key: str) -> Any:
        db = await self._ensure_db()
        async with db.execute("SELECT value FROM settings WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        return json.loads(row[0]) if row else None

    async def set_setting(self, key: str, value: Any) -> None:
        db = await self._ensure_db()
        await db.execute(
            "INSERT OR REPLACE INTO settings (key, value, updated_at) VALUES (?, ?, ?)",
            (key, json.dumps(value), _utcnow_iso()),
        )
        await db.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None
