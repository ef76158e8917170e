"""SQLite storage implementation."""

import asyncio
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Literal, Protocol

import aiosqlite

from ..config import resolve_db_path
from ..models import (
    Conversation,
    ImagePayload,
    Message,
    PushSubscription,
    ReactionGroup,
    ReplyPreview,
    TypingStatus,
    User,
)

ReactionAction = Literal["added", "removed"]

_MESSAGE_COLUMNS = """
    seq, id, conversation_id, is_operator, content,
    image_url, image_width, image_height, reply_to_id, created_at
"""


def to_db_timestamp(value: datetime) -> str:
    """Serialize a datetime as a fixed-width, lexically sortable UTC string."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_to_message(row) -> Message:
    image = None
    if row[5]:
        image = ImagePayload(data_url=row[5], width=row[6], height=row[7])
    return Message(
        id=row[1],
        conversation_id=row[2],
        is_operator=bool(row[3]),
        content=row[4],
        created_at=from_db_timestamp(row[9]),
        image=image,
        reply_to_id=row[8],
        seq=row[0],
    )


def _row_to_conversation(row) -> Conversation:
    return Conversation(
        id=row[0],
        user_id=row[1],
        visitor_name=row[2],
        created_at=from_db_timestamp(row[3]),
        updated_at=from_db_timestamp(row[4]),
    )


class IStorage(Protocol):
    """Persistent store for conversations, messages and side tables (SQLite)."""

    async def init(self) -> None:
        """Initialize database and create tables."""
        ...

    async def close(self) -> None:
        """Close database connection."""
        ...

    # Users / sessions
    async def save_user(self, user: User) -> None:
        """Save a visitor account."""
        ...

    async def get_user(self, user_id: str) -> User | None:
        """Get a visitor by ID."""
        ...

    async def create_session(
        self, token_hash: str, user_id: str, expires_at: datetime
    ) -> None:
        """Store a visitor session."""
        ...

    async def get_session_user(self, token_hash: str, now: datetime) -> User | None:
        """Get the visitor owning an unexpired session."""
        ...

    async def create_operator_session(
        self, token_hash: str, expires_at: datetime, now: datetime
    ) -> None:
        """Store an operator session."""
        ...

    async def has_operator_session(self, token_hash: str, now: datetime) -> bool:
        """Check that an operator session exists and is unexpired."""
        ...

    async def touch_operator_session(self, token_hash: str, at: datetime) -> None:
        """Record operator activity on a session."""
        ...

    async def get_operator_last_seen(self, now: datetime) -> datetime | None:
        """Most recent activity across unexpired operator sessions."""
        ...

    # Conversations
    async def get_or_create_conversation(
        self, user: User, now: datetime
    ) -> Conversation:
        """Get the visitor's conversation, creating it on first use."""
        ...

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Get a conversation by ID."""
        ...

    async def list_conversations(self) -> list[Conversation]:
        """List conversations, most recent activity first."""
        ...

    async def touch_conversation(self, conversation_id: str, at: datetime) -> None:
        """Bump a conversation's last-activity timestamp."""
        ...

    # Messages
    async def save_message(self, message: Message) -> None:
        """Append a message."""
        ...

    async def get_message(
        self, conversation_id: str, message_id: str
    ) -> Message | None:
        """Point lookup of a message within a conversation."""
        ...

    async def get_message_by_id(self, message_id: str) -> Message | None:
        """Point lookup of a message in any conversation."""
        ...

    async def get_latest_messages(
        self, conversation_id: str, limit: int
    ) -> list[Message]:
        """Most recent messages, newest first."""
        ...

    async def get_messages_before(
        self, conversation_id: str, cursor: Message, limit: int
    ) -> list[Message]:
        """Messages strictly older than the cursor, newest first."""
        ...

    async def get_messages_after(
        self, conversation_id: str, cursor: Message, limit: int
    ) -> list[Message]:
        """Messages strictly newer than the cursor, oldest first."""
        ...

    # Reactions / replies
    async def toggle_reaction(
        self,
        message_id: str,
        party_key: str,
        user_id: str | None,
        is_operator: bool,
        emoji: str,
        now: datetime,
    ) -> ReactionAction:
        """Toggle-and-replace a party's reaction on a message."""
        ...

    async def get_reactions(
        self, message_ids: list[str]
    ) -> dict[str, list[ReactionGroup]]:
        """Aggregate reactions for exactly the given messages."""
        ...

    async def get_reply_previews(
        self, message_ids: list[str]
    ) -> dict[str, ReplyPreview]:
        """Reply targets for exactly the given messages."""
        ...

    # Typing
    async def upsert_typing(
        self, conversation_id: str, is_operator: bool, at: datetime
    ) -> None:
        """Record a typing heartbeat."""
        ...

    async def delete_typing(self, conversation_id: str, is_operator: bool) -> None:
        """Remove a typing record."""
        ...

    async def get_typing(
        self, conversation_id: str, is_operator: bool
    ) -> TypingStatus | None:
        """Get a typing record."""
        ...

    # Push subscriptions
    async def save_push_subscription(
        self, subscription: PushSubscription, now: datetime
    ) -> None:
        """Upsert a push subscription by endpoint."""
        ...

    async def delete_push_subscription(self, endpoint: str) -> None:
        """Remove a push subscription."""
        ...

    async def get_push_subscriptions(
        self, user_id: str | None = None, is_operator: bool = False
    ) -> list[PushSubscription]:
        """Subscriptions of the operator or of one visitor."""
        ...

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        ...


class Storage:
    """SQLite storage implementation."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            self._db_path = resolve_db_path()
        else:
            self._db_path = resolve_db_path(db_path)
        self._conn: aiosqlite.Connection | None = None
        # Every commit on the shared connection happens under this lock
        self._write_lock = asyncio.Lock()

    async def init(self) -> None:
        """Initialize database and create tables."""
        self._conn = await aiosqlite.connect(self._db_path)

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)
        await self._conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("Storage not initialized")
        return self._conn

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run one write transaction under the write lock.

        Commits on a clean exit. Any exception, cancellation included, rolls
        back before the lock is released.
        """
        conn = self._require_conn()
        async with self._write_lock:
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            await conn.commit()

    # Users / sessions
    async def save_user(self, user: User) -> None:
        """Save a visitor account."""
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT OR REPLACE INTO users (id, username, display_name)
                VALUES (?, ?, ?)
                """,
                (user.id, user.username, user.display_name),
            )

    async def get_user(self, user_id: str) -> User | None:
        """Get a visitor by ID."""
        conn = self._require_conn()
        cursor = await conn.execute(
            "SELECT id, username, display_name FROM users WHERE id = ?",
            (user_id,),
        )
        row = await cursor.fetchone()
        if not row:
            return None
        return User(id=row[0], username=row[1], display_name=row[2])

    async def create_session(
        self, token_hash: str, user_id: str, expires_at: datetime
    ) -> None:
        """Store a visitor session."""
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT OR REPLACE INTO sessions (token_hash, user_id, expires_at)
                VALUES (?, ?, ?)
                """,
                (token_hash, user_id, to_db_timestamp(expires_at)),
            )

    async def get_session_user(self, token_hash: str, now: datetime) -> User | None:
        """Get the visitor owning an unexpired session."""
        conn = self._require_conn()
        cursor = await conn.execute(
            """
            SELECT u.id, u.username, u.display_name
            FROM sessions s
            JOIN users u ON u.id = s.user_id
            WHERE s.token_hash = ? AND s.expires_at > ?
            LIMIT 1
            """,
            (token_hash, to_db_timestamp(now)),
        )
        row = await cursor.fetchone()
        if not row:
            return None
        return User(id=row[0], username=row[1], display_name=row[2])

    async def create_operator_session(
        self, token_hash: str, expires_at: datetime, now: datetime
    ) -> None:
        """Store an operator session."""
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT OR REPLACE INTO operator_sessions
                (token_hash, expires_at, last_seen_at)
                VALUES (?, ?, ?)
                """,
                (token_hash, to_db_timestamp(expires_at), to_db_timestamp(now)),
            )

    async def has_operator_session(self, token_hash: str, now: datetime) -> bool:
        """Check that an operator session exists and is unexpired."""
        conn = self._require_conn()
        cursor = await conn.execute(
            """
            SELECT 1 FROM operator_sessions
            WHERE token_hash = ? AND expires_at > ?
            LIMIT 1
            """,
            (token_hash, to_db_timestamp(now)),
        )
        return await cursor.fetchone() is not None

    async def touch_operator_session(self, token_hash: str, at: datetime) -> None:
        """Record operator activity on a session."""
        async with self._transaction() as conn:
            await conn.execute(
                "UPDATE operator_sessions SET last_seen_at = ? WHERE token_hash = ?",
                (to_db_timestamp(at), token_hash),
            )

    async def get_operator_last_seen(self, now: datetime) -> datetime | None:
        """Most recent activity across unexpired operator sessions."""
        conn = self._require_conn()
        cursor = await conn.execute(
            """
            SELECT last_seen_at FROM operator_sessions
            WHERE expires_at > ?
            ORDER BY last_seen_at DESC
            LIMIT 1
            """,
            (to_db_timestamp(now),),
        )
        row = await cursor.fetchone()
        return from_db_timestamp(row[0]) if row else None

    # Conversations
    async def get_or_create_conversation(
        self, user: User, now: datetime
    ) -> Conversation:
        """Get the visitor's conversation, creating it on first use."""
        async with self._transaction() as conn:
            # UNIQUE(user_id) makes a concurrent second insert a no-op
            await conn.execute(
                """
                INSERT OR IGNORE INTO conversations
                (id, user_id, visitor_name, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    str(uuid.uuid4()),
                    user.id,
                    user.name,
                    to_db_timestamp(now),
                    to_db_timestamp(now),
                ),
            )

        cursor = await conn.execute(
            """
            SELECT id, user_id, visitor_name, created_at, updated_at
            FROM conversations
            WHERE user_id = ?
            """,
            (user.id,),
        )
        row = await cursor.fetchone()
        return _row_to_conversation(row)

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Get a conversation by ID."""
        conn = self._require_conn()
        cursor = await conn.execute(
            """
            SELECT id, user_id, visitor_name, created_at, updated_at
            FROM conversations
            WHERE id = ?
            """,
            (conversation_id,),
        )
        row = await cursor.fetchone()
        return _row_to_conversation(row) if row else None

    async def list_conversations(self) -> list[Conversation]:
        """List conversations, most recent activity first."""
        conn = self._require_conn()
        cursor = await conn.execute(
            """
            SELECT c.id, c.user_id, COALESCE(u.display_name, u.username, c.visitor_name),
                   c.created_at, c.updated_at
            FROM conversations c
            LEFT JOIN users u ON u.id = c.user_id
            ORDER BY c.updated_at DESC
            """
        )
        rows = await cursor.fetchall()
        return [_row_to_conversation(row) for row in rows]

    async def touch_conversation(self, conversation_id: str, at: datetime) -> None:
        """Bump a conversation's last-activity timestamp."""
        async with self._transaction() as conn:
            await conn.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (to_db_timestamp(at), conversation_id),
            )

    # Messages
    async def save_message(self, message: Message) -> None:
        """Append a message; fills in id and seq."""
        async with self._transaction() as conn:
            msg_id = message.id or str(uuid.uuid4())
            image = message.image

            cursor = await conn.execute(
                """
                INSERT INTO messages
                (id, conversation_id, is_operator, content,
                 image_url, image_width, image_height, reply_to_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    msg_id,
                    message.conversation_id,
                    int(message.is_operator),
                    message.content,
                    image.data_url if image else None,
                    image.width if image else None,
                    image.height if image else None,
                    message.reply_to_id,
                    to_db_timestamp(message.created_at),
                ),
            )

        message.id = msg_id
        message.seq = cursor.lastrowid

    async def get_message(
        self, conversation_id: str, message_id: str
    ) -> Message | None:
        """Point lookup of a message within a conversation."""
        conn = self._require_conn()
        cursor = await conn.execute(
            f"""
            SELECT {_MESSAGE_COLUMNS}
            FROM messages
            WHERE id = ? AND conversation_id = ?
            """,
            (message_id, conversation_id),
        )
        row = await cursor.fetchone()
        return _row_to_message(row) if row else None

    async def get_message_by_id(self, message_id: str) -> Message | None:
        """Point lookup of a message in any conversation."""
        conn = self._require_conn()
        cursor = await conn.execute(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?",
            (message_id,),
        )
        row = await cursor.fetchone()
        return _row_to_message(row) if row else None

    async def get_latest_messages(
        self, conversation_id: str, limit: int
    ) -> list[Message]:
        """Most recent messages, newest first."""
        conn = self._require_conn()
        cursor = await conn.execute(
            f"""
            SELECT {_MESSAGE_COLUMNS}
            FROM messages
            WHERE conversation_id = ?
            ORDER BY created_at DESC, seq DESC
            LIMIT ?
            """,
            (conversation_id, limit),
        )
        rows = await cursor.fetchall()
        return [_row_to_message(row) for row in rows]

    async def get_messages_before(
        self, conversation_id: str, cursor: Message, limit: int
    ) -> list[Message]:
        """Messages strictly older than the cursor, newest first."""
        conn = self._require_conn()
        ts = to_db_timestamp(cursor.created_at)
        db_cursor = await conn.execute(
            f"""
            SELECT {_MESSAGE_COLUMNS}
            FROM messages
            WHERE conversation_id = ?
              AND (created_at < ? OR (created_at = ? AND seq < ?))
            ORDER BY created_at DESC, seq DESC
            LIMIT ?
            """,
            (conversation_id, ts, ts, cursor.seq, limit),
        )
        rows = await db_cursor.fetchall()
        return [_row_to_message(row) for row in rows]

    async def get_messages_after(
        self, conversation_id: str, cursor: Message, limit: int
    ) -> list[Message]:
        """Messages strictly newer than the cursor, oldest first."""
        conn = self._require_conn()
        ts = to_db_timestamp(cursor.created_at)
        db_cursor = await conn.execute(
            f"""
            SELECT {_MESSAGE_COLUMNS}
            FROM messages
            WHERE conversation_id = ?
              AND (created_at > ? OR (created_at = ? AND seq > ?))
            ORDER BY created_at ASC, seq ASC
            LIMIT ?
            """,
            (conversation_id, ts, ts, cursor.seq, limit),
        )
        rows = await db_cursor.fetchall()
        return [_row_to_message(row) for row in rows]

    # Reactions / replies
    async def toggle_reaction(
        self,
        message_id: str,
        party_key: str,
        user_id: str | None,
        is_operator: bool,
        emoji: str,
        now: datetime,
    ) -> ReactionAction:
        """Toggle-and-replace a party's reaction on a message.

        Lookup, delete and insert run as one transaction under the write lock,
        so two overlapping toggles from the same party cannot both insert.
        """
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """
                SELECT emoji FROM message_reactions
                WHERE message_id = ? AND party_key = ?
                """,
                (message_id, party_key),
            )
            existing = await cursor.fetchone()

            await conn.execute(
                """
                DELETE FROM message_reactions
                WHERE message_id = ? AND party_key = ?
                """,
                (message_id, party_key),
            )

            if existing and existing[0] == emoji:
                action: ReactionAction = "removed"
            else:
                await conn.execute(
                    """
                    INSERT INTO message_reactions
                    (message_id, party_key, user_id, is_operator, emoji, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        message_id,
                        party_key,
                        user_id,
                        int(is_operator),
                        emoji,
                        to_db_timestamp(now),
                    ),
                )
                action = "added"

        return action

    async def get_reactions(
        self, message_ids: list[str]
    ) -> dict[str, list[ReactionGroup]]:
        """Aggregate reactions for exactly the given messages."""
        if not message_ids:
            return {}
        conn = self._require_conn()

        placeholders = ",".join("?" * len(message_ids))
        cursor = await conn.execute(
            f"""
            SELECT message_id, emoji, COUNT(*),
                   MAX(is_operator), MAX(1 - is_operator)
            FROM message_reactions
            WHERE message_id IN ({placeholders})
            GROUP BY message_id, emoji
            ORDER BY MIN(created_at) ASC
            """,
            message_ids,
        )
        rows = await cursor.fetchall()

        reactions: dict[str, list[ReactionGroup]] = {}
        for row in rows:
            reactions.setdefault(row[0], []).append(
                ReactionGroup(
                    emoji=row[1],
                    count=int(row[2]),
                    has_operator=bool(row[3]),
                    has_visitor=bool(row[4]),
                )
            )
        return reactions

    async def get_reply_previews(
        self, message_ids: list[str]
    ) -> dict[str, ReplyPreview]:
        """Reply targets for exactly the given messages."""
        if not message_ids:
            return {}
        conn = self._require_conn()

        placeholders = ",".join("?" * len(message_ids))
        cursor = await conn.execute(
            f"""
            SELECT m.id, r.id, r.content, r.is_operator
            FROM messages m
            JOIN messages r ON r.id = m.reply_to_id
            WHERE m.id IN ({placeholders}) AND m.reply_to_id IS NOT NULL
            """,
            message_ids,
        )
        rows = await cursor.fetchall()
        return {
            row[0]: ReplyPreview(id=row[1], content=row[2], is_operator=bool(row[3]))
            for row in rows
        }

    # Typing
    async def upsert_typing(
        self, conversation_id: str, is_operator: bool, at: datetime
    ) -> None:
        """Record a typing heartbeat."""
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO typing_status (conversation_id, is_operator, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT (conversation_id, is_operator)
                DO UPDATE SET updated_at = excluded.updated_at
                """,
                (conversation_id, int(is_operator), to_db_timestamp(at)),
            )

    async def delete_typing(self, conversation_id: str, is_operator: bool) -> None:
        """Remove a typing record."""
        async with self._transaction() as conn:
            await conn.execute(
                """
                DELETE FROM typing_status
                WHERE conversation_id = ? AND is_operator = ?
                """,
                (conversation_id, int(is_operator)),
            )

    async def get_typing(
        self, conversation_id: str, is_operator: bool
    ) -> TypingStatus | None:
        """Get a typing record."""
        conn = self._require_conn()
        cursor = await conn.execute(
            """
            SELECT conversation_id, is_operator, updated_at
            FROM typing_status
            WHERE conversation_id = ? AND is_operator = ?
            """,
            (conversation_id, int(is_operator)),
        )
        row = await cursor.fetchone()
        if not row:
            return None
        return TypingStatus(
            conversation_id=row[0],
            is_operator=bool(row[1]),
            updated_at=from_db_timestamp(row[2]),
        )

    # Push subscriptions
    async def save_push_subscription(
        self, subscription: PushSubscription, now: datetime
    ) -> None:
        """Upsert a push subscription by endpoint."""
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO push_subscriptions
                (endpoint, p256dh, auth, user_id, is_operator, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (endpoint) DO UPDATE SET
                    p256dh = excluded.p256dh,
                    auth = excluded.auth,
                    user_id = excluded.user_id,
                    is_operator = excluded.is_operator,
                    updated_at = excluded.updated_at
                """,
                (
                    subscription.endpoint,
                    subscription.p256dh,
                    subscription.auth,
                    subscription.user_id,
                    int(subscription.is_operator),
                    to_db_timestamp(now),
                ),
            )

    async def delete_push_subscription(self, endpoint: str) -> None:
        """Remove a push subscription."""
        async with self._transaction() as conn:
            await conn.execute(
                "DELETE FROM push_subscriptions WHERE endpoint = ?", (endpoint,)
            )

    async def get_push_subscriptions(
        self, user_id: str | None = None, is_operator: bool = False
    ) -> list[PushSubscription]:
        """Subscriptions of the operator or of one visitor."""
        conn = self._require_conn()
        if is_operator:
            cursor = await conn.execute(
                """
                SELECT endpoint, p256dh, auth, user_id, is_operator
                FROM push_subscriptions
                WHERE is_operator = 1
                """
            )
        else:
            cursor = await conn.execute(
                """
                SELECT endpoint, p256dh, auth, user_id, is_operator
                FROM push_subscriptions
                WHERE user_id = ? AND is_operator = 0
                """,
                (user_id,),
            )
        rows = await cursor.fetchall()
        return [
            PushSubscription(
                endpoint=row[0],
                p256dh=row[1],
                auth=row[2],
                user_id=row[3],
                is_operator=bool(row[4]),
            )
            for row in rows
        ]

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        tables = [
            "message_reactions",
            "typing_status",
            "messages",
            "conversations",
            "push_subscriptions",
            "operator_sessions",
            "sessions",
            "users",
        ]

        async with self._transaction() as conn:
            for table in tables:
                await conn.execute(f"DELETE FROM {table}")

