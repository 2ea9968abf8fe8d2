"""
Repository pattern for data access.

Holds the two logical collections of the relay store: user entitlements
with their daily usage, and bounded per-user conversation logs. Every
operation re-reads current state, mutates it and commits before returning.
"""

import sqlite3
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Callable, List, Optional

from chat_relay.core.errors import InvalidRequest, UserNotFound
from chat_relay.core.quota import (
    Clock,
    LevelTable,
    QuotaDecision,
    evaluate_quota,
    new_user,
    roll_over,
    utc_today,
)
from chat_relay.log import get_logger

from .db import get_connection, transaction
from .models import DailyUsage, MessageRole, SessionMessage, UserRecord

logger = get_logger(__name__)

DEFAULT_DB_PATH = "chat_relay.db"

# Maximum number of messages kept per session
MAX_SESSION_MESSAGES = 12


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the users and session_messages tables if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS users (
                user_id         TEXT PRIMARY KEY,
                level           TEXT    NOT NULL,
                bonus_requests  INTEGER NOT NULL DEFAULT 0 CHECK(bonus_requests >= 0),
                usage_date      TEXT    NOT NULL,
                usage_count     INTEGER NOT NULL DEFAULT 0 CHECK(usage_count >= 0)
            );

            CREATE TABLE IF NOT EXISTS session_messages (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id     TEXT NOT NULL,
                role        TEXT NOT NULL CHECK(role IN ('system','user','assistant')),
                content     TEXT NOT NULL,
                created_at  TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_session_messages_user
                ON session_messages(user_id, id);
        """)
    finally:
        conn.close()


def _row_to_user(row: sqlite3.Row) -> UserRecord:
    return UserRecord(
        user_id=row["user_id"],
        level=row["level"],
        bonus_requests=row["bonus_requests"],
        usage=DailyUsage(
            date=date.fromisoformat(row["usage_date"]),
            count=row["usage_count"],
        ),
    )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UserRepository:
    """User/quota store.

    Owns every mutation of user entitlements and usage counters. The level
    table and the clock are injected so the quota rules stay deterministic
    under test.
    """

    def __init__(
        self,
        levels: LevelTable,
        db_path: str = DEFAULT_DB_PATH,
        clock: Clock = utc_today
    ):
        """Initialize the repository.

        Args:
            levels: Level table used to resolve allowances and models
            db_path: Path to SQLite database file
            clock: Callable returning the current calendar day
        """
        self.levels = levels
        self.db_path = db_path
        self.clock = clock

    @staticmethod
    def _load(conn: sqlite3.Connection, user_id: str) -> Optional[UserRecord]:
        row = conn.execute(
            "SELECT * FROM users WHERE user_id = ?", (user_id,)
        ).fetchone()
        return _row_to_user(row) if row else None

    @staticmethod
    def _save(conn: sqlite3.Connection, user: UserRecord) -> None:
        conn.execute("""
            INSERT INTO users (user_id, level, bonus_requests, usage_date, usage_count)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                level = excluded.level,
                bonus_requests = excluded.bonus_requests,
                usage_date = excluded.usage_date,
                usage_count = excluded.usage_count
        """, (
            user.user_id,
            user.level,
            user.bonus_requests,
            user.usage.date.isoformat(),
            user.usage.count
        ))

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        """Get a user record without creating or rolling it over."""
        conn = get_connection(self.db_path)
        try:
            return self._load(conn, user_id)
        finally:
            conn.close()

    def ensure_user(self, user_id: str) -> UserRecord:
        """Create the user on first contact and apply the daily rollover.

        Idempotent and safe to call before every request.

        Args:
            user_id: Opaque user identifier

        Returns:
            The user's record as stored after the call
        """
        today = self.clock()
        with transaction(self.db_path) as conn:
            user = self._load(conn, user_id)
            if user is None:
                user = new_user(user_id, self.levels.default_level, today)
                self._save(conn, user)
                logger.info("user_created", user_id=user_id, level=user.level)
                return user

            rolled = roll_over(user, today)
            if rolled is not user:
                self._save(conn, rolled)
                logger.info(
                    "usage_rolled_over",
                    user_id=user_id,
                    previous_date=user.usage.date.isoformat(),
                    previous_count=user.usage.count
                )
            return rolled

    def consume_quota(self, user_id: str) -> QuotaDecision:
        """Charge one request against the user's allowance or bonus balance.

        Args:
            user_id: Opaque user identifier

        Returns:
            QuotaDecision describing whether the request may proceed

        Raises:
            UserNotFound: If the user was never ensured
        """
        today = self.clock()
        with transaction(self.db_path) as conn:
            user = self._load(conn, user_id)
            if user is None:
                raise UserNotFound(user_id)

            if user.level not in self.levels:
                logger.warning(
                    "unknown_level",
                    user_id=user_id,
                    level=user.level,
                    fallback=self.levels.default_level
                )

            current = roll_over(user, today)
            decision, charged = evaluate_quota(current, self.levels.resolve(user.level))
            if charged is not user:
                self._save(conn, charged)

        if decision.allowed:
            logger.info(
                "quota_consumed",
                user_id=user_id,
                source=decision.source,
                remaining=decision.remaining
            )
        else:
            logger.info("quota_exhausted", user_id=user_id, level=user.level)
        return decision

    def update_level(
        self,
        user_id: str,
        level: Optional[str] = None,
        bonus_requests: Optional[int] = None
    ) -> UserRecord:
        """Upsert a user's entitlements.

        Only supplied values are overwritten; an absent bonus keeps the
        current balance.

        Args:
            user_id: Opaque user identifier
            level: New level id, if any
            bonus_requests: New bonus balance, if any

        Returns:
            The updated user record

        Raises:
            InvalidRequest: If the level is unknown or the bonus is not a non-negative integer
        """
        if level is not None and level not in self.levels:
            raise InvalidRequest(
                f"Unknown level: {level}",
                {"levels": sorted(self.levels.levels)}
            )
        if bonus_requests is not None:
            if isinstance(bonus_requests, bool) or not isinstance(bonus_requests, int):
                raise InvalidRequest("bonusRequests must be an integer")
            if bonus_requests < 0:
                raise InvalidRequest("bonusRequests must be >= 0")

        today = self.clock()
        with transaction(self.db_path) as conn:
            user = self._load(conn, user_id)
            if user is None:
                user = new_user(user_id, self.levels.default_level, today)

            if level is not None:
                user = replace(user, level=level)
            if bonus_requests is not None:
                user = replace(user, bonus_requests=bonus_requests)

            self._save(conn, user)

        logger.info(
            "entitlement_updated",
            user_id=user_id,
            level=user.level,
            bonus_requests=user.bonus_requests
        )
        return user

    def bulk_reset_usage(self) -> int:
        """Zero every user's daily counter and stamp it with today's date.

        Levels and bonus balances are left untouched.

        Returns:
            Number of users reset
        """
        today = self.clock()
        with transaction(self.db_path) as conn:
            cursor = conn.execute(
                "UPDATE users SET usage_date = ?, usage_count = 0",
                (today.isoformat(),)
            )
            count = cursor.rowcount

        logger.info("usage_bulk_reset", users=count, date=today.isoformat())
        return count


class SessionRepository:
    """Session store keeping the most recent messages of each user."""

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        max_messages: int = MAX_SESSION_MESSAGES,
        now: Callable[[], datetime] = _utc_now
    ):
        """Initialize the repository.

        Args:
            db_path: Path to SQLite database file
            max_messages: Number of most recent messages kept per user
            now: Callable returning the timestamp stamped on new messages
        """
        if max_messages <= 0:
            raise ValueError("max_messages must be > 0")
        self.db_path = db_path
        self.max_messages = max_messages
        self.now = now

    def append(self, user_id: str, role: MessageRole, content: str) -> None:
        """Append one message and drop the oldest ones beyond the cap.

        Args:
            user_id: Opaque user identifier
            role: Author of the message
            content: Message text
        """
        role = MessageRole(role)
        with transaction(self.db_path) as conn:
            conn.execute("""
                INSERT INTO session_messages (user_id, role, content, created_at)
                VALUES (?, ?, ?, ?)
            """, (user_id, role.value, content, self.now().isoformat()))
            conn.execute("""
                DELETE FROM session_messages
                WHERE user_id = ? AND id NOT IN (
                    SELECT id FROM session_messages
                    WHERE user_id = ?
                    ORDER BY id DESC
                    LIMIT ?
                )
            """, (user_id, user_id, self.max_messages))

    def read(self, user_id: str) -> List[SessionMessage]:
        """Get the user's conversation log, oldest message first.

        Args:
            user_id: Opaque user identifier

        Returns:
            List of session messages (empty if the user has none)
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT role, content, created_at FROM session_messages
                WHERE user_id = ?
                ORDER BY id ASC
            """, (user_id,))
            return [
                SessionMessage(
                    role=MessageRole(row["role"]),
                    content=row["content"],
                    timestamp=datetime.fromisoformat(row["created_at"])
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()
