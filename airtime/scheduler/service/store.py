"""SQLite persistence layer for subscriptions and their pending schedule.

The ``subscriptions`` table is the durable truth of which subscription waits
for which episode at what instant. The ``series`` table carries the release
cadence that the scheduler reads but never modifies.
"""
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

import aiosqlite
from loguru import logger

from ..errors import PersistenceError
from ..models import Series, Subscription
from ..schedule import ensure_utc, parse_instant, utcnow

logger = logger.bind(module="scheduler.store")


def _to_db(value: datetime | None) -> str | None:
    """Serialize an instant as fixed-width UTC text so it sorts correctly."""
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec="microseconds")


class ScheduleStore:
    """SQLite-based subscription and series persistence.

    A single connection is shared; every write is a single statement
    followed by a commit, so each save is atomic on its own.
    """

    def __init__(self, db_path: str | Path):
        """Initialize schedule store.

        Args:
            db_path: Path to SQLite database
        """
        self.db_path = Path(db_path)
        self._connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Initialize database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._connection = await aiosqlite.connect(self.db_path)
            self._connection.row_factory = aiosqlite.Row

            await self._connection.execute("""
                CREATE TABLE IF NOT EXISTS series (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL DEFAULT '',
                    name_cn TEXT,
                    base_time TEXT,
                    recurrence_period TEXT,
                    end_time TEXT,
                    total_episode_count INTEGER,
                    updated_at TEXT NOT NULL
                )
            """)

            await self._connection.execute("""
                CREATE TABLE IF NOT EXISTS subscriptions (
                    id TEXT PRIMARY KEY,
                    subscriber_id TEXT NOT NULL,
                    series_id TEXT NOT NULL,
                    last_notified_episode INTEGER NOT NULL DEFAULT 0,
                    next_notify_time TEXT,
                    next_notify_episode INTEGER,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (subscriber_id, series_id),
                    CHECK ((next_notify_time IS NULL) = (next_notify_episode IS NULL))
                )
            """)

            await self._connection.execute(
                "CREATE INDEX IF NOT EXISTS idx_subscriptions_next_notify "
                "ON subscriptions(next_notify_time)"
            )
            await self._connection.execute(
                "CREATE INDEX IF NOT EXISTS idx_subscriptions_series "
                "ON subscriptions(series_id)"
            )

            await self._connection.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to initialize schedule store: {e}") from e

        logger.info(f"Schedule store initialized at {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    # ============== Low-level helpers ==============

    def _conn(self) -> aiosqlite.Connection:
        if not self._connection:
            raise RuntimeError("ScheduleStore not initialized")
        return self._connection

    async def _write(self, query: str, params: Iterable[Any]) -> int:
        """Execute one statement and commit. Returns the affected row count."""
        conn = self._conn()
        try:
            cursor = await conn.execute(query, tuple(params))
            await conn.commit()
            return cursor.rowcount
        except aiosqlite.Error as e:
            raise PersistenceError(f"Schedule store write failed: {e}") from e

    async def _fetch_all(self, query: str, params: Iterable[Any] = ()) -> list[dict[str, Any]]:
        conn = self._conn()
        try:
            async with conn.execute(query, tuple(params)) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Schedule store read failed: {e}") from e
        return [dict(row) for row in rows]

    async def _fetch_one(self, query: str, params: Iterable[Any] = ()) -> dict[str, Any] | None:
        rows = await self._fetch_all(query, params)
        return rows[0] if rows else None

    # ============== Subscriptions ==============

    @staticmethod
    def _subscription_params(subscription: Subscription) -> tuple:
        return (
            subscription.id,
            subscription.subscriber_id,
            subscription.series_id,
            subscription.last_notified_episode,
            _to_db(subscription.next_notify_time),
            subscription.next_notify_episode,
            _to_db(subscription.created_at),
            _to_db(subscription.updated_at),
        )

    async def create(self, subscription: Subscription) -> bool:
        """Insert a new subscription.

        Returns:
            False if the subscriber already follows this series (or the id
            is taken); nothing is written in that case
        """
        subscription.check_invariants()
        subscription.updated_at = utcnow()

        conn = self._conn()
        try:
            await conn.execute(
                """
                INSERT INTO subscriptions (
                    id, subscriber_id, series_id, last_notified_episode,
                    next_notify_time, next_notify_episode, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                self._subscription_params(subscription),
            )
            await conn.commit()
        except aiosqlite.IntegrityError:
            await conn.rollback()
            return False
        except aiosqlite.Error as e:
            raise PersistenceError(f"Schedule store write failed: {e}") from e
        return True

    async def save(self, subscription: Subscription) -> None:
        """Save or update a subscription, including its pending projection.

        Updates keep the row identity; a conflicting (subscriber, series)
        pair under a different id is rejected instead of replaced.

        Raises:
            ScheduleInvariantError: If the projection is inconsistent
            PersistenceError: If the write fails
        """
        subscription.check_invariants()
        subscription.updated_at = utcnow()

        await self._write(
            """
            INSERT INTO subscriptions (
                id, subscriber_id, series_id, last_notified_episode,
                next_notify_time, next_notify_episode, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                subscriber_id = excluded.subscriber_id,
                series_id = excluded.series_id,
                last_notified_episode = excluded.last_notified_episode,
                next_notify_time = excluded.next_notify_time,
                next_notify_episode = excluded.next_notify_episode,
                updated_at = excluded.updated_at
            """,
            self._subscription_params(subscription),
        )

    async def save_pending(
        self,
        subscription_id: str,
        due: datetime,
        episode: int,
    ) -> bool:
        """Store the projection for ``episode`` if the row is still at ``episode - 1``.

        Returns:
            False if the subscription is gone or its progress moved on
        """
        return await self._write(
            """
            UPDATE subscriptions
            SET next_notify_time = ?, next_notify_episode = ?, updated_at = ?
            WHERE id = ? AND last_notified_episode = ?
            """,
            (_to_db(due), episode, _to_db(utcnow()), subscription_id, episode - 1),
        ) > 0

    async def get(self, subscription_id: str) -> Subscription | None:
        """Get a subscription by ID."""
        row = await self._fetch_one(
            "SELECT * FROM subscriptions WHERE id = ?", (subscription_id,)
        )
        return self._row_to_subscription(row) if row else None

    async def find_by_subscriber_and_series(
        self,
        subscriber_id: str,
        series_id: str,
    ) -> Subscription | None:
        row = await self._fetch_one(
            "SELECT * FROM subscriptions WHERE subscriber_id = ? AND series_id = ?",
            (subscriber_id, series_id),
        )
        return self._row_to_subscription(row) if row else None

    async def list_subscriptions(self, subscriber_id: str | None = None) -> list[Subscription]:
        """List subscriptions, optionally for one subscriber."""
        query = "SELECT * FROM subscriptions"
        params: list[Any] = []
        if subscriber_id:
            query += " WHERE subscriber_id = ?"
            params.append(subscriber_id)
        query += " ORDER BY created_at ASC"
        return [self._row_to_subscription(r) for r in await self._fetch_all(query, params)]

    async def delete(self, subscription_id: str) -> bool:
        """Permanently delete a subscription."""
        return await self._write(
            "DELETE FROM subscriptions WHERE id = ?", (subscription_id,)
        ) > 0

    async def find_all_pending(self) -> list[Subscription]:
        """Get every subscription with a pending projection, earliest first.

        Only meant for startup recovery.
        """
        rows = await self._fetch_all(
            """
            SELECT * FROM subscriptions
            WHERE next_notify_time IS NOT NULL
            ORDER BY next_notify_time ASC
            """
        )
        return [self._row_to_subscription(r) for r in rows]

    async def clear_pending(self, subscription_id: str) -> bool:
        """Clear both projection fields.

        Returns:
            True if the subscription existed and had a projection
        """
        return await self._write(
            """
            UPDATE subscriptions
            SET next_notify_time = NULL, next_notify_episode = NULL, updated_at = ?
            WHERE id = ? AND next_notify_time IS NOT NULL
            """,
            (_to_db(utcnow()), subscription_id),
        ) > 0

    async def commit_delivery(self, subscription_id: str, episode: int) -> bool:
        """Record a delivered episode and clear the projection in one statement.

        The update only applies while the row still waits for ``episode``.

        Returns:
            False if the subscription is gone or was advanced concurrently
        """
        return await self._write(
            """
            UPDATE subscriptions
            SET last_notified_episode = ?,
                next_notify_time = NULL,
                next_notify_episode = NULL,
                updated_at = ?
            WHERE id = ? AND next_notify_episode = ?
            """,
            (episode, _to_db(utcnow()), subscription_id, episode),
        ) > 0

    def _row_to_subscription(self, data: dict[str, Any]) -> Subscription:
        """Convert a database row to a Subscription."""
        return Subscription(
            id=data["id"],
            subscriber_id=data["subscriber_id"],
            series_id=data["series_id"],
            last_notified_episode=data.get("last_notified_episode") or 0,
            next_notify_time=parse_instant(data.get("next_notify_time")),
            next_notify_episode=data.get("next_notify_episode"),
            created_at=parse_instant(data.get("created_at")) or utcnow(),
            updated_at=parse_instant(data.get("updated_at")) or utcnow(),
        )

    # ============== Series ==============

    async def save_series(self, series: Series) -> None:
        """Save or update a series."""
        await self._write(
            """
            INSERT OR REPLACE INTO series (
                id, name, name_cn, base_time, recurrence_period,
                end_time, total_episode_count, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                series.id,
                series.name,
                series.name_cn,
                _to_db(series.base_time),
                series.recurrence_period,
                _to_db(series.end_time),
                series.total_episode_count,
                _to_db(utcnow()),
            ),
        )

    async def get_series(self, series_id: str) -> Series | None:
        """Get a series by ID."""
        row = await self._fetch_one("SELECT * FROM series WHERE id = ?", (series_id,))
        if not row:
            return None
        return Series(
            id=row["id"],
            name=row.get("name") or "",
            name_cn=row.get("name_cn"),
            base_time=parse_instant(row.get("base_time")),
            recurrence_period=row.get("recurrence_period"),
            end_time=parse_instant(row.get("end_time")),
            total_episode_count=row.get("total_episode_count"),
        )
