# src/memcore/queue/store.py
"""
SQLite-backed pending message store using aiosqlite.

Work items reported by the host are written here before anything else
happens, so a crash between enqueue and extraction loses nothing. A message
moves ``pending -> processing -> processed`` (or ``failed``); messages left in
``processing`` by a crashed worker are moved back to ``pending`` on restart and
delivered again.
"""

import asyncio
import logging
import os
import pathlib
import time
from typing import Iterable, List, Optional

import aiosqlite
from pydantic import TypeAdapter, ValidationError

from ..exceptions import QueueError
from ..models import ObservationMessage, SummarizeMessage, WorkItem

logger = logging.getLogger(__name__)

DEFAULT_PENDING_TABLE = "pending_messages"

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_PROCESSED = "processed"
STATUS_FAILED = "failed"

_WORK_ITEM_ADAPTER: TypeAdapter = TypeAdapter(WorkItem)


class PendingMessageStore:
    """
    Durable FIFO of work items per session.

    Claims are serialized with an :class:`asyncio.Lock`, so two consumers can
    never claim the same message.
    """

    def __init__(self, db_path: str, table_name: str = DEFAULT_PENDING_TABLE):
        self._db_path = db_path
        self._table = table_name
        self._conn: Optional[aiosqlite.Connection] = None
        self._claim_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Opens the database and creates the table if needed."""
        try:
            if self._db_path != ":memory:":
                path = pathlib.Path(os.path.expanduser(self._db_path))
                path.parent.mkdir(parents=True, exist_ok=True)
                self._db_path = str(path)
            self._conn = await aiosqlite.connect(self._db_path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self._table} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_db_id INTEGER NOT NULL,
                    content_session_id TEXT NOT NULL,
                    message_type TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT '{STATUS_PENDING}',
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    created_at_epoch INTEGER NOT NULL,
                    updated_at_epoch INTEGER NOT NULL
                )
            """)
            await self._conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{self._table}_session_status ON {self._table} (session_db_id, status, id);"
            )
            await self._conn.commit()
            logger.info(f"Pending message store initialized at: {self._db_path}")
        except aiosqlite.Error as e:
            logger.error(f"Failed to initialize pending message store at {self._db_path}: {e}")
            await self.close()
            raise QueueError(f"Could not initialize pending message store: {e}") from e

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise QueueError("Pending message store is not initialized.")
        return self._conn

    async def enqueue(self, session_db_id: int, content_session_id: str, item: ObservationMessage | SummarizeMessage) -> int:
        """Persists a work item as ``pending`` and returns its id."""
        conn = self._require_conn()
        now = int(time.time() * 1000)
        payload = item.model_dump_json(exclude={"persistent_id"})
        try:
            cursor = await conn.execute(
                f"INSERT INTO {self._table} (session_db_id, content_session_id, message_type, payload, status, "
                f"created_at_epoch, updated_at_epoch) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (session_db_id, content_session_id, item.type, payload, STATUS_PENDING, item.created_at_epoch, now),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            logger.error(f"Failed to enqueue {item.type} message for session {session_db_id}: {e}")
            raise QueueError(f"Could not enqueue message for session {session_db_id}: {e}") from e
        message_id = cursor.lastrowid
        logger.debug(f"Enqueued {item.type} message {message_id} for session {session_db_id}.")
        return int(message_id)

    async def claim_next(self, session_db_id: int) -> Optional[ObservationMessage | SummarizeMessage]:
        """
        Moves the oldest pending message of a session to ``processing`` and returns it.

        Returns:
            The work item with ``persistent_id`` set, or None if nothing is pending.
        """
        conn = self._require_conn()
        async with self._claim_lock:
            try:
                async with conn.execute(
                    f"SELECT id, payload FROM {self._table} WHERE session_db_id = ? AND status = ? ORDER BY id ASC LIMIT 1",
                    (session_db_id, STATUS_PENDING),
                ) as cursor:
                    row = await cursor.fetchone()
                if row is None:
                    return None
                await conn.execute(
                    f"UPDATE {self._table} SET status = ?, updated_at_epoch = ? WHERE id = ? AND status = ?",
                    (STATUS_PROCESSING, int(time.time() * 1000), row["id"], STATUS_PENDING),
                )
                await conn.commit()
            except aiosqlite.Error as e:
                logger.error(f"Failed to claim message for session {session_db_id}: {e}")
                raise QueueError(f"Could not claim message for session {session_db_id}: {e}") from e

        try:
            item = _WORK_ITEM_ADAPTER.validate_json(row["payload"])
        except ValidationError as e:
            await self.mark_failed([row["id"]])
            raise QueueError(f"Message {row['id']} has an invalid payload: {e}") from e
        return item.model_copy(update={"persistent_id": row["id"]})

    async def _set_status(self, message_ids: Iterable[int], status: str, count_retry: bool = False) -> int:
        conn = self._require_conn()
        ids = list(message_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        retry_clause = ", retry_count = retry_count + 1" if count_retry else ""
        try:
            cursor = await conn.execute(
                f"UPDATE {self._table} SET status = ?, updated_at_epoch = ?{retry_clause} WHERE id IN ({placeholders})",
                (status, int(time.time() * 1000), *ids),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            logger.error(f"Failed to mark messages {ids} as {status}: {e}")
            raise QueueError(f"Could not mark messages as {status}: {e}") from e
        return cursor.rowcount

    async def mark_processed(self, message_ids: Iterable[int]) -> int:
        """Acknowledges messages. Already processed ids are simply updated again."""
        return await self._set_status(message_ids, STATUS_PROCESSED)

    async def mark_failed(self, message_ids: Iterable[int]) -> int:
        return await self._set_status(message_ids, STATUS_FAILED, count_retry=True)

    async def reset_stale_processing(self, session_db_id: Optional[int] = None) -> int:
        """
        Returns ``processing`` messages to ``pending`` for redelivery.

        Args:
            session_db_id: Limit to one session; None resets every session.

        Returns:
            Number of messages reset.
        """
        conn = self._require_conn()
        query = f"UPDATE {self._table} SET status = ?, updated_at_epoch = ? WHERE status = ?"
        params: list = [STATUS_PENDING, int(time.time() * 1000), STATUS_PROCESSING]
        if session_db_id is not None:
            query += " AND session_db_id = ?"
            params.append(session_db_id)
        try:
            cursor = await conn.execute(query, params)
            await conn.commit()
        except aiosqlite.Error as e:
            raise QueueError(f"Could not reset stale messages: {e}") from e
        if cursor.rowcount:
            logger.info(f"Reset {cursor.rowcount} stale processing message(s) to pending.")
        return cursor.rowcount

    async def pending_count(self, session_db_id: int) -> int:
        conn = self._require_conn()
        async with conn.execute(
            f"SELECT COUNT(*) FROM {self._table} WHERE session_db_id = ? AND status = ?",
            (session_db_id, STATUS_PENDING),
        ) as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def get_status(self, message_id: int) -> Optional[str]:
        conn = self._require_conn()
        async with conn.execute(f"SELECT status FROM {self._table} WHERE id = ?", (message_id,)) as cursor:
            row = await cursor.fetchone()
        return row["status"] if row else None

    async def sessions_with_pending(self) -> List[int]:
        """Session ids that still have pending messages (used for recovery at start-up)."""
        conn = self._require_conn()
        async with conn.execute(
            f"SELECT DISTINCT session_db_id FROM {self._table} WHERE status = ? ORDER BY session_db_id",
            (STATUS_PENDING,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [int(row[0]) for row in rows]

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.debug("Pending message store connection closed.")
