# src/memcore/storage/sqlite_memory.py
"""
SQLite storage for sessions and extracted memory records using aiosqlite.

Holds three tables: the session table (one row per host conversation, the
source of ``session_db_id``), observations, and summaries. Record ids are
content digests, and records are written with ``INSERT OR IGNORE``, so
storing the same extraction twice leaves exactly one copy.
"""

import json
import logging
import os
import pathlib
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiosqlite

from ..exceptions import SessionNotFoundError, StorageError
from ..models import ObservationRecord, SummaryRecord

logger = logging.getLogger(__name__)

DEFAULT_SESSIONS_TABLE = "sdk_sessions"
DEFAULT_OBSERVATIONS_TABLE = "observations"
DEFAULT_SUMMARIES_TABLE = "session_summaries"

_LIST_FIELDS = ("facts", "concepts", "files_read", "files_modified")


class SqliteMemoryStore:
    """
    Manages persistence of sessions, observations and summaries in one SQLite file.
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None
        self._sessions_table = DEFAULT_SESSIONS_TABLE
        self._observations_table = DEFAULT_OBSERVATIONS_TABLE
        self._summaries_table = DEFAULT_SUMMARIES_TABLE

    async def initialize(self) -> None:
        """Opens the database and creates tables if they don't exist."""
        try:
            if self._db_path != ":memory:":
                path = pathlib.Path(os.path.expanduser(self._db_path))
                path.parent.mkdir(parents=True, exist_ok=True)
                self._db_path = str(path)
            self._conn = await aiosqlite.connect(self._db_path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self._sessions_table} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    content_session_id TEXT NOT NULL UNIQUE,
                    memory_session_id TEXT,
                    project TEXT NOT NULL,
                    user_prompt TEXT,
                    prompt_counter INTEGER NOT NULL DEFAULT 1,
                    status TEXT NOT NULL DEFAULT 'active',
                    started_at_epoch INTEGER NOT NULL,
                    completed_at_epoch INTEGER
                )
            """)
            await self._conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self._observations_table} (
                    id TEXT PRIMARY KEY,
                    memory_session_id TEXT NOT NULL,
                    project TEXT NOT NULL,
                    type TEXT NOT NULL,
                    title TEXT, subtitle TEXT, facts TEXT, narrative TEXT, concepts TEXT,
                    files_read TEXT, files_modified TEXT,
                    prompt_number INTEGER,
                    created_at_epoch INTEGER NOT NULL,
                    discovery_tokens INTEGER NOT NULL DEFAULT 0,
                    backend TEXT
                )
            """)
            await self._conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_observations_project_created ON {self._observations_table} (project, created_at_epoch);"
            )
            await self._conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self._summaries_table} (
                    id TEXT PRIMARY KEY,
                    memory_session_id TEXT NOT NULL,
                    project TEXT NOT NULL,
                    request TEXT, investigated TEXT, learned TEXT, completed TEXT, next_steps TEXT, notes TEXT,
                    prompt_number INTEGER,
                    created_at_epoch INTEGER NOT NULL,
                    discovery_tokens INTEGER NOT NULL DEFAULT 0,
                    backend TEXT
                )
            """)
            await self._conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_summaries_project_created ON {self._summaries_table} (project, created_at_epoch);"
            )
            await self._conn.commit()
            logger.info(f"SQLite memory store initialized at: {self._db_path}")
        except aiosqlite.Error as e:
            logger.error(f"Failed to initialize SQLite memory store at {self._db_path}: {e}")
            await self.close()
            raise StorageError(f"Could not initialize SQLite memory store: {e}") from e

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StorageError("Database connection not initialized.")
        return self._conn

    # --- Sessions ---

    async def create_session(self, content_session_id: str, project: str, user_prompt: str = "") -> Tuple[int, bool]:
        """
        Returns the session id for ``content_session_id``, creating the row on first sight.

        A later call for the same conversation updates the stored user prompt.

        Returns:
            The session id and whether the row was created by this call.
        """
        conn = self._require_conn()
        try:
            insert = await conn.execute(
                f"INSERT OR IGNORE INTO {self._sessions_table} (content_session_id, project, user_prompt, started_at_epoch) "
                f"VALUES (?, ?, ?, ?)",
                (content_session_id, project, user_prompt, int(time.time() * 1000)),
            )
            if user_prompt:
                await conn.execute(
                    f"UPDATE {self._sessions_table} SET user_prompt = ?, status = 'active' WHERE content_session_id = ?",
                    (user_prompt, content_session_id),
                )
            await conn.commit()
            async with conn.execute(
                f"SELECT id FROM {self._sessions_table} WHERE content_session_id = ?", (content_session_id,)
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StorageError(f"Could not create session for '{content_session_id}': {e}") from e
        return int(row["id"]), insert.rowcount == 1

    async def get_session_row(self, session_db_id: int) -> Dict[str, Any]:
        conn = self._require_conn()
        async with conn.execute(f"SELECT * FROM {self._sessions_table} WHERE id = ?", (session_db_id,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise SessionNotFoundError(session_db_id)
        return dict(row)

    async def update_memory_session_id(self, session_db_id: int, memory_session_id: str) -> None:
        conn = self._require_conn()
        await conn.execute(
            f"UPDATE {self._sessions_table} SET memory_session_id = ? WHERE id = ? AND memory_session_id IS NULL",
            (memory_session_id, session_db_id),
        )
        await conn.commit()

    async def increment_prompt_counter(self, session_db_id: int) -> int:
        """Bumps and returns the session's prompt counter."""
        conn = self._require_conn()
        await conn.execute(
            f"UPDATE {self._sessions_table} SET prompt_counter = prompt_counter + 1 WHERE id = ?", (session_db_id,)
        )
        await conn.commit()
        row = await self.get_session_row(session_db_id)
        return int(row["prompt_counter"])

    async def set_session_status(self, session_db_id: int, status: str) -> None:
        conn = self._require_conn()
        completed_at = int(time.time() * 1000) if status in ("completed", "failed") else None
        await conn.execute(
            f"UPDATE {self._sessions_table} SET status = ?, completed_at_epoch = ? WHERE id = ?",
            (status, completed_at, session_db_id),
        )
        await conn.commit()

    # --- Records ---

    async def store_records(
        self,
        observations: Sequence[ObservationRecord],
        summary: Optional[SummaryRecord] = None,
    ) -> int:
        """
        Writes observations and an optional summary in one transaction.

        Returns:
            Number of rows actually inserted (duplicates are ignored).
        """
        conn = self._require_conn()
        inserted = 0
        try:
            for record in observations:
                data = record.model_dump()
                for key in _LIST_FIELDS:
                    data[key] = json.dumps(data[key])
                cursor = await conn.execute(
                    f"INSERT OR IGNORE INTO {self._observations_table} (id, memory_session_id, project, type, title, subtitle, "
                    f"facts, narrative, concepts, files_read, files_modified, prompt_number, created_at_epoch, "
                    f"discovery_tokens, backend) VALUES (:id, :memory_session_id, :project, :type, :title, :subtitle, "
                    f":facts, :narrative, :concepts, :files_read, :files_modified, :prompt_number, :created_at_epoch, "
                    f":discovery_tokens, :backend)",
                    data,
                )
                inserted += cursor.rowcount
            if summary is not None:
                cursor = await conn.execute(
                    f"INSERT OR IGNORE INTO {self._summaries_table} (id, memory_session_id, project, request, investigated, "
                    f"learned, completed, next_steps, notes, prompt_number, created_at_epoch, discovery_tokens, backend) "
                    f"VALUES (:id, :memory_session_id, :project, :request, :investigated, :learned, :completed, "
                    f":next_steps, :notes, :prompt_number, :created_at_epoch, :discovery_tokens, :backend)",
                    summary.model_dump(),
                )
                inserted += cursor.rowcount
            await conn.commit()
        except aiosqlite.Error as e:
            logger.error(f"aiosqlite error storing records: {e}")
            await conn.rollback()
            raise StorageError(f"Database error storing records: {e}") from e
        logger.debug(f"Stored {inserted} new record(s) ({len(observations)} observation(s), summary={summary is not None}).")
        return inserted

    def _row_to_observation(self, row: aiosqlite.Row) -> ObservationRecord:
        data = dict(row)
        for key in _LIST_FIELDS:
            data[key] = json.loads(data.get(key) or "[]")
        return ObservationRecord.model_validate(data)

    async def get_observations(self, memory_session_id: str) -> List[ObservationRecord]:
        conn = self._require_conn()
        async with conn.execute(
            f"SELECT * FROM {self._observations_table} WHERE memory_session_id = ? ORDER BY created_at_epoch, id",
            (memory_session_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_observation(row) for row in rows]

    async def get_summaries(self, memory_session_id: str) -> List[SummaryRecord]:
        conn = self._require_conn()
        async with conn.execute(
            f"SELECT * FROM {self._summaries_table} WHERE memory_session_id = ? ORDER BY created_at_epoch, id",
            (memory_session_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [SummaryRecord.model_validate(dict(row)) for row in rows]

    async def get_recent_observations(self, project: str, limit: int = 20) -> List[ObservationRecord]:
        conn = self._require_conn()
        async with conn.execute(
            f"SELECT * FROM {self._observations_table} WHERE project = ? ORDER BY created_at_epoch DESC LIMIT ?",
            (project, limit),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_observation(row) for row in rows]

    async def get_recent_summaries(self, project: str, limit: int = 5) -> List[SummaryRecord]:
        conn = self._require_conn()
        async with conn.execute(
            f"SELECT * FROM {self._summaries_table} WHERE project = ? ORDER BY created_at_epoch DESC LIMIT ?",
            (project, limit),
        ) as cursor:
            rows = await cursor.fetchall()
        return [SummaryRecord.model_validate(dict(row)) for row in rows]

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.debug("SQLite memory store connection closed.")
