# src/memcore/sessions/manager.py
"""
Session Management for memcore.

The :class:`SessionManager` is the explicit table of active sessions. It maps
host conversations to :class:`~memcore.models.ActiveSession` objects, queues
their work items, and runs one orchestrator task per session.
"""

import asyncio
import logging
import os
from typing import Any, AsyncIterator, Dict, List, Optional

from ..agent import SessionAgent, WorkerHooks
from ..exceptions import SessionNotFoundError
from ..models import ActiveSession, ObservationMessage, SessionState, SummarizeMessage
from ..queue.iterator import MessageQueue
from ..storage.sqlite_memory import SqliteMemoryStore

logger = logging.getLogger(__name__)


def project_name_from_cwd(cwd: Optional[str]) -> str:
    """Project name is the last component of the working directory."""
    if not cwd:
        return "unknown-project"
    return os.path.basename(os.path.normpath(cwd)) or "unknown-project"


class SessionManager:
    """
    Owns active sessions and their orchestrator tasks.

    Args:
        memory_store: Session table and record storage (initialized).
        queue: Message queue over an initialized pending message store.
        agent: Orchestrator used by :meth:`start_agent`.
    """

    def __init__(self, memory_store: SqliteMemoryStore, queue: MessageQueue, agent: SessionAgent):
        self._memory_store = memory_store
        self._queue = queue
        self._agent = agent
        self._sessions: Dict[int, ActiveSession] = {}
        self._tasks: Dict[int, asyncio.Task] = {}
        logger.debug("SessionManager initialized.")

    @property
    def agent(self) -> SessionAgent:
        return self._agent

    async def initialize_session(
        self, content_session_id: str, project: str, user_prompt: str = ""
    ) -> ActiveSession:
        """
        Returns the active session for a host conversation, creating it if needed.

        A new user prompt for a known conversation advances its prompt number.
        """
        session_db_id, created = await self._memory_store.create_session(content_session_id, project, user_prompt)
        prompt_number = 1
        if not created and user_prompt:
            prompt_number = await self._memory_store.increment_prompt_counter(session_db_id)

        session = self._sessions.get(session_db_id)
        if session is None:
            row = await self._memory_store.get_session_row(session_db_id)
            session = self._session_from_row(row)
            session.advance_prompt_number(prompt_number)
            self._sessions[session_db_id] = session
            logger.info(f"Initialized session {session_db_id} for '{content_session_id}' (project '{session.project}').")
        else:
            if user_prompt:
                session.user_prompt = user_prompt
            session.advance_prompt_number(prompt_number)
            logger.debug(f"Session {session_db_id} received prompt #{session.last_prompt_number}.")

        self._queue.open(session_db_id)
        return session

    @staticmethod
    def _session_from_row(row: Dict[str, Any]) -> ActiveSession:
        return ActiveSession(
            session_db_id=int(row["id"]),
            content_session_id=row["content_session_id"],
            memory_session_id=row.get("memory_session_id"),
            project=row.get("project"),
            user_prompt=row.get("user_prompt") or "",
            last_prompt_number=max(1, int(row.get("prompt_counter") or 1)),
        )

    async def resume_session(self, session_db_id: int) -> ActiveSession:
        """
        Reloads a session from the session table, e.g. one with messages left over from a crash.

        The conversation history starts empty; the next pass opens with a
        continuation prompt if the session is past its first prompt.
        """
        session = self._sessions.get(session_db_id)
        if session is None:
            session = self._session_from_row(await self._memory_store.get_session_row(session_db_id))
            self._sessions[session_db_id] = session
            logger.info(f"Resumed session {session_db_id} ('{session.content_session_id}').")
        self._queue.open(session_db_id)
        return session

    def get_session(self, session_db_id: int) -> ActiveSession:
        try:
            return self._sessions[session_db_id]
        except KeyError:
            raise SessionNotFoundError(session_db_id, "Session is not active.") from None

    def find_session(self, content_session_id: str) -> Optional[ActiveSession]:
        for session in self._sessions.values():
            if session.content_session_id == content_session_id:
                return session
        return None

    def list_sessions(self) -> List[ActiveSession]:
        return list(self._sessions.values())

    def is_running(self, session_db_id: int) -> bool:
        task = self._tasks.get(session_db_id)
        return task is not None and not task.done()

    async def queue_observation(
        self,
        session_db_id: int,
        tool_name: str,
        tool_input: object = None,
        tool_response: object = None,
        cwd: Optional[str] = None,
        prompt_number: Optional[int] = None,
    ) -> int:
        session = self.get_session(session_db_id)
        item = ObservationMessage(
            tool_name=tool_name,
            tool_input=tool_input,
            tool_response=tool_response,
            cwd=cwd,
            prompt_number=prompt_number if prompt_number is not None else session.last_prompt_number,
        )
        return await self._queue.enqueue(session_db_id, session.content_session_id, item)

    async def queue_summarize(self, session_db_id: int, last_assistant_message: str = "") -> int:
        session = self.get_session(session_db_id)
        item = SummarizeMessage(last_assistant_message=last_assistant_message)
        return await self._queue.enqueue(session_db_id, session.content_session_id, item)

    def get_message_iterator(
        self, session_db_id: int, idle_timeout: Optional[float] = None
    ) -> AsyncIterator[ObservationMessage | SummarizeMessage]:
        self.get_session(session_db_id)
        return self._queue.iterate(session_db_id, idle_timeout)

    def start_agent(self, session: ActiveSession, worker: Optional[WorkerHooks] = None) -> asyncio.Task:
        """
        Starts the orchestrator task for ``session`` unless one is already running.

        Returns:
            The session's running task.
        """
        existing = self._tasks.get(session.session_db_id)
        if existing is not None and not existing.done():
            return existing

        task = asyncio.create_task(
            self._agent.start_session(session, worker), name=f"memcore-session-{session.session_db_id}"
        )
        self._tasks[session.session_db_id] = task
        task.add_done_callback(lambda t, sid=session.session_db_id: self._on_task_done(sid, t))
        logger.debug(f"Started agent task for session {session.session_db_id}.")
        return task

    def _on_task_done(self, session_db_id: int, task: asyncio.Task) -> None:
        if self._tasks.get(session_db_id) is task:
            del self._tasks[session_db_id]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            # Already logged by the agent with the traceback.
            logger.debug(f"Agent task for session {session_db_id} ended with {type(error).__name__}.")

    async def complete_session(self, session_db_id: int) -> ActiveSession:
        """
        Closes the session's queue, waits for its pass to drain it, and marks it completed.

        Raises:
            SessionNotFoundError: If the session is not active.
            Exception: Whatever the pass raised.
        """
        session = self.get_session(session_db_id)
        self._queue.close(session_db_id)
        task = self._tasks.get(session_db_id)
        try:
            if task is not None:
                await task
        finally:
            status = "failed" if session.state in (SessionState.FAILED, SessionState.ABORTED) else "completed"
            await self._memory_store.set_session_status(session_db_id, status)
            self._sessions.pop(session_db_id, None)
            self._queue.forget(session_db_id)
        logger.info(f"Session {session_db_id} completed.")
        return session

    async def delete_session(self, session_db_id: int) -> None:
        """Cancels the session's pass, waits for it to stop, and drops the session."""
        task = self._tasks.get(session_db_id)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._sessions.pop(session_db_id, None)
        self._queue.forget(session_db_id)
        logger.info(f"Session {session_db_id} deleted from active sessions.")

    async def shutdown_all(self) -> None:
        """Cancels every running pass. Unacknowledged messages are redelivered after restart."""
        session_ids = list(self._sessions)
        logger.info(f"Shutting down {len(session_ids)} active session(s).")
        for session_db_id in session_ids:
            await self.delete_session(session_db_id)
