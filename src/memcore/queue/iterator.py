# src/memcore/queue/iterator.py
"""
Pull-based async iteration over a session's pending messages.
"""

import asyncio
import logging
from typing import AsyncIterator, Dict, Optional, Set

from ..models import ObservationMessage, SummarizeMessage
from .store import PendingMessageStore

logger = logging.getLogger(__name__)


class MessageQueue:
    """
    Delivers a session's work items in arrival order.

    Consumers suspend on a per-session :class:`asyncio.Event` until a producer
    calls :meth:`notify` (done by :meth:`enqueue`). A consumer's iteration
    ends once the session is closed and nothing is pending, or once
    ``idle_timeout`` passes with nothing pending. A new iterator picks up
    where the store left off.
    """

    def __init__(self, store: PendingMessageStore):
        self._store = store
        self._wake: Dict[int, asyncio.Event] = {}
        self._closed: Set[int] = set()

    @property
    def store(self) -> PendingMessageStore:
        return self._store

    def _event(self, session_db_id: int) -> asyncio.Event:
        event = self._wake.get(session_db_id)
        if event is None:
            event = asyncio.Event()
            self._wake[session_db_id] = event
        return event

    async def enqueue(self, session_db_id: int, content_session_id: str, item: ObservationMessage | SummarizeMessage) -> int:
        """Stores ``item`` and wakes the session's consumer."""
        message_id = await self._store.enqueue(session_db_id, content_session_id, item)
        self.notify(session_db_id)
        return message_id

    def notify(self, session_db_id: int) -> None:
        self._event(session_db_id).set()

    def open(self, session_db_id: int) -> None:
        """Allows iteration of a previously closed session again."""
        self._closed.discard(session_db_id)

    def close(self, session_db_id: int) -> None:
        """Ends iteration once the session's pending messages are drained."""
        self._closed.add(session_db_id)
        self._event(session_db_id).set()

    def is_closed(self, session_db_id: int) -> bool:
        return session_db_id in self._closed

    def forget(self, session_db_id: int) -> None:
        self._closed.discard(session_db_id)
        self._wake.pop(session_db_id, None)

    async def iterate(
        self, session_db_id: int, idle_timeout: Optional[float] = None
    ) -> AsyncIterator[ObservationMessage | SummarizeMessage]:
        """
        Yields claimed work items for one session.

        Args:
            session_db_id: The session to consume.
            idle_timeout: Seconds to wait on an empty queue before ending; None waits until closed.
        """
        wake = self._event(session_db_id)
        while True:
            # Cleared before the claim so a notify racing with it is not lost.
            wake.clear()
            item = await self._store.claim_next(session_db_id)
            if item is not None:
                yield item
                continue
            if session_db_id in self._closed:
                logger.debug(f"Message queue for session {session_db_id} closed and drained.")
                return
            try:
                if idle_timeout:
                    await asyncio.wait_for(wake.wait(), timeout=idle_timeout)
                else:
                    await wake.wait()
            except asyncio.TimeoutError:
                logger.debug(f"Message queue for session {session_db_id} idle for {idle_timeout}s, ending iteration.")
                return
