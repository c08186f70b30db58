# tests/conftest.py
"""
Shared fixtures for the memcore test suite.

Provides a scripted in-process backend and SQLite-backed stores living in the
test's temporary directory.
"""

import asyncio
from typing import List, Optional, Sequence

import pytest

from memcore.backends.base import ApiMessages, BaseBackend
from memcore.config.models import BackendSettings
from memcore.exceptions import BackendConfigurationError
from memcore.models import ActiveSession, BackendResponse, ConversationMessage
from memcore.modes import ModeManager
from memcore.processing.processor import ResponseProcessor
from memcore.queue.iterator import MessageQueue
from memcore.queue.store import PendingMessageStore
from memcore.storage.sqlite_memory import SqliteMemoryStore

# ---------------------------------------------------------------------------
# Scripted backend
# ---------------------------------------------------------------------------


class FakeBackend(BaseBackend):
    """
    Backend that replays a script instead of calling a service.

    Each script step is either a reply string, a :class:`BackendResponse`, or
    an exception instance to raise. An exhausted script answers with an empty
    reply. Every history passed to :meth:`send` is recorded as a copy.
    """
    HANDLE_PREFIX = "fake"

    def __init__(
        self,
        name: str = "fake",
        script: Optional[Sequence[object]] = None,
        stateless: bool = True,
        configured: bool = True,
        max_context_tokens: Optional[int] = None,
        gate: Optional[asyncio.Event] = None,
    ):
        super().__init__(
            BackendSettings(type="fake", model="fake-model", max_context_tokens=max_context_tokens),
            name=name,
        )
        self.script: List[object] = list(script or [])
        self.is_stateless = stateless
        self.configured = configured
        self.gate = gate
        self.received: List[List[ConversationMessage]] = []
        self.sent_messages: List[ApiMessages] = []
        self.closed = False

    def validate_config(self) -> None:
        if not self.configured:
            raise BackendConfigurationError(self.get_name(), "fake backend switched off")

    async def send(self, history: Sequence[ConversationMessage]) -> BackendResponse:
        self.received.append(list(history))
        return await super().send(history)

    async def _complete(self, messages: ApiMessages) -> BackendResponse:
        self.sent_messages.append(messages)
        if self.gate is not None:
            await self.gate.wait()
        if not self.script:
            return BackendResponse(content="")
        step = self.script.pop(0)
        if isinstance(step, BaseException):
            raise step
        if isinstance(step, BackendResponse):
            return step
        return BackendResponse(content=str(step))

    async def close(self) -> None:
        self.closed = True


OBSERVATION_REPLY = """Here is what I noticed.
<observation>
  <type>bugfix</type>
  <title>Fixed pager off-by-one</title>
  <subtitle>Last page was skipped</subtitle>
  <facts>
    <fact>range() upper bound excluded the last page</fact>
  </facts>
  <narrative>The pager loop stopped one page early.</narrative>
  <concepts><concept>problem-solution</concept></concepts>
  <files_read><file>/work/proj/src/pager.py</file></files_read>
  <files_modified><file>/work/proj/src/pager.py</file></files_modified>
</observation>"""

SUMMARY_REPLY = """<summary>
  <request>Fix the pager</request>
  <investigated>The page loop</investigated>
  <learned>range() excludes its upper bound</learned>
  <completed>Pager shows every page</completed>
  <next_steps>Add a regression test</next_steps>
  <notes></notes>
</summary>"""


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "memcore.db")


@pytest.fixture
async def memory_store(db_path):
    store = SqliteMemoryStore(db_path)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
async def message_store(db_path):
    store = PendingMessageStore(db_path)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def message_queue(message_store):
    return MessageQueue(message_store)


@pytest.fixture
def mode_manager():
    return ModeManager()


@pytest.fixture
def processor(memory_store, message_store, mode_manager):
    return ResponseProcessor(memory_store, message_store, mode_manager)


@pytest.fixture
async def session(memory_store):
    """An active session backed by a real session table row."""
    session_db_id, _ = await memory_store.create_session("content-1", "proj", "Fix the pager")
    return ActiveSession(
        session_db_id=session_db_id,
        content_session_id="content-1",
        project="proj",
        user_prompt="Fix the pager",
    )
