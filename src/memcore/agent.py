# src/memcore/agent.py
"""
Session orchestrator.

:class:`SessionAgent` drives the extraction conversation of one session: it
opens with an init or continuation prompt, then turns every queued work item
into a prompt, sends the whole history through the fallback chain, records
the reply, and hands it to the response processor. One pass ends when the
session's queue is closed and drained (or idles out).

States of a pass::

    UNINITIALIZED -> AWAITING_FIRST_REPLY -> ACTIVE -> COMPLETED
                                                    -> FAILED
                                                    -> ABORTED (cancelled)
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, Tuple

from .backends.base import BaseBackend
from .exceptions import ConfigError, PreconditionFailed
from .fallback import FallbackController, is_retryable
from .models import ActiveSession, ObservationMessage, ProcessingResult, SessionState
from .modes import ModeManager
from .processing.processor import ResponseProcessor
from .prompts.builder import assemble_prompt, build_session_prompt
from .queue.iterator import MessageQueue
from .storage.sqlite_memory import SqliteMemoryStore

logger = logging.getLogger(__name__)


class WorkerHooks(Protocol):
    """Optional observer notified after each processed reply."""

    async def on_processed(self, session: ActiveSession, result: ProcessingResult) -> None:
        ...


class FallbackAgent(Protocol):
    """Anything that can take over a session whose backend chain is exhausted."""

    async def start_session(self, session: ActiveSession, worker: Optional[WorkerHooks] = None) -> None:
        ...


@dataclass(frozen=True)
class TokenSplit:
    """
    Attributes a combined token count to input and output.

    Backends that report only a total get ``floor(total * ratio)`` input and
    ``floor(total * (1 - ratio))`` output tokens.
    """
    input_ratio: float = 0.7

    def __post_init__(self) -> None:
        if not 0.0 <= self.input_ratio <= 1.0:
            raise ConfigError(f"token input ratio must be between 0 and 1, got {self.input_ratio}")

    def split(self, total: int) -> Tuple[int, int]:
        # 0.29 * 100 == 28.999999999999996; round before flooring.
        input_tokens = math.floor(round(total * self.input_ratio, 10))
        output_tokens = math.floor(round(total * (1 - self.input_ratio), 10))
        return input_tokens, output_tokens


class SessionAgent:
    """
    Runs extraction passes over active sessions.

    Args:
        backends: Backend chain, primary first. Each pass gets its own
            :class:`FallbackController`, so fallback stickiness is per session.
        queue: Source of work items.
        processor: Persists replies and acknowledges messages.
        mode_manager: Source of the active prompt mode.
        memory_store: If given, synthesized handles are written to the session table.
        token_split: Input/output attribution of combined token counts.
        idle_timeout: Passed to :meth:`MessageQueue.iterate`.
    """

    def __init__(
        self,
        backends: Sequence[BaseBackend],
        queue: MessageQueue,
        processor: ResponseProcessor,
        mode_manager: Optional[ModeManager] = None,
        memory_store: Optional[SqliteMemoryStore] = None,
        token_split: Optional[TokenSplit] = None,
        idle_timeout: Optional[float] = None,
    ):
        if not backends:
            raise ConfigError("SessionAgent needs at least one backend.")
        self._backends = list(backends)
        self._queue = queue
        self._processor = processor
        self._mode_manager = mode_manager or ModeManager.get_instance()
        self._memory_store = memory_store
        self._token_split = token_split or TokenSplit()
        self._idle_timeout = idle_timeout
        self._fallback_agent: Optional[FallbackAgent] = None

    @property
    def name(self) -> str:
        return "+".join(backend.get_name() for backend in self._backends)

    def set_fallback_agent(self, agent: Optional[FallbackAgent]) -> None:
        """Sets the agent that takes over when every backend of this one has failed."""
        self._fallback_agent = agent

    async def start_session(self, session: ActiveSession, worker: Optional[WorkerHooks] = None) -> None:
        """
        Runs one pass over ``session`` until its queue ends.

        Holds the session's lock for the whole pass, so two passes never call
        backends for the same session at once.

        Raises:
            asyncio.CancelledError: After marking the session ABORTED.
            BackendError: If every backend failed and no fallback agent is set.
            PreconditionFailed, StorageError, ...: After marking the session FAILED.
        """
        handoff_error: Optional[BaseException] = None
        async with session.lock:
            try:
                await self._run(session, worker)
            except asyncio.CancelledError:
                session.state = SessionState.ABORTED
                logger.warning(f"Session {session.session_db_id} pass aborted.")
                raise
            except Exception as e:
                if is_retryable(e) and self._fallback_agent is not None:
                    handoff_error = e
                else:
                    session.state = SessionState.FAILED
                    logger.error(
                        f"Session {session.session_db_id} ({session.content_session_id}) failed: {e}",
                        exc_info=True,
                    )
                    raise

        if handoff_error is not None:
            logger.warning(
                f"All backends of agent '{self.name}' failed for session {session.session_db_id} "
                f"({handoff_error}). Handing the session to the fallback agent."
            )
            await self._fallback_agent.start_session(session, worker)  # type: ignore[union-attr]

    async def _run(self, session: ActiveSession, worker: Optional[WorkerHooks]) -> None:
        controller = FallbackController(self._backends)
        started = time.monotonic()
        turns = 0

        primary = controller.primary
        if primary.is_stateless and not session.memory_session_id:
            await self._bind_handle(session, primary)

        session.state = SessionState.AWAITING_FIRST_REPLY
        prompt = build_session_prompt(session, self._mode_manager.get_active_mode())
        await self._turn(session, controller, prompt, None, None, worker)
        turns += 1
        session.state = SessionState.ACTIVE

        last_cwd: Optional[str] = None
        async for item in self._queue.iterate(session.session_db_id, self._idle_timeout):
            # Built first: a missing handle must fail before the session is touched.
            try:
                prompt = assemble_prompt(item, session, self._mode_manager.get_active_mode())
            except PreconditionFailed:
                if item.persistent_id is not None:
                    await self._queue.store.mark_failed([item.persistent_id])
                raise

            if item.persistent_id is not None:
                session.processing_message_ids.append(item.persistent_id)
            session.earliest_pending_timestamp = item.created_at_epoch
            if isinstance(item, ObservationMessage):
                if item.cwd:
                    last_cwd = item.cwd
                session.advance_prompt_number(item.prompt_number)

            await self._turn(session, controller, prompt, session.earliest_pending_timestamp, last_cwd, worker)
            turns += 1

        session.state = SessionState.COMPLETED
        logger.info(
            f"Session {session.session_db_id} pass completed: duration={time.monotonic() - started:.1f}s, "
            f"turns={turns}, backend={controller.active_backend.get_name()}, "
            f"input_tokens={session.cumulative_input_tokens}, output_tokens={session.cumulative_output_tokens}"
        )

    async def _bind_handle(self, session: ActiveSession, backend: BaseBackend) -> None:
        handle = backend.synthesize_handle(session.content_session_id)
        if session.bind_memory_session_id(handle):
            logger.debug(f"Session {session.session_db_id} bound to memory session '{handle}'.")
            if self._memory_store is not None:
                await self._memory_store.update_memory_session_id(session.session_db_id, handle)

    async def _turn(
        self,
        session: ActiveSession,
        controller: FallbackController,
        prompt: str,
        original_timestamp: Optional[int],
        cwd: Optional[str],
        worker: Optional[WorkerHooks],
    ) -> ProcessingResult:
        session.append_user(prompt)
        response, backend = await controller.send(session.conversation_history)

        tokens_used = 0
        if response.content:
            session.append_assistant(response.content)
            tokens_used = response.tokens_used or 0
            if response.input_tokens is not None and response.output_tokens is not None:
                input_tokens, output_tokens = response.input_tokens, response.output_tokens
            else:
                input_tokens, output_tokens = self._token_split.split(tokens_used)
            session.add_tokens(input_tokens, output_tokens)
            if not session.memory_session_id:
                await self._bind_handle(session, backend)
        else:
            logger.warning(f"Backend '{backend.get_name()}' returned an empty reply for session {session.session_db_id}.")

        result = await self._processor.process(
            response.content or "",
            session,
            tokens_used,
            original_timestamp,
            backend.get_name(),
            cwd,
        )
        if worker is not None:
            await worker.on_processed(session, result)
        return result


__all__ = ["FallbackAgent", "SessionAgent", "TokenSplit", "WorkerHooks"]
