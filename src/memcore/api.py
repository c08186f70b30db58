# src/memcore/api.py
"""
Core API Facade for the memcore library.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .agent import SessionAgent, TokenSplit
from .backends.manager import BackendManager
from .bridge import WorkerBridge
from .config.loader import load_config
from .config.models import MemCoreConfig
from .exceptions import ConfigError, MemCoreError
from .logging_config import configure_logging, log_display
from .modes import ModeManager
from .processing.processor import ResponseProcessor
from .queue.iterator import MessageQueue
from .queue.store import PendingMessageStore
from .sessions.manager import SessionManager
from .storage.sqlite_memory import SqliteMemoryStore

logger = logging.getLogger(__name__)


class MemCore:
    """
    Wires the memory capture pipeline together.

    Host event bridge, session table, message queue, orchestrator, backend
    chain and storage all come from one validated configuration. Instances
    are initialized asynchronously with :meth:`MemCore.create`.
    """
    config: MemCoreConfig
    _memory_store: SqliteMemoryStore
    _message_store: PendingMessageStore
    _queue: MessageQueue
    _mode_manager: ModeManager
    _backend_manager: BackendManager
    _processor: ResponseProcessor
    _agent: SessionAgent
    _session_manager: SessionManager
    _bridge: WorkerBridge

    def __init__(self):
        """
        Private constructor. Use `MemCore.create()` for initialization.
        """
        self._closed = False

    @classmethod
    async def create(
        cls,
        config_overrides: Optional[Dict[str, Any]] = None,
        config_file_path: Optional[str] = None,
        env_prefix: str = "MEMCORE",
        configure_logs: bool = False,
    ) -> "MemCore":
        """
        Asynchronously creates and initializes a MemCore instance.

        Args:
            config_overrides: Highest-precedence configuration values.
            config_file_path: Optional user TOML file; it must exist if given.
            env_prefix: Prefix of environment overrides.
            configure_logs: Also install memcore's handlers on the root logger
                from the ``[logging]`` section. Hosts with their own logging
                setup leave this off.

        Raises:
            ConfigError: For invalid configuration or an empty backend chain.
            StorageError: If the database cannot be opened.
        """
        instance = cls()
        await instance._initialize_from_config(config_overrides, config_file_path, env_prefix, configure_logs)
        return instance

    async def _initialize_from_config(
        self,
        config_overrides: Optional[Dict[str, Any]],
        config_file_path: Optional[str],
        env_prefix: str,
        configure_logs: bool,
    ) -> None:
        logger.info("Initializing memcore components from configuration...")
        try:
            self.config = load_config(config_file_path, overrides=config_overrides, env_prefix=env_prefix)
        except ConfigError:
            raise
        except Exception as e:
            raise ConfigError(f"memcore configuration loading failed: {e}") from e

        if configure_logs:
            configure_logging(app_name="memcore", config=self.config.logging)
        log_level = self.config.memcore.log_level.upper()
        logging.getLogger("memcore").setLevel(logging.getLevelName(log_level))
        logger.info(f"memcore logger level set to: {log_level}")

        self._mode_manager = ModeManager(active_mode=self.config.agent.mode)
        self._backend_manager = BackendManager(self.config)
        chain = self._backend_manager.build_chain()

        db_path = self.config.storage.resolved_path
        self._memory_store = SqliteMemoryStore(db_path)
        await self._memory_store.initialize()
        self._message_store = PendingMessageStore(db_path)
        await self._message_store.initialize()
        if self.config.queue.reset_stale_on_start:
            reset = await self._message_store.reset_stale_processing()
            if reset:
                logger.info(f"Reset {reset} message(s) left in processing by a previous run.")
        self._queue = MessageQueue(self._message_store)

        self._processor = ResponseProcessor(self._memory_store, self._message_store, self._mode_manager)
        self._agent = SessionAgent(
            chain,
            self._queue,
            self._processor,
            mode_manager=self._mode_manager,
            memory_store=self._memory_store,
            token_split=TokenSplit(self.config.agent.token_input_ratio),
            idle_timeout=self.config.queue.idle_timeout_or_none,
        )
        self._session_manager = SessionManager(self._memory_store, self._queue, self._agent)
        self._bridge = WorkerBridge(self._session_manager, self._memory_store, self.config.bridge)
        logger.info(f"memcore components initialization complete. Backend chain: {self._agent.name}")

    # --- Accessors ---

    def get_bridge(self) -> WorkerBridge:
        """Returns the fail-open event bridge hosts report to."""
        return self._bridge

    def get_session_manager(self) -> SessionManager:
        return self._session_manager

    def get_backend_manager(self) -> BackendManager:
        return self._backend_manager

    def get_memory_store(self) -> SqliteMemoryStore:
        return self._memory_store

    def get_message_queue(self) -> MessageQueue:
        return self._queue

    def get_mode_manager(self) -> ModeManager:
        return self._mode_manager

    # --- Recovery ---

    async def resume_pending_sessions(self) -> List[int]:
        """
        Restarts passes for sessions that still have queued messages, e.g. after a crash.

        Each resumed queue is closed right away, so its pass ends once the
        leftovers are processed.

        Returns:
            Ids of the sessions whose passes were started.
        """
        resumed = []
        for session_db_id in await self._message_store.sessions_with_pending():
            try:
                session = await self._session_manager.resume_session(session_db_id)
            except MemCoreError as e:
                logger.error(f"Cannot resume session {session_db_id}: {e}")
                continue
            self._session_manager.start_agent(session)
            self._queue.close(session_db_id)
            resumed.append(session_db_id)
        if resumed:
            log_display(logger, logging.INFO, f"Resumed {len(resumed)} session(s) with pending messages: {resumed}")
        return resumed

    async def close(self) -> None:
        """
        Stops all session passes and releases backend and database resources.
        """
        if self._closed:
            return
        self._closed = True
        logger.info("Closing memcore resources...")
        await self._session_manager.shutdown_all()
        results = await asyncio.gather(
            self._backend_manager.close_backends(),
            self._message_store.close(),
            self._memory_store.close(),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Error during memcore resource cleanup: {result}", exc_info=result)
        logger.info("memcore resources closed.")

    async def __aenter__(self) -> "MemCore":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
