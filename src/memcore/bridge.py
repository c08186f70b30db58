# src/memcore/bridge.py
"""
Event bridge between a host coding assistant and memcore.

The host reports prompts, tool results, assistant messages and idle/deleted
sessions. Memory capture must never get in the host's way, so every public
method here is fail-open: errors are logged and turned into ``False`` (or an
empty string), never raised. This is the only place in memcore that does so.
"""

import json
import logging
from typing import Any, Dict, Optional

from .config.models import BridgeSettings
from .logging_config import log_display
from .models import ActiveSession
from .sessions.manager import SessionManager, project_name_from_cwd
from .storage.sqlite_memory import SqliteMemoryStore

logger = logging.getLogger(__name__)


def truncate(text: Any, max_length: int = 8000) -> Any:
    """Cuts strings longer than ``max_length`` and marks the cut with ``...``."""
    if not isinstance(text, str) or len(text) <= max_length:
        return text
    return f"{text[:max_length]}..."


def normalize_tool_name(name: Any) -> str:
    if not name or not isinstance(name, str):
        return "Unknown"
    return name


def parse_tool_input(raw: Any, max_length: int = 8000) -> Any:
    """Tool arguments as a structure; unparseable strings are kept under ``raw``."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return {"raw": truncate(raw, max_length)}
    return raw


def serialize_tool_output(output: Any, max_length: int = 16000) -> str:
    if output is None:
        return ""
    if isinstance(output, str):
        return truncate(output, max_length)
    try:
        return json.dumps(output)
    except (TypeError, ValueError):
        return truncate(str(output), max_length)


class WorkerBridge:
    """
    Fail-open adapter from host events to the session manager.

    Args:
        sessions: The active session table.
        memory_store: Read for context injection.
        settings: Truncation limits.
    """

    def __init__(
        self,
        sessions: SessionManager,
        memory_store: SqliteMemoryStore,
        settings: Optional[BridgeSettings] = None,
    ):
        self._sessions = sessions
        self._memory_store = memory_store
        self._settings = settings or BridgeSettings()
        self._last_assistant: Dict[str, str] = {}
        self._last_summarized: Dict[str, str] = {}

    async def _ensure_session(self, content_session_id: str, cwd: Optional[str], prompt: str = "") -> ActiveSession:
        session = self._sessions.find_session(content_session_id)
        is_new = session is None
        if session is None or prompt:
            session = await self._sessions.initialize_session(
                content_session_id, project_name_from_cwd(cwd), prompt
            )
        if is_new:
            log_display(
                logger, logging.INFO, f"Capturing session '{content_session_id}' for project '{session.project}'."
            )
        self._sessions.start_agent(session)
        return session

    async def on_user_prompt(self, content_session_id: str, prompt: str, cwd: Optional[str] = None) -> bool:
        """Starts or continues capture of a conversation with a new user prompt."""
        if not prompt or not prompt.strip():
            return False
        try:
            await self._ensure_session(content_session_id, cwd, truncate(prompt, self._settings.max_input_chars))
            return True
        except Exception as e:
            logger.warning(f"Failed to initialize session '{content_session_id}': {e}", exc_info=True)
            return False

    async def on_tool_result(
        self,
        content_session_id: str,
        tool_name: Any,
        tool_input: Any = None,
        tool_output: Any = None,
        cwd: Optional[str] = None,
        title: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Queues a tool invocation as an observation."""
        try:
            name = normalize_tool_name(tool_name)
            response = {
                "title": title or name,
                "output": serialize_tool_output(tool_output or "", self._settings.max_output_chars),
                "metadata": metadata or {},
            }
            session = await self._ensure_session(content_session_id, cwd)
            await self._sessions.queue_observation(
                session.session_db_id,
                tool_name=name,
                tool_input=parse_tool_input(tool_input, self._settings.max_input_chars),
                tool_response=response,
                cwd=cwd,
            )
            return True
        except Exception as e:
            logger.warning(f"Failed to queue observation for session '{content_session_id}': {e}", exc_info=True)
            return False

    def on_assistant_message(self, content_session_id: str, text: str) -> None:
        """Remembers the latest assistant message; it is what the next summary is about."""
        if content_session_id and text:
            self._last_assistant[content_session_id] = text

    async def on_session_idle(self, content_session_id: str) -> bool:
        """
        Requests a summary (unless the same message was already summarized) and completes the session.
        """
        try:
            session = self._sessions.find_session(content_session_id)
            if session is None:
                return False
            last_assistant = self._last_assistant.get(content_session_id, "")
            if last_assistant.strip() and last_assistant != self._last_summarized.get(content_session_id):
                await self._sessions.queue_summarize(
                    session.session_db_id, truncate(last_assistant, self._settings.max_input_chars)
                )
                self._last_summarized[content_session_id] = last_assistant
            await self._sessions.complete_session(session.session_db_id)
            return True
        except Exception as e:
            logger.warning(f"Failed to complete session '{content_session_id}': {e}", exc_info=True)
            return False

    async def on_session_deleted(self, content_session_id: str) -> bool:
        """Completes the session; already queued work still runs."""
        try:
            session = self._sessions.find_session(content_session_id)
            if session is not None:
                await self._sessions.complete_session(session.session_db_id)
            self._last_assistant.pop(content_session_id, None)
            self._last_summarized.pop(content_session_id, None)
            return True
        except Exception as e:
            logger.warning(f"Failed to close deleted session '{content_session_id}': {e}", exc_info=True)
            return False

    async def inject_context(self, cwd: Optional[str], limit: int = 10) -> str:
        """Recent memory of the project in ``cwd``, formatted for prepending to a prompt."""
        project = project_name_from_cwd(cwd)
        try:
            summaries = await self._memory_store.get_recent_summaries(project, limit=3)
            observations = await self._memory_store.get_recent_observations(project, limit=limit)
        except Exception as e:
            logger.warning(f"Failed to load context for project '{project}': {e}", exc_info=True)
            return ""
        if not summaries and not observations:
            return ""

        lines = [f"# Recent memory for {project}"]
        if summaries:
            lines.append("")
            lines.append("## Session summaries")
            for summary in summaries:
                headline = summary.request or summary.completed or summary.learned or "(no request recorded)"
                lines.append(f"- {headline}")
                if summary.next_steps:
                    lines.append(f"  Next steps: {summary.next_steps}")
        if observations:
            lines.append("")
            lines.append("## Observations")
            for observation in observations:
                title = observation.title or observation.subtitle or observation.narrative or ""
                lines.append(f"- [{observation.type}] {title}")
        return "\n".join(lines)
