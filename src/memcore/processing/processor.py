# src/memcore/processing/processor.py
"""
Response processor.

Turns a backend reply into stored observation and summary records, then
acknowledges the queue messages that produced it. Records are stored before
messages are acknowledged, so a crash in between leads to redelivery, and the
content-derived record ids make that redelivery harmless.
"""

import hashlib
import json
import logging
import os
import time
from typing import Any, Dict, List, Optional

from ..exceptions import PreconditionFailed
from ..models import ActiveSession, ObservationRecord, ProcessingResult, SummaryRecord
from ..modes import ModeManager
from ..queue.store import PendingMessageStore
from ..storage.sqlite_memory import SqliteMemoryStore
from .parser import ParsedObservation, ParsedSummary, ResponseParser

logger = logging.getLogger(__name__)


def compute_record_id(memory_session_id: str, kind: str, content: Dict[str, Any]) -> str:
    """SHA-256 over the session handle, the record kind and the canonical JSON content."""
    canonical = json.dumps(content, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    digest = hashlib.sha256()
    for part in (memory_session_id, kind, canonical):
        digest.update(part.encode("utf-8"))
        digest.update(b"\x00")
    return digest.hexdigest()


def _relativize(paths: List[str], cwd: Optional[str]) -> List[str]:
    if not cwd:
        return paths
    result = []
    for path in paths:
        if os.path.isabs(path) and (path == cwd or path.startswith(cwd.rstrip(os.sep) + os.sep)):
            result.append(os.path.relpath(path, cwd))
        else:
            result.append(path)
    return result


class ResponseProcessor:
    """
    Parses, persists and acknowledges one backend reply at a time.

    Args:
        memory_store: Destination of records.
        message_store: Queue whose messages are acknowledged.
        mode_manager: Source of the valid observation types; defaults to the shared manager.
    """

    def __init__(
        self,
        memory_store: SqliteMemoryStore,
        message_store: PendingMessageStore,
        mode_manager: Optional[ModeManager] = None,
    ):
        self._memory_store = memory_store
        self._message_store = message_store
        self._mode_manager = mode_manager or ModeManager.get_instance()

    def _observation_record(
        self,
        parsed: ParsedObservation,
        session: ActiveSession,
        created_at: int,
        tokens_used: int,
        backend_name: str,
        cwd: Optional[str],
    ) -> ObservationRecord:
        content = {
            "type": parsed.type,
            "title": parsed.title,
            "subtitle": parsed.subtitle,
            "facts": parsed.facts,
            "narrative": parsed.narrative,
            "concepts": parsed.concepts,
            "files_read": _relativize(parsed.files_read, cwd),
            "files_modified": _relativize(parsed.files_modified, cwd),
            "prompt_number": session.last_prompt_number,
        }
        return ObservationRecord(
            id=compute_record_id(session.memory_session_id or "", "observation", content),
            memory_session_id=session.memory_session_id or "",
            project=session.project,
            created_at_epoch=created_at,
            discovery_tokens=tokens_used,
            backend=backend_name,
            **content,
        )

    def _summary_record(
        self,
        parsed: ParsedSummary,
        session: ActiveSession,
        created_at: int,
        tokens_used: int,
        backend_name: str,
    ) -> SummaryRecord:
        content = {
            "request": parsed.request,
            "investigated": parsed.investigated,
            "learned": parsed.learned,
            "completed": parsed.completed,
            "next_steps": parsed.next_steps,
            "notes": parsed.notes,
            "prompt_number": session.last_prompt_number,
        }
        return SummaryRecord(
            id=compute_record_id(session.memory_session_id or "", "summary", content),
            memory_session_id=session.memory_session_id or "",
            project=session.project,
            created_at_epoch=created_at,
            discovery_tokens=tokens_used,
            backend=backend_name,
            **content,
        )

    async def process(
        self,
        text: str,
        session: ActiveSession,
        tokens_used: Optional[int],
        original_timestamp: Optional[int],
        backend_name: str,
        cwd: Optional[str] = None,
    ) -> ProcessingResult:
        """
        Stores the records found in ``text`` and acknowledges ``session.processing_message_ids``.

        An empty ``text`` stores nothing but still acknowledges.

        Raises:
            PreconditionFailed: If ``text`` holds records but the session has no handle.
            StorageError: If storing or acknowledging fails; nothing is acknowledged then.
        """
        parser = ResponseParser(valid_types=self._mode_manager.get_active_mode().observation_types)
        parsed = parser.parse(text)
        created_at = original_timestamp or int(time.time() * 1000)
        tokens = tokens_used or 0

        observations: List[ObservationRecord] = []
        summary: Optional[SummaryRecord] = None
        if not parsed.is_empty:
            if not session.memory_session_id:
                raise PreconditionFailed(
                    f"Cannot store records for session {session.session_db_id}: memory session id not yet bound.",
                    session_db_id=session.session_db_id,
                )
            observations = [
                self._observation_record(obs, session, created_at, tokens, backend_name, cwd)
                for obs in parsed.observations
            ]
            if parsed.summary is not None:
                summary = self._summary_record(parsed.summary, session, created_at, tokens, backend_name)
            await self._memory_store.store_records(observations, summary)

        acknowledged = list(session.processing_message_ids)
        if acknowledged:
            await self._message_store.mark_processed(acknowledged)
            # Only the ids acknowledged here; new ones may have been added meanwhile.
            session.processing_message_ids = [
                mid for mid in session.processing_message_ids if mid not in acknowledged
            ]

        logger.debug(
            f"Processed {backend_name} reply for session {session.session_db_id}: "
            f"{len(observations)} observation(s), summary={summary is not None}, acknowledged={acknowledged}"
        )
        return ProcessingResult(
            observation_ids=[record.id for record in observations],
            summary_id=summary.id if summary else None,
            acknowledged_message_ids=acknowledged,
            metadata={"backend": backend_name, "cwd": cwd, "parse_errors": parsed.errors},
        )
