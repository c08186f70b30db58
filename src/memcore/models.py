# src/memcore/models.py
"""
Core data models for the memcore library.

This module defines the Pydantic models used to represent the session being
captured, its conversation history, the queued work items that feed it, the
backend responses, and the memory records persisted from those responses.
"""

import asyncio
import time
import uuid
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

from .exceptions import PreconditionFailed


class Role(str, Enum):
    """
    Enumeration of the roles that appear in a capture conversation.
    The extraction conversation only ever has user prompts and assistant replies.
    """
    USER = "user"
    ASSISTANT = "assistant"


class ConversationMessage(BaseModel):
    """
    A single role-tagged entry of a session's conversation history.

    Attributes:
        role: Who produced the entry (user prompt or assistant reply).
        content: The text of the entry.
    """
    role: Role = Field(description="The role of the entry (user or assistant).")
    content: str = Field(description="The textual content of the entry.")

    model_config = ConfigDict(use_enum_values=True, frozen=True)


class SessionState(str, Enum):
    """Lifecycle states of one orchestrator pass over a session."""
    UNINITIALIZED = "uninitialized"
    AWAITING_FIRST_REPLY = "awaiting_first_reply"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


# =============================================================================
# WORK ITEMS
# =============================================================================


def _now_epoch_ms() -> int:
    return int(time.time() * 1000)


class ObservationMessage(BaseModel):
    """A tool invocation reported by the host, queued for extraction."""
    type: Literal["observation"] = "observation"
    persistent_id: Optional[int] = Field(default=None, description="Row id assigned by the pending message store.")
    tool_name: str
    tool_input: Any = None
    tool_response: Any = None
    cwd: Optional[str] = None
    created_at_epoch: int = Field(default_factory=_now_epoch_ms, description="Creation time in epoch milliseconds.")
    prompt_number: Optional[int] = None


class SummarizeMessage(BaseModel):
    """A request to summarize the session so far, queued when the host goes idle."""
    type: Literal["summarize"] = "summarize"
    persistent_id: Optional[int] = None
    last_assistant_message: str = ""
    created_at_epoch: int = Field(default_factory=_now_epoch_ms)


WorkItem = Annotated[Union[ObservationMessage, SummarizeMessage], Field(discriminator="type")]


# =============================================================================
# BACKEND RESPONSE
# =============================================================================


class BackendResponse(BaseModel):
    """
    The outcome of one backend call.

    Empty ``content`` is a valid result, not an error. ``tokens_used`` is the
    combined usage if the backend reported one. ``input_tokens`` and
    ``output_tokens`` are set only when the backend reported the split itself.
    """
    content: str = ""
    tokens_used: Optional[int] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    backend: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.content


# =============================================================================
# ACTIVE SESSION
# =============================================================================


class ActiveSession(BaseModel):
    """
    One coding-assistant conversation being actively captured.

    The session object is the only owner of the conversational handle, the
    prompt counter and the token counters. Only the orchestrator running the
    session mutates them, and it does so while holding :attr:`lock`.

    Attributes:
        session_db_id: Stable identifier of the session in the session store.
        content_session_id: The host's identifier for the conversation.
        memory_session_id: Backend conversational handle, bound at most once.
        project: Project name the session belongs to.
        user_prompt: Most recent user prompt text.
        last_prompt_number: Ordinal of the last-seen prompt; never decreases.
        cumulative_input_tokens: Running input token estimate.
        cumulative_output_tokens: Running output token estimate.
        start_time: Wall-clock start (epoch seconds).
        conversation_history: Ordered, append-only capture conversation.
        processing_message_ids: Queue message ids folded into history but not yet acknowledged.
        earliest_pending_timestamp: ``created_at_epoch`` of the item being processed.
        state: Current lifecycle state of the orchestrator pass.
    """
    session_db_id: int
    content_session_id: str
    memory_session_id: Optional[str] = None
    project: str = "unknown-project"
    user_prompt: str = ""
    last_prompt_number: int = Field(default=1, ge=1)
    cumulative_input_tokens: int = 0
    cumulative_output_tokens: int = 0
    start_time: float = Field(default_factory=time.time)
    conversation_history: List[ConversationMessage] = Field(default_factory=list)
    processing_message_ids: List[int] = Field(default_factory=list)
    earliest_pending_timestamp: Optional[int] = None
    state: SessionState = SessionState.UNINITIALIZED

    model_config = ConfigDict(arbitrary_types_allowed=True)

    _lock: asyncio.Lock = PrivateAttr(default_factory=asyncio.Lock)

    @field_validator('project', mode='before')
    @classmethod
    def default_project(cls, v: Any) -> str:
        """Falls back to the placeholder project name for empty values."""
        if not v:
            return "unknown-project"
        return v

    @property
    def lock(self) -> asyncio.Lock:
        """Lock serializing backend turns for this session."""
        return self._lock

    def append_user(self, content: str) -> ConversationMessage:
        message = ConversationMessage(role=Role.USER, content=content)
        self.conversation_history.append(message)
        return message

    def append_assistant(self, content: str) -> ConversationMessage:
        if not content:
            raise ValueError("Assistant entries must not be empty.")
        message = ConversationMessage(role=Role.ASSISTANT, content=content)
        self.conversation_history.append(message)
        return message

    def bind_memory_session_id(self, memory_session_id: str) -> bool:
        """
        Binds the conversational handle.

        Returns:
            True if the handle was newly bound, False if it was already bound
            to the same value.

        Raises:
            PreconditionFailed: If a different handle is already bound.
        """
        if self.memory_session_id is None:
            self.memory_session_id = memory_session_id
            return True
        if self.memory_session_id == memory_session_id:
            return False
        raise PreconditionFailed(
            f"Session {self.session_db_id} already bound to memory session "
            f"'{self.memory_session_id}', refusing to rebind to '{memory_session_id}'.",
            session_db_id=self.session_db_id,
        )

    def advance_prompt_number(self, prompt_number: Optional[int]) -> None:
        """Moves the prompt counter forward; lower or missing values are ignored."""
        if prompt_number is not None and prompt_number > self.last_prompt_number:
            self.last_prompt_number = prompt_number

    def add_tokens(self, input_tokens: int, output_tokens: int) -> None:
        self.cumulative_input_tokens += input_tokens
        self.cumulative_output_tokens += output_tokens


# =============================================================================
# MEMORY RECORDS
# =============================================================================


class ObservationRecord(BaseModel):
    """A structured observation extracted from a backend reply."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    memory_session_id: str
    project: str
    type: str = "discovery"
    title: Optional[str] = None
    subtitle: Optional[str] = None
    facts: List[str] = Field(default_factory=list)
    narrative: Optional[str] = None
    concepts: List[str] = Field(default_factory=list)
    files_read: List[str] = Field(default_factory=list)
    files_modified: List[str] = Field(default_factory=list)
    prompt_number: int = 1
    created_at_epoch: int = Field(default_factory=_now_epoch_ms)
    discovery_tokens: int = 0
    backend: str = ""


class SummaryRecord(BaseModel):
    """A structured session summary extracted from a backend reply."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    memory_session_id: str
    project: str
    request: Optional[str] = None
    investigated: Optional[str] = None
    learned: Optional[str] = None
    completed: Optional[str] = None
    next_steps: Optional[str] = None
    notes: Optional[str] = None
    prompt_number: int = 1
    created_at_epoch: int = Field(default_factory=_now_epoch_ms)
    discovery_tokens: int = 0
    backend: str = ""


class ProcessingResult(BaseModel):
    """What the response processor did with one backend reply."""
    observation_ids: List[str] = Field(default_factory=list)
    summary_id: Optional[str] = None
    acknowledged_message_ids: List[int] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
