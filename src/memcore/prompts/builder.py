# src/memcore/prompts/builder.py
"""
Prompt builders for the memory extraction conversation.

All functions here are pure: they format text from a session, a work item and
the active :class:`~memcore.modes.Mode`, and never perform I/O. The XML blocks
the prompts ask for are the ones :mod:`memcore.processing.parser` reads back.
"""

import json
from datetime import datetime, timezone
from typing import Any

from ..exceptions import PreconditionFailed
from ..models import ActiveSession, ObservationMessage, SummarizeMessage
from ..modes import Mode


# =============================================================================
# OUTPUT FORMATS
# =============================================================================

OBSERVATION_FORMAT = """<observation>
  <type>one of: {observation_types}</type>
  <title>short title of what happened</title>
  <subtitle>one sentence of context</subtitle>
  <facts>
    <fact>a concise, self-contained fact</fact>
  </facts>
  <narrative>a short paragraph explaining what was done and why it matters</narrative>
  <concepts>
    <concept>one of: {concepts}</concept>
  </concepts>
  <files_read>
    <file>path/of/a/file/that/was/read</file>
  </files_read>
  <files_modified>
    <file>path/of/a/file/that/was/changed</file>
  </files_modified>
</observation>"""

SUMMARY_FORMAT = """<summary>
  <request>what the user asked for</request>
  <investigated>what was explored</investigated>
  <learned>what was learned</learned>
  <completed>what was finished</completed>
  <next_steps>what remains to be done</next_steps>
  <notes>anything else worth remembering</notes>
</summary>"""


# =============================================================================
# TEMPLATES
# =============================================================================

INIT_TEMPLATE = """You are a memory observer for a coding assistant session.
You watch the tools the assistant uses and record what is worth remembering
for future sessions of the project "{project}".

Session: {content_session_id}
Mode: {mode_name} ({mode_description})

The user's request:
<user_request>
{user_prompt}
</user_request>

For every tool result you are shown, reply with zero or more observations in
this format, written in {language}:

{observation_format}

Skip routine actions that teach nothing (listing directories, re-reading a
file without new insight). If nothing is worth recording, reply with nothing.
Do not address the user; only emit the XML blocks."""

CONTINUATION_TEMPLATE = """The user sent a new prompt (prompt #{prompt_number}) in session {content_session_id}:
<user_request>
{user_prompt}
</user_request>

Keep observing. Use the same format as before, written in {language}:

{observation_format}"""

OBSERVATION_TEMPLATE = """<tool_used>
  <tool_name>{tool_name}</tool_name>
  <occurred_at>{occurred_at}</occurred_at>
  <working_directory>{cwd}</working_directory>
  <parameters>{tool_input}</parameters>
  <outcome>{tool_output}</outcome>
</tool_used>"""

SUMMARY_TEMPLATE = """The assistant has paused. Summarize session {memory_session_id} of project "{project}" so far.

The user's most recent request:
<user_request>
{user_prompt}
</user_request>

The assistant's last message:
<last_assistant_message>
{last_assistant_message}
</last_assistant_message>

Reply with exactly one summary block, written in {language}:

{summary_format}"""


# =============================================================================
# BUILDERS
# =============================================================================


def _observation_format(mode: Mode) -> str:
    return OBSERVATION_FORMAT.format(
        observation_types=" | ".join(mode.observation_types) or "discovery",
        concepts=" | ".join(mode.concepts) or "none",
    )


def _to_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def _iso_timestamp(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).isoformat()


def build_init_prompt(project: str, content_session_id: str, user_prompt: str, mode: Mode) -> str:
    """Opening prompt of a session: role, project, first request and output format."""
    return INIT_TEMPLATE.format(
        project=project,
        content_session_id=content_session_id,
        mode_name=mode.name,
        mode_description=mode.description,
        user_prompt=user_prompt,
        language=mode.language,
        observation_format=_observation_format(mode),
    )


def build_continuation_prompt(user_prompt: str, prompt_number: int, content_session_id: str, mode: Mode) -> str:
    """Prompt used when a session pass resumes after the first user prompt."""
    return CONTINUATION_TEMPLATE.format(
        prompt_number=prompt_number,
        content_session_id=content_session_id,
        user_prompt=user_prompt,
        language=mode.language,
        observation_format=_observation_format(mode),
    )


def build_observation_prompt(item: ObservationMessage) -> str:
    """Describes one tool invocation: name, time, working directory, JSON input and output."""
    return OBSERVATION_TEMPLATE.format(
        tool_name=item.tool_name,
        occurred_at=_iso_timestamp(item.created_at_epoch),
        cwd=item.cwd or "",
        tool_input=_to_json(item.tool_input),
        tool_output=_to_json(item.tool_response),
    )


def build_summary_prompt(session: ActiveSession, item: SummarizeMessage, mode: Mode) -> str:
    """
    Asks for a session summary.

    Raises:
        PreconditionFailed: If the session has no conversational handle yet.
    """
    if not session.memory_session_id:
        raise PreconditionFailed(
            f"Cannot summarize session {session.session_db_id}: memory session id not yet bound.",
            session_db_id=session.session_db_id,
        )
    return SUMMARY_TEMPLATE.format(
        memory_session_id=session.memory_session_id,
        project=session.project,
        user_prompt=session.user_prompt,
        last_assistant_message=item.last_assistant_message or "",
        language=mode.language,
        summary_format=SUMMARY_FORMAT,
    )


def build_session_prompt(session: ActiveSession, mode: Mode) -> str:
    """Init prompt for the first user prompt of a session, continuation prompt otherwise."""
    if session.last_prompt_number == 1:
        return build_init_prompt(session.project, session.content_session_id, session.user_prompt, mode)
    return build_continuation_prompt(
        session.user_prompt, session.last_prompt_number, session.content_session_id, mode
    )


def assemble_prompt(item: ObservationMessage | SummarizeMessage, session: ActiveSession, mode: Mode) -> str:
    """Builds the prompt for a queued work item."""
    if isinstance(item, ObservationMessage):
        return build_observation_prompt(item)
    if isinstance(item, SummarizeMessage):
        return build_summary_prompt(session, item, mode)
    raise TypeError(f"Unsupported work item type: {type(item).__name__}")
