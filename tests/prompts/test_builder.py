# tests/prompts/test_builder.py
"""
Tests for the extraction prompt builders.
"""

import json

import pytest

from memcore.exceptions import PreconditionFailed
from memcore.models import ActiveSession, ObservationMessage, SummarizeMessage
from memcore.modes import CODE_MODE, RESEARCH_MODE
from memcore.prompts.builder import (
    assemble_prompt,
    build_continuation_prompt,
    build_init_prompt,
    build_observation_prompt,
    build_session_prompt,
    build_summary_prompt,
)


@pytest.fixture
def active_session():
    return ActiveSession(
        session_db_id=5,
        content_session_id="conv-5",
        project="pager",
        user_prompt="Fix the pager",
    )


class TestSessionPrompts:

    def test_init_prompt_contents(self):
        prompt = build_init_prompt("pager", "conv-5", "Fix the pager", CODE_MODE)
        assert '"pager"' in prompt
        assert "conv-5" in prompt
        assert "Fix the pager" in prompt
        assert "bugfix | feature" in prompt
        assert "<observation>" in prompt

    def test_mode_changes_observation_types(self):
        prompt = build_init_prompt("pager", "conv-5", "Read papers", RESEARCH_MODE)
        assert "finding | source" in prompt
        assert "bugfix" not in prompt

    def test_continuation_prompt(self):
        prompt = build_continuation_prompt("Now add tests", 3, "conv-5", CODE_MODE)
        assert "prompt #3" in prompt
        assert "Now add tests" in prompt

    def test_first_prompt_uses_init(self, active_session):
        assert "memory observer" in build_session_prompt(active_session, CODE_MODE)

    def test_later_prompt_uses_continuation(self, active_session):
        active_session.advance_prompt_number(2)
        prompt = build_session_prompt(active_session, CODE_MODE)
        assert "prompt #2" in prompt
        assert "memory observer" not in prompt


class TestObservationPrompt:

    def test_tool_fields(self):
        item = ObservationMessage(
            tool_name="Edit",
            tool_input={"file": "src/pager.py"},
            tool_response={"title": "Edit", "output": "ok", "metadata": {}},
            cwd="/work/pager",
            created_at_epoch=0,
        )
        prompt = build_observation_prompt(item)
        assert "<tool_name>Edit</tool_name>" in prompt
        assert "<occurred_at>1970-01-01T00:00:00+00:00</occurred_at>" in prompt
        assert "<working_directory>/work/pager</working_directory>" in prompt
        assert json.dumps({"file": "src/pager.py"}) in prompt

    def test_missing_cwd_is_blank(self):
        prompt = build_observation_prompt(ObservationMessage(tool_name="Bash"))
        assert "<working_directory></working_directory>" in prompt


class TestSummaryPrompt:

    def test_requires_handle(self, active_session):
        with pytest.raises(PreconditionFailed) as exc_info:
            build_summary_prompt(active_session, SummarizeMessage(), CODE_MODE)
        assert exc_info.value.session_db_id == 5

    def test_contents(self, active_session):
        active_session.bind_memory_session_id("fake-conv-5-1")
        prompt = build_summary_prompt(
            active_session, SummarizeMessage(last_assistant_message="All pages render."), CODE_MODE
        )
        assert "fake-conv-5-1" in prompt
        assert "All pages render." in prompt
        assert "<summary>" in prompt


class TestAssemblePrompt:

    def test_dispatch(self, active_session):
        active_session.bind_memory_session_id("h")
        assert "<tool_used>" in assemble_prompt(ObservationMessage(tool_name="Read"), active_session, CODE_MODE)
        assert "<summary>" in assemble_prompt(SummarizeMessage(), active_session, CODE_MODE)

    def test_unknown_item(self, active_session):
        with pytest.raises(TypeError):
            assemble_prompt("not an item", active_session, CODE_MODE)  # type: ignore[arg-type]
