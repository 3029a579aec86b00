# backend/src/core/tests/test_project_models.py
import pytest
from pydantic import ValidationError

from src.core.project_models import (
    ApplyCodeStreamInput,
    CommandResult,
    ConversationContext,
    ConversationMessage,
    EditIntent,
    EditType,
    ParsedResponse,
    ProjectFile,
    SearchPlan,
    SelectedElement,
    StreamContext,
    VisualEditorContext,
    DEFAULT_MODEL,
)

# --- Test Cases for ApplyCodeStreamInput ---

class TestApplyCodeStreamInput:
    """Tests for the request model, focusing on validation."""

    def test_defaults(self):
        request = ApplyCodeStreamInput(prompt="Build a todo app")
        assert request.model == DEFAULT_MODEL
        assert request.is_edit is False
        assert request.packages == []
        assert request.context is None

    @pytest.mark.parametrize("prompt", ["", "   "])
    def test_blank_prompt_fails(self, prompt):
        with pytest.raises(ValidationError, match="prompt must not be empty"):
            ApplyCodeStreamInput(prompt=prompt)

    def test_packages_keep_strings_only(self):
        request = ApplyCodeStreamInput(prompt="x", packages=["zustand", 3, None, "clsx"])
        assert request.packages == ["zustand", "clsx"]

    def test_packages_non_list_is_empty(self):
        assert ApplyCodeStreamInput(prompt="x", packages="zustand").packages == []


# --- Test Cases for StreamContext ---

class TestStreamContext:
    def test_project_id_comes_from_conversation_context(self):
        assert StreamContext().project_id is None
        context = StreamContext(conversation_context=ConversationContext(current_project="proj-7"))
        assert context.project_id == "proj-7"

    def test_selected_element_requires_visual_flag(self):
        element = SelectedElement(selector="h1", element_type="h1", text_content="Welcome")
        unflagged = StreamContext(visual_editor_context=VisualEditorContext(selected_element=element))
        flagged = StreamContext(visual_editor_context=VisualEditorContext(is_visual_edit=True, selected_element=element))

        assert unflagged.selected_element is None
        assert flagged.selected_element == element


# --- Other models ---

class TestCommandResult:
    def test_nonzero_exit_forces_failure(self):
        result = CommandResult(success=True, exit_code=2, command_str="npm run build")
        assert result.success is False

    def test_zero_exit_keeps_reported_value(self):
        assert CommandResult(success=True, exit_code=0).success is True


class TestEditIntent:
    @pytest.mark.parametrize("raw, expected", [(1.3, 1.0), (-0.2, 0.0), (0.65, 0.65)])
    def test_confidence_is_clamped(self, raw, expected):
        assert EditIntent(type=EditType.UPDATE_STYLE, confidence=raw).confidence == pytest.approx(expected)

    def test_unknown_type_fails(self):
        with pytest.raises(ValidationError):
            EditIntent(type="DELETE_EVERYTHING")


def test_search_plan_dedupes_terms():
    plan = SearchPlan(edit_type=EditType.UPDATE_COMPONENT, search_terms=["Hero", "", "Hero", "button"])
    assert plan.search_terms == ["Hero", "button"]


def test_parsed_response_get_file():
    parsed = ParsedResponse(files=[ProjectFile(path="src/App.tsx", content="x")])
    assert parsed.get_file("src/App.tsx").content == "x"
    assert parsed.get_file("src/main.tsx") is None


def test_conversation_message_ids_are_unique():
    first = ConversationMessage(role="user", content="a")
    second = ConversationMessage(role="user", content="a")
    assert first.id != second.id
    assert first.id.startswith("msg-")
