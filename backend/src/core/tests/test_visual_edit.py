# backend/src/core/tests/test_visual_edit.py
import pytest

from src.core.exceptions import VisualEditRejectedError
from src.core.project_models import SelectedElement
from src.core.visual_edit import VisualEditEngine, change_ratio

from conftest import FakeStreamer


FORM = '''import React from 'react'

export default function ContactForm() {
  return (
    <form className="space-y-4">
      <input className="border p-2" />
      <button className="bg-blue-500 text-white">Submit</button>
    </form>
  )
}'''

APP = '''import ContactForm from './components/ContactForm'

export default function App() {
  return <main><p>Submit your details below</p><ContactForm /></main>
}'''

FILES = {"src/App.tsx": APP, "src/components/ContactForm.tsx": FORM}


def element(**overrides) -> SelectedElement:
    data = {"selector": "form > button", "element_type": "button", "text_content": "Submit"}
    data.update(overrides)
    return SelectedElement(**data)


class TestTargetResolution:
    """Explicit path, then component name, then visible text with App files last."""

    def test_component_path_wins(self, react_prompts):
        engine = VisualEditEngine(FakeStreamer(), react_prompts)
        path, _ = engine.resolve_target(element(component_path="components/ContactForm.tsx", component_name="App"), FILES)
        assert path == "src/components/ContactForm.tsx"

    def test_component_name(self, react_prompts):
        engine = VisualEditEngine(FakeStreamer(), react_prompts)
        path, _ = engine.resolve_target(element(component_name="ContactForm"), FILES)
        assert path == "src/components/ContactForm.tsx"

    def test_text_match_deprioritises_app(self, react_prompts):
        engine = VisualEditEngine(FakeStreamer(), react_prompts)
        path, _ = engine.resolve_target(element(text_content="Submit"), {**FILES, "src/components/Other.tsx": "x"})
        assert path == "src/components/ContactForm.tsx"

    def test_short_text_is_not_trusted(self, react_prompts):
        engine = VisualEditEngine(FakeStreamer(), react_prompts)
        with pytest.raises(VisualEditRejectedError, match="Could not identify target component"):
            engine.resolve_target(element(text_content="Go"), {"src/components/A.tsx": "Go"})


class TestValidation:
    def test_change_ratio(self):
        assert change_ratio("a\nb\nc\nd", "a\nb\nc\nd") == 0
        assert change_ratio("a\nb", "a\nx\ny\nz") == pytest.approx(0.75)

    def test_large_rewrite_that_drops_element_text_is_rejected(self, react_prompts):
        engine = VisualEditEngine(FakeStreamer(), react_prompts)
        rewrite = "export default function ContactForm() {\n  const x = 1\n  return <form />\n}"
        with pytest.raises(VisualEditRejectedError, match="removed the target element content"):
            engine.validate_edit(FORM, rewrite, element())

    def test_large_rewrite_keeping_text_is_accepted(self, react_prompts):
        engine = VisualEditEngine(FakeStreamer(), react_prompts)
        rewrite = "export default function ContactForm() {\n  return <button>Submit</button>\n}"
        assert engine.validate_edit(FORM, rewrite, element()) > 0.5

    def test_missing_export_is_rejected(self, react_prompts):
        engine = VisualEditEngine(FakeStreamer(), react_prompts)
        with pytest.raises(VisualEditRejectedError, match="invalid component structure"):
            engine.validate_edit(FORM, FORM.replace("export default ", ""), element())


@pytest.mark.asyncio
class TestApply:
    async def test_minimal_edit_is_returned_with_low_temperature(self, react_prompts, settings):
        edited = FORM.replace("bg-blue-500", "bg-green-500")
        streamer = FakeStreamer([f"```tsx\n{edited}\n```"])
        engine = VisualEditEngine(streamer, react_prompts, settings)

        path, content = await engine.apply(element(component_name="ContactForm"), FILES, "make it green", "openai/gpt-4o")

        assert path == "src/components/ContactForm.tsx"
        assert content == edited
        call = streamer.calls[0]
        assert call["temperature"] == settings.visual_edit_temperature
        assert call["messages"][0]["content"] == react_prompts.system_visual_edit["content"]
        assert "CSS Selector: form > button" in call["messages"][1]["content"]
        assert "USER REQUEST: make it green" in call["messages"][1]["content"]

    async def test_rejected_edit_raises(self, react_prompts):
        streamer = FakeStreamer(["export default function ContactForm() {\n  return null\n}"])
        engine = VisualEditEngine(streamer, react_prompts)
        with pytest.raises(VisualEditRejectedError):
            await engine.apply(element(component_name="ContactForm"), FILES, "remove it", "openai/gpt-4o")
