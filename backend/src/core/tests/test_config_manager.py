# backend/src/core/tests/test_config_manager.py
import json
from pathlib import Path

import pytest

from src.core.config_manager import ConfigManager, FrameworkPrompts, PipelineSettings

REQUIRED_PROMPTS = ("system_generation", "system_planning", "system_component",
                    "system_repair", "system_visual_edit", "system_edit")

# --- Test Fixtures ---

@pytest.fixture
def mock_plugins_dir(tmp_path: Path) -> Path:
    """Creates a mock plugins directory structure for testing."""
    plugins_dir = tmp_path / "plugins"
    plugins_dir.mkdir()

    # 1. Valid vue plugin
    vue_dir = plugins_dir / "vue"
    vue_dir.mkdir()
    fields = ",\n    ".join(f'{name}={{"role": "system", "content": "vue {name}"}}' for name in REQUIRED_PROMPTS)
    (vue_dir / "prompts.py").write_text(
        "from src.core.config_manager import FrameworkPrompts\n\n"
        f"vue_prompts = FrameworkPrompts(\n    {fields}\n)\n"
    )

    # 2. Directory without prompts.py
    (plugins_dir / "empty").mkdir()

    # 3. Plugin whose prompts object has the wrong name
    svelte_dir = plugins_dir / "svelte"
    svelte_dir.mkdir()
    (svelte_dir / "prompts.py").write_text("other_prompts = None\n")

    # 4. Plugin with a malformed prompt value
    solid_dir = plugins_dir / "solid"
    solid_dir.mkdir()
    broken = ",\n    ".join(f'{name}={{"role": "system", "content": 1}}' for name in REQUIRED_PROMPTS)
    (solid_dir / "prompts.py").write_text(
        "from src.core.config_manager import FrameworkPrompts\n\n"
        f"solid_prompts = FrameworkPrompts(\n    {broken}\n)\n"
    )
    return plugins_dir

@pytest.fixture
def providers_file(tmp_path: Path) -> Path:
    path = tmp_path / "providers.json"
    path.write_text(json.dumps({
        "openai": {"display_name": "OpenAI", "client_config": {"model_prefix": "openai/"}, "models": ["gpt-4o", "gpt-4.1"]},
        "google": {"display_name": "Google Gemini", "models": ["gemini-2.5-pro"]},
    }))
    return path

# --- Test Cases ---

class TestFrameworkPlugins:
    def test_available_frameworks(self, mock_plugins_dir: Path):
        manager = ConfigManager(plugins_dir=mock_plugins_dir)
        assert manager.get_available_frameworks() == ["solid", "svelte", "vue"]

    def test_load_valid_prompts(self, mock_plugins_dir: Path):
        prompts = ConfigManager(plugins_dir=mock_plugins_dir).load_prompts("vue")
        assert isinstance(prompts, FrameworkPrompts)
        assert prompts.system_repair["content"] == "vue system_repair"
        assert prompts.system_thinking is None

    @pytest.mark.parametrize("framework, message", [
        ("missing", "prompts file not found"),
        ("svelte", "Variable 'svelte_prompts' not found"),
        ("solid", "invalid structure"),
    ])
    def test_invalid_plugins(self, mock_plugins_dir: Path, framework: str, message: str):
        with pytest.raises(ValueError, match=message):
            ConfigManager(plugins_dir=mock_plugins_dir).load_prompts(framework)

    def test_bundled_react_prompts(self):
        prompts = ConfigManager().load_prompts("react")
        for name in REQUIRED_PROMPTS:
            assert getattr(prompts, name)["role"] == "system"
        assert prompts.system_thinking is not None


class TestProviders:
    def test_models_are_prefixed_and_sorted(self, providers_file: Path, tmp_path: Path):
        manager = ConfigManager(plugins_dir=tmp_path, providers_path=providers_file)
        models = manager.get_models_for_provider("all")
        assert [m["id"] for m in models] == ["google/gemini-2.5-pro", "openai/gpt-4.1", "openai/gpt-4o"]
        assert models[1]["display"] == "gpt-4.1 - OpenAI"
        assert manager.get_models_for_provider("unknown") == []

    def test_missing_or_broken_config_is_empty(self, tmp_path: Path):
        assert ConfigManager(plugins_dir=tmp_path, providers_path=tmp_path / "none.json").providers_config == {}
        broken = tmp_path / "broken.json"
        broken.write_text("{not json")
        assert ConfigManager(plugins_dir=tmp_path, providers_path=broken).providers_config == {}

    def test_bundled_providers(self):
        assert set(ConfigManager().providers_config) == {"anthropic", "openai", "google", "openrouter"}


class TestPipelineSettings:
    def test_defaults(self):
        settings = ConfigManager.load_pipeline_settings(environ={})
        assert settings == PipelineSettings()
        assert settings.max_repair_rounds == 2
        assert settings.duplicate_window_minutes == 5
        assert settings.component_hard_line_limit == 250

    def test_file_then_environment(self, tmp_path: Path):
        path = tmp_path / "pipeline.json"
        path.write_text(json.dumps({"max_repair_rounds": 4, "visual_edit_change_threshold": 0.3}))

        settings = ConfigManager.load_pipeline_settings(path, environ={"PIPELINE_MAX_REPAIR_ROUNDS": "1", "PIPELINE_THINKING_ENABLED": ""})

        assert settings.max_repair_rounds == 1
        assert settings.visual_edit_change_threshold == pytest.approx(0.3)
        assert settings.thinking_enabled is True

    def test_missing_file_uses_defaults(self, tmp_path: Path):
        assert ConfigManager.load_pipeline_settings(tmp_path / "absent.json", environ={}) == PipelineSettings()

    @pytest.mark.parametrize("content", ["[1, 2]", "{broken"])
    def test_invalid_file(self, tmp_path: Path, content: str):
        path = tmp_path / "pipeline.json"
        path.write_text(content)
        with pytest.raises(ValueError):
            ConfigManager.load_pipeline_settings(path, environ={})

    def test_invalid_value(self):
        with pytest.raises(ValueError, match="Invalid pipeline settings"):
            ConfigManager.load_pipeline_settings(environ={"PIPELINE_MAX_REPAIR_ROUNDS": "-1"})
