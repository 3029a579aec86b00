# src/core/config_manager.py
import importlib.util
import json
import logging
import os
import sys
import dataclasses
from pathlib import Path
from typing import List, Dict, Any, Optional, Mapping

from pydantic import BaseModel, Field, ValidationError

from .llm_client import ChatMessage
from .project_models import DEFAULT_MODEL

logger = logging.getLogger(__name__)

ENV_PREFIX = "PIPELINE_"

@dataclasses.dataclass
class FrameworkPrompts:
    """System prompts for one target framework, one per pipeline phase."""
    system_generation: ChatMessage
    system_planning: ChatMessage
    system_component: ChatMessage
    system_repair: ChatMessage
    system_visual_edit: ChatMessage
    system_edit: ChatMessage
    system_thinking: Optional[ChatMessage] = None
    edit_examples: Optional[ChatMessage] = None

class PipelineSettings(BaseModel):
    """
    Heuristic constants of the generation pipeline.

    Defaults can be overridden by a `pipeline.json` file and then by environment
    variables named `PIPELINE_<FIELD>` (e.g. `PIPELINE_MAX_REPAIR_ROUNDS=1`).
    """
    default_model: str = DEFAULT_MODEL
    framework: str = "react"
    app_root: str = "/home/user/app"

    duplicate_window_minutes: float = Field(5, gt=0)
    duplicate_history_limit: int = Field(5, ge=1)

    max_repair_rounds: int = Field(2, ge=0)
    repair_error_char_limit: int = 8000
    repair_max_tokens: int = 8192

    visual_edit_change_threshold: float = Field(0.5, ge=0.0, le=1.0)
    visual_edit_min_text_length: int = 5
    visual_edit_match_chars: int = 30
    visual_edit_temperature: float = 0.1

    component_soft_line_limit: int = 200
    component_hard_line_limit: int = 250
    component_min_optimized_lines: int = 50
    component_max_tokens: int = 4096

    max_conversation_messages: int = 20
    conversation_messages_trim_to: int = 15
    max_conversation_edits: int = 10
    conversation_edits_trim_to: int = 8
    conversation_context_char_limit: int = 2000

    thinking_enabled: bool = True
    thinking_max_tokens: int = 2048
    thinking_temperature: float = 0.7
    generation_temperature: float = 0.7

    command_timeout_seconds: int = 300
    reconnect_timeout_seconds: float = 15.0

class ConfigManager:
    """
    Loads the three kinds of configuration the pipeline needs.

    1.  **Framework Prompts**: `plugins/<framework>/prompts.py` modules loaded with
        `importlib`; each exposes a `<framework>_prompts` FrameworkPrompts instance.
    2.  **Providers**: `providers.json` next to this file, describing each LLM
        provider tag, its key name, client class and known models.
    3.  **Pipeline settings**: `PipelineSettings` defaults, an optional JSON file and
        `PIPELINE_*` environment overrides.
    """
    def __init__(self, plugins_dir: Optional[str | Path] = None, providers_path: Optional[str | Path] = None):
        base_dir = Path(__file__).resolve().parent.parent
        self.plugins_dir = (base_dir / "plugins").resolve() if plugins_dir is None else Path(plugins_dir).resolve()
        self.providers_config_path = Path(providers_path).resolve() if providers_path else Path(__file__).resolve().parent / "providers.json"
        self.providers_config = self._load_providers_config()

        if not self.plugins_dir.is_dir():
            logger.warning(f"Plugins directory not found at '{self.plugins_dir}'. No frameworks will be loaded.")
        else:
            logger.info(f"ConfigManager initialized. Plugins directory: {self.plugins_dir}")

    def get_available_frameworks(self) -> List[str]:
        """Returns the names of plugin subdirectories that contain a `prompts.py`."""
        frameworks: List[str] = []
        if not self.plugins_dir.is_dir():
            return frameworks
        try:
            for entry in sorted(self.plugins_dir.iterdir()):
                if entry.is_dir() and (entry / "prompts.py").is_file():
                    frameworks.append(entry.name)
                elif entry.is_dir():
                    logger.debug(f"Directory '{entry.name}' skipped. Missing 'prompts.py'.")
        except OSError as e:
            logger.error(f"Error scanning plugins directory '{self.plugins_dir}': {e}")
        if not frameworks:
            logger.warning("No valid framework plugins found.")
        return frameworks

    def load_prompts(self, framework: str) -> FrameworkPrompts:
        """
        Dynamically loads `plugins/<framework>/prompts.py` and returns its
        `<framework>_prompts` instance.

        Raises:
            ValueError: If the plugin is missing or its prompts object is invalid.
            RuntimeError: If an unexpected error occurs during module loading.
        """
        prompts_file_path = self.plugins_dir / framework / 'prompts.py'
        if not prompts_file_path.is_file():
            raise ValueError(f"Framework '{framework}' prompts file not found at expected path: {prompts_file_path}")

        module_name = f"webforge_plugins.{framework}.prompts"
        prompts_var_name = f"{framework}_prompts"
        logger.info(f"Loading prompts for framework '{framework}' from: {prompts_file_path}")

        # Plugins import `src.core...`, so the directory holding `src` must be importable.
        backend_dir_str = str(self.plugins_dir.parent.parent)
        if backend_dir_str not in sys.path:
            sys.path.append(backend_dir_str)
            logger.debug(f"Added '{backend_dir_str}' to sys.path for plugin loading.")

        try:
            spec = importlib.util.spec_from_file_location(module_name, prompts_file_path)
            if spec is None or spec.loader is None:
                raise ImportError(f"Could not create module spec for {prompts_file_path}")
            prompts_module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(prompts_module)

            if not hasattr(prompts_module, prompts_var_name):
                raise AttributeError(f"Variable '{prompts_var_name}' not found in {prompts_file_path}.")
            prompts = getattr(prompts_module, prompts_var_name)
            if not self._is_valid_framework_prompts(prompts):
                raise ValueError(f"Prompts file for '{framework}' has an invalid structure or missing required prompts.")

            logger.info(f"Successfully loaded and validated prompts for framework '{framework}'.")
            return prompts
        except (ImportError, AttributeError, ValueError, TypeError) as e:
            logger.exception(f"Error loading or validating prompts data for '{framework}' from {prompts_file_path}.")
            raise ValueError(f"Invalid prompts data or module for framework '{framework}': {e}") from e
        except Exception as e:
            logger.exception(f"Unexpected error loading prompts for framework '{framework}'.")
            raise RuntimeError(f"Failed to load prompts for framework '{framework}': {e}") from e

    def _is_valid_framework_prompts(self, data: Any) -> bool:
        """Checks that every required prompt is a ChatMessage-shaped dict with string role and content."""
        if not isinstance(data, FrameworkPrompts):
            logger.error(f"Validation failed: Prompts data is not an instance of FrameworkPrompts (type: {type(data)}).")
            return False

        for field in dataclasses.fields(FrameworkPrompts):
            value = getattr(data, field.name, None)
            required = field.default is dataclasses.MISSING
            if value is None:
                if required:
                    logger.error(f"Validation failed: Prompts object missing required attribute '{field.name}'.")
                    return False
                continue
            if not isinstance(value, dict) or not isinstance(value.get('role'), str) or not isinstance(value.get('content'), str):
                logger.error(f"Validation failed: Prompt attribute '{field.name}' is not a ChatMessage with string 'role' and 'content'.")
                return False
        return True

    def _load_providers_config(self) -> Dict[str, Any]:
        if not self.providers_config_path.exists():
            logger.error(f"Provider config file not found at {self.providers_config_path}. No models will be available.")
            return {}
        try:
            with open(self.providers_config_path, 'r', encoding='utf-8') as f:
                config = json.load(f)
            logger.info(f"Successfully loaded provider config from {self.providers_config_path}.")
            return config
        except (json.JSONDecodeError, OSError) as e:
            logger.exception(f"Failed to load or parse provider config file: {e}")
            return {}

    def get_models_for_provider(self, provider_id: str) -> List[Dict[str, str]]:
        """
        Lists known models as fully prefixed ids (e.g. `anthropic/claude-...`).
        `provider_id="all"` lists every provider's models.
        """
        models = []
        provider_ids = list(self.providers_config) if provider_id == "all" else [provider_id]
        for pid in provider_ids:
            data = self.providers_config.get(pid)
            if not data:
                continue
            prefix = data.get('client_config', {}).get('model_prefix', f"{pid}/")
            provider_name = data.get("display_name", pid)
            for model_name in data.get("models", []):
                models.append({"display": f"{model_name} - {provider_name}", "id": f"{prefix}{model_name}", "provider": pid})
        return sorted(models, key=lambda x: x['display'])

    @staticmethod
    def load_pipeline_settings(path: Optional[str | Path] = None, environ: Optional[Mapping[str, str]] = None) -> PipelineSettings:
        """
        Builds PipelineSettings from defaults, an optional JSON file and `PIPELINE_*` env vars.

        Raises:
            ValueError: If the file is unreadable or a value fails validation.
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        if path is not None:
            settings_path = Path(path)
            if settings_path.is_file():
                try:
                    with open(settings_path, 'r', encoding='utf-8') as f:
                        file_values = json.load(f)
                except (json.JSONDecodeError, OSError) as e:
                    logger.error(f"Failed to read pipeline settings from {settings_path}: {e}")
                    raise ValueError(f"Invalid pipeline settings file {settings_path}: {e}") from e
                if not isinstance(file_values, dict):
                    raise ValueError(f"Pipeline settings file {settings_path} must contain a JSON object.")
                values.update(file_values)
                logger.info(f"Loaded {len(file_values)} pipeline setting(s) from {settings_path}.")
            else:
                logger.debug(f"No pipeline settings file at {settings_path}; using defaults.")

        for field_name in PipelineSettings.model_fields:
            env_value = environ.get(f"{ENV_PREFIX}{field_name.upper()}")
            if env_value is not None and env_value != "":
                values[field_name] = env_value
                logger.debug(f"Pipeline setting '{field_name}' overridden from environment.")

        try:
            return PipelineSettings.model_validate(values)
        except ValidationError as e:
            logger.error(f"Invalid pipeline settings: {e}")
            raise ValueError(f"Invalid pipeline settings: {e}") from e
