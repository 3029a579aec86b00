# backend/src/core/provider_registry.py
import asyncio
import logging
import os
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Protocol, Tuple, Type

from .anthropic_client import AnthropicClient
from .config_manager import ConfigManager
from .exceptions import AgentError
from .google_genai_client import GoogleGenAIClient
from .llm_client import ChatMessage, LlmClient
from .openai_client import OpenAIClient
from .secure_storage import resolve_api_key

logger = logging.getLogger(__name__)

class ModelProvider(str, Enum):
    """Provider tags recognised as the `<tag>/` prefix of a model identifier."""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GOOGLE = "google"
    OPENROUTER = "openrouter"

SUPPORTED_PREFIXES = ", ".join(f"{p.value}/" for p in ModelProvider)

class StreamingChatClient(Protocol):
    def stream_chat(self, messages: List[ChatMessage], temperature: float = ..., max_tokens: Optional[int] = ...) -> Any: ...

class TextStreamer(Protocol):
    """The language-model capability consumed by the pipeline."""
    def stream_text(self, model: str, messages: List[ChatMessage], temperature: Optional[float] = None,
                    max_tokens: Optional[int] = None) -> AsyncIterator[str]: ...

    async def complete_text(self, model: str, messages: List[ChatMessage], temperature: Optional[float] = None,
                            max_tokens: Optional[int] = None) -> str: ...

def resolve_model(model: str) -> Tuple[ModelProvider, str]:
    """
    Splits `provider/model-name` into its provider tag and the bare model id.
    Only the first segment is the tag, so `openrouter/deepseek/deepseek-chat`
    yields `deepseek/deepseek-chat`.

    Raises:
        ValueError: If the prefix is not a known provider.
    """
    prefix, sep, bare = (model or "").partition("/")
    if sep:
        try:
            return ModelProvider(prefix.lower()), bare
        except ValueError:
            pass
    raise ValueError(f"Unsupported model provider for model: {model}. Supported providers: {SUPPORTED_PREFIXES}")

_STREAM_END = object()

class ProviderRegistry:
    """
    Resolves prefixed model identifiers to provider clients and exposes a uniform
    async text-streaming capability over them.

    One client is created lazily per (provider, model) and cached. API keys come
    from the environment first, then the OS keyring.
    """
    def __init__(self,
                 config_manager: Optional[ConfigManager] = None,
                 key_resolver: Callable[[str], Optional[str]] = resolve_api_key,
                 site_url: Optional[str] = None,
                 site_title: Optional[str] = None):
        self.config_manager = config_manager or ConfigManager()
        self._key_resolver = key_resolver
        self.site_url = site_url
        self.site_title = site_title
        self._clients: Dict[Tuple[ModelProvider, str], StreamingChatClient] = {}

    def _get_client_class(self, class_name: str) -> Type[Any]:
        client_classes: Dict[str, Type[Any]] = {
            "LlmClient": LlmClient,
            "GoogleGenAIClient": GoogleGenAIClient,
            "OpenAIClient": OpenAIClient,
            "AnthropicClient": AnthropicClient,
        }
        client_class = client_classes.get(class_name)
        if not client_class:
            raise TypeError(f"Client class '{class_name}' not found in client factory.")
        return client_class

    def get_client(self, model: str) -> StreamingChatClient:
        """
        Returns the cached client for `model`, creating it on first use.

        Raises:
            AgentError: For unknown prefixes, missing configuration or missing keys.
        """
        try:
            provider, bare_model = resolve_model(model)
        except ValueError as e:
            logger.error(str(e))
            raise AgentError(f"AI provider not available: {e}") from e

        cache_key = (provider, bare_model)
        if cache_key in self._clients:
            return self._clients[cache_key]

        provider_config = self.config_manager.providers_config.get(provider.value)
        if not provider_config:
            raise AgentError(f"AI provider not available: provider '{provider.value}' not found in configuration.")

        key_name = provider_config.get("api_key_name")
        client_class_name = provider_config.get("client_class")
        client_config = dict(provider_config.get("client_config", {}))
        display_name = provider_config.get("display_name", provider.value)
        if not key_name or not client_class_name:
            raise AgentError(f"AI provider not available: config for '{provider.value}' is missing 'api_key_name' or 'client_class'.")

        api_key = self._key_resolver(key_name)
        if not api_key:
            raise AgentError(f"AI provider not available: no API key for {display_name}. Set {key_name} or store it in the keyring.")

        init_args: Dict[str, Any] = {"model": bare_model, "api_key": api_key}
        client_config.pop("model_prefix", None)
        base_url_env = client_config.pop("base_url_env", None)
        if base_url_env and os.environ.get(base_url_env):
            init_args["api_base"] = os.environ[base_url_env]
        init_args.update(client_config)
        if client_class_name == "LlmClient":
            init_args["site_url"] = self.site_url
            init_args["site_title"] = self.site_title

        try:
            client = self._get_client_class(client_class_name)(**init_args)
        except (TypeError, ValueError, RuntimeError) as e:
            logger.exception(f"Failed to create client instance for {provider.value} ({bare_model}).")
            raise AgentError(f"AI provider not available: {e}") from e

        logger.info(f"Initialized {client_class_name} for '{provider.value}/{bare_model}'.")
        self._clients[cache_key] = client
        return client

    async def stream_text(self, model: str, messages: List[ChatMessage], temperature: Optional[float] = None,
                          max_tokens: Optional[int] = None) -> AsyncIterator[str]:
        """
        Streams text chunks for a chat request. The provider SDKs are blocking, so
        each chunk is pulled on a worker thread.
        """
        client = self.get_client(model)
        kwargs: Dict[str, Any] = {}
        if temperature is not None:
            kwargs["temperature"] = temperature
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        iterator = iter(client.stream_chat(messages, **kwargs))
        while True:
            chunk = await asyncio.to_thread(next, iterator, _STREAM_END)
            if chunk is _STREAM_END:
                break
            yield chunk

    async def complete_text(self, model: str, messages: List[ChatMessage], temperature: Optional[float] = None,
                            max_tokens: Optional[int] = None) -> str:
        """Collects a full streamed response into one string."""
        parts: List[str] = []
        async for chunk in self.stream_text(model, messages, temperature=temperature, max_tokens=max_tokens):
            parts.append(chunk)
        return "".join(parts)
