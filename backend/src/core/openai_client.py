# src/core/openai_client.py
import logging
import os
from typing import Any, Iterator, List, Optional

from openai import OpenAI, RateLimitError as OpenAIRateLimitError, AuthenticationError as OpenAIAuthenticationError

from .llm_client import RateLimitError, AuthenticationError, ChatMessage

logger = logging.getLogger(__name__)

def to_sdk_messages(messages: List[ChatMessage]) -> List[dict]:
    """Converts ChatMessages to the plain role/content dicts the openai SDK accepts."""
    if not messages or not isinstance(messages, list):
        raise ValueError("Cannot send chat request with empty or invalid messages list.")
    return [{"role": msg["role"], "content": msg["content"]} for msg in messages if msg.get("role") in ("system", "user", "assistant")]

class OpenAICompatibleClient:
    """
    Shared chat and streaming logic for any endpoint speaking the OpenAI chat
    completions protocol through the official `openai` SDK.

    Subclasses set `provider_name` and build `self.client`.
    """
    provider_name = "OpenAI"
    default_max_tokens: Optional[int] = None

    def __init__(self, api_key: str, model: str):
        if not api_key or not isinstance(api_key, str):
            raise ValueError(f"{type(self).__name__} requires a valid string API key.")
        if not model or not isinstance(model, str):
            raise ValueError(f"{type(self).__name__} requires a valid string model ID.")
        self.model_id = model
        self.client: Any = None

    def _request_kwargs(self, messages: List[ChatMessage], temperature: float, max_tokens: Optional[int]) -> dict:
        kwargs = {"model": self.model_id, "messages": to_sdk_messages(messages), "temperature": temperature}
        tokens = max_tokens or self.default_max_tokens
        if tokens:
            kwargs["max_tokens"] = tokens
        return kwargs

    def _translate_error(self, e: Exception) -> Exception:
        if isinstance(e, OpenAIRateLimitError):
            return RateLimitError(f"{self.provider_name} API Rate Limit Exceeded: {e}")
        if isinstance(e, OpenAIAuthenticationError):
            logger.error(f"{self.provider_name} API Authentication Failed. Base URL: {self.client.base_url}. Error: {e}")
            return AuthenticationError(f"{self.provider_name} API Authentication Failed: {e}")
        logger.exception(f"Unexpected error during API call to {self.provider_name}: {e}")
        return RuntimeError(f"Unexpected error during API call to {self.provider_name}: {e}")

    def chat(self, messages: List[ChatMessage], temperature: float = 0.1, max_tokens: Optional[int] = None) -> ChatMessage:
        """
        Sends a blocking chat completion request.

        Raises:
            RateLimitError: If the API rate limit is exceeded.
            AuthenticationError: If the API key is invalid.
            RuntimeError: For other unexpected API or processing errors.
        """
        kwargs = self._request_kwargs(messages, temperature, max_tokens)
        try:
            logger.info(f"Sending request to {self.provider_name} model '{self.model_id}'...")
            response = self.client.chat.completions.create(**kwargs)
            if not response.choices:
                raise RuntimeError(f"{self.provider_name} response contained no choices.")
            content = response.choices[0].message.content
            logger.info(f"Response received successfully from {self.provider_name} model {self.model_id}.")
            return {"role": "assistant", "content": content.strip() if content else ""}
        except Exception as e:
            raise self._translate_error(e) from e

    def stream_chat(self, messages: List[ChatMessage], temperature: float = 0.1, max_tokens: Optional[int] = None) -> Iterator[str]:
        """Yields text deltas from a streamed chat completion."""
        kwargs = self._request_kwargs(messages, temperature, max_tokens)
        try:
            logger.info(f"Opening stream to {self.provider_name} model '{self.model_id}'...")
            stream = self.client.chat.completions.create(stream=True, **kwargs)
            for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta is not None and delta.content:
                    yield delta.content
        except Exception as e:
            raise self._translate_error(e) from e

class OpenAIClient(OpenAICompatibleClient):
    """
    Handles communication with the OpenAI API using the official openai SDK.
    The base URL can be overridden with `api_base` or the `OPENAI_BASE_URL` variable.
    """
    provider_name = "OpenAI"

    def __init__(self, api_key: str, model: str, api_base: Optional[str] = None, **kwargs):
        super().__init__(api_key, model)
        try:
            self.client = OpenAI(api_key=api_key, base_url=api_base or os.environ.get("OPENAI_BASE_URL") or None)
            logger.info(f"OpenAIClient instance created for model '{self.model_id}'.")
        except Exception as e:
            logger.exception("Failed to configure OpenAI client.")
            raise RuntimeError(f"Failed to initialize OpenAI client: {e}") from e
