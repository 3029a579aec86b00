# backend/src/core/google_genai_client.py
import logging
import json
from typing import Any, Dict, Iterator, List, Optional, Tuple

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from .llm_client import RateLimitError, AuthenticationError, ChatMessage

logger = logging.getLogger(__name__)

class GoogleGenAIClient:
    """
    A client for the Google Gemini series of models using the google-generativeai SDK.
    """
    def __init__(self, api_key: str, model: str, **kwargs):
        if not api_key or not isinstance(api_key, str):
            raise ValueError("GoogleGenAIClient requires a valid string API key.")
        if not model or not isinstance(model, str):
            raise ValueError("GoogleGenAIClient requires a valid string model ID.")

        self.model_id = model
        try:
            genai.configure(api_key=api_key)
            self.model = genai.GenerativeModel(self.model_id)
            logger.info(f"GoogleGenAIClient instance created for model '{self.model_id}'.")
        except Exception as e:
            logger.exception("Failed to configure Google GenAI client.")
            raise RuntimeError(f"Failed to initialize Google GenAI client: {e}") from e

    @staticmethod
    def _split_messages(messages: List[ChatMessage]) -> Tuple[Optional[str], List[Dict[str, Any]]]:
        """
        Separates the system prompt from the history and maps roles onto Gemini's
        ('assistant' becomes 'model').
        """
        if not messages or not isinstance(messages, list):
            raise ValueError("Cannot send chat request with empty or invalid messages list.")
        system_parts: List[str] = []
        gemini_messages: List[Dict[str, Any]] = []
        for msg in messages:
            role = msg.get("role")
            content = msg.get("content", "")
            if role == "system":
                system_parts.append(content)
            elif role == "assistant":
                gemini_messages.append({"role": "model", "parts": [{"text": content}]})
            elif role == "user":
                gemini_messages.append({"role": "user", "parts": [{"text": content}]})
        return ("\n\n".join(system_parts) or None), gemini_messages

    def _prepare(self, messages: List[ChatMessage], temperature: float, max_tokens: Optional[int]):
        system_instruction, gemini_messages = self._split_messages(messages)
        model_to_use = self.model
        if system_instruction:
            # A per-call model keeps the shared instance free of system prompts.
            model_to_use = genai.GenerativeModel(self.model_id, system_instruction=system_instruction)
        config_kwargs: Dict[str, Any] = {"temperature": temperature}
        if max_tokens:
            config_kwargs["max_output_tokens"] = max_tokens
        generation_config = genai.types.GenerationConfig(**config_kwargs)
        if logger.isEnabledFor(logging.DEBUG):
            try:
                logger.debug(f"Google GenAI Request Payload:\n{json.dumps(gemini_messages, indent=2)}")
            except TypeError:
                logger.debug(f"Google GenAI Request Payload (non-serializable): {gemini_messages}")
        return model_to_use, gemini_messages, generation_config

    @staticmethod
    def _translate_error(e: Exception) -> Exception:
        if isinstance(e, google_exceptions.PermissionDenied):
            logger.error(f"Google API Authentication Failed (Permission Denied): {e}")
            return AuthenticationError(f"Google API Authentication Failed: {e}")
        if isinstance(e, (google_exceptions.ResourceExhausted, google_exceptions.DeadlineExceeded)):
            error_name = "Rate Limit Exceeded" if isinstance(e, google_exceptions.ResourceExhausted) else "Deadline Exceeded"
            logger.error(f"Google API {error_name}: {e}")
            return RateLimitError(f"Google API {error_name}: {e}")
        if isinstance(e, RuntimeError):
            return e
        logger.exception(f"Unexpected error during API call to Google Gemini: {e}")
        return RuntimeError(f"Unexpected error during API call to Google Gemini: {e}")

    def chat(self, messages: List[ChatMessage], temperature: float = 0.1, max_tokens: Optional[int] = None) -> ChatMessage:
        """
        Sends a blocking request to the Gemini API.

        Raises:
            AuthenticationError: If the API key is invalid.
            RateLimitError: If the API rate limit or deadline is exceeded.
            RuntimeError: For blocked content and other unexpected errors.
        """
        model_to_use, contents, generation_config = self._prepare(messages, temperature, max_tokens)
        try:
            logger.info(f"Sending request to Google Gemini model '{self.model_id}'...")
            response = model_to_use.generate_content(contents=contents, generation_config=generation_config, stream=False)
            if not response.candidates:
                block_reason = response.prompt_feedback.block_reason.name if response.prompt_feedback else "Unknown"
                logger.error(f"Gemini response was blocked. Reason: {block_reason}")
                raise RuntimeError(f"Content blocked by Google's safety settings. Reason: {block_reason}")
            logger.info(f"Response received successfully from Gemini model {self.model_id}.")
            return {"role": "assistant", "content": response.text.strip()}
        except Exception as e:
            translated = self._translate_error(e)
            if translated is e:
                raise
            raise translated from e

    def stream_chat(self, messages: List[ChatMessage], temperature: float = 0.1, max_tokens: Optional[int] = None) -> Iterator[str]:
        """Yields text chunks from a streamed Gemini generation."""
        model_to_use, contents, generation_config = self._prepare(messages, temperature, max_tokens)
        try:
            logger.info(f"Opening stream to Google Gemini model '{self.model_id}'...")
            response = model_to_use.generate_content(contents=contents, generation_config=generation_config, stream=True)
            for chunk in response:
                # Chunks without parts (safety or finish markers) raise on `.text`.
                if getattr(chunk, "parts", None):
                    yield chunk.text
        except Exception as e:
            translated = self._translate_error(e)
            if translated is e:
                raise
            raise translated from e
