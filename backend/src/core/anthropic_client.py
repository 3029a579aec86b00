# backend/src/core/anthropic_client.py
import logging
import os
from typing import Optional

from openai import OpenAI

from .openai_client import OpenAICompatibleClient

logger = logging.getLogger(__name__)

ANTHROPIC_DEFAULT_BASE_URL = "https://api.anthropic.com/v1"

class AnthropicClient(OpenAICompatibleClient):
    """
    Handles communication with the Anthropic (Claude) API.

    Uses the official 'openai' Python SDK pointed at Anthropic's OpenAI-compatible
    endpoint, so error mapping and streaming behave exactly like the OpenAI client.
    Anthropic requires `max_tokens` on every request, hence the default.
    """
    provider_name = "Anthropic"
    default_max_tokens = 4096

    def __init__(self, api_key: str, model: str, api_base: Optional[str] = None, **kwargs):
        """
        Args:
            api_key: The Anthropic API key.
            model: The Claude model identifier (e.g., "claude-sonnet-4-20250514").
            api_base: Optional base URL; falls back to `ANTHROPIC_BASE_URL`, then the public endpoint.
        """
        super().__init__(api_key, model)
        base_url = api_base or os.environ.get("ANTHROPIC_BASE_URL") or ANTHROPIC_DEFAULT_BASE_URL
        try:
            self.client = OpenAI(
                api_key=api_key,
                base_url=base_url,
                default_headers={"anthropic-version": "2023-06-01"}
            )
            logger.info(f"AnthropicClient instance created for model '{self.model_id}' at {base_url}.")
        except Exception as e:
            logger.exception("Failed to configure Anthropic client.")
            raise RuntimeError(f"Failed to initialize Anthropic client: {e}") from e
