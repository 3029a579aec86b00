# backend/src/core/tests/test_google_genai_client.py
from typing import List
from unittest.mock import MagicMock, patch

import pytest
from google.api_core import exceptions as google_exceptions

from src.core.google_genai_client import GoogleGenAIClient
from src.core.llm_client import AuthenticationError, ChatMessage, RateLimitError

# --- Test Fixtures ---

@pytest.fixture
def mock_genai_module():
    """
    Patches the `google.generativeai` module used by the client. The shared
    model and the per-call model created for a system instruction are separate
    mocks so tests can tell which one was used.
    """
    with patch('src.core.google_genai_client.genai') as mock_genai:
        shared_model = MagicMock(name="SharedModel")
        system_model = MagicMock(name="SystemModel")
        default_response = MagicMock(text="  Hello from Gemini!  ", candidates=[MagicMock()])
        shared_model.generate_content.return_value = default_response
        system_model.generate_content.return_value = default_response

        def model_side_effect(*args, **kwargs):
            return system_model if 'system_instruction' in kwargs else shared_model
        mock_genai.GenerativeModel = MagicMock(side_effect=model_side_effect)
        mock_genai.types.GenerationConfig = MagicMock(name="GenerationConfig")
        mock_genai.system_model = system_model
        yield mock_genai

@pytest.fixture
def client(mock_genai_module: MagicMock) -> GoogleGenAIClient:
    return GoogleGenAIClient(api_key="fake-key", model="gemini-2.5-pro")

# --- Initialization ---

class TestGoogleGenAIClientInitialization:
    def test_init_configures_sdk(self, client: GoogleGenAIClient, mock_genai_module: MagicMock):
        mock_genai_module.configure.assert_called_once_with(api_key="fake-key")
        mock_genai_module.GenerativeModel.assert_called_once_with("gemini-2.5-pro")
        assert client.model_id == "gemini-2.5-pro"

    @pytest.mark.parametrize("api_key, model", [("", "m"), (None, "m"), ("k", ""), ("k", None)])
    def test_init_invalid_arguments(self, api_key, model):
        with pytest.raises(ValueError):
            GoogleGenAIClient(api_key=api_key, model=model)

    def test_init_sdk_failure(self, mock_genai_module: MagicMock):
        mock_genai_module.configure.side_effect = Exception("bad key format")
        with pytest.raises(RuntimeError, match="Failed to initialize Google GenAI client"):
            GoogleGenAIClient(api_key="fake-key", model="gemini-2.5-pro")

# --- Chat and streaming ---

class TestGoogleGenAIChat:
    def test_chat_success(self, client: GoogleGenAIClient, mock_genai_module: MagicMock):
        messages: List[ChatMessage] = [{"role": "user", "content": "Hello"}, {"role": "assistant", "content": "Hi"}]

        response = client.chat(messages, temperature=0.5, max_tokens=256)

        mock_genai_module.types.GenerationConfig.assert_called_once_with(temperature=0.5, max_output_tokens=256)
        kwargs = client.model.generate_content.call_args.kwargs
        assert kwargs['contents'] == [
            {"role": "user", "parts": [{"text": "Hello"}]},
            {"role": "model", "parts": [{"text": "Hi"}]},
        ]
        assert kwargs['stream'] is False
        assert response == {"role": "assistant", "content": "Hello from Gemini!"}

    def test_system_prompts_use_a_per_call_model(self, client: GoogleGenAIClient, mock_genai_module: MagicMock):
        client.chat([
            {"role": "system", "content": "You are a bot."},
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Hello"},
        ])

        client.model.generate_content.assert_not_called()
        mock_genai_module.GenerativeModel.assert_any_call("gemini-2.5-pro", system_instruction="You are a bot.\n\nBe brief.")
        mock_genai_module.system_model.generate_content.assert_called_once()

    def test_empty_messages(self, client: GoogleGenAIClient):
        with pytest.raises(ValueError, match="empty or invalid messages list"):
            client.chat([])

    def test_permission_denied(self, client: GoogleGenAIClient):
        client.model.generate_content.side_effect = google_exceptions.PermissionDenied("Invalid API Key")
        with pytest.raises(AuthenticationError, match="Google API Authentication Failed"):
            client.chat([{"role": "user", "content": "test"}])

    @pytest.mark.parametrize("sdk_error", [
        google_exceptions.ResourceExhausted("Quota exceeded"),
        google_exceptions.DeadlineExceeded("Request timed out"),
    ])
    def test_rate_limit_and_timeout(self, client: GoogleGenAIClient, sdk_error):
        client.model.generate_content.side_effect = sdk_error
        with pytest.raises(RateLimitError, match="Google API"):
            client.chat([{"role": "user", "content": "test"}])

    def test_blocked_response(self, client: GoogleGenAIClient):
        client.model.generate_content.return_value = MagicMock(candidates=[])
        with pytest.raises(RuntimeError, match="Content blocked by Google's safety settings"):
            client.chat([{"role": "user", "content": "test"}])

    def test_other_exceptions(self, client: GoogleGenAIClient):
        client.model.generate_content.side_effect = Exception("A generic network error")
        with pytest.raises(RuntimeError, match="Unexpected error during API call to Google Gemini"):
            client.chat([{"role": "user", "content": "test"}])

    def test_stream_skips_chunks_without_parts(self, client: GoogleGenAIClient):
        client.model.generate_content.return_value = iter([
            MagicMock(parts=[1], text="Hel"), MagicMock(parts=[], text="ignored"), MagicMock(parts=[1], text="lo"),
        ])
        assert list(client.stream_chat([{"role": "user", "content": "hi"}])) == ["Hel", "lo"]
        assert client.model.generate_content.call_args.kwargs['stream'] is True
