# backend/src/core/tests/test_llm_client.py
import pytest
from unittest.mock import MagicMock, patch
from typing import List

from src.core.llm_client import LlmClient, RateLimitError, AuthenticationError, ChatMessage, sanitize_messages

# Import requests exceptions to simulate network errors
import requests

# --- Test Fixtures ---

@pytest.fixture
def mock_requests_session():
    """Mocks requests.Session to control API responses and prevent real network calls."""
    with patch('src.core.llm_client.requests.Session') as mock_session_constructor:
        mock_session_instance = MagicMock()

        # Default successful response
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {
            "choices": [{"message": {"role": "assistant", "content": "  Hello from OpenRouter!  "}}]
        }
        mock_response.raise_for_status.return_value = None

        mock_session_instance.post.return_value = mock_response
        mock_session_constructor.return_value = mock_session_instance
        yield mock_session_instance

@pytest.fixture
def client(mock_requests_session: MagicMock) -> LlmClient:
    return LlmClient(api_key="fake-key", model="deepseek/deepseek-chat")

def http_error_response(status_code: int) -> MagicMock:
    response = MagicMock(status_code=status_code)
    error = requests.exceptions.HTTPError(f"HTTP {status_code}")
    error.response = MagicMock(status_code=status_code)
    response.raise_for_status.side_effect = error
    return response

def stream_response(lines: List[str]) -> MagicMock:
    response = MagicMock(status_code=200)
    response.raise_for_status.return_value = None
    response.iter_lines.return_value = iter(lines)
    return response


# --- Initialization ---

class TestLlmClientInitialization:
    def test_init_success(self, mock_requests_session: MagicMock):
        client = LlmClient(api_key=" fake-or-key ", model="deepseek/deepseek-chat")
        assert client.model == "deepseek/deepseek-chat"
        assert client.api_key == "fake-or-key"
        assert client.api_endpoint == "https://openrouter.ai/api/v1/chat/completions"

    def test_init_with_site_details(self, mock_requests_session: MagicMock):
        """Site details become the OpenRouter ranking headers."""
        LlmClient(api_key="fake-key", model="some/model", site_url="https://my-app.com", site_title="My App")
        mock_requests_session.headers.update.assert_called_with({
            'Content-Type': 'application/json',
            'HTTP-Referer': 'https://my-app.com',
            'X-Title': 'My App'
        })

    @pytest.mark.parametrize("api_key", [None, "", 123])
    def test_init_invalid_api_key_fails(self, api_key):
        with pytest.raises(ValueError, match="requires a valid string API key"):
            LlmClient(api_key=api_key, model="some/model")

    @pytest.mark.parametrize("model", [None, "", 123])
    def test_init_invalid_model_fails(self, model):
        with pytest.raises(ValueError, match="requires a valid string model ID"):
            LlmClient(api_key="fake-key", model=model)


# --- chat() ---

class TestLlmClientChat:
    def test_chat_success(self, client: LlmClient, mock_requests_session: MagicMock):
        messages: List[ChatMessage] = [{"role": "user", "content": "Hello"}]

        response = client.chat(messages, temperature=0.5, max_tokens=64)

        call_kwargs = mock_requests_session.post.call_args.kwargs
        assert call_kwargs['json'] == {
            "model": "deepseek/deepseek-chat", "messages": messages, "temperature": 0.5, "max_tokens": 64,
        }
        assert call_kwargs['headers']['Authorization'] == "Bearer fake-key"
        assert call_kwargs['stream'] is False
        assert response == {"role": "assistant", "content": "Hello from OpenRouter!"}

    def test_chat_empty_messages_fails(self, client: LlmClient, mock_requests_session: MagicMock):
        with pytest.raises(ValueError, match="empty or invalid messages list"):
            client.chat([])
        mock_requests_session.post.assert_not_called()

    @patch('time.sleep')
    def test_chat_retries_on_server_error(self, mock_sleep, client: LlmClient, mock_requests_session: MagicMock):
        success = MagicMock(status_code=200)
        success.json.return_value = {"choices": [{"message": {"role": "assistant", "content": "Success!"}}]}
        mock_requests_session.post.side_effect = [http_error_response(500), http_error_response(408), success]

        response = client.chat([{"role": "user", "content": "test"}])

        assert mock_requests_session.post.call_count == 3
        assert mock_sleep.call_count == 2
        assert response['content'] == "Success!"

    @patch('time.sleep')
    def test_chat_fails_after_max_retries(self, mock_sleep, client: LlmClient, mock_requests_session: MagicMock):
        mock_requests_session.post.return_value = http_error_response(503)

        with pytest.raises(requests.exceptions.HTTPError):
            client.chat([{"role": "user", "content": "test"}])

        assert mock_requests_session.post.call_count == client.max_retries

    def test_non_retryable_http_error(self, client: LlmClient, mock_requests_session: MagicMock):
        mock_requests_session.post.return_value = http_error_response(400)

        with pytest.raises(requests.exceptions.HTTPError):
            client.chat([{"role": "user", "content": "test"}])

        assert mock_requests_session.post.call_count == 1

    @patch('time.sleep')
    def test_chat_rate_limit_after_last_attempt(self, mock_sleep, client: LlmClient, mock_requests_session: MagicMock):
        response = MagicMock(status_code=429)
        response.json.return_value = {"error": {"message": "Rate limit exceeded"}}
        mock_requests_session.post.return_value = response

        with pytest.raises(RateLimitError, match="Rate limit exceeded"):
            client.chat([{"role": "user", "content": "test"}])

        assert mock_requests_session.post.call_count == client.max_retries

    @pytest.mark.parametrize("status_code", [401, 403])
    def test_chat_authentication_error_is_not_retried(self, status_code, client: LlmClient, mock_requests_session: MagicMock):
        response = MagicMock(status_code=status_code)
        response.json.return_value = {"error": {"message": "Invalid API Key"}}
        mock_requests_session.post.return_value = response

        with pytest.raises(AuthenticationError, match="API Authentication Failed"):
            client.chat([{"role": "user", "content": "test"}])

        assert mock_requests_session.post.call_count == 1

    def test_chat_invalid_response_structure(self, client: LlmClient, mock_requests_session: MagicMock):
        mock_requests_session.post.return_value.json.return_value = {"data": "wrong_format"}

        with pytest.raises(RuntimeError, match="'choices' missing or empty"):
            client.chat([{"role": "user", "content": "test"}])

    @patch('time.sleep')
    def test_connection_errors_are_retried(self, mock_sleep, client: LlmClient, mock_requests_session: MagicMock):
        mock_requests_session.post.side_effect = requests.exceptions.ConnectionError("reset")

        with pytest.raises(requests.exceptions.ConnectionError):
            client.chat([{"role": "user", "content": "test"}])

        assert mock_requests_session.post.call_count == client.max_retries

    def test_chat_handles_network_error(self, client: LlmClient, mock_requests_session: MagicMock):
        mock_requests_session.post.side_effect = requests.exceptions.RequestException("A generic network error")

        with pytest.raises(RuntimeError, match="Unrecoverable network error"):
            client.chat([{"role": "user", "content": "test"}])


# --- stream_chat() ---

class TestLlmClientStream:
    def test_stream_parses_server_sent_events(self, client: LlmClient, mock_requests_session: MagicMock):
        response = stream_response([
            ": OPENROUTER PROCESSING",
            "",
            'data: {"choices": [{"delta": {"content": "Hel"}}]}',
            "data: {not json",
            'data: {"choices": [{"delta": {}}]}',
            'data: {"choices": [{"delta": {"content": "lo"}}]}',
            "data: [DONE]",
            'data: {"choices": [{"delta": {"content": "after done"}}]}',
        ])
        mock_requests_session.post.return_value = response

        chunks = list(client.stream_chat([{"role": "user", "content": "hi"}]))

        assert chunks == ["Hel", "lo"]
        assert mock_requests_session.post.call_args.kwargs['json']['stream'] is True
        assert mock_requests_session.post.call_args.kwargs['stream'] is True
        response.close.assert_called_once()

    def test_stream_error_chunk(self, client: LlmClient, mock_requests_session: MagicMock):
        mock_requests_session.post.return_value = stream_response([
            'data: {"error": {"message": "upstream overloaded"}}',
        ])

        with pytest.raises(RuntimeError, match="Stream error from deepseek/deepseek-chat: upstream overloaded"):
            list(client.stream_chat([{"role": "user", "content": "hi"}]))

    def test_stream_interrupted(self, client: LlmClient, mock_requests_session: MagicMock):
        response = MagicMock(status_code=200)
        response.iter_lines.side_effect = requests.exceptions.ChunkedEncodingError("cut off")
        mock_requests_session.post.return_value = response

        with pytest.raises(RuntimeError, match="interrupted"):
            list(client.stream_chat([{"role": "user", "content": "hi"}]))
        response.close.assert_called_once()


# --- sanitize_messages() ---

def test_sanitize_messages_keeps_known_keys():
    messages = [{"role": "user", "content": "hi", "name": "dev", "extra": 1}, {"role": "user"}, "junk"]
    assert sanitize_messages(messages) == [{"role": "user", "content": "hi", "name": "dev"}]

def test_sanitize_messages_rejects_all_invalid():
    with pytest.raises(ValueError, match="No valid messages"):
        sanitize_messages([{"role": "user"}])
