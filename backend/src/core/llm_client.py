# src/core/llm_client.py
import time
import logging
import requests.exceptions
import requests
import json
import random
from typing import List, Dict, Any, Optional, TypedDict, Iterator

logger = logging.getLogger(__name__)

class ChatMessage(TypedDict, total=False):
    """
    A standardized dictionary structure for representing a single message in a conversation.
    This is used consistently across all LLM clients.
    """
    role: str  # 'user', 'assistant', or 'system'
    content: str
    name: Optional[str]

class RateLimitError(RuntimeError):
    """
    Raised for API rate limit errors (e.g., HTTP 429). The orchestrator reports it
    as a provider failure for the current call only.
    """
    pass

class AuthenticationError(RuntimeError):
    """
    Raised for API authentication errors (e.g., HTTP 401/403), typically a missing
    or revoked key.
    """
    pass

def sanitize_messages(messages: List[ChatMessage]) -> List[ChatMessage]:
    """
    Validates a message list and returns copies containing only the keys a provider accepts.

    Raises:
        ValueError: If the list is empty or contains no valid message.
    """
    if not messages or not isinstance(messages, list):
        raise ValueError("Cannot send chat request with empty or invalid messages list.")

    valid_messages: List[ChatMessage] = []
    for i, msg in enumerate(messages):
        if isinstance(msg, dict) and isinstance(msg.get('role'), str) and isinstance(msg.get('content'), str):
            valid_msg: ChatMessage = {"role": msg["role"], "content": msg["content"]}
            if msg.get("name") and isinstance(msg.get("name"), str):
                valid_msg["name"] = msg["name"]
            valid_messages.append(valid_msg)
        else:
            logger.warning(f"Skipping invalid message structure at index {i}: {str(msg)[:100]}...")
    if not valid_messages:
        raise ValueError("No valid messages found in the input list to send.")
    return valid_messages

class LlmClient:
    """
    A client for the OpenRouter chat completions API.

    Supports both a blocking `chat` call and an incremental `stream_chat` generator
    that parses the server-sent-event stream. Transient network and 5xx errors are
    retried with exponential backoff and jitter; 429 and 401/403 map onto
    `RateLimitError` and `AuthenticationError`.
    """
    def __init__(self,
                 api_key: str,
                 model: str,
                 api_base: Optional[str] = None,
                 site_url: Optional[str] = None,
                 site_title: Optional[str] = None
                 ):
        """
        Args:
            api_key: The OpenRouter API key.
            model: The model identifier without the `openrouter/` prefix (e.g. "deepseek/deepseek-chat").
            api_base: Optional override for the completions endpoint.
            site_url: Optional referring site URL for OpenRouter ranking.
            site_title: Optional referring site title for OpenRouter ranking.

        Raises:
            ValueError: If api_key or model is invalid.
        """
        if not api_key or not isinstance(api_key, str):
            raise ValueError("LlmClient requires a valid string API key.")
        if not model or not isinstance(model, str):
            raise ValueError("LlmClient requires a valid string model ID.")

        self.api_key = api_key.strip()
        self.model = model
        self.api_endpoint = api_base or 'https://openrouter.ai/api/v1/chat/completions'
        self.request_timeout = 120
        self.max_retries = 3
        self.initial_retry_delay = 2.0

        self.session = requests.Session()
        headers = {'Content-Type': 'application/json'}
        if site_url:
            headers['HTTP-Referer'] = site_url
        if site_title:
            headers['X-Title'] = site_title
        self.session.headers.update(headers)

        logger.info(f"LlmClient instance created for model '{self.model}'. Endpoint: {self.api_endpoint}")

    def _build_payload(self, messages: List[ChatMessage], temperature: float, max_tokens: Optional[int], stream: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": sanitize_messages(messages),
            "temperature": temperature,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens
        if stream:
            payload["stream"] = True
        if logger.isEnabledFor(logging.DEBUG):
            try:
                logger.debug(f"Request Payload:\n{json.dumps(payload, indent=2)}")
            except TypeError:
                logger.debug(f"Request Payload (non-serializable): {payload}")
        return payload

    @staticmethod
    def _error_message(response: requests.Response, default: str) -> str:
        try:
            return response.json().get('error', {}).get('message', default)
        except (json.JSONDecodeError, AttributeError, ValueError):
            return default

    def _post(self, payload: Dict[str, Any], stream: bool) -> requests.Response:
        """
        POSTs the payload with the retry policy and returns a 2xx response.

        Raises:
            RateLimitError: After the last attempt still returns 429.
            AuthenticationError: On 401/403, without retrying.
            requests.exceptions.HTTPError: On non-retryable HTTP errors.
            RuntimeError: When retries are exhausted or an unrecoverable error occurs.
        """
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries):
            should_retry = False
            wait_time = self.initial_retry_delay * (2 ** attempt)
            logger.info(f"Sending {len(payload['messages'])} messages to '{self.model}' (Attempt {attempt + 1}/{self.max_retries}, stream={stream})...")
            start_time = time.time()

            try:
                request_headers = {
                    'Authorization': f'Bearer {self.api_key}',
                    'Content-Type': 'application/json',
                    'HTTP-Referer': self.session.headers.get('HTTP-Referer', ''),
                    'X-Title': self.session.headers.get('X-Title', '')
                }
                response = self.session.post(
                    self.api_endpoint,
                    headers=request_headers,
                    json=payload,
                    timeout=self.request_timeout,
                    stream=stream,
                )
                logger.debug(f"API call returned after {time.time() - start_time:.2f} seconds. Status code: {response.status_code}")

                if response.status_code == 429:
                    message = self._error_message(response, "API Rate Limit Exceeded (HTTP 429)")
                    last_exception = RateLimitError(f"API Rate Limit Exceeded for {self.model}: {message}")
                    if attempt >= self.max_retries - 1:
                        raise last_exception
                    logger.warning(f"API Rate Limit Exceeded for {self.model}. Will retry. Message: {message}")
                    should_retry = True
                elif response.status_code in (401, 403):
                    message = self._error_message(response, f"Authentication Failed (HTTP {response.status_code})")
                    logger.error(f"API Authentication Failed for {self.model}. Message: {message}")
                    raise AuthenticationError(f"API Authentication Failed for {self.model}: {message}")
                else:
                    response.raise_for_status()
                    return response

            except requests.exceptions.Timeout as e:
                logger.warning(f"Timeout occurred on attempt {attempt + 1} after {time.time() - start_time:.2f} seconds: {e}")
                last_exception = e; should_retry = True
            except requests.exceptions.HTTPError as e:
                status_code = e.response.status_code if e.response is not None else 'Unknown'
                last_exception = e
                if isinstance(status_code, int) and (status_code == 408 or 500 <= status_code < 600):
                    logger.info(f"Retryable HTTP error encountered (Status: {status_code}).")
                    should_retry = True
                else:
                    logger.error(f"Non-retryable HTTP error for {self.model}: {e}")
                    raise
            except (requests.exceptions.ConnectionError, requests.exceptions.ChunkedEncodingError) as e:
                logger.warning(f"Connection/Network error on attempt {attempt + 1}: {e}")
                last_exception = e; should_retry = True
            except requests.exceptions.RequestException as e:
                logger.error(f"An unrecoverable network request error occurred: {e}", exc_info=True)
                raise RuntimeError(f"Unrecoverable network error during API call to {self.model}: {e}") from e

            if should_retry and attempt < self.max_retries - 1:
                jitter_wait_time = random.uniform(0, wait_time)
                logger.info(f"Waiting {jitter_wait_time:.2f} seconds (base backoff: {wait_time:.2f}s) before retry ({attempt + 2}/{self.max_retries})...")
                time.sleep(jitter_wait_time)

        logger.error(f"Max retries ({self.max_retries}) reached for {self.model}.")
        if last_exception:
            raise last_exception
        raise RuntimeError(f"Max retries reached for {self.model}, but no specific exception recorded.")

    def chat(self, messages: List[ChatMessage], temperature: float = 0.1, max_tokens: Optional[int] = None) -> ChatMessage:
        """
        Sends a blocking chat completion request.

        Returns:
            A ChatMessage dictionary representing the assistant's response.
        """
        payload = self._build_payload(messages, temperature, max_tokens, stream=False)
        response = self._post(payload, stream=False)
        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            logger.error(f"Raw text that failed JSON decoding: {response.text[:1000]}...")
            raise RuntimeError(f"Failed to decode JSON response from LLM ({self.model}): {e}") from e

        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices:
            raise RuntimeError("Invalid response structure from LLM: 'choices' missing or empty.")
        message_data = choices[0].get("message")
        if not isinstance(message_data, dict) or "content" not in message_data:
            raise RuntimeError("Invalid response structure from LLM: 'message' or 'content' missing.")
        return {"role": message_data.get("role", "assistant"), "content": (message_data.get("content") or "").strip()}

    def stream_chat(self, messages: List[ChatMessage], temperature: float = 0.1, max_tokens: Optional[int] = None) -> Iterator[str]:
        """
        Streams a chat completion and yields text deltas as they arrive.

        The response is a server-sent-event stream of `data: {...}` lines terminated by
        `data: [DONE]`. Comment lines (OpenRouter keep-alives start with ':') are skipped.
        """
        payload = self._build_payload(messages, temperature, max_tokens, stream=True)
        response = self._post(payload, stream=True)
        try:
            for raw_line in response.iter_lines(decode_unicode=True):
                if not raw_line or raw_line.startswith(':'):
                    continue
                if not raw_line.startswith('data:'):
                    continue
                data_str = raw_line[len('data:'):].strip()
                if data_str == '[DONE]':
                    break
                try:
                    chunk = json.loads(data_str)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping malformed stream chunk from {self.model}: {data_str[:200]}")
                    continue
                if chunk.get('error'):
                    raise RuntimeError(f"Stream error from {self.model}: {chunk['error'].get('message', chunk['error'])}")
                for choice in chunk.get('choices') or []:
                    delta = (choice.get('delta') or {}).get('content')
                    if delta:
                        yield delta
        except requests.exceptions.RequestException as e:
            logger.error(f"Stream from {self.model} interrupted: {e}")
            raise RuntimeError(f"Stream from {self.model} interrupted: {e}") from e
        finally:
            response.close()
