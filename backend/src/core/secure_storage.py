# backend/src/core/secure_storage.py
import logging
import os
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

logger = logging.getLogger(__name__)

# All provider keys are grouped under one keyring service.
SERVICE_NAME = "WebforgeAI"


def _require_key(key: str) -> None:
    if not isinstance(key, str) or not key:
        logger.error("Credential operation attempted with invalid key.")
        raise ValueError("Credential key cannot be empty.")


def store_credential(key: str, secret: str) -> None:
    """
    Stores a secret using the OS credential manager.

    Args:
        key: The identifier for the secret, conventionally the env var name (e.g. "ANTHROPIC_API_KEY").
        secret: The secret value.

    Raises:
        ValueError: If the key or secret is empty.
        RuntimeError: If the keyring backend fails.
    """
    _require_key(key)
    if not isinstance(secret, str) or not secret.strip():
        logger.error("Attempted to store an empty or non-string credential secret.")
        raise ValueError("Credential secret must be a non-empty string.")

    try:
        keyring.set_password(SERVICE_NAME, key, secret.strip())
        logger.info(f"Stored credential for key '{key}' securely.")
    except KeyringError as e:
        logger.exception(f"Failed to store credential for key '{key}'. Keyring backend might be misconfigured or unavailable.")
        raise RuntimeError(f"Secure storage unavailable: {e}") from e


def retrieve_credential(key: str) -> Optional[str]:
    """
    Retrieves a secret from the OS credential manager.

    Returns:
        The stripped secret, or None if absent, blank or the backend is unavailable.
    """
    _require_key(key)
    try:
        secret = keyring.get_password(SERVICE_NAME, key)
    except KeyringError:
        # A missing backend is an expected state on headless machines.
        logger.warning(f"Failed to retrieve credential for key '{key}'. Keyring backend might be misconfigured or unavailable.")
        return None

    if secret and secret.strip():
        logger.debug(f"Retrieved credential for key '{key}' securely.")
        return secret.strip()
    logger.debug(f"No credential found for key '{key}' in secure storage.")
    return None


def delete_credential(key: str) -> bool:
    """
    Deletes a secret. Returns True when the key is gone afterwards (including when
    it never existed), False on a backend error.
    """
    _require_key(key)
    try:
        keyring.delete_password(SERVICE_NAME, key)
        logger.info(f"Deleted credential for key '{key}' from secure storage.")
        return True
    except PasswordDeleteError:
        logger.warning(f"Credential for key '{key}' not found during deletion attempt. Treating as success.")
        return True
    except KeyringError:
        logger.error(f"Failed to delete credential for key '{key}'. Keyring backend error.", exc_info=True)
        return False


def resolve_api_key(key_name: str) -> Optional[str]:
    """
    Resolves an API key by name: the environment variable wins, the keyring is the fallback.
    """
    value = os.environ.get(key_name, "").strip()
    if value:
        logger.debug(f"Using API key '{key_name}' from the environment.")
        return value
    return retrieve_credential(key_name)
