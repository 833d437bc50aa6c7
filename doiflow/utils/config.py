"""
Service configuration for doiflow.

Holds the DataCite service URL, the repository credentials and the DOI prefix in an
explicit ServiceConfig object. Values can be read from environment variables (optionally
loaded from a .env file), while the client secret may instead live in the operating
system credential store via the keyring library.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

import keyring
from dotenv import load_dotenv
from keyring.errors import PasswordDeleteError

from doiflow.utils.field_differ import DEFAULT_IGNORE_COUNT_KEYS

logger = logging.getLogger(__name__)


KEYRING_SERVICE_NAME = "doiflow_DataCite"
DEFAULT_PREFIX = "10.1234"


class ConfigurationError(Exception):
    """Raised when the service configuration is incomplete or invalid."""
    pass


@dataclass
class ServiceConfig:
    """Connection and metadata settings for one DataCite repository account."""

    service_url: str
    client_id: str
    client_secret: str = field(repr=False)
    prefix: str = DEFAULT_PREFIX
    publisher: str = ""
    resolver_url: str = ""
    timeout: Optional[float] = None
    ignore_count_keys: Tuple[str, ...] = tuple(sorted(DEFAULT_IGNORE_COUNT_KEYS))

    def __post_init__(self):
        """Validate required settings and normalize URLs."""
        if not self.service_url or not self.service_url.strip():
            raise ConfigurationError("Service URL cannot be empty")
        if not self.client_id or not self.client_id.strip():
            raise ConfigurationError("Client ID cannot be empty")
        if not self.client_secret:
            raise ConfigurationError("Client secret cannot be empty")

        self.service_url = self.service_url.strip().rstrip('/')
        self.resolver_url = (self.resolver_url or self.service_url).strip().rstrip('/')
        self.ignore_count_keys = tuple(self.ignore_count_keys)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> 'ServiceConfig':
        """
        Build a configuration from DOIFLOW_* environment variables.

        Recognised variables:
            DOIFLOW_SERVICE_URL: URL of the DataCite /dois endpoint
            DOIFLOW_CLIENT_ID: Repository account (client-id)
            DOIFLOW_CLIENT_SECRET: Repository password (falls back to keyring)
            DOIFLOW_PREFIX: DOI prefix for new DOIs
            DOIFLOW_PUBLISHER: Publisher name for assembled metadata
            DOIFLOW_RESOLVER_URL: Base URL for the metadata "url" attribute
            DOIFLOW_TIMEOUT: Request timeout in seconds
            DOIFLOW_IGNORE_COUNT_KEYS: Comma separated diff allow-list

        Args:
            env_file: Optional path to a .env file; if omitted, python-dotenv
                searches the working directory

        Returns:
            ServiceConfig instance

        Raises:
            ConfigurationError: If required values are missing
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        service_url = os.getenv('DOIFLOW_SERVICE_URL', '')
        client_id = os.getenv('DOIFLOW_CLIENT_ID', '')
        client_secret = os.getenv('DOIFLOW_CLIENT_SECRET')

        if not client_secret and client_id:
            client_secret = load_client_secret(client_id)

        timeout_raw = os.getenv('DOIFLOW_TIMEOUT')
        try:
            timeout = float(timeout_raw) if timeout_raw else None
        except ValueError:
            raise ConfigurationError(f"Invalid DOIFLOW_TIMEOUT: {timeout_raw}")

        keys_raw = os.getenv('DOIFLOW_IGNORE_COUNT_KEYS')
        if keys_raw is None:
            ignore_count_keys = tuple(sorted(DEFAULT_IGNORE_COUNT_KEYS))
        else:
            ignore_count_keys = tuple(k.strip() for k in keys_raw.split(',') if k.strip())

        config = cls(
            service_url=service_url,
            client_id=client_id,
            client_secret=client_secret or '',
            prefix=os.getenv('DOIFLOW_PREFIX', DEFAULT_PREFIX),
            publisher=os.getenv('DOIFLOW_PUBLISHER', ''),
            resolver_url=os.getenv('DOIFLOW_RESOLVER_URL', ''),
            timeout=timeout,
            ignore_count_keys=ignore_count_keys
        )
        logger.info(f"Service configuration loaded for client {config.client_id} ({config.service_url})")
        return config


def store_client_secret(client_id: str, secret: str) -> None:
    """
    Store the client secret in the system credential store.

    Args:
        client_id: Repository account the secret belongs to
        secret: The secret to store

    Raises:
        ValueError: If client_id or secret is empty
        ConfigurationError: If the credential store rejects the secret
    """
    if not client_id or not client_id.strip():
        raise ValueError("Client ID cannot be empty")
    if not secret:
        raise ValueError("Secret cannot be empty")

    try:
        keyring.set_password(KEYRING_SERVICE_NAME, client_id, secret)
    except Exception as e:
        logger.error(f"Failed to store client secret in keyring: {e}")
        raise ConfigurationError(f"Failed to store client secret: {str(e)}")

    logger.info(f"Client secret stored in keyring for: {client_id}")


def load_client_secret(client_id: str) -> Optional[str]:
    """
    Load the client secret from the system credential store.

    Returns:
        The secret, or None if no secret is stored for this client

    Raises:
        ConfigurationError: If the credential store cannot be read
    """
    try:
        secret = keyring.get_password(KEYRING_SERVICE_NAME, client_id)
    except Exception as e:
        logger.error(f"Failed to read client secret from keyring: {e}")
        raise ConfigurationError(f"Failed to load client secret: {str(e)}")

    if secret is None:
        logger.warning(f"No client secret found in keyring for: {client_id}")
    return secret


def delete_client_secret(client_id: str) -> bool:
    """
    Remove the client secret from the system credential store.

    Returns:
        True if deleted, False if no secret was stored
    """
    try:
        keyring.delete_password(KEYRING_SERVICE_NAME, client_id)
    except PasswordDeleteError:
        logger.warning(f"No client secret to delete for: {client_id}")
        return False
    except Exception as e:
        logger.error(f"Failed to delete client secret: {e}")
        raise ConfigurationError(f"Failed to delete client secret: {str(e)}")

    logger.info(f"Client secret deleted from keyring for: {client_id}")
    return True
