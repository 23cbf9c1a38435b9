"""Common error and validation utility functions
"""

from enum import Enum
from typing import Optional


class WowSeoError(Exception):
    """Base exception for indexer and billing errors."""


class TransientChainError(WowSeoError):
    """
    A transient infrastructure failure: RPC timeout, rate limit, dropped connection.
    Callers may retry the operation with backoff.
    """


class DataIntegrityError(WowSeoError):
    """
    A persisted-state conflict, such as a duplicate key or a cursor
    moved by another writer while a batch was in flight.
    """


class ConfigurationError(WowSeoError):
    """A missing or invalid configuration value. Never defaulted silently."""


class IndexerNotFoundError(ConfigurationError):
    """The requested indexer does not exist."""

    def __init__(self, indexer_id: str):
        self.indexer_id = indexer_id
        super().__init__(f"Indexer {indexer_id} not found")


class UnknownToolError(ConfigurationError):
    """A tool name or alias outside the closed tool enumeration."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown tool '{name}'")


class UnregisteredToolError(ConfigurationError):
    """A tool id with no registered price."""

    def __init__(self, tool_id: str):
        self.tool_id = tool_id
        super().__init__(f"Tool {tool_id} is not registered")


class PaymentErrorKind(str, Enum):
    """Human-readable classification of payment failures."""

    USER_REJECTED = "user_rejected"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    PERMISSION_DENIED = "permission_denied"
    UNSUPPORTED_TOKEN = "unsupported_token"
    NETWORK = "network"
    CONTRACT_REVERT = "contract_revert"
    NOT_CONNECTED = "not_connected"
    DUPLICATE_SUBMISSION = "duplicate_submission"
    UNKNOWN = "unknown"


class PaymentError(WowSeoError):
    """A user-facing payment or admin pricing failure. Never retried automatically."""

    def __init__(
        self,
        message: str,
        kind: PaymentErrorKind = PaymentErrorKind.UNKNOWN,
        original_error: Optional[BaseException] = None,
    ):
        self.message = message
        self.kind = kind
        self.original_error = original_error
        super().__init__(self.message)

    def __str__(self):
        return f"[{self.kind.value}] {self.message}"


class DuplicatePaymentError(PaymentError):
    """A payment for the same user is still in flight."""

    def __init__(self, user_id: str):
        super().__init__(
            f"A payment for user {user_id} is already in progress",
            PaymentErrorKind.DUPLICATE_SUBMISSION,
        )


def check_for_missing_env_vars(env_vars: dict):
    """Checks whether any required environment values are undefined.

    :param env_vars: The dictionary of environment variables.
    """
    # Check for missing environment variables since these are unrecoverable.
    missing_keys = [k for k, v in env_vars.items() if v is None]
    if missing_keys:
        missing_keys_str = ", ".join(missing_keys)
        raise EnvironmentError(
            f"Missing required environment variables: {missing_keys_str}"
        )


def get_int_setting(name: str, value: Optional[str], default: Optional[int] = None) -> int:
    """Parses an integer setting.

    :param name: The setting name, used in error messages.
    :param value: The raw string value, if any.
    :param default: The value used when the setting is absent.
        If None, the setting is required.
    :return: The parsed integer.
    """
    if value is None or value == "":
        if default is None:
            raise ConfigurationError(f"Missing required setting {name}")
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Setting {name} must be an integer, got {value!r}"
        ) from e
