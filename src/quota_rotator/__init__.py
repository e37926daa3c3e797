import logging

from .client import ChatClient, ChatOptions, DispatchRequest, RequestDispatcher
from .config import ClientSettings, load_settings
from .credential_pool import Credential, CredentialPool
from .error_handler import (
    USER_FACING_MESSAGE,
    ConfigurationError,
    CredentialRejectedError,
    EmptyResponseError,
    ExhaustedError,
    ExternalServiceError,
    RotatorError,
    TransportError,
    is_retryable_later,
)
from .rotation import RotationPolicy
from .usage import InMemoryStore, JsonFileStore, KeyValueStore, UsageLedger, UsageState

lib_logger = logging.getLogger("quota_rotator")
lib_logger.addHandler(logging.NullHandler())

__all__ = [
    "ChatClient",
    "ChatOptions",
    "DispatchRequest",
    "RequestDispatcher",
    "ClientSettings",
    "load_settings",
    "Credential",
    "CredentialPool",
    "RotationPolicy",
    "UsageLedger",
    "UsageState",
    "KeyValueStore",
    "InMemoryStore",
    "JsonFileStore",
    # Errors
    "RotatorError",
    "ConfigurationError",
    "CredentialRejectedError",
    "ExhaustedError",
    "ExternalServiceError",
    "EmptyResponseError",
    "TransportError",
    "USER_FACING_MESSAGE",
    "is_retryable_later",
]
