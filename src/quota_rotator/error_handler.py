# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Error types and classification for the rotator.

Only 401 and 429 are treated as credential-specific. Everything else is
surfaced to the caller unchanged.
"""

from typing import Optional

USER_FACING_MESSAGE = (
    "The assistant is temporarily unavailable. Please try again later."
)

ROTATE_STATUS_CODES = frozenset({401, 429})

OUTCOME_SUCCESS = "success"
OUTCOME_ROTATE = "rotate"
OUTCOME_FATAL = "fatal"


class RotatorError(Exception):
    """Base class for every error raised by this library."""


class ConfigurationError(RotatorError):
    """No usable credentials, or a setting that cannot be parsed."""


class CredentialRejectedError(RotatorError):
    """
    The provider rejected the active credential (401 or 429).

    Recovered locally by rotation; only used for classification and the
    failure log, never raised to a caller.
    """

    def __init__(self, status_code: int, credential_index: int):
        super().__init__(
            f"Credential slot {credential_index} rejected with HTTP {status_code}"
        )
        self.status_code = status_code
        self.credential_index = credential_index


class ExhaustedError(RotatorError):
    """Every attempt in one call was rejected. Retry later."""

    def __init__(self, attempts: int):
        super().__init__(
            f"All credentials rejected after {attempts} attempt(s)"
        )
        self.attempts = attempts


class ExternalServiceError(RotatorError):
    """A non-auth, non-rate-limit failure reported by the provider."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class EmptyResponseError(ExternalServiceError):
    """The provider answered with a well-formed envelope but no choices."""


class TransportError(RotatorError):
    """DNS, connection or timeout failure before a response was received."""


def classify_status(status_code: int) -> str:
    """Maps an HTTP status code to success, rotate or fatal."""
    if 200 <= status_code < 300:
        return OUTCOME_SUCCESS
    if status_code in ROTATE_STATUS_CODES:
        return OUTCOME_ROTATE
    return OUTCOME_FATAL


def is_retryable_later(e: Exception) -> bool:
    """
    Checks if the error is one the UI should show as "temporarily unavailable".
    Configuration errors are not; they must be fixed before deployment.
    """
    return isinstance(e, (ExhaustedError, ExternalServiceError, TransportError))


def mask_credential(secret: str) -> str:
    """Returns a log-safe form of a secret showing only its last 4 characters."""
    if len(secret) <= 4:
        return "****"
    return f"...{secret[-4:]}"
