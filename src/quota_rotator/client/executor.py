# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Request execution with credential rotation.

The RequestDispatcher runs an explicit bounded loop: each attempt is
classified into a tagged outcome (Success, Rotate or Fatal) instead of
relying on exceptions for control flow. The loop never makes more attempts
than there are credentials in the pool.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import httpx

from ..config import DEFAULT_BASE_URL, DEFAULT_TIMEOUT
from ..credential_pool import Credential, CredentialPool
from ..error_handler import (
    OUTCOME_ROTATE,
    OUTCOME_SUCCESS,
    CredentialRejectedError,
    ExhaustedError,
    ExternalServiceError,
    TransportError,
    classify_status,
)
from ..failure_logger import log_failure
from ..usage import UsageLedger

lib_logger = logging.getLogger("quota_rotator")


# =============================================================================
# REQUEST / ATTEMPT TYPES
# =============================================================================


@dataclass
class DispatchRequest:
    """An outbound call, minus the credential."""

    payload: Dict[str, Any]
    path: str = "/chat/completions"
    stream: bool = False
    method: str = "POST"


@dataclass(frozen=True)
class DispatchAttempt:
    """One try within a single send(). Not persisted."""

    number: int
    credential_index: int


@dataclass
class Success:
    response: httpx.Response


@dataclass
class Rotate:
    status_code: int


@dataclass
class Fatal:
    error: Exception


AttemptOutcome = Union[Success, Rotate, Fatal]


class RequestDispatcher:
    """
    Sends requests with the active credential and rotates on rejection.

    This class handles:
    - Picking the active credential from the ledger's state
    - Classifying each response (2xx, 401/429, anything else)
    - Recording successes and rotations in the ledger, one write per attempt
    - Bounding the retry loop to the pool size
    """

    def __init__(
        self,
        pool: CredentialPool,
        ledger: UsageLedger,
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: str = DEFAULT_BASE_URL,
        extra_headers: Optional[Dict[str, str]] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Args:
            pool: Credentials to rotate through
            ledger: Usage ledger sized to the same pool
            http_client: Shared client; one is created (and owned) if omitted
            base_url: API root, without a trailing slash
            extra_headers: Static identifying headers sent with every call
            timeout: Per-attempt timeout in seconds for an owned client
        """
        if ledger.pool_size != pool.size():
            raise ValueError(
                f"Ledger sized for {ledger.pool_size} credential(s), pool has {pool.size()}"
            )
        self._pool = pool
        self._ledger = ledger
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self._base_url = base_url.rstrip("/")
        self._extra_headers = dict(extra_headers or {})

    @property
    def max_attempts(self) -> int:
        return self._pool.size()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()

    def _build_headers(self, credential: Credential) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {credential.secret}",
            "Content-Type": "application/json",
            **self._extra_headers,
        }

    async def send(self, request: DispatchRequest) -> httpx.Response:
        """
        Executes `request`, rotating credentials on 401/429.

        For streaming requests the successful response is returned unread;
        the caller must close it.

        Raises:
            ExhaustedError: every attempt was rejected
            ExternalServiceError: any other non-2xx status
            TransportError: network failure before a response arrived
        """
        for number in range(1, self.max_attempts + 1):
            state = await self._ledger.current()
            credential = self._pool.get(state.active_index)
            attempt = DispatchAttempt(number=number, credential_index=credential.index)

            outcome = await self._attempt(request, credential, attempt)

            if isinstance(outcome, Success):
                try:
                    await self._ledger.record_success(state)
                except BaseException:
                    # Nobody owns the response yet
                    await outcome.response.aclose()
                    raise
                return outcome.response

            if isinstance(outcome, Rotate):
                lib_logger.warning(
                    f"Credential {credential.masked} (slot {credential.index}) rejected with "
                    f"HTTP {outcome.status_code}; rotating (attempt {number}/{self.max_attempts})"
                )
                log_failure(
                    credential.secret,
                    number,
                    CredentialRejectedError(outcome.status_code, credential.index),
                    request.payload,
                    status_code=outcome.status_code,
                )
                await self._ledger.rotate(state)
                continue

            log_failure(
                credential.secret,
                number,
                outcome.error,
                request.payload,
                status_code=getattr(outcome.error, "status_code", None),
            )
            raise outcome.error

        lib_logger.error(f"All credentials rejected after {self.max_attempts} attempt(s)")
        raise ExhaustedError(self.max_attempts)

    async def _attempt(
        self,
        request: DispatchRequest,
        credential: Credential,
        attempt: DispatchAttempt,
    ) -> AttemptOutcome:
        lib_logger.debug(
            f"Attempt {attempt.number} with credential slot {attempt.credential_index}"
        )
        http_request = self._http_client.build_request(
            request.method,
            f"{self._base_url}{request.path}",
            headers=self._build_headers(credential),
            json=request.payload,
        )
        try:
            response = await self._http_client.send(http_request, stream=request.stream)
        except httpx.TransportError as e:
            lib_logger.error(f"Transport failure on attempt {attempt.number}: {e}")
            error = TransportError(f"Request to {request.path} failed: {e}")
            error.__cause__ = e
            return Fatal(error)

        outcome = classify_status(response.status_code)
        if outcome == OUTCOME_SUCCESS:
            return Success(response)

        if outcome == OUTCOME_ROTATE:
            await response.aclose()
            return Rotate(response.status_code)

        body = await self._read_error_body(response)
        return Fatal(
            ExternalServiceError(
                f"API error: {response.status_code} {body}",
                status_code=response.status_code,
                body=body,
            )
        )

    async def _read_error_body(self, response: httpx.Response) -> str:
        try:
            await response.aread()
            return response.text
        except httpx.HTTPError as e:
            lib_logger.debug(f"Could not read error body: {e}")
            return ""
        finally:
            await response.aclose()
