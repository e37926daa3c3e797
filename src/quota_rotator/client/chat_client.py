# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Slim ChatClient facade.

Builds chat-completion payloads and unwraps responses. All retry and
rotation logic lives in RequestDispatcher.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

import httpx

from ..config import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL,
    DEFAULT_TEMPERATURE,
    ClientSettings,
    load_settings,
)
from ..credential_pool import CredentialPool
from ..error_handler import EmptyResponseError, ExternalServiceError
from ..failure_logger import configure_failure_logger
from ..rotation import RotationPolicy
from ..usage import JsonFileStore, KeyValueStore, UsageLedger
from .executor import DispatchRequest, RequestDispatcher

lib_logger = logging.getLogger("quota_rotator")


@dataclass
class ChatOptions:
    """Per-call overrides. None means the client's default."""

    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    model: Optional[str] = None


class ChatClient:
    """
    Caller-facing chat-completion API.

    Usage:
        async with ChatClient.from_env() as client:
            text = await client.complete([{"role": "user", "content": "Hi"}])
    """

    def __init__(
        self,
        dispatcher: RequestDispatcher,
        ledger: UsageLedger,
        pool: CredentialPool,
        model: str = DEFAULT_MODEL,
        default_temperature: float = DEFAULT_TEMPERATURE,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
    ):
        self._dispatcher = dispatcher
        self._ledger = ledger
        self._pool = pool
        self.model = model
        self.default_temperature = default_temperature
        self.default_max_tokens = default_max_tokens

    @classmethod
    def from_settings(
        cls,
        settings: ClientSettings,
        store: Optional[KeyValueStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "ChatClient":
        """Wires pool, policy, ledger and dispatcher from settings."""
        pool = CredentialPool(settings.credentials)
        policy = RotationPolicy(pool.size())
        ledger = UsageLedger(
            store if store is not None else JsonFileStore(settings.state_file),
            policy,
            daily_ceiling=settings.daily_limit_per_key,
        )
        dispatcher = RequestDispatcher(
            pool,
            ledger,
            http_client=http_client,
            base_url=settings.base_url,
            extra_headers=settings.identity_headers,
            timeout=settings.timeout,
        )
        if settings.logs_dir is not None:
            configure_failure_logger(settings.logs_dir)
        return cls(
            dispatcher,
            ledger,
            pool,
            model=settings.model,
            default_temperature=settings.default_temperature,
            default_max_tokens=settings.default_max_tokens,
        )

    @classmethod
    def from_env(
        cls, env: Optional[Mapping[str, str]] = None, **kwargs
    ) -> "ChatClient":
        return cls.from_settings(load_settings(env), **kwargs)

    async def __aenter__(self) -> "ChatClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._dispatcher.aclose()

    def build_payload(
        self,
        messages: Iterable[Mapping[str, Any]],
        options: Optional[ChatOptions],
        stream: bool,
    ) -> Dict[str, Any]:
        options = options or ChatOptions()
        return {
            "model": options.model or self.model,
            "messages": [
                {"role": m["role"], "content": m["content"]} for m in messages
            ],
            "temperature": (
                self.default_temperature
                if options.temperature is None
                else options.temperature
            ),
            "max_tokens": (
                self.default_max_tokens
                if options.max_tokens is None
                else options.max_tokens
            ),
            "stream": stream,
        }

    async def complete(
        self,
        messages: Iterable[Mapping[str, Any]],
        options: Optional[ChatOptions] = None,
    ) -> str:
        """
        Returns the text of the first completion.

        Raises:
            EmptyResponseError: the envelope has no choices
            ExternalServiceError: the body is not a JSON object
            ExhaustedError, TransportError: see RequestDispatcher.send
        """
        payload = self.build_payload(messages, options, stream=False)
        response = await self._dispatcher.send(DispatchRequest(payload=payload))
        return self._extract_text(response)

    async def complete_streaming(
        self,
        messages: Iterable[Mapping[str, Any]],
        options: Optional[ChatOptions] = None,
    ) -> httpx.Response:
        """
        Returns the live response of a streaming completion, unread.

        The caller owns the response and must close it (`await response.aclose()`).
        """
        payload = self.build_payload(messages, options, stream=True)
        return await self._dispatcher.send(DispatchRequest(payload=payload, stream=True))

    async def usage_summary(self) -> Dict[str, Any]:
        """Snapshot of the rotation state for diagnostics. Secrets are masked."""
        state = await self._ledger.current()
        return {
            "active_index": state.active_index,
            "active_credential": self._pool.get(state.active_index).masked,
            "call_count": state.call_count,
            "daily_ceiling": self._ledger.daily_ceiling,
            "last_reset_date": state.last_reset_date.isoformat(),
            "failed_indices": sorted(state.failed_indices),
            "pool_size": self._pool.size(),
        }

    def _extract_text(self, response: httpx.Response) -> str:
        try:
            data = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ExternalServiceError(
                f"Malformed response payload: {e}",
                status_code=response.status_code,
                body=response.text,
            ) from e
        if not isinstance(data, dict):
            raise ExternalServiceError(
                "Malformed response payload: expected a JSON object",
                status_code=response.status_code,
                body=response.text,
            )

        choices: List[Any] = data.get("choices") or []
        if not isinstance(choices, list) or not choices:
            raise EmptyResponseError(
                "Provider returned no choices",
                status_code=response.status_code,
                body=response.text,
            )
        first = choices[0]
        message = first.get("message") if isinstance(first, dict) else None
        if not isinstance(message, dict):
            raise ExternalServiceError(
                "Malformed response payload: choices[0].message is not an object",
                status_code=response.status_code,
                body=response.text,
            )
        content = message.get("content")
        if content is not None and not isinstance(content, str):
            raise ExternalServiceError(
                "Malformed response payload: message content is not a string",
                status_code=response.status_code,
                body=response.text,
            )
        return content or ""
