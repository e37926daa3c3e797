# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Ordered, fixed-at-startup pool of API credentials.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional

from .config import CREDENTIAL_ENV_PREFIX, DEFAULT_PLACEHOLDERS, collect_credentials
from .error_handler import ConfigurationError, mask_credential

lib_logger = logging.getLogger("quota_rotator")


@dataclass(frozen=True)
class Credential:
    """A secret and its position in the pool."""

    secret: str = field(repr=False)
    index: int

    @property
    def masked(self) -> str:
        return mask_credential(self.secret)

    def __repr__(self) -> str:
        return f"Credential(index={self.index}, secret={self.masked!r})"


class CredentialPool:
    """
    Holds the usable credentials in configuration order.

    Unset slots and template placeholders are dropped at construction so
    they never take part in rotation. An empty pool is a configuration
    error, not something to retry.
    """

    def __init__(
        self,
        raw_secrets: Iterable[Optional[str]],
        placeholders: Iterable[str] = DEFAULT_PLACEHOLDERS,
    ):
        placeholders = frozenset(placeholders)
        usable = []
        for raw in raw_secrets:
            if raw is None:
                continue
            secret = raw.strip()
            if not secret or secret in placeholders:
                continue
            usable.append(secret)

        if not usable:
            raise ConfigurationError("No usable API credentials configured")

        self._credentials: List[Credential] = [
            Credential(secret=secret, index=i) for i, secret in enumerate(usable)
        ]
        lib_logger.info(f"Credential pool loaded with {len(usable)} credential(s)")

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        prefix: str = CREDENTIAL_ENV_PREFIX,
    ) -> "CredentialPool":
        """Builds a pool from `<prefix>`, `<prefix>_1`, `<prefix>_2`, ..."""
        return cls(collect_credentials(os.environ if env is None else env, prefix))

    def size(self) -> int:
        return len(self._credentials)

    def __len__(self) -> int:
        return len(self._credentials)

    def get(self, index: int) -> Credential:
        if not 0 <= index < len(self._credentials):
            raise IndexError(
                f"Credential index {index} out of range for pool of {len(self)}"
            )
        return self._credentials[index]
