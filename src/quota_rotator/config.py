# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Configuration loading for the rotator.

Settings are resolved from:
1. System defaults (below)
2. Environment variables, optionally read from a .env file

Environment variables always override the defaults.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from .error_handler import ConfigurationError

lib_logger = logging.getLogger("quota_rotator")

# =============================================================================
# DEFAULTS
# =============================================================================

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "meta-llama/llama-3.2-3b-instruct:free"
# Conservative estimate for the free tier; the provider does not publish it.
DEFAULT_DAILY_LIMIT_PER_KEY = 200
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000
DEFAULT_APP_URL = "https://aivy-app.com"
DEFAULT_APP_TITLE = "Aivy Health App"
DEFAULT_STATE_FILE = "quota_rotator_usage.json"
DEFAULT_TIMEOUT = 30.0

CREDENTIAL_ENV_PREFIX = "OPENROUTER_API_KEY"
USAGE_STATE_KEY = "usage_state"

# Template values shipped in example .env files
DEFAULT_PLACEHOLDERS = frozenset(
    f"your_openrouter_key_{n}" for n in range(1, 6)
) | {"your_openrouter_key"}

# =============================================================================
# ENVIRONMENT VARIABLES
# =============================================================================

ENV_BASE_URL = "OPENROUTER_BASE_URL"
ENV_MODEL = "OPENROUTER_MODEL"
ENV_DAILY_LIMIT = "DAILY_LIMIT_PER_KEY"
ENV_APP_URL = "APP_BASE_URL"
ENV_APP_TITLE = "APP_TITLE"
ENV_STATE_FILE = "QUOTA_ROTATOR_STATE_FILE"
ENV_TIMEOUT = "QUOTA_ROTATOR_TIMEOUT"
ENV_LOGS_DIR = "QUOTA_ROTATOR_LOGS_DIR"


@dataclass
class ClientSettings:
    """Everything needed to build a ChatClient."""

    credentials: List[str] = field(default_factory=list)
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    daily_limit_per_key: Optional[int] = DEFAULT_DAILY_LIMIT_PER_KEY
    app_url: str = DEFAULT_APP_URL
    app_title: str = DEFAULT_APP_TITLE
    state_file: Path = Path(DEFAULT_STATE_FILE)
    timeout: float = DEFAULT_TIMEOUT
    logs_dir: Optional[Path] = None
    default_temperature: float = DEFAULT_TEMPERATURE
    default_max_tokens: int = DEFAULT_MAX_TOKENS

    @property
    def identity_headers(self) -> dict:
        return {"HTTP-Referer": self.app_url, "X-Title": self.app_title}


def collect_credentials(
    env: Mapping[str, str], prefix: str = CREDENTIAL_ENV_PREFIX
) -> List[str]:
    """
    Collects `<prefix>` and `<prefix>_<n>` values in numeric order.

    Unset and empty values are dropped here; placeholder filtering is the
    pool's job.
    """
    numbered = []
    for key, value in env.items():
        if not key.startswith(prefix + "_"):
            continue
        suffix = key[len(prefix) + 1 :]
        if suffix.isdigit():
            numbered.append((int(suffix), value))

    ordered = []
    if env.get(prefix):
        ordered.append(env[prefix])
    ordered.extend(value for _, value in sorted(numbered))
    return [value for value in ordered if value]


def _parse_daily_limit(raw: Optional[str]) -> Optional[int]:
    if raw is None or raw.strip() == "":
        return DEFAULT_DAILY_LIMIT_PER_KEY
    if raw.strip().lower() in ("none", "off"):
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(
            f"{ENV_DAILY_LIMIT} must be an integer, got {raw!r}"
        ) from None
    if value < 0:
        raise ConfigurationError(f"{ENV_DAILY_LIMIT} must not be negative")
    # 0 disables the ceiling
    return value or None


def _parse_timeout(raw: Optional[str]) -> float:
    if raw is None or raw.strip() == "":
        return DEFAULT_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(
            f"{ENV_TIMEOUT} must be a number, got {raw!r}"
        ) from None
    if value <= 0:
        raise ConfigurationError(f"{ENV_TIMEOUT} must be positive")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None) -> ClientSettings:
    """
    Builds ClientSettings from environment variables.

    Args:
        env: Mapping to read from. When omitted, a .env file in the working
            directory is loaded (without overriding real variables) and
            os.environ is used.

    Raises:
        ConfigurationError: if a numeric setting cannot be parsed.
    """
    if env is None:
        load_dotenv(override=False)
        env = os.environ

    logs_dir = env.get(ENV_LOGS_DIR)
    settings = ClientSettings(
        credentials=collect_credentials(env),
        base_url=env.get(ENV_BASE_URL) or DEFAULT_BASE_URL,
        model=env.get(ENV_MODEL) or DEFAULT_MODEL,
        daily_limit_per_key=_parse_daily_limit(env.get(ENV_DAILY_LIMIT)),
        app_url=env.get(ENV_APP_URL) or DEFAULT_APP_URL,
        app_title=env.get(ENV_APP_TITLE) or DEFAULT_APP_TITLE,
        state_file=Path(env.get(ENV_STATE_FILE) or DEFAULT_STATE_FILE),
        timeout=_parse_timeout(env.get(ENV_TIMEOUT)),
        logs_dir=Path(logs_dir) if logs_dir else None,
    )
    lib_logger.debug(
        f"Loaded settings: {len(settings.credentials)} credential(s), "
        f"model={settings.model}, daily limit={settings.daily_limit_per_key}"
    )
    return settings
