# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Usage tracking package: state, storage and the ledger.
"""

from .types import UsageState
from .storage import KeyValueStore, InMemoryStore, JsonFileStore
from .ledger import UsageLedger

__all__ = [
    "UsageState",
    "KeyValueStore",
    "InMemoryStore",
    "JsonFileStore",
    "UsageLedger",
]
