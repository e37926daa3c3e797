# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Type definitions for usage tracking.
"""

from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Dict, FrozenSet


@dataclass(frozen=True)
class UsageState:
    """
    Rotation and accounting state for the whole pool.

    Usage is counted per active slot, not per credential: call_count always
    belongs to whichever credential sits at active_index.
    """

    active_index: int
    call_count: int
    last_reset_date: date
    failed_indices: FrozenSet[int] = field(default_factory=frozenset)

    @classmethod
    def fresh(cls, today: date) -> "UsageState":
        return cls(active_index=0, call_count=0, last_reset_date=today)

    def with_call_recorded(self) -> "UsageState":
        return replace(self, call_count=self.call_count + 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active_index": self.active_index,
            "call_count": self.call_count,
            "last_reset_date": self.last_reset_date.isoformat(),
            "failed_indices": sorted(self.failed_indices),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageState":
        """
        Parses the persisted form.

        Raises:
            KeyError, TypeError, ValueError: if the record is malformed.
        """
        active_index = int(data["active_index"])
        call_count = int(data["call_count"])
        if active_index < 0 or call_count < 0:
            raise ValueError("Negative index or count in usage record")
        return cls(
            active_index=active_index,
            call_count=call_count,
            last_reset_date=date.fromisoformat(data["last_reset_date"]),
            failed_indices=frozenset(int(i) for i in data.get("failed_indices", [])),
        )
