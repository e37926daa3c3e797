# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Sequential rotation policy.

Sticks to one credential until it is rejected or its daily ceiling is hit,
then moves to the next slot that has not failed today.
"""

import logging
from dataclasses import replace

from .usage.types import UsageState

lib_logger = logging.getLogger("quota_rotator")


class RotationPolicy:
    """
    Chooses the next active slot.

    rotate() is the only transition over (active_index, failed_indices).
    When every slot has failed, the failed set is cleared and the next slot
    in order is picked, so there is always a candidate to try.
    """

    def __init__(self, pool_size: int):
        if pool_size < 1:
            raise ValueError("pool_size must be at least 1")
        self.pool_size = pool_size

    @property
    def name(self) -> str:
        return "sequential"

    def rotate(self, state: UsageState) -> UsageState:
        """
        Marks the active slot failed and selects the next candidate.

        Args:
            state: Current usage state

        Returns:
            New state with call_count reset to 0
        """
        pool_size = self.pool_size
        current = state.active_index
        failed = set(state.failed_indices)
        failed.add(current)

        next_index = None
        for step in range(1, pool_size + 1):
            candidate = (current + step) % pool_size
            if candidate not in failed:
                next_index = candidate
                break

        if next_index is None:
            lib_logger.warning(
                f"All {pool_size} credential(s) marked failed; clearing and retrying from the start of the cycle"
            )
            failed.clear()
            next_index = (current + 1) % pool_size

        lib_logger.info(f"Rotated credential slot {current} -> {next_index}")
        return replace(
            state,
            active_index=next_index,
            call_count=0,
            failed_indices=frozenset(failed),
        )
