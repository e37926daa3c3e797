# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Usage ledger: durable rotation and accounting state.

The ledger owns the single UsageState of the process. Every mutation is
written through to the store before the call returns.
"""

import asyncio
import json
import logging
from dataclasses import replace
from datetime import date
from typing import TYPE_CHECKING, Callable, Optional, Tuple

from ..config import DEFAULT_DAILY_LIMIT_PER_KEY, USAGE_STATE_KEY
from .storage import KeyValueStore
from .types import UsageState

if TYPE_CHECKING:
    from ..rotation import RotationPolicy

lib_logger = logging.getLogger("quota_rotator")


class UsageLedger:
    """
    Persists per-slot call counts and decides when the daily reset is due.

    Every load -> mutate -> persist sequence runs under one asyncio.Lock,
    and is shielded from cancellation so a caller that gives up mid-write
    cannot leave a torn record behind.
    """

    def __init__(
        self,
        store: KeyValueStore,
        policy: "RotationPolicy",
        daily_ceiling: Optional[int] = DEFAULT_DAILY_LIMIT_PER_KEY,
        today: Callable[[], date] = date.today,
        state_key: str = USAGE_STATE_KEY,
    ):
        """
        Args:
            store: Durable key-value store
            policy: Rotation policy sized to the credential pool
            daily_ceiling: Soft per-slot daily call limit; None disables it
            today: Clock returning the current calendar date
            state_key: Key the serialized state is stored under
        """
        if daily_ceiling is not None and daily_ceiling < 1:
            raise ValueError("daily_ceiling must be positive or None")
        self._store = store
        self._policy = policy
        self._daily_ceiling = daily_ceiling
        self._today = today
        self._state_key = state_key
        self._state: Optional[UsageState] = None
        self._lock = asyncio.Lock()

    @property
    def pool_size(self) -> int:
        return self._policy.pool_size

    @property
    def daily_ceiling(self) -> Optional[int]:
        return self._daily_ceiling

    def ceiling_reached(self, state: UsageState) -> bool:
        return (
            self._daily_ceiling is not None
            and state.call_count >= self._daily_ceiling
        )

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def load(self) -> UsageState:
        """
        Reads the persisted state, applying the daily reset if it is due.

        A missing or unreadable record, or one from an earlier day, is
        replaced by a fresh state which is persisted before returning.
        """
        return await asyncio.shield(self._locked(self._load))

    async def current(self) -> UsageState:
        """Returns the in-memory state, loading it on first use or a new day."""
        return await asyncio.shield(self._locked(self._current))

    async def record_success(self, state: UsageState) -> UsageState:
        """
        Counts one successful call against the slot `state` was using.

        If the count reaches the daily ceiling, the slot is rotated out in the
        same write so the next call does not land on a spent credential.
        """
        return await asyncio.shield(self._locked(self._record_success, state))

    async def rotate(self, state: UsageState) -> UsageState:
        """
        Rotates away from the slot `state` was using and persists the result.

        If another call already rotated away from that slot, the current
        state is returned unchanged.
        """
        return await asyncio.shield(self._locked(self._rotate, state))

    async def persist(self, state: UsageState) -> None:
        """Overwrites the stored record with `state`. Safe to repeat."""
        await asyncio.shield(self._locked(self._write, state))

    async def reset(self) -> UsageState:
        """Forces a fresh state for today."""
        return await asyncio.shield(self._locked(self._reset))

    # =========================================================================
    # PRIVATE METHODS
    # =========================================================================

    async def _locked(self, fn, *args):
        async with self._lock:
            return await fn(*args)

    async def _write(self, state: UsageState) -> None:
        await self._store.set(self._state_key, json.dumps(state.to_dict()))
        self._state = state

    async def _reset(self) -> UsageState:
        state = UsageState.fresh(self._today())
        await self._write(state)
        lib_logger.info(f"Usage ledger reset for {state.last_reset_date.isoformat()}")
        return state

    async def _read(self) -> Optional[UsageState]:
        raw = await self._store.get(self._state_key)
        if raw is None:
            return None
        try:
            return UsageState.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            lib_logger.error(f"Discarding unreadable usage record: {e}")
            return None

    def _sanitize(self, state: UsageState) -> Tuple[UsageState, bool]:
        """Drops indices that no longer exist in a smaller pool."""
        size = self.pool_size
        failed = frozenset(i for i in state.failed_indices if 0 <= i < size)
        if state.active_index >= size:
            return replace(state, active_index=0, call_count=0, failed_indices=failed), True
        if failed != state.failed_indices:
            return replace(state, failed_indices=failed), True
        return state, False

    async def _load(self) -> UsageState:
        state = await self._read()
        if state is None or state.last_reset_date != self._today():
            return await self._reset()

        state, changed = self._sanitize(state)
        if changed:
            lib_logger.warning(
                f"Usage record did not match a pool of {self.pool_size}; corrected to slot {state.active_index}"
            )
            await self._write(state)
        else:
            self._state = state
        return state

    async def _current(self) -> UsageState:
        if self._state is None or self._state.last_reset_date != self._today():
            return await self._load()
        return self._state

    async def _record_success(self, state: UsageState) -> UsageState:
        latest = await self._current()
        if latest.active_index != state.active_index:
            # A concurrent call rotated away from this slot already
            lib_logger.debug(
                f"Success on slot {state.active_index} after rotation to {latest.active_index}; not counted"
            )
            return latest

        updated = latest.with_call_recorded()
        if self.ceiling_reached(updated):
            lib_logger.info(
                f"Slot {updated.active_index} reached daily ceiling of {self._daily_ceiling}; rotating"
            )
            updated = self._policy.rotate(updated)
        await self._write(updated)
        return updated

    async def _rotate(self, state: UsageState) -> UsageState:
        latest = await self._current()
        if latest.active_index != state.active_index:
            lib_logger.debug(
                f"Slot {state.active_index} already rotated out (now {latest.active_index})"
            )
            return latest
        updated = self._policy.rotate(latest)
        await self._write(updated)
        return updated
