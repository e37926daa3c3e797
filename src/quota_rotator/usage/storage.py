# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Durable key-value storage for usage state.

Features:
- Async file I/O with aiofiles
- Atomic writes (write to temp, then rename)
- File lock around writes so a second process cannot interleave a write
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Dict, Optional, Union

import aiofiles
from filelock import FileLock

lib_logger = logging.getLogger("quota_rotator")


class KeyValueStore:
    """Interface for the store backing a UsageLedger."""

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str) -> None:
        raise NotImplementedError


class InMemoryStore(KeyValueStore):
    """Process-local store. Used in tests and when persistence is not wanted."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})
        self.write_count = 0

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value
        self.write_count += 1


class JsonFileStore(KeyValueStore):
    """
    Keeps all keys in a single JSON object on disk.

    Every set() rewrites the whole file. Reads go to disk each time so an
    external edit is picked up on the next load.
    """

    def __init__(self, file_path: Union[str, Path]):
        self.file_path = Path(file_path)
        self.file_lock = FileLock(f"{self.file_path}.lock")
        self._io_lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[str]:
        async with self._io_lock:
            data = await self._read_all()
        value = data.get(key)
        return value if isinstance(value, str) else None

    async def set(self, key: str, value: str) -> None:
        async with self._io_lock:
            with self.file_lock:
                data = await self._read_all()
                data[key] = value
                await self._write_file(json.dumps(data, indent=2))
        lib_logger.debug(f"Saved '{key}' to {self.file_path}")

    async def _read_all(self) -> Dict[str, str]:
        if not self.file_path.exists():
            return {}
        try:
            async with aiofiles.open(self.file_path, "r", encoding="utf-8") as f:
                content = await f.read()
        except OSError as e:
            lib_logger.error(f"Failed to read store file {self.file_path}: {e}")
            return {}
        if not content.strip():
            return {}
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            lib_logger.error(f"Failed to parse store file {self.file_path}: {e}")
            return {}
        if not isinstance(data, dict):
            lib_logger.error(f"Store file {self.file_path} is not a JSON object")
            return {}
        return data

    async def _write_file(self, content: str) -> None:
        """Write file contents atomically."""
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.file_path.with_suffix(self.file_path.suffix + ".tmp")
        async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
            await f.write(content)
        temp_path.replace(self.file_path)
