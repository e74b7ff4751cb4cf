"""Local key/value stores used as an offline fallback.

Values are opaque strings (callers store serialized JSON). There is no
consistency guarantee beyond last write wins.

FileLocalStore keeps one file per key:
    {base_path}/{base64url(key)}.json
"""

from __future__ import annotations

import base64
import logging
from pathlib import Path
from uuid import uuid4

import aiofiles  # type: ignore[import-untyped]
import aiofiles.os  # type: ignore[import-untyped]

from farmsync.store.base import LocalStore

logger = logging.getLogger(__name__)


class MemoryLocalStore(LocalStore):
    """Dict-backed local store, for tests and ephemeral sessions."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._items: dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def __len__(self) -> int:
        return len(self._items)


class FileLocalStore(LocalStore):
    """Filesystem-backed local store."""

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path)

    async def _ensure_directory(self) -> None:
        if not await aiofiles.os.path.exists(self.base_path):
            await aiofiles.os.makedirs(self.base_path, exist_ok=True)

    def _path(self, key: str) -> Path:
        encoded = base64.urlsafe_b64encode(key.encode("utf-8")).decode("ascii").rstrip("=")
        return self.base_path / f"{encoded}.json"

    async def get_item(self, key: str) -> str | None:
        path = self._path(key)
        if not await aiofiles.os.path.exists(path):
            return None
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            return await f.read()

    async def set_item(self, key: str, value: str) -> None:
        await self._ensure_directory()
        path = self._path(key)
        # Write then rename so readers never see a partial value
        tmp_path = path.with_name(f"{path.name}.{uuid4().hex}.tmp")
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(value)
        await aiofiles.os.replace(tmp_path, path)
        logger.debug(f"Stored local item {key} at {path}")

    async def remove_item(self, key: str) -> None:
        path = self._path(key)
        if await aiofiles.os.path.exists(path):
            await aiofiles.os.remove(path)
