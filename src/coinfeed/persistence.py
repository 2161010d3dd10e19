import asyncio
import json
from collections import defaultdict
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os
import aiofiles.tempfile
from loguru import logger

# --- Constants ---
COINS_CACHE_FILE = "coins_cache.json"
WATCHLIST_CACHE_FILE = "watchlist_cache.json"
FAVORITES_FILE = "favorites.json"


class JsonCache:
    """Reads and writes JSON documents in an application-private directory.

    Writes are atomic: the document goes to a temporary file in the same
    directory, which then replaces the target in one rename. A reader never
    sees a half-written document. All file I/O goes through `aiofiles` so
    the event loop is never blocked by disk operations.

    Writes of the same document are serialized and land in call order.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self._write_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def path_for(self, name: str) -> Path:
        return self.directory / name

    async def exists(self, name: str) -> bool:
        return await aiofiles.os.path.exists(self.path_for(name))

    async def read(self, name: str) -> Any | None:
        """Returns the decoded document, or None if missing or unreadable."""
        path = self.path_for(name)
        if not await aiofiles.os.path.exists(path):
            return None
        try:
            async with aiofiles.open(path, encoding="utf-8") as f:
                return json.loads(await f.read())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read cache document '{path}': {e}")
            return None

    async def write(self, name: str, payload: Any) -> bool:
        """Atomically replaces a document.

        Returns:
            True if the document was written.
        """
        async with self._write_locks[name]:
            return await self._write(self.path_for(name), payload)

    async def _write(self, path: Path, payload: Any) -> bool:
        tmp_path: str | None = None
        try:
            text = json.dumps(payload)
            await aiofiles.os.makedirs(self.directory, exist_ok=True)
            async with aiofiles.tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=self.directory,
                prefix=f".{path.name}.",
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp_path = f.name
                await f.write(text)
            await aiofiles.os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError):
            logger.exception(f"Failed to write cache document: {path}")
            if tmp_path is not None and await aiofiles.os.path.exists(tmp_path):
                await aiofiles.os.remove(tmp_path)
            return False
        logger.debug(f"Wrote cache document '{path}'.")
        return True

    async def remove(self, name: str) -> None:
        """Deletes a document. A missing document is not an error."""
        path = self.path_for(name)
        try:
            await aiofiles.os.remove(path)
            logger.debug(f"Removed cache document '{path}'.")
        except FileNotFoundError:
            pass


class FavoritesStore:
    """The persisted set of favorite coin ids.

    Lives next to the market cache and works without any network access.
    """

    def __init__(self, cache: JsonCache, name: str = FAVORITES_FILE) -> None:
        self.cache = cache
        self.name = name
        self._ids: set[str] = set()

    @property
    def ids(self) -> frozenset[str]:
        return frozenset(self._ids)

    def __contains__(self, coin_id: object) -> bool:
        return coin_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    async def load(self) -> frozenset[str]:
        data = await self.cache.read(self.name)
        if isinstance(data, list):
            self._ids = {str(coin_id) for coin_id in data}
        elif data is not None:
            logger.warning(f"Ignoring malformed favorites document: {data!r}")
        logger.info(f"Loaded {len(self._ids)} favorites.")
        return self.ids

    async def replace(self, coin_ids: Iterable[str]) -> None:
        self._ids = set(coin_ids)
        await self._save()

    async def toggle(self, coin_id: str) -> bool:
        """Flips membership of a coin and persists the set.

        Returns:
            True if the coin is a favorite after the toggle.
        """
        if coin_id in self._ids:
            self._ids.remove(coin_id)
            is_favorite = False
        else:
            self._ids.add(coin_id)
            is_favorite = True
        await self._save()
        return is_favorite

    async def _save(self) -> None:
        await self.cache.write(self.name, sorted(self._ids))
